# module storefront.checkout.views

"""Endpoints du checkout.
- GET /form: formulaire pré-rempli (utilisateur connecté), récapitulatif du panier et passerelles proposées
- POST /summary: totaux, validité et erreurs par champ pour un formulaire donné
- POST /pay: ouvre une tentative de paiement (rate-limité, une seule tentative active par session)
"""
import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends

from storefront.cart.service import Cart
from storefront.cart.views import get_cart
from storefront.checkout.models import CheckoutForm, PayRequest
from storefront.checkout.service import CheckoutSession, seed_form
from storefront.payments.gateways import available_gateways
from storefront.payments.models import PaymentStart
from storefront.payments.workflow import CheckoutWorkflow, get_workflow
from storefront.utils.rate_limit import optional_rate_limit
from storefront.utils.security import get_optional_user
from storefront.utils.session import get_session_scope

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/v1/checkout", tags=["Checkout API"])


@router.get("/form")
async def checkout_form(
    cart: Cart = Depends(get_cart),
    scope: str = Depends(get_session_scope),
    user: Optional[Dict[str, Any]] = Depends(get_optional_user),
    workflow: CheckoutWorkflow = Depends(get_workflow),
):
    form = seed_form(user)
    summary = CheckoutSession.from_cart(cart, form).summary()
    return {
        "form": form.model_dump(by_alias=True),
        "summary": summary.model_dump(by_alias=True, mode="json"),
        "cart": cart.to_view().model_dump(by_alias=True, mode="json"),
        "gateways": available_gateways(),
        "canSubmit": await workflow.can_submit(scope) and not cart.is_empty,
    }

@router.post("/summary")
def checkout_summary(form: CheckoutForm, cart: Cart = Depends(get_cart)):
    return CheckoutSession.from_cart(cart, form).summary().model_dump(by_alias=True, mode="json")

@router.post("/pay", dependencies=[Depends(optional_rate_limit(times=10, seconds=60))])
async def pay(
    body: PayRequest,
    scope: str = Depends(get_session_scope),
    user: Optional[Dict[str, Any]] = Depends(get_optional_user),
    workflow: CheckoutWorkflow = Depends(get_workflow),
):
    """
    Démarre le paiement:
    - 400 si panier vide ou champs requis manquants (aucun appel passerelle)
    - 409 si une tentative est en cours ou un paiement précédent reste à rapprocher
    - 502 si la passerelle ne peut pas ouvrir de session
    Retour: tentative (Initiated) + paramètres d'ouverture de la passerelle.
    """
    attempt, session = await workflow.start_payment(scope, body, user)
    start = PaymentStart(attempt=attempt, gateway=session.to_client(), totals=attempt.snapshot.totals)
    return start.model_dump(by_alias=True, mode="json")
