import logging
from typing import Any, Dict

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse

from storefront.errors import AttemptNotFoundError
from storefront.payments import reconciliation, repository, stripe_client
from storefront.payments.models import AttemptState, GatewayEventIn
from storefront.payments.workflow import CheckoutWorkflow, get_workflow
from storefront.utils.security import bearer_token, require_support_admin
from storefront.utils.session import get_session_scope

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/v1/payments", tags=["Payments API"])
support_router = APIRouter(
    prefix="/api/v1/support",
    tags=["Support API"],
    dependencies=[Depends(require_support_admin)],
)

# module storefront.payments.views
@router.post("/events")
async def gateway_event(
    request: Request,
    body: GatewayEventIn,
    scope: str = Depends(get_session_scope),
    workflow: CheckoutWorkflow = Depends(get_workflow),
):
    """
    Relais des callbacks de la passerelle inline (load / success / cancel / error).
    - success: vérification serveur puis création de commande, dans la même requête
    - doublons et événements hors séquence: ignorés, l'état courant est renvoyé
    - 404 si aucune tentative n'existe pour la session
    """
    attempt = await workflow.handle_event(scope, body.to_event(), user_token=bearer_token(request))
    return AttemptState(attempt=attempt, can_submit=await workflow.can_submit(scope)).model_dump(by_alias=True, mode="json")

@router.get("/attempt")
async def current_attempt(scope: str = Depends(get_session_scope), workflow: CheckoutWorkflow = Depends(get_workflow)):
    """État de la dernière tentative de la session (null si aucune) et possibilité de payer."""
    attempt = await workflow.current_attempt(scope)
    return AttemptState(attempt=attempt, can_submit=await workflow.can_submit(scope)).model_dump(by_alias=True, mode="json")

@router.post("/webhook/stripe", include_in_schema=False)
async def webhook_stripe(request: Request, workflow: CheckoutWorkflow = Depends(get_workflow)):
    """
    Webhook Stripe Checkout: traduit l'event en événement passerelle pour la session propriétaire.
    - Signature: Stripe-Signature + STRIPE_WEBHOOK_SECRET (400 si invalide)
    - Réponses: {"status": "ok", "attemptStatus": ...} ou {"status": "ignored"}
    """
    payload = await request.body()
    try:
        event = stripe_client.verify_webhook(payload, request.headers.get("stripe-signature"))
    except Exception:
        logger.exception("Erreur webhook_stripe: signature ou payload invalide")
        raise HTTPException(status_code=400, detail="Invalid Stripe webhook payload")

    mapped = stripe_client.to_gateway_event(event)
    if mapped is None:
        return JSONResponse({"status": "ignored"})
    reference, gateway_event = mapped
    scope = await repository.scope_for_reference(workflow.store, reference)
    if not scope:
        logger.warning("payments.webhook référence inconnue reference=%s type=%s", reference, event.get("type"))
        return JSONResponse({"status": "ignored"})
    try:
        attempt = await workflow.handle_event(scope, gateway_event)
    except AttemptNotFoundError:
        return JSONResponse({"status": "ignored"})
    logger.info("payments.webhook reference=%s type=%s status=%s", reference, event.get("type"), attempt.status.value)
    return JSONResponse({"status": "ok", "attemptStatus": attempt.status.value})

# --- support ---

@support_router.get("/orphaned-payments")
async def orphaned_payments(workflow: CheckoutWorkflow = Depends(get_workflow)) -> Dict[str, Any]:
    """Paiements potentiellement débités sans commande (vérification expirée, commande en échec)."""
    entries = await reconciliation.pending(workflow)
    return {"count": len(entries), "payments": entries}

@support_router.post("/orphaned-payments/{reference}/reconcile")
async def reconcile_payment(reference: str, workflow: CheckoutWorkflow = Depends(get_workflow)):
    """Relance la vérification ou la création de commande pour une référence (sans nouveau paiement)."""
    attempt = await reconciliation.reconcile(workflow, reference)
    return {"reference": reference, "attempt": attempt.model_dump(by_alias=True, mode="json")}
