"""
Adaptateur Stripe: centralise les appels et la configuration Stripe.
"""
import json
from typing import Any, Dict, Optional, Tuple

import stripe

from storefront.config import STRIPE_SECRET_KEY, STRIPE_WEBHOOK_SECRET
from storefront.payments.models import GatewayCancel, GatewayError, GatewayEvent, GatewaySuccess

# module storefront.payments.stripe_client
def require_stripe():
    """
    Prépare et retourne le module stripe prêt à l'emploi.
    - Configure stripe.api_key via STRIPE_SECRET_KEY si disponible.
    - En absence de clé, les appels Stripe échoueront côté SDK.
    """
    if STRIPE_SECRET_KEY:
        stripe.api_key = STRIPE_SECRET_KEY
    return stripe

def create_session(
    *,
    amount_minor_units: int,
    currency: str,
    email: str,
    success_url: str,
    cancel_url: str,
    metadata: Dict[str, Any],
    client_reference_id: str,
) -> Dict[str, Any]:
    """
    Crée une session Stripe Checkout pour le total général (une seule ligne).
    Retour: {"id": "cs_test_...", "url": "https://..."}; l'id sert de référence de transaction.
    """
    require_stripe()
    session = stripe.checkout.Session.create(
        mode="payment",
        line_items=[{
            "quantity": 1,
            "price_data": {
                "currency": currency.lower(),
                "unit_amount": amount_minor_units,
                "product_data": {"name": "Commande boutique"},
            },
        }],
        customer_email=email or None,
        client_reference_id=client_reference_id,
        success_url=success_url,
        cancel_url=cancel_url,
        metadata=metadata,
    )
    return {"id": session.id, "url": session.url}

def verify_webhook(payload: bytes, sig_header: Optional[str]) -> Dict[str, Any]:
    """
    Valide la signature (Stripe-Signature + STRIPE_WEBHOOK_SECRET) puis retourne l'event en dict.
    Soulève stripe.error.SignatureVerificationError ou ValueError si invalide.
    """
    require_stripe()
    stripe.Webhook.construct_event(payload, sig_header or "", STRIPE_WEBHOOK_SECRET or "")
    return json.loads(payload)

def to_gateway_event(event: Dict[str, Any]) -> Optional[Tuple[str, GatewayEvent]]:
    """
    Traduit un event Checkout en (référence, événement passerelle).
    - completed (paid) / async_payment_succeeded -> succès
    - async_payment_failed -> erreur
    - expired -> annulation
    Retourne None pour les types non pertinents (ou completed encore impayé).
    """
    event_type = (event or {}).get("type") or ""
    obj = ((event or {}).get("data") or {}).get("object") or {}
    reference = obj.get("id") or ""
    if not reference:
        return None

    raw_ids = {"transaction": obj.get("payment_intent")} if obj.get("payment_intent") else {}
    if event_type == "checkout.session.completed":
        if obj.get("payment_status") != "paid":
            return None
        return reference, GatewaySuccess(reference=reference, status="success", raw_ids=raw_ids)
    if event_type == "checkout.session.async_payment_succeeded":
        return reference, GatewaySuccess(reference=reference, status="success", raw_ids=raw_ids)
    if event_type == "checkout.session.async_payment_failed":
        return reference, GatewayError(error="async_payment_failed")
    if event_type == "checkout.session.expired":
        return reference, GatewayCancel()
    return None
