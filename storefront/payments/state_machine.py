"""
Machine à états de la tentative de paiement.

Une seule fonction de transition consomme les événements étiquetés (passerelle + saga).
Chemins autorisés:
    initiated --success--> succeeded_client --verification_started--> verifying
    initiated --cancel--> cancelled | --error--> errored
    verifying --confirmed--> verified | --rejected--> verify_failed | --timeout--> verify_timed_out
    verified --order_confirmed--> order_created | --order_rejected--> order_failed_post_verification
Débit signalé après une annulation ou une erreur (webhook tardif):
    cancelled | errored --success--> late_success
Rapprochement support (aucun appel passerelle):
    late_success --verification_started--> verifying
    verify_timed_out --verification_started--> verifying
    order_failed_post_verification --order_confirmed--> order_created
Il n'existe aucun chemin vers order_created qui ne passe pas par verified.
"""
from typing import Dict, Type

from storefront.errors import IllegalTransition
from storefront.payments.models import (
    AttemptEvent,
    AttemptStatus,
    AttemptTransition,
    GatewayCancel,
    GatewayError,
    GatewayLoad,
    GatewaySuccess,
    OrderConfirmed,
    OrderRejected,
    PaymentAttempt,
    VerificationConfirmed,
    VerificationRejected,
    VerificationStarted,
    VerificationTimeout,
    now_utc,
)

S = AttemptStatus

TRANSITIONS: Dict[AttemptStatus, Dict[Type, AttemptStatus]] = {
    S.INITIATED: {
        GatewaySuccess: S.SUCCEEDED_CLIENT,
        GatewayCancel: S.CANCELLED,
        GatewayError: S.ERRORED,
    },
    S.SUCCEEDED_CLIENT: {
        VerificationStarted: S.VERIFYING,
    },
    S.VERIFYING: {
        VerificationConfirmed: S.VERIFIED,
        VerificationRejected: S.VERIFY_FAILED,
        VerificationTimeout: S.VERIFY_TIMED_OUT,
    },
    S.VERIFIED: {
        OrderConfirmed: S.ORDER_CREATED,
        OrderRejected: S.ORDER_FAILED_POST_VERIFICATION,
    },
    S.VERIFY_TIMED_OUT: {
        VerificationStarted: S.VERIFYING,
    },
    S.ORDER_FAILED_POST_VERIFICATION: {
        OrderConfirmed: S.ORDER_CREATED,
        OrderRejected: S.ORDER_FAILED_POST_VERIFICATION,
    },
    S.LATE_SUCCESS: {
        VerificationStarted: S.VERIFYING,
    },
    S.VERIFY_FAILED: {},
    S.CANCELLED: {
        GatewaySuccess: S.LATE_SUCCESS,
    },
    S.ERRORED: {
        GatewaySuccess: S.LATE_SUCCESS,
    },
    S.ORDER_CREATED: {},
}

# module storefront.payments.state_machine
def next_status(status: AttemptStatus, event: AttemptEvent) -> AttemptStatus:
    """Statut cible; GatewayLoad ne change rien. Soulève IllegalTransition sinon."""
    if isinstance(event, GatewayLoad):
        return status
    target = TRANSITIONS[status].get(type(event))
    if target is None:
        raise IllegalTransition(status, event)
    return target

def apply(attempt: PaymentAttempt, event: AttemptEvent) -> PaymentAttempt:
    """Applique un événement et retourne une nouvelle tentative (l'originale n'est pas modifiée)."""
    target = next_status(attempt.status, event)
    if isinstance(event, GatewayLoad):
        return attempt

    updates: dict = {
        "status": target,
        "updated_at": now_utc(),
        "history": attempt.history + [
            AttemptTransition(from_status=attempt.status, to_status=target, event=type(event).__name__)
        ],
    }
    if isinstance(event, GatewaySuccess):
        updates["reference"] = attempt.reference or event.reference
        updates["client_status"] = event.status
        updates["raw_ids"] = dict(event.raw_ids)
    elif isinstance(event, VerificationConfirmed):
        updates["verification_payload"] = dict(event.payload)
    elif isinstance(event, OrderConfirmed):
        updates["order"] = dict(event.order)
    return attempt.model_copy(update=updates)
