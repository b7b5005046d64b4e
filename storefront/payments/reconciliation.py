"""
Rapprochement support des paiements débités sans commande.

- verify_timed_out / late_success: nouvelle vérification (Verifying) puis, si confirmée, création de commande
- order_failed_post_verification: nouvelle création de commande (même Idempotency-Key)
- verifying / verified restés sans suite au-delà de RECONCILE_STALE_AFTER_SECONDS: reprise au même point
Aucun nouvel appel à la passerelle n'est effectué.
"""
import logging
from datetime import timedelta
from typing import Dict, List

from storefront.config import RECONCILE_STALE_AFTER_SECONDS
from storefront.errors import AttemptNotFoundError, NothingToReconcileError
from storefront.payments import repository
from storefront.payments.models import AttemptStatus, PaymentAttempt, VerificationStarted, now_utc
from storefront.payments.workflow import CheckoutWorkflow

logger = logging.getLogger(__name__)

REVERIFY_STATUSES = frozenset({AttemptStatus.VERIFY_TIMED_OUT, AttemptStatus.LATE_SUCCESS})
STALE_STATUSES = frozenset({AttemptStatus.VERIFYING, AttemptStatus.VERIFIED})

# module storefront.payments.reconciliation
async def pending(workflow: CheckoutWorkflow) -> List[Dict]:
    return await repository.list_orphans(workflow.store)

def is_stale(attempt: PaymentAttempt, stale_after: float = RECONCILE_STALE_AFTER_SECONDS) -> bool:
    """Tentative verifying/verified sans transition depuis plus de `stale_after` secondes."""
    return attempt.status in STALE_STATUSES and now_utc() - attempt.updated_at >= timedelta(seconds=stale_after)

async def reconcile(workflow: CheckoutWorkflow, reference: str, stale_after: float = RECONCILE_STALE_AFTER_SECONDS) -> PaymentAttempt:
    scope = await repository.scope_for_reference(workflow.store, reference)
    if not scope:
        raise AttemptNotFoundError(f"Référence inconnue: {reference}")

    storage = workflow.store.scope(scope)
    async with workflow.locks.for_scope(scope):
        attempt = await repository.load_attempt(storage, reference)
        if attempt is None:
            raise AttemptNotFoundError(f"Aucune tentative pour la référence {reference}")
        if not (attempt.is_unsettled or is_stale(attempt, stale_after)):
            raise NothingToReconcileError(f"La tentative {reference} est à l'état {attempt.status.value}")
        logger.info("reconciliation.start reference=%s status=%s", reference, attempt.status.value)
        if attempt.status in REVERIFY_STATUSES:
            attempt = workflow.transition(attempt, VerificationStarted())
            await repository.save_attempt(storage, attempt)

    if attempt.status == AttemptStatus.VERIFYING:
        attempt = await workflow.settle(attempt)
    else:
        attempt = await workflow.create_order(attempt)
    if not attempt.is_unsettled:
        await repository.remove_orphan(workflow.store, reference)
    logger.info("reconciliation.done reference=%s status=%s", reference, attempt.status.value)
    return attempt
