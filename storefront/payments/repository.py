"""
Persistance des tentatives de paiement dans le store scopé.

- "<prefix>:<session>:checkout-attempt"                -> référence de la tentative courante
- "<prefix>:<session>:checkout-attempt:<référence>"    -> chaque tentative de la session (JSON)
- "<prefix>:global:payment-ref:<référence>"             -> session propriétaire (webhook, support)
- "<prefix>:global:orphaned-payments"                   -> registre des paiements à rapprocher
Une tentative remplacée reste lisible par sa référence: un débit tardif sur une
ancienne session de paiement est toujours rattaché à son enregistrement.
Les écritures remontent leurs erreurs: une tentative non enregistrée ne doit pas passer inaperçue.
"""
import json
import logging
from typing import Dict, List, Optional

from pydantic import ValidationError

from storefront.infra.kv_store import GLOBAL_SCOPE, KeyValueStore, ScopedStore
from storefront.payments.models import PaymentAttempt, now_utc

logger = logging.getLogger(__name__)

CURRENT_ATTEMPT_KEY = "checkout-attempt"
ATTEMPT_KEY = "checkout-attempt:{reference}"
REFERENCE_KEY = "payment-ref:{reference}"
ORPHANS_KEY = "orphaned-payments"

# module storefront.payments.repository
def _record_key(attempt: PaymentAttempt) -> str:
    return ATTEMPT_KEY.format(reference=attempt.reference or attempt.attempt_id)

async def current_reference(storage: ScopedStore) -> Optional[str]:
    return await storage.get(CURRENT_ATTEMPT_KEY) or None

async def load_attempt(storage: ScopedStore, reference: Optional[str] = None) -> Optional[PaymentAttempt]:
    """Tentative courante de la session, ou celle de `reference` si fournie."""
    reference = reference or await current_reference(storage)
    if not reference:
        return None
    raw = await storage.get(ATTEMPT_KEY.format(reference=reference))
    if not raw:
        return None
    try:
        return PaymentAttempt.model_validate_json(raw)
    except ValidationError:
        logger.error("payments.repository.load_attempt enregistrement illisible scope=%s reference=%s", storage.scope, reference)
        return None

async def save_attempt(storage: ScopedStore, attempt: PaymentAttempt, make_current: bool = False) -> None:
    await storage.set(_record_key(attempt), attempt.model_dump_json(by_alias=True))
    if make_current:
        await storage.set(CURRENT_ATTEMPT_KEY, attempt.reference or attempt.attempt_id)

async def is_current(storage: ScopedStore, attempt: PaymentAttempt) -> bool:
    return await current_reference(storage) == (attempt.reference or attempt.attempt_id)

async def index_reference(store: KeyValueStore, reference: str, scope: str) -> None:
    await store.scope(GLOBAL_SCOPE).set(REFERENCE_KEY.format(reference=reference), scope)

async def scope_for_reference(store: KeyValueStore, reference: str) -> Optional[str]:
    if not reference:
        return None
    return await store.scope(GLOBAL_SCOPE).get(REFERENCE_KEY.format(reference=reference))

# --- registre des paiements à rapprocher ---

async def _read_orphans(store: KeyValueStore) -> Dict[str, Dict]:
    raw = await store.scope(GLOBAL_SCOPE).get(ORPHANS_KEY)
    if not raw:
        return {}
    try:
        data = json.loads(raw)
    except ValueError:
        logger.error("payments.repository registre orphelins illisible, conservé tel quel")
        raise
    return data if isinstance(data, dict) else {}

async def _write_orphans(store: KeyValueStore, entries: Dict[str, Dict]) -> None:
    await store.scope(GLOBAL_SCOPE).set(ORPHANS_KEY, json.dumps(entries))

async def record_orphan(store: KeyValueStore, attempt: PaymentAttempt, reason: str) -> None:
    """Ajoute (ou met à jour) l'entrée du registre pour la référence de la tentative."""
    if not attempt.reference:
        return
    entries = await _read_orphans(store)
    entries[attempt.reference] = {
        "reference": attempt.reference,
        "scope": attempt.scope,
        "attemptId": attempt.attempt_id,
        "status": attempt.status.value,
        "gateway": attempt.gateway,
        "amountMinorUnits": attempt.amount_minor_units,
        "currency": attempt.currency,
        "email": attempt.email,
        "userId": attempt.user_id,
        "reason": reason,
        "recordedAt": now_utc().isoformat(),
    }
    await _write_orphans(store, entries)
    logger.warning("payments.orphan recorded reference=%s status=%s reason=%s", attempt.reference, attempt.status.value, reason)

async def remove_orphan(store: KeyValueStore, reference: str) -> None:
    entries = await _read_orphans(store)
    if entries.pop(reference, None) is not None:
        await _write_orphans(store, entries)
        logger.info("payments.orphan cleared reference=%s", reference)

async def list_orphans(store: KeyValueStore) -> List[Dict]:
    return sorted((await _read_orphans(store)).values(), key=lambda e: e.get("recordedAt") or "")
