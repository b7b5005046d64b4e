"""
Vérification serveur d'une transaction auprès du backend de commandes.

POST {BACKEND_API_URL}/orders/verify-payment  {"reference": ..., "expectedAmount": <unités mineures>}
- 2xx + verified=true   -> retourne le payload de vérification
- verified=false        -> VerificationFailed(charged=False): aucun débit confirmé
- transport / réponse invalide -> VerificationFailed(charged=None): état du débit inconnu
- délai dépassé         -> VerificationTimedOut (tentative à rapprocher, jamais relancée en silence)
"""
import asyncio
import logging
from typing import Any, Dict, Optional

import httpx

from storefront.config import VERIFY_TIMEOUT_SECONDS
from storefront.errors import VerificationFailed, VerificationTimedOut

logger = logging.getLogger(__name__)

VERIFY_PATH = "/orders/verify-payment"
UNKNOWN_OUTCOME_MESSAGE = (
    "Nous n'avons pas pu vérifier votre paiement. "
    "Si un montant a été débité, contactez le support avant de réessayer."
)

def _json_body(resp: httpx.Response) -> Dict[str, Any]:
    try:
        body = resp.json()
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {}


class VerificationClient:
    def __init__(self, http: httpx.AsyncClient, timeout: float = VERIFY_TIMEOUT_SECONDS, path: str = VERIFY_PATH):
        self.http = http
        self.timeout = timeout
        self.path = path

    async def verify(self, reference: str, expected_amount: int, headers: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
        body = {"reference": reference, "expectedAmount": expected_amount}
        try:
            resp = await asyncio.wait_for(self.http.post(self.path, json=body, headers=headers), timeout=self.timeout)
        except (asyncio.TimeoutError, httpx.TimeoutException) as e:
            logger.warning("verification.timeout reference=%s after=%ss", reference, self.timeout)
            raise VerificationTimedOut(
                "La vérification du paiement a expiré. Ne relancez pas le paiement, "
                "notre support va confirmer la transaction."
            ) from e
        except httpx.HTTPError as e:
            logger.error("verification.transport reference=%s err=%s", reference, e)
            raise VerificationFailed(UNKNOWN_OUTCOME_MESSAGE, charged=None) from e

        data = _json_body(resp)
        if resp.status_code >= 400:
            logger.warning("verification.http_error reference=%s status=%s", reference, resp.status_code)
            charged = False if data.get("verified") is False else None
            raise VerificationFailed(data.get("message") or UNKNOWN_OUTCOME_MESSAGE, charged=charged)

        if data.get("verified") is True:
            logger.info("verification.ok reference=%s", reference)
            payload = data.get("data")
            return payload if isinstance(payload, dict) else {}

        if data.get("verified") is False:
            logger.info("verification.rejected reference=%s", reference)
            raise VerificationFailed(
                data.get("message") or "Le paiement n'a pas pu être confirmé. Aucun montant n'a été débité.",
                charged=False,
            )

        logger.error("verification.invalid_response reference=%s status=%s", reference, resp.status_code)
        raise VerificationFailed(UNKNOWN_OUTCOME_MESSAGE, charged=None)
