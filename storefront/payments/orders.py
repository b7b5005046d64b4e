"""
Création de commande après vérification.

POST {BACKEND_API_URL}/orders avec l'en-tête Idempotency-Key = référence de paiement:
une même référence ne crée jamais deux commandes, ce qui rend les relances sûres.
Relance uniquement sur erreur transport ou 502/503/504 (backoff exponentiel + jitter);
jamais sur 4xx ni sur une réponse 2xx. Les autres erreurs httpx (décodage, redirections)
sont des refus non relançables.
"""
import asyncio
import logging
import random
from typing import Any, Awaitable, Callable, Dict, List, Optional

import httpx

from storefront.config import (
    ORDER_SUBMIT_BACKOFF_BASE,
    ORDER_SUBMIT_BACKOFF_JITTER,
    ORDER_SUBMIT_BACKOFF_MAX,
    ORDER_SUBMIT_MAX_ATTEMPTS,
)
from storefront.errors import OrderSubmissionError

logger = logging.getLogger(__name__)

ORDERS_PATH = "/orders"
RETRYABLE_STATUSES = frozenset({502, 503, 504})

# module storefront.payments.orders
def build_order_payload(
    *,
    items: List[Dict[str, Any]],
    shipping_address: Dict[str, Any],
    payment_method: str,
    reference: str,
    client_status: Optional[str],
    raw_ids: Dict[str, Any],
    verification_payload: Optional[Dict[str, Any]],
    user_id: Optional[str] = None,
) -> Dict[str, Any]:
    """Corps du POST /orders: lignes du panier, adresse, moyen de paiement et preuves de paiement."""
    payload: Dict[str, Any] = {
        "items": [
            {
                "productId": it.get("productId"),
                "name": it.get("name"),
                "price": it.get("price"),
                "quantity": it.get("quantity"),
                "size": it.get("size"),
                "color": it.get("color"),
            }
            for it in items
        ],
        "shippingAddress": shipping_address,
        "paymentMethod": payment_method,
        "paymentDetails": {
            "reference": reference,
            "status": client_status or "success",
            **raw_ids,
            "verificationData": verification_payload or {},
        },
    }
    if user_id:
        payload["userId"] = user_id
    return payload

def normalize_order(body: Dict[str, Any]) -> Dict[str, Any]:
    """Accepte {order: {...}} ou l'objet commande directement; expose id/orderNumber."""
    order = body.get("order") if isinstance(body.get("order"), dict) else body
    order = dict(order)
    order_id = order.get("id") or order.get("_id")
    order["id"] = str(order_id) if order_id is not None else None
    order["orderNumber"] = order.get("orderNumber") or order["id"]
    return order


class OrderSubmitter:
    def __init__(
        self,
        http: httpx.AsyncClient,
        *,
        max_attempts: int = ORDER_SUBMIT_MAX_ATTEMPTS,
        backoff_base: float = ORDER_SUBMIT_BACKOFF_BASE,
        backoff_max: float = ORDER_SUBMIT_BACKOFF_MAX,
        backoff_jitter: float = ORDER_SUBMIT_BACKOFF_JITTER,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        path: str = ORDERS_PATH,
    ):
        self.http = http
        self.max_attempts = max(1, int(max_attempts))
        self.backoff_base = backoff_base
        self.backoff_max = backoff_max
        self.backoff_jitter = backoff_jitter
        self._sleep = sleep
        self.path = path

    def backoff_delay(self, attempt_index: int) -> float:
        # attempt_index commence à 0: 0.25, 0.5, 1.0, ... plafonné
        delay = min(self.backoff_base * (2 ** attempt_index), self.backoff_max)
        jitter = (random.random() * 2 - 1) * self.backoff_jitter
        return max(0.0, delay + jitter)

    async def submit(self, payload: Dict[str, Any], *, idempotency_key: str, user_token: Optional[str] = None) -> Dict[str, Any]:
        """
        Envoie la commande; retourne la commande normalisée.
        Soulève OrderSubmissionError(retryable=False) sur refus, (retryable=True) si les relances sont épuisées.
        """
        headers = {"Idempotency-Key": idempotency_key}
        if user_token:
            headers["Authorization"] = f"Bearer {user_token}"

        last_error = "Le service de commandes est indisponible."
        last_status: Optional[int] = None
        for attempt in range(self.max_attempts):
            try:
                resp = await self.http.post(self.path, json=payload, headers=headers)
            except httpx.TransportError as e:
                last_error, last_status = f"Transport: {e.__class__.__name__}", None
                logger.warning("orders.submit transport key=%s try=%s/%s err=%s", idempotency_key, attempt + 1, self.max_attempts, e)
            except httpx.HTTPError as e:
                # décodage, redirections...: la requête a pu aboutir, pas de relance
                logger.error("orders.submit http_error key=%s err=%r", idempotency_key, e)
                raise OrderSubmissionError(f"Réponse du service de commandes inexploitable ({e.__class__.__name__})", retryable=False) from e
            else:
                if resp.status_code in RETRYABLE_STATUSES:
                    last_error, last_status = f"HTTP {resp.status_code}", resp.status_code
                    logger.warning("orders.submit upstream key=%s try=%s/%s status=%s", idempotency_key, attempt + 1, self.max_attempts, resp.status_code)
                else:
                    return self._handle_response(resp, idempotency_key)
            if attempt + 1 < self.max_attempts:
                await self._sleep(self.backoff_delay(attempt))

        logger.error("orders.submit exhausted key=%s last=%s", idempotency_key, last_error)
        raise OrderSubmissionError(
            f"Création de commande impossible après {self.max_attempts} tentatives ({last_error})",
            retryable=True,
            status=last_status,
        )

    def _handle_response(self, resp: httpx.Response, idempotency_key: str) -> Dict[str, Any]:
        try:
            body = resp.json()
        except ValueError:
            body = None
        if resp.status_code >= 400:
            message = body.get("message") if isinstance(body, dict) else None
            logger.error("orders.submit rejected key=%s status=%s", idempotency_key, resp.status_code)
            raise OrderSubmissionError(message or f"Commande refusée (HTTP {resp.status_code})", retryable=False, status=resp.status_code)
        if not isinstance(body, dict):
            raise OrderSubmissionError("Réponse de création de commande invalide", retryable=False, status=resp.status_code)
        order = normalize_order(body)
        logger.info("orders.submit created key=%s order=%s", idempotency_key, order.get("id"))
        return order
