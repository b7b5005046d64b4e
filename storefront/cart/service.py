"""
Agrégat panier: fusion/plafonnement des lignes, totaux dérivés, persistance scopée.

Invariants maintenus après chaque mutation:
- 1 <= quantity <= maxStock pour chaque ligne (plafonnement, jamais de rejet)
- total == Σ(unitPrice × quantity), itemCount == Σ(quantity)
- une seule ligne par clé de fusion (productId, size, color)
La lecture de l'instantané est défensive: un stockage absent ou corrompu donne un panier vide.
Les mutations sont des coroutines (persistance asynchrone), les lectures restent synchrones.
"""
import json
import logging
from decimal import Decimal
from typing import Any, Dict, List, Optional

from pydantic import ValidationError

from storefront.cart.models import CartLine, CartLineIn, CartView, make_line_id
from storefront.config import CART_STORAGE_KEY
from storefront.errors import PersistenceCorruption
from storefront.infra.kv_store import ScopedStore

logger = logging.getLogger(__name__)

# module storefront.cart.service
def clamp_quantity(quantity: int, max_stock: int) -> int:
    return min(max(1, int(quantity)), max_stock)

def encode_snapshot(lines: List[CartLine]) -> str:
    return json.dumps([line.to_wire() for line in lines])

def decode_snapshot(raw: str) -> List[CartLine]:
    """
    Décode l'instantané JSON du panier.
    - Soulève PersistenceCorruption si le JSON est invalide ou n'est pas une liste.
    - Ignore (avec un warning) les lignes individuellement invalides.
    """
    try:
        data = json.loads(raw)
    except (TypeError, ValueError) as e:
        raise PersistenceCorruption(f"JSON panier invalide: {e}") from e
    if not isinstance(data, list):
        raise PersistenceCorruption(f"instantané panier inattendu: {type(data).__name__}")

    lines: List[CartLine] = []
    for entry in data:
        try:
            line = CartLine.model_validate(entry)
        except ValidationError:
            logger.warning("cart.decode_snapshot ligne ignorée: %r", entry)
            continue
        lines.append(line)
    return lines


class Cart:
    """Panier d'une session; chaque mutation recalcule les totaux et persiste."""

    def __init__(self, storage: ScopedStore, storage_key: str = CART_STORAGE_KEY):
        self._storage = storage
        self._storage_key = storage_key
        self.lines: Dict[str, CartLine] = {}
        self.total = Decimal("0")
        self.item_count = 0

    @classmethod
    async def load(cls, storage: ScopedStore, storage_key: str = CART_STORAGE_KEY) -> "Cart":
        cart = cls(storage, storage_key)
        await cart.rehydrate()
        return cart

    @property
    def is_empty(self) -> bool:
        return not self.lines

    def get_line(self, line_id: str) -> Optional[CartLine]:
        return self.lines.get(line_id)

    def find_by_merge_key(self, product_id: str, size: str, color: str) -> Optional[CartLine]:
        for line in self.lines.values():
            if line.merge_key == (product_id, size, color):
                return line
        return None

    # --- mutations ---

    async def add_line(self, candidate: CartLineIn) -> CartLine:
        """
        Ajoute un article:
        - ligne existante (même clé de fusion): quantité = min(existante + demandée (ou 1), maxStock)
        - sinon: nouvelle ligne avec min(demandée (ou 1), maxStock)
        """
        requested = candidate.quantity or 1
        existing = self.find_by_merge_key(candidate.product_id, candidate.size, candidate.color)
        if existing:
            quantity = clamp_quantity(existing.quantity + requested, existing.max_stock)
            line = existing.model_copy(update={"quantity": quantity})
        else:
            line = CartLine(
                id=make_line_id(candidate.product_id, candidate.size, candidate.color),
                product_id=candidate.product_id,
                name=candidate.name,
                unit_price=candidate.unit_price,
                image_ref=candidate.image_ref,
                size=candidate.size,
                color=candidate.color,
                quantity=clamp_quantity(requested, candidate.max_stock),
                max_stock=candidate.max_stock,
            )
        self.lines[line.id] = line
        await self._changed()
        return line

    async def remove_line(self, line_id: str) -> None:
        if self.lines.pop(line_id, None) is None:
            return
        await self._changed()

    async def update_quantity(self, line_id: str, quantity: int) -> Optional[CartLine]:
        line = self.lines.get(line_id)
        if not line:
            return None
        line = line.model_copy(update={"quantity": clamp_quantity(quantity, line.max_stock)})
        self.lines[line_id] = line
        await self._changed()
        return line

    async def clear(self) -> None:
        self.lines = {}
        self._recompute()
        try:
            await self._storage.delete(self._storage_key)
        except Exception:
            logger.exception("cart.clear suppression de l'instantané impossible scope=%s", self._storage.scope)

    async def rehydrate(self) -> None:
        """Recharge l'instantané persisté; ne soulève jamais (panier vide en cas d'échec)."""
        self.lines = {}
        try:
            raw = await self._storage.get(self._storage_key)
            if raw:
                for line in decode_snapshot(raw):
                    self._merge_loaded(line)
        except PersistenceCorruption as e:
            logger.warning("cart.rehydrate instantané corrompu, panier réinitialisé scope=%s: %s", self._storage.scope, e)
            self.lines = {}
            try:
                await self._storage.delete(self._storage_key)
            except Exception:
                logger.exception("cart.rehydrate nettoyage impossible scope=%s", self._storage.scope)
        except Exception:
            logger.exception("cart.rehydrate lecture impossible scope=%s", self._storage.scope)
            self.lines = {}
        self._recompute()

    # --- vues ---

    def snapshot(self) -> List[Dict[str, Any]]:
        return [line.to_wire() for line in self.lines.values()]

    def to_view(self) -> CartView:
        return CartView(lines=list(self.lines.values()), total=self.total, item_count=self.item_count)

    # --- helpers privés ---

    def _merge_loaded(self, line: CartLine) -> None:
        existing = self.find_by_merge_key(*line.merge_key)
        if existing:
            quantity = clamp_quantity(existing.quantity + line.quantity, existing.max_stock)
            self.lines[existing.id] = existing.model_copy(update={"quantity": quantity})
            return
        line_id = make_line_id(*line.merge_key)
        self.lines[line_id] = line.model_copy(update={
            "id": line_id,
            "quantity": clamp_quantity(line.quantity, line.max_stock),
        })

    def _recompute(self) -> None:
        self.total = sum((line.line_total for line in self.lines.values()), Decimal("0"))
        self.item_count = sum(line.quantity for line in self.lines.values())

    async def _changed(self) -> None:
        self._recompute()
        await self._persist()

    async def _persist(self) -> None:
        try:
            await self._storage.set(self._storage_key, encode_snapshot(list(self.lines.values())))
        except Exception:
            logger.exception("cart.persist écriture impossible scope=%s", self._storage.scope)
