"""
Modèles du panier (pydantic).
- CartLineIn: candidat issu du catalogue (quantité optionnelle, 1 par défaut)
- CartLine: ligne persistée; clé de fusion (productId, size, color)
Les noms JSON reprennent le format historique du panier navigateur (camelCase).
"""
import hashlib
from decimal import Decimal
from typing import List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field


def make_line_id(product_id: str, size: str, color: str) -> str:
    """Identifiant stable dérivé de la clé de fusion (deux lignes ne partagent jamais un id)."""
    raw = f"{product_id}\x1f{size}\x1f{color}".encode("utf-8")
    return hashlib.sha256(raw).hexdigest()[:16]


class CartLineIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    product_id: str = Field(alias="productId", min_length=1)
    name: str = ""
    unit_price: Decimal = Field(alias="price", gt=0)
    image_ref: str = Field("", alias="image")
    size: str = ""
    color: str = ""
    quantity: Optional[int] = None
    max_stock: int = Field(alias="maxStock", ge=1)


class CartLine(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str
    product_id: str = Field(alias="productId", min_length=1)
    name: str = ""
    unit_price: Decimal = Field(alias="price", gt=0)
    image_ref: str = Field("", alias="image")
    size: str = ""
    color: str = ""
    quantity: int = Field(ge=1)
    max_stock: int = Field(alias="maxStock", ge=1)

    @property
    def merge_key(self) -> Tuple[str, str, str]:
        return (self.product_id, self.size, self.color)

    @property
    def line_total(self) -> Decimal:
        return self.unit_price * self.quantity

    def to_wire(self) -> dict:
        return self.model_dump(by_alias=True, mode="json")


class QuantityUpdate(BaseModel):
    quantity: int


class CartView(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    lines: List[CartLine]
    total: Decimal
    item_count: int = Field(alias="itemCount")
