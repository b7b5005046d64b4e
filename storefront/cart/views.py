# module storefront.cart.views

"""Endpoints du panier (scopé par session navigateur).
- GET /: lignes, total et nombre d'articles
- POST /lines: ajout (fusion par productId/size/color, plafonné au stock)
- PATCH /lines/{id}: nouvelle quantité (plafonnée dans [1, maxStock])
- DELETE /lines/{id}: suppression (id inconnu: sans effet)
- DELETE /: vide le panier
"""
import logging

from fastapi import APIRouter, Depends, HTTPException

from storefront.cart.models import CartLineIn, CartView, QuantityUpdate
from storefront.cart.service import Cart
from storefront.infra.kv_store import KeyValueStore, get_store
from storefront.utils.session import get_session_scope

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/v1/cart", tags=["Cart API"])


async def get_cart(scope: str = Depends(get_session_scope), store: KeyValueStore = Depends(get_store)) -> Cart:
    return await Cart.load(store.scope(scope))


@router.get("", response_model=CartView)
def read_cart(cart: Cart = Depends(get_cart)):
    return cart.to_view()

@router.post("/lines", response_model=CartView, status_code=201)
async def add_line(candidate: CartLineIn, cart: Cart = Depends(get_cart)):
    line = await cart.add_line(candidate)
    logger.info("cart.add_line product=%s quantity=%s items=%s", line.product_id, line.quantity, cart.item_count)
    return cart.to_view()

@router.patch("/lines/{line_id}", response_model=CartView)
async def update_line(line_id: str, body: QuantityUpdate, cart: Cart = Depends(get_cart)):
    if await cart.update_quantity(line_id, body.quantity) is None:
        raise HTTPException(status_code=404, detail="Article introuvable dans le panier")
    return cart.to_view()

@router.delete("/lines/{line_id}", response_model=CartView)
async def remove_line(line_id: str, cart: Cart = Depends(get_cart)):
    await cart.remove_line(line_id)
    return cart.to_view()

@router.delete("", response_model=CartView)
async def clear_cart(cart: Cart = Depends(get_cart)):
    await cart.clear()
    return cart.to_view()
