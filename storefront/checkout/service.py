"""
Session de checkout: totaux (livraison, TVA, total général) et porte de validation.

- shippingFee = 0 si subtotal > FREE_SHIPPING_THRESHOLD, sinon FLAT_SHIPPING_FEE
- tax = subtotal × TAX_RATE
- grandTotal = subtotal + shippingFee + tax, converti en unités mineures (arrondi au plus proche)
"""
import re
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, Optional

from storefront.cart.service import Cart
from storefront.checkout.models import CheckoutForm, CheckoutSummary, CheckoutTotals
from storefront.config import (
    CURRENCY,
    ESTIMATED_DELIVERY,
    FLAT_SHIPPING_FEE,
    FREE_SHIPPING_THRESHOLD,
    TAX_RATE,
)

REQUIRED_FIELDS = {
    "email": "Adresse email",
    "first_name": "Prénom",
    "last_name": "Nom",
    "phone": "Téléphone",
    "address": "Adresse",
    "city": "Ville",
    "state": "État / région",
    "zip_code": "Code postal",
}
EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
CURRENCY_SYMBOLS = {"NGN": "₦", "EUR": "€", "USD": "$", "GBP": "£"}

# module storefront.checkout.service
def shipping_fee_for(subtotal: Decimal) -> Decimal:
    return Decimal("0") if subtotal > FREE_SHIPPING_THRESHOLD else FLAT_SHIPPING_FEE

def to_minor_units(amount: Decimal) -> int:
    return int((amount * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))

def compute_totals(subtotal: Decimal, currency: str = CURRENCY) -> CheckoutTotals:
    shipping_fee = shipping_fee_for(subtotal)
    tax = subtotal * TAX_RATE
    grand_total = subtotal + shipping_fee + tax
    return CheckoutTotals(
        subtotal=subtotal,
        shipping_fee=shipping_fee,
        tax=tax,
        grand_total=grand_total,
        amount_minor_units=to_minor_units(grand_total),
        currency=currency,
    )

def validate(form: Any) -> bool:
    """Vrai si tous les champs requis (contact + adresse) sont renseignés. Ne soulève jamais."""
    try:
        return all(str(getattr(form, name, "") or "").strip() for name in REQUIRED_FIELDS)
    except Exception:
        return False

def field_errors(form: CheckoutForm) -> Dict[str, str]:
    """Messages par champ (alias JSON) pour l'affichage du formulaire."""
    errors: Dict[str, str] = {}
    for name, label in REQUIRED_FIELDS.items():
        if not str(getattr(form, name, "") or "").strip():
            alias = CheckoutForm.model_fields[name].alias or name
            errors[alias] = f"{label} requis"
    if form.email and "email" not in errors and not EMAIL_PATTERN.match(form.email):
        errors["email"] = "Veuillez saisir une adresse email valide"
    return errors

def format_price(amount: Decimal, currency: str = CURRENCY) -> str:
    symbol = CURRENCY_SYMBOLS.get(currency, f"{currency} ")
    text = f"{amount:,.2f}"
    if text.endswith(".00"):
        text = text[:-3]
    return f"{symbol}{text}"

def seed_form(user: Optional[Dict[str, Any]]) -> CheckoutForm:
    """Pré-remplit le formulaire depuis l'utilisateur authentifié (email, prénom, nom)."""
    user = user or {}
    metadata = user.get("metadata") or {}
    return CheckoutForm(
        email=user.get("email") or "",
        first_name=user.get("firstName") or metadata.get("firstName") or "",
        last_name=user.get("lastName") or metadata.get("lastName") or "",
    )


class CheckoutSession:
    """Formulaire + totaux dérivés du panier. Éphémère: jamais persisté."""

    def __init__(self, form: CheckoutForm, subtotal: Decimal, currency: str = CURRENCY):
        self.form = form
        self.totals = compute_totals(subtotal, currency)

    @classmethod
    def from_cart(cls, cart: Cart, form: CheckoutForm) -> "CheckoutSession":
        return cls(form, cart.total)

    @property
    def shipping_fee(self) -> Decimal:
        return self.totals.shipping_fee

    @property
    def tax(self) -> Decimal:
        return self.totals.tax

    @property
    def grand_total(self) -> Decimal:
        return self.totals.grand_total

    def validate(self) -> bool:
        return validate(self.form)

    def summary(self) -> CheckoutSummary:
        totals = self.totals
        return CheckoutSummary(
            totals=totals,
            valid=self.validate(),
            errors=field_errors(self.form),
            display={
                "subtotal": format_price(totals.subtotal, totals.currency),
                "shippingFee": "Gratuit" if not totals.shipping_fee else format_price(totals.shipping_fee, totals.currency),
                "tax": format_price(totals.tax, totals.currency),
                "grandTotal": format_price(totals.grand_total, totals.currency),
                "payLabel": f"Payer {format_price(totals.grand_total, totals.currency)}",
            },
        )

def build_confirmation(order: Dict[str, Any], shipping_address: Dict[str, Any], totals: Dict[str, Any]) -> Dict[str, Any]:
    """Récapitulatif affiché après création de la commande."""
    grand_total = Decimal(str(totals.get("grandTotal") or "0"))
    return {
        "orderId": order.get("id"),
        "orderNumber": order.get("orderNumber"),
        "firstName": shipping_address.get("firstName"),
        "shipTo": ", ".join(x for x in (shipping_address.get("street"), shipping_address.get("city")) if x),
        "orderTotal": format_price(grand_total, totals.get("currency") or CURRENCY),
        "estimatedDelivery": ESTIMATED_DELIVERY,
    }
