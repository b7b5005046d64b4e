"""
Modèles du checkout: formulaire contact/livraison et totaux dérivés.
Le formulaire accepte des champs vides (la validation est une porte booléenne, pas une exception).
"""
from decimal import Decimal
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field

from storefront.config import DEFAULT_COUNTRY


class CheckoutForm(BaseModel):
    model_config = ConfigDict(populate_by_name=True, str_strip_whitespace=True)

    # Contact
    email: str = ""
    first_name: str = Field("", alias="firstName")
    last_name: str = Field("", alias="lastName")
    phone: str = ""
    # Adresse de livraison
    address: str = ""
    city: str = ""
    state: str = ""
    zip_code: str = Field("", alias="zipCode")
    country: str = DEFAULT_COUNTRY

    def shipping_address(self) -> Dict[str, str]:
        """Adresse au format du endpoint de création de commande."""
        return {
            "firstName": self.first_name,
            "lastName": self.last_name,
            "email": self.email,
            "phone": self.phone,
            "street": self.address,
            "city": self.city,
            "state": self.state,
            "zipCode": self.zip_code,
            "country": self.country,
        }


class PayRequest(CheckoutForm):
    gateway: Optional[str] = None


class CheckoutTotals(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    subtotal: Decimal
    shipping_fee: Decimal = Field(alias="shippingFee")
    tax: Decimal
    grand_total: Decimal = Field(alias="grandTotal")
    amount_minor_units: int = Field(alias="amountMinorUnits")
    currency: str


class CheckoutSummary(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    totals: CheckoutTotals
    valid: bool
    errors: Dict[str, str] = {}
    display: Dict[str, Any] = {}
