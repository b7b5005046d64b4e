"""
Abstraction des passerelles de paiement.
Chaque passerelle ouvre une session (inline ou redirection) à partir d'une GatewayRequest.
Registre par nom, la passerelle par défaut vient de DEFAULT_GATEWAY.
"""
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)


@dataclass
class GatewayRequest:
    """Paramètres d'ouverture: montant en unités mineures, contact, métadonnées."""
    attempt_id: str
    email: str
    amount_minor_units: int
    currency: str
    phone: str = ""
    channels: List[str] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)
    success_url: str = ""
    cancel_url: str = ""


@dataclass
class GatewaySession:
    """Résultat de l'ouverture: référence de transaction + config pour le navigateur."""
    gateway: str
    reference: str
    mode: str  # "inline" | "redirect"
    config: Dict[str, Any] = field(default_factory=dict)
    redirect_url: Optional[str] = None

    def to_client(self) -> Dict[str, Any]:
        return {
            "name": self.gateway,
            "mode": self.mode,
            "reference": self.reference,
            "config": self.config,
            "redirectUrl": self.redirect_url,
        }


class BaseGateway:
    """Interface: open_session() soulève GatewayUnavailableError si la passerelle refuse."""
    name: str = ""
    label: str = ""

    def open_session(self, req: GatewayRequest) -> GatewaySession:
        raise NotImplementedError


# ── Registre ──

_GATEWAYS: Dict[str, BaseGateway] = {}


def register_gateway(gw: BaseGateway):
    _GATEWAYS[gw.name] = gw


def get_gateway(name: str) -> Optional[BaseGateway]:
    return _GATEWAYS.get((name or "").lower())


def get_all_gateway_names() -> List[str]:
    return list(_GATEWAYS.keys())


def available_gateways() -> List[Dict[str, str]]:
    """Passerelles proposées au formulaire de paiement (nom technique + libellé affiché)."""
    return [{"name": name, "label": _GATEWAYS[name].label or name} for name in get_all_gateway_names()]


def _register_defaults():
    from storefront.payments.gateways.paystack import PaystackGateway
    from storefront.payments.gateways.stripe_checkout import StripeCheckoutGateway

    register_gateway(PaystackGateway())
    register_gateway(StripeCheckoutGateway())


_register_defaults()
