"""
Modèles de la feature 'payments': tentative de paiement, événements étiquetés, avis utilisateur.

Les quatre callbacks de la passerelle (onLoad, onSuccess, onCancel, onError) sont
représentés par une seule famille d'événements consommée par la machine à états,
complétée par les événements internes de la saga vérification -> commande.
"""
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


class AttemptStatus(str, Enum):
    INITIATED = "initiated"
    SUCCEEDED_CLIENT = "succeeded_client"
    VERIFYING = "verifying"
    VERIFIED = "verified"
    VERIFY_FAILED = "verify_failed"
    VERIFY_TIMED_OUT = "verify_timed_out"
    CANCELLED = "cancelled"
    ERRORED = "errored"
    ORDER_CREATED = "order_created"
    ORDER_FAILED_POST_VERIFICATION = "order_failed_post_verification"
    LATE_SUCCESS = "late_success"


# Tentative en cours: une nouvelle soumission est refusée
ACTIVE_STATUSES = frozenset({
    AttemptStatus.INITIATED,
    AttemptStatus.SUCCEEDED_CLIENT,
    AttemptStatus.VERIFYING,
    AttemptStatus.VERIFIED,
})
# Argent potentiellement débité sans commande: bloqué jusqu'au rapprochement support
UNSETTLED_STATUSES = frozenset({
    AttemptStatus.VERIFY_TIMED_OUT,
    AttemptStatus.ORDER_FAILED_POST_VERIFICATION,
    AttemptStatus.LATE_SUCCESS,
})


# --- Événements passerelle (callbacks) ---

@dataclass(frozen=True)
class GatewayLoad:
    meta: Dict[str, Any] = field(default_factory=dict)

@dataclass(frozen=True)
class GatewaySuccess:
    reference: str
    status: str = "success"
    raw_ids: Dict[str, Any] = field(default_factory=dict)

@dataclass(frozen=True)
class GatewayCancel:
    pass

@dataclass(frozen=True)
class GatewayError:
    error: str = ""

# --- Événements internes (saga vérification -> commande) ---

@dataclass(frozen=True)
class VerificationStarted:
    pass

@dataclass(frozen=True)
class VerificationConfirmed:
    payload: Dict[str, Any] = field(default_factory=dict)

@dataclass(frozen=True)
class VerificationRejected:
    message: str = ""
    charged: Optional[bool] = None

@dataclass(frozen=True)
class VerificationTimeout:
    message: str = ""

@dataclass(frozen=True)
class OrderConfirmed:
    order: Dict[str, Any] = field(default_factory=dict)

@dataclass(frozen=True)
class OrderRejected:
    message: str = ""


GatewayEvent = Union[GatewayLoad, GatewaySuccess, GatewayCancel, GatewayError]
AttemptEvent = Union[
    GatewayEvent,
    VerificationStarted,
    VerificationConfirmed,
    VerificationRejected,
    VerificationTimeout,
    OrderConfirmed,
    OrderRejected,
]


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class Notice(_CamelModel):
    """Message destiné à la surface de notification (toast / bandeau)."""
    level: Literal["success", "info", "warning", "error"]
    code: str
    message: str


class AttemptTransition(_CamelModel):
    from_status: AttemptStatus
    to_status: AttemptStatus
    event: str
    at: datetime = Field(default_factory=now_utc)


class AttemptSnapshot(_CamelModel):
    """Panier, adresse et totaux figés au moment de la soumission (reconstruction support)."""
    items: List[Dict[str, Any]] = []
    shipping_address: Dict[str, Any] = {}
    totals: Dict[str, Any] = {}


class PaymentAttempt(_CamelModel):
    attempt_id: str
    scope: str
    gateway: str
    status: AttemptStatus = AttemptStatus.INITIATED
    reference: Optional[str] = None
    amount_minor_units: int
    currency: str
    user_id: Optional[str] = None
    email: str = ""
    snapshot: AttemptSnapshot = Field(default_factory=AttemptSnapshot)
    client_status: Optional[str] = None
    raw_ids: Dict[str, Any] = {}
    verification_payload: Optional[Dict[str, Any]] = None
    order: Optional[Dict[str, Any]] = None
    confirmation: Optional[Dict[str, Any]] = None
    notice: Optional[Notice] = None
    history: List[AttemptTransition] = []
    created_at: datetime = Field(default_factory=now_utc)
    updated_at: datetime = Field(default_factory=now_utc)

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES

    @property
    def is_unsettled(self) -> bool:
        return self.status in UNSETTLED_STATUSES


class GatewayEventIn(BaseModel):
    """
    Relais d'un callback passerelle par le navigateur.
    - type: load | success | cancel | error
    - success: reference + status + identifiants bruts (trans, transaction, trxref)
    """
    model_config = ConfigDict(extra="ignore")

    type: Literal["load", "success", "cancel", "error"]
    reference: Optional[str] = None
    status: Optional[str] = None
    trans: Optional[str] = None
    transaction: Optional[str] = None
    trxref: Optional[str] = None
    error: Optional[str] = None
    meta: Dict[str, Any] = {}

    def to_event(self) -> GatewayEvent:
        if self.type == "success":
            raw_ids = {k: v for k, v in (("trans", self.trans), ("transaction", self.transaction), ("trxref", self.trxref)) if v}
            return GatewaySuccess(reference=self.reference or "", status=self.status or "success", raw_ids=raw_ids)
        if self.type == "cancel":
            return GatewayCancel()
        if self.type == "error":
            return GatewayError(error=self.error or "")
        return GatewayLoad(meta=self.meta)


class PaymentStart(_CamelModel):
    """Réponse de POST /checkout/pay: tentative + paramètres d'ouverture de la passerelle."""
    attempt: PaymentAttempt
    gateway: Dict[str, Any]
    totals: Dict[str, Any]


class AttemptState(_CamelModel):
    attempt: Optional[PaymentAttempt] = None
    can_submit: bool
