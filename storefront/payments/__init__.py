"""
Module 'payments' (feature-first): point d'entrée public.
Réunit machine à états, passerelles, vérification, création de commande et rapprochement.
"""

from .models import AttemptStatus, PaymentAttempt, Notice, GatewayEventIn
from .state_machine import next_status, apply
from .stripe_client import require_stripe, create_session, verify_webhook, to_gateway_event
from .gateways import get_gateway, register_gateway, get_all_gateway_names, available_gateways
from .verification import VerificationClient
from .orders import OrderSubmitter, build_order_payload
from .workflow import CheckoutWorkflow, SessionLocks

__all__ = [
    # models
    "AttemptStatus",
    "PaymentAttempt",
    "Notice",
    "GatewayEventIn",
    # state machine
    "next_status",
    "apply",
    # stripe
    "require_stripe",
    "create_session",
    "verify_webhook",
    "to_gateway_event",
    # gateways
    "get_gateway",
    "register_gateway",
    "get_all_gateway_names",
    "available_gateways",
    # services
    "VerificationClient",
    "OrderSubmitter",
    "build_order_payload",
    "CheckoutWorkflow",
    "SessionLocks",
]
