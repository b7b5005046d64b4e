"""
Passerelle Paystack (inline): aucun appel serveur à l'ouverture.
La référence est générée ici et transmise au widget; le navigateur relaie ensuite
les callbacks (onLoad / onSuccess / onCancel / onError) vers /payments/events.
"""
import logging
from uuid import uuid4

from storefront.config import PAYSTACK_PUBLIC_KEY
from storefront.errors import GatewayUnavailableError
from storefront.payments.gateways import BaseGateway, GatewayRequest, GatewaySession

logger = logging.getLogger(__name__)


def new_reference() -> str:
    return f"SF-{uuid4().hex[:20].upper()}"


class PaystackGateway(BaseGateway):
    name = "paystack"
    label = "Paystack"

    def __init__(self, public_key: str | None = None):
        self.public_key = public_key if public_key is not None else PAYSTACK_PUBLIC_KEY

    def open_session(self, req: GatewayRequest) -> GatewaySession:
        if not self.public_key:
            logger.error("paystack.open_session PAYSTACK_PUBLIC_KEY manquant")
            raise GatewayUnavailableError("Paiement indisponible pour le moment. Veuillez réessayer plus tard.")
        reference = new_reference()
        config = {
            "key": self.public_key,
            "email": req.email,
            "amount": req.amount_minor_units,
            "currency": req.currency,
            "reference": reference,
            "channels": list(req.channels),
            "metadata": {**req.metadata, "phone": req.phone},
        }
        if req.phone:
            config["phone"] = req.phone
        logger.info("paystack.open_session attempt=%s reference=%s amount=%s", req.attempt_id, reference, req.amount_minor_units)
        return GatewaySession(gateway=self.name, reference=reference, mode="inline", config=config)
