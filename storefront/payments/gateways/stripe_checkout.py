"""
Passerelle Stripe Checkout (redirection).
L'identifiant de la session Checkout sert de référence; l'issue arrive par le webhook.
"""
import logging

from storefront.errors import GatewayUnavailableError
from storefront.payments import stripe_client
from storefront.payments.gateways import BaseGateway, GatewayRequest, GatewaySession

logger = logging.getLogger(__name__)


class StripeCheckoutGateway(BaseGateway):
    name = "stripe"
    label = "Stripe"

    def open_session(self, req: GatewayRequest) -> GatewaySession:
        try:
            session = stripe_client.create_session(
                amount_minor_units=req.amount_minor_units,
                currency=req.currency,
                email=req.email,
                success_url=req.success_url,
                cancel_url=req.cancel_url,
                metadata={k: str(v) for k, v in req.metadata.items()},
                client_reference_id=req.attempt_id,
            )
        except Exception as e:
            logger.exception("stripe.open_session attempt=%s", req.attempt_id)
            raise GatewayUnavailableError("Impossible d'initialiser le paiement Stripe. Veuillez réessayer.") from e

        reference = session.get("id")
        if not reference or not session.get("url"):
            raise GatewayUnavailableError("Session Stripe invalide")
        logger.info("stripe.open_session attempt=%s reference=%s", req.attempt_id, reference)
        return GatewaySession(
            gateway=self.name,
            reference=reference,
            mode="redirect",
            config={"sessionId": reference},
            redirect_url=session["url"],
        )
