"""
Orchestration du paiement: soumission -> passerelle -> vérification -> commande.

- Une seule tentative non terminale par session (verrou asyncio par session).
- Le verrou protège uniquement la lecture-modification-écriture de la tentative,
  jamais les appels réseau de vérification ou de création de commande.
- Les événements non autorisés (callbacks dupliqués, annulation après succès...) sont
  journalisés puis ignorés: aucun effet de bord, l'état courant est renvoyé.
- Le panier n'est vidé qu'après la création de la commande.
- Un succès signalé pour une tentative annulée, en erreur ou remplacée n'est jamais perdu:
  la tentative passe en late_success et rejoint le registre des paiements à rapprocher.
- Une erreur inattendue pendant la vérification ou la commande termine la tentative
  (verify_failed / order_failed_post_verification), jamais bloquée en verifying / verified.
"""
import asyncio
import logging
import weakref
from typing import Any, Dict, Optional
from uuid import uuid4

from fastapi import Request
from starlette.concurrency import run_in_threadpool

from storefront.cart.service import Cart
from storefront.checkout.models import PayRequest
from storefront.checkout.service import CheckoutSession, build_confirmation
from storefront.config import (
    BASE_URL,
    CHECKOUT_CANCEL_PATH,
    CHECKOUT_SUCCESS_PATH,
    DEFAULT_GATEWAY,
    PAYMENT_CHANNELS,
)
from storefront.errors import (
    AttemptInProgressError,
    AttemptNotFoundError,
    CheckoutError,
    CheckoutValidationError,
    GatewayUnavailableError,
    IllegalTransition,
    OrderSubmissionError,
    UnsettledPaymentError,
    VerificationFailed,
    VerificationTimedOut,
)
from storefront.infra.kv_store import KeyValueStore
from storefront.payments import repository
from storefront.payments.gateways import GatewayRequest, GatewaySession, get_all_gateway_names, get_gateway
from storefront.payments.models import (
    AttemptEvent,
    AttemptSnapshot,
    AttemptStatus,
    GatewayEvent,
    GatewayLoad,
    GatewaySuccess,
    Notice,
    OrderConfirmed,
    OrderRejected,
    PaymentAttempt,
    VerificationConfirmed,
    VerificationRejected,
    VerificationStarted,
    VerificationTimeout,
)
from storefront.payments.orders import OrderSubmitter, build_order_payload
from storefront.payments.state_machine import apply
from storefront.payments.verification import UNKNOWN_OUTCOME_MESSAGE, VerificationClient

logger = logging.getLogger(__name__)


class SessionLocks:
    """Un asyncio.Lock par session; libéré du registre dès qu'il n'est plus référencé."""

    def __init__(self):
        self._locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()

    def for_scope(self, scope: str) -> asyncio.Lock:
        lock = self._locks.get(scope)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[scope] = lock
        return lock


def notice_for(attempt: PaymentAttempt, event: AttemptEvent) -> Optional[Notice]:
    """Avis utilisateur associé au nouvel état de la tentative."""
    status = attempt.status
    ref = attempt.reference or "-"
    if status == AttemptStatus.CANCELLED:
        return Notice(level="info", code="gateway_cancelled", message="Paiement annulé. Votre panier est conservé.")
    if status == AttemptStatus.ERRORED:
        return Notice(level="error", code="gateway_error", message="Le paiement a échoué. Veuillez réessayer.")
    if status in (AttemptStatus.SUCCEEDED_CLIENT, AttemptStatus.VERIFYING):
        return Notice(level="info", code="payment_verifying", message="Paiement reçu, vérification en cours...")
    if status == AttemptStatus.VERIFY_FAILED:
        charged = event.charged if isinstance(event, VerificationRejected) else None
        if charged is False:
            return Notice(
                level="error",
                code="payment_not_confirmed",
                message="Le paiement n'a pas pu être confirmé. Aucun montant n'a été débité, vous pouvez réessayer.",
            )
        return Notice(
            level="error",
            code="payment_unverified",
            message=f"Nous n'avons pas pu vérifier votre paiement. Si un montant a été débité, contactez le support avec la référence {ref}.",
        )
    if status == AttemptStatus.VERIFY_TIMED_OUT:
        return Notice(
            level="warning",
            code="payment_verification_timeout",
            message=f"La vérification du paiement prend plus de temps que prévu. Ne payez pas à nouveau, notre support confirmera la référence {ref}.",
        )
    if status == AttemptStatus.ORDER_FAILED_POST_VERIFICATION:
        return Notice(
            level="error",
            code="order_failed_after_payment",
            message=f"Votre paiement a bien été reçu mais la commande n'a pas pu être créée. Ne payez pas à nouveau et contactez le support avec la référence {ref}.",
        )
    if status == AttemptStatus.LATE_SUCCESS:
        return Notice(
            level="warning",
            code="payment_received_late",
            message=f"Un paiement a été reçu pour la référence {ref} après son annulation. Ne payez pas à nouveau, notre support va finaliser votre commande.",
        )
    if status == AttemptStatus.ORDER_CREATED:
        return Notice(level="success", code="order_created", message="Commande validée ! Merci pour votre achat.")
    return None


class CheckoutWorkflow:
    def __init__(
        self,
        store: KeyValueStore,
        verifier: VerificationClient,
        submitter: OrderSubmitter,
        *,
        locks: Optional[SessionLocks] = None,
        default_gateway: str = DEFAULT_GATEWAY,
    ):
        self.store = store
        self.verifier = verifier
        self.submitter = submitter
        self.locks = locks or SessionLocks()
        self.default_gateway = default_gateway

    # --- lecture ---

    async def current_attempt(self, scope: str) -> Optional[PaymentAttempt]:
        return await repository.load_attempt(self.store.scope(scope))

    async def can_submit(self, scope: str) -> bool:
        """Faux si une tentative est en cours ou si un paiement précédent reste à rapprocher."""
        attempt = await self.current_attempt(scope)
        return attempt is None or not (attempt.is_active or attempt.is_unsettled)

    # --- soumission ---

    async def start_payment(self, scope: str, form: PayRequest, user: Optional[Dict[str, Any]] = None) -> tuple[PaymentAttempt, GatewaySession]:
        """
        Valide le checkout, ouvre la passerelle et enregistre une tentative Initiated.
        Aucun appel réseau si le panier est vide ou le formulaire incomplet.
        """
        storage = self.store.scope(scope)
        async with self.locks.for_scope(scope):
            current = await repository.load_attempt(storage)
            if current and current.is_unsettled:
                raise UnsettledPaymentError(current.reference)
            if current and current.is_active:
                raise AttemptInProgressError()

            cart = await Cart.load(storage)
            if cart.is_empty:
                raise CheckoutValidationError("Votre panier est vide")
            session = CheckoutSession.from_cart(cart, form)
            if not session.validate():
                raise CheckoutValidationError("Veuillez remplir tous les champs obligatoires")

            gateway_name = (form.gateway or self.default_gateway).lower()
            gateway = get_gateway(gateway_name)
            if gateway is None:
                available = ", ".join(get_all_gateway_names())
                raise CheckoutValidationError(f"Moyen de paiement inconnu: {gateway_name} (disponibles: {available})")

            attempt_id = uuid4().hex
            totals = session.totals
            user_id = str((user or {}).get("id") or "") or None
            request = GatewayRequest(
                attempt_id=attempt_id,
                email=form.email,
                amount_minor_units=totals.amount_minor_units,
                currency=totals.currency,
                phone=form.phone,
                channels=list(PAYMENT_CHANNELS),
                metadata={"attemptId": attempt_id, "customerName": f"{form.first_name} {form.last_name}".strip()},
                success_url=f"{BASE_URL}{CHECKOUT_SUCCESS_PATH}",
                cancel_url=f"{BASE_URL}{CHECKOUT_CANCEL_PATH}",
            )
            try:
                gw_session = await run_in_threadpool(gateway.open_session, request)
            except CheckoutError:
                raise
            except Exception as e:
                logger.exception("workflow.start_payment ouverture passerelle scope=%s gateway=%s", scope, gateway_name)
                raise GatewayUnavailableError("Impossible d'initialiser le paiement. Veuillez réessayer.") from e

            attempt = PaymentAttempt(
                attempt_id=attempt_id,
                scope=scope,
                gateway=gateway_name,
                reference=gw_session.reference,
                amount_minor_units=totals.amount_minor_units,
                currency=totals.currency,
                user_id=user_id,
                email=form.email,
                snapshot=AttemptSnapshot(
                    items=cart.snapshot(),
                    shipping_address=form.shipping_address(),
                    totals=totals.model_dump(by_alias=True, mode="json"),
                ),
            )
            await repository.save_attempt(storage, attempt, make_current=True)
            await repository.index_reference(self.store, gw_session.reference, scope)
            logger.info(
                "workflow.start_payment scope=%s attempt=%s gateway=%s reference=%s amount=%s",
                scope, attempt_id, gateway_name, gw_session.reference, totals.amount_minor_units,
            )
            return attempt, gw_session

    # --- événements passerelle ---

    async def handle_event(self, scope: str, event: GatewayEvent, user_token: Optional[str] = None) -> PaymentAttempt:
        """
        Applique un callback passerelle. Un succès déclenche la vérification puis la commande.
        - succès portant la référence d'une tentative remplacée: appliqué à cette tentative
        - succès après annulation ou erreur: late_success, inscrit au registre (pas de commande automatique)
        - doublons et événements hors séquence: ignorés
        """
        storage = self.store.scope(scope)
        async with self.locks.for_scope(scope):
            current = await repository.load_attempt(storage)
            if current is None:
                raise AttemptNotFoundError()
            if isinstance(event, GatewayLoad):
                logger.info("workflow.gateway_loaded scope=%s attempt=%s", scope, current.attempt_id)
                return current

            attempt = current
            if isinstance(event, GatewaySuccess) and event.reference and current.reference and event.reference != current.reference:
                attempt = await repository.load_attempt(storage, event.reference)
                if attempt is None:
                    logger.warning(
                        "workflow.reference_mismatch scope=%s attempt=%s expected=%s got=%s",
                        scope, current.attempt_id, current.reference, event.reference,
                    )
                    return current
                logger.warning(
                    "workflow.superseded_success scope=%s attempt=%s reference=%s status=%s",
                    scope, attempt.attempt_id, attempt.reference, attempt.status.value,
                )

            try:
                attempt = self.transition(attempt, event)
            except IllegalTransition as e:
                logger.warning("workflow.event_ignored scope=%s attempt=%s: %s", scope, attempt.attempt_id, e)
                return attempt
            if attempt.status == AttemptStatus.SUCCEEDED_CLIENT:
                attempt = self.transition(attempt, VerificationStarted())
            await self._record(storage, attempt, event)

        if attempt.status != AttemptStatus.VERIFYING:
            return attempt
        return await self.settle(attempt, user_token=user_token)

    # --- saga vérification -> commande ---

    async def settle(self, attempt: PaymentAttempt, user_token: Optional[str] = None) -> PaymentAttempt:
        """Vérifie une tentative Verifying puis, si vérifiée, crée la commande."""
        headers = {"Authorization": f"Bearer {user_token}"} if user_token else None
        try:
            payload = await self.verifier.verify(attempt.reference or "", attempt.amount_minor_units, headers=headers)
        except VerificationTimedOut as e:
            event: AttemptEvent = VerificationTimeout(message=e.message)
        except VerificationFailed as e:
            event = VerificationRejected(message=e.message, charged=e.charged)
        except Exception:
            logger.exception("workflow.settle erreur inattendue scope=%s reference=%s", attempt.scope, attempt.reference)
            event = VerificationRejected(message=UNKNOWN_OUTCOME_MESSAGE, charged=None)
        else:
            event = VerificationConfirmed(payload=payload)

        attempt = await self._advance(attempt, event)
        if attempt.status != AttemptStatus.VERIFIED:
            return attempt
        return await self.create_order(attempt, user_token=user_token)

    async def create_order(self, attempt: PaymentAttempt, user_token: Optional[str] = None) -> PaymentAttempt:
        """
        Crée la commande d'une tentative vérifiée (ou à rapprocher).
        En cas de succès: registre nettoyé, panier vidé si la tentative est toujours celle de la session.
        """
        snapshot = attempt.snapshot
        try:
            payload = build_order_payload(
                items=snapshot.items,
                shipping_address=snapshot.shipping_address,
                payment_method=attempt.gateway,
                reference=attempt.reference or "",
                client_status=attempt.client_status,
                raw_ids=attempt.raw_ids,
                verification_payload=attempt.verification_payload,
                user_id=attempt.user_id,
            )
            order = await self.submitter.submit(payload, idempotency_key=attempt.reference or attempt.attempt_id, user_token=user_token)
        except OrderSubmissionError as e:
            event: AttemptEvent = OrderRejected(message=e.message)
        except Exception as e:
            logger.exception("workflow.create_order erreur inattendue scope=%s reference=%s", attempt.scope, attempt.reference)
            event = OrderRejected(message=f"Erreur inattendue lors de la création de commande ({e.__class__.__name__})")
        else:
            event = OrderConfirmed(order=order)

        attempt = await self._advance(attempt, event)
        if attempt.status == AttemptStatus.ORDER_CREATED:
            storage = self.store.scope(attempt.scope)
            if await repository.is_current(storage, attempt):
                cart = await Cart.load(storage)
                await cart.clear()
            if attempt.reference:
                await repository.remove_orphan(self.store, attempt.reference)
        return attempt

    def transition(self, attempt: PaymentAttempt, event: AttemptEvent) -> PaymentAttempt:
        previous = attempt.status
        attempt = apply(attempt, event)
        updates: Dict[str, Any] = {"notice": notice_for(attempt, event)}
        if isinstance(event, OrderConfirmed):
            updates["confirmation"] = build_confirmation(
                attempt.order or {}, attempt.snapshot.shipping_address, attempt.snapshot.totals,
            )
        logger.info(
            "workflow.transition scope=%s attempt=%s %s -> %s (%s)",
            attempt.scope, attempt.attempt_id, previous.value, attempt.status.value, type(event).__name__,
        )
        return attempt.model_copy(update=updates)

    async def _advance(self, attempt: PaymentAttempt, event: AttemptEvent) -> PaymentAttempt:
        storage = self.store.scope(attempt.scope)
        async with self.locks.for_scope(attempt.scope):
            attempt = self.transition(attempt, event)
            await self._record(storage, attempt, event)
        return attempt

    async def _record(self, storage, attempt: PaymentAttempt, event: AttemptEvent) -> None:
        """Enregistre la tentative; un débit possible sans commande est journalisé en ERROR et inscrit au registre."""
        await repository.save_attempt(storage, attempt)
        unknown_charge = isinstance(event, VerificationRejected) and event.charged is None
        if not (attempt.is_unsettled or unknown_charge):
            return
        reason = getattr(event, "message", "") or attempt.status.value
        logger.error(
            "workflow.payment_at_risk scope=%s attempt=%s reference=%s amount=%s %s status=%s: %s",
            attempt.scope, attempt.attempt_id, attempt.reference, attempt.amount_minor_units,
            attempt.currency, attempt.status.value, reason,
        )
        if attempt.is_unsettled:
            await repository.record_orphan(self.store, attempt, reason)


def get_workflow(request: Request) -> CheckoutWorkflow:
    """Dépendance FastAPI: workflow construit par le lifespan."""
    return request.app.state.workflow
