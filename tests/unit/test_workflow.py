import asyncio
from decimal import Decimal

import httpx
import pytest

from storefront.cart.service import Cart
from storefront.errors import (
    AttemptInProgressError,
    AttemptNotFoundError,
    CheckoutValidationError,
    GatewayUnavailableError,
    UnsettledPaymentError,
)
from storefront.payments import repository, stripe_client
from storefront.payments.models import AttemptStatus, GatewayCancel, GatewayLoad, GatewaySuccess

S = AttemptStatus


async def _start(workflow, seed_cart, pay_request, scope="s1", **form):
    await seed_cart(scope)
    attempt, session = await workflow.start_payment(scope, pay_request(**form))
    return attempt, session

async def _item_count(store, scope="s1"):
    return (await Cart.load(store.scope(scope))).item_count

def _fake_stripe(monkeypatch, *session_ids):
    ids = list(session_ids)

    def fake_create_session(**kwargs):
        session_id = ids.pop(0)
        return {"id": session_id, "url": f"https://checkout.stripe.test/{session_id}"}

    monkeypatch.setattr(stripe_client, "create_session", fake_create_session)

@pytest.mark.asyncio
async def test_start_payment_records_initiated_attempt(make_workflow, seed_cart, pay_request, backend):
    workflow, _ = make_workflow()
    attempt, session = await _start(workflow, seed_cart, pay_request)

    assert attempt.status == S.INITIATED
    assert attempt.reference == session.reference
    assert session.mode == "inline"
    assert session.config["amount"] == 465000
    assert session.config["email"] == "ada@example.com"
    assert Decimal(attempt.snapshot.totals["grandTotal"]) == Decimal("4650")
    assert (await workflow.current_attempt("s1")).attempt_id == attempt.attempt_id
    assert await repository.scope_for_reference(workflow.store, attempt.reference) == "s1"
    assert backend.requests == []

@pytest.mark.asyncio
async def test_empty_cart_is_rejected_locally(make_workflow, pay_request, backend):
    workflow, _ = make_workflow()
    with pytest.raises(CheckoutValidationError):
        await workflow.start_payment("s1", pay_request())
    assert await workflow.current_attempt("s1") is None

@pytest.mark.asyncio
async def test_missing_field_is_rejected_locally(make_workflow, seed_cart, pay_request):
    workflow, _ = make_workflow()
    await seed_cart("s1")
    with pytest.raises(CheckoutValidationError):
        await workflow.start_payment("s1", pay_request(city=""))
    assert await workflow.current_attempt("s1") is None

@pytest.mark.asyncio
async def test_unknown_gateway_is_rejected(make_workflow, seed_cart, pay_request):
    workflow, _ = make_workflow()
    await seed_cart("s1")
    with pytest.raises(CheckoutValidationError) as exc:
        await workflow.start_payment("s1", pay_request(gateway="bitcoin"))
    assert "paystack" in exc.value.message and "stripe" in exc.value.message

@pytest.mark.asyncio
async def test_second_submit_while_active_is_refused(make_workflow, seed_cart, pay_request):
    workflow, _ = make_workflow()
    await _start(workflow, seed_cart, pay_request)
    assert await workflow.can_submit("s1") is False
    with pytest.raises(AttemptInProgressError):
        await workflow.start_payment("s1", pay_request())

@pytest.mark.asyncio
async def test_concurrent_submits_open_a_single_attempt(make_workflow, seed_cart, pay_request):
    workflow, _ = make_workflow()
    await seed_cart("s1")
    results = await asyncio.gather(
        workflow.start_payment("s1", pay_request()),
        workflow.start_payment("s1", pay_request()),
        return_exceptions=True,
    )
    errors = [r for r in results if isinstance(r, Exception)]
    assert len(errors) == 1
    assert isinstance(errors[0], AttemptInProgressError)

@pytest.mark.asyncio
async def test_happy_path_creates_order_and_clears_cart(make_workflow, seed_cart, pay_request, backend, store):
    workflow, _ = make_workflow()
    attempt, _ = await _start(workflow, seed_cart, pay_request)

    result = await workflow.handle_event("s1", GatewaySuccess(reference=attempt.reference, raw_ids={"trxref": attempt.reference}), user_token="tok")

    assert result.status == S.ORDER_CREATED
    assert result.confirmation["orderNumber"] == "ORD-0001"
    assert result.notice.code == "order_created"
    assert await _item_count(store) == 0
    order_call = backend.calls("/orders")[0]
    assert order_call.headers["Idempotency-Key"] == attempt.reference
    assert order_call.headers["Authorization"] == "Bearer tok"
    assert await workflow.can_submit("s1") is True

@pytest.mark.asyncio
async def test_verification_rejected_keeps_cart_and_allows_retry(make_workflow, seed_cart, pay_request, backend, store):
    workflow, _ = make_workflow()
    backend.verify = (200, {"verified": False, "message": "Transaction introuvable"})
    attempt, _ = await _start(workflow, seed_cart, pay_request)

    result = await workflow.handle_event("s1", GatewaySuccess(reference=attempt.reference))

    assert result.status == S.VERIFY_FAILED
    assert result.notice.code == "payment_not_confirmed"
    assert await _item_count(store) == 2
    assert backend.calls("/orders") == []
    assert await workflow.can_submit("s1") is True

@pytest.mark.asyncio
async def test_order_failure_after_verification_is_surfaced(make_workflow, seed_cart, pay_request, backend, store):
    workflow, delays = make_workflow()
    backend.orders = [(504, {"message": "timeout"})]
    attempt, _ = await _start(workflow, seed_cart, pay_request)

    result = await workflow.handle_event("s1", GatewaySuccess(reference=attempt.reference))

    assert result.status == S.ORDER_FAILED_POST_VERIFICATION
    assert result.notice.code == "order_failed_after_payment"
    assert attempt.reference in result.notice.message
    assert await _item_count(store) == 2
    assert len(backend.calls("/orders")) == 3
    assert len(delays) == 2
    assert [e["reference"] for e in await repository.list_orphans(store)] == [attempt.reference]
    assert await workflow.can_submit("s1") is False
    with pytest.raises(UnsettledPaymentError):
        await workflow.start_payment("s1", pay_request())

@pytest.mark.asyncio
async def test_undecodable_order_response_ends_in_post_verification_failure(make_workflow, seed_cart, pay_request, backend, store):
    workflow, _ = make_workflow()
    backend.orders = [httpx.DecodingError("bad gzip")]
    attempt, _ = await _start(workflow, seed_cart, pay_request)

    result = await workflow.handle_event("s1", GatewaySuccess(reference=attempt.reference))

    assert result.status == S.ORDER_FAILED_POST_VERIFICATION
    assert len(backend.calls("/orders")) == 1
    assert [e["reference"] for e in await repository.list_orphans(store)] == [attempt.reference]
    assert await workflow.can_submit("s1") is False

@pytest.mark.asyncio
async def test_unexpected_submitter_error_never_leaves_attempt_verified(make_workflow, seed_cart, pay_request, store):
    workflow, _ = make_workflow()

    async def broken_submit(payload, *, idempotency_key, user_token=None):
        raise RuntimeError("boom")

    workflow.submitter.submit = broken_submit
    attempt, _ = await _start(workflow, seed_cart, pay_request)

    result = await workflow.handle_event("s1", GatewaySuccess(reference=attempt.reference))

    assert result.status == S.ORDER_FAILED_POST_VERIFICATION
    assert "RuntimeError" in (await repository.list_orphans(store))[0]["reason"]

@pytest.mark.asyncio
async def test_unexpected_verifier_error_ends_in_verify_failed(make_workflow, seed_cart, pay_request, backend, store):
    workflow, _ = make_workflow()

    async def broken_verify(reference, expected_amount, headers=None):
        raise RuntimeError("boom")

    workflow.verifier.verify = broken_verify
    attempt, _ = await _start(workflow, seed_cart, pay_request)

    result = await workflow.handle_event("s1", GatewaySuccess(reference=attempt.reference))

    assert result.status == S.VERIFY_FAILED
    assert result.notice.code == "payment_unverified"
    assert backend.calls("/orders") == []
    assert await workflow.can_submit("s1") is True

@pytest.mark.asyncio
async def test_verification_timeout_is_recorded_not_retried(make_workflow, seed_cart, pay_request, backend, store):
    workflow, _ = make_workflow(verify_timeout=0.05)
    backend.verify_delay = 1.0
    attempt, _ = await _start(workflow, seed_cart, pay_request)

    result = await workflow.handle_event("s1", GatewaySuccess(reference=attempt.reference))

    assert result.status == S.VERIFY_TIMED_OUT
    assert len(backend.calls("/orders/verify-payment")) == 1
    assert backend.calls("/orders") == []
    assert (await repository.list_orphans(store))[0]["status"] == "verify_timed_out"

@pytest.mark.asyncio
async def test_duplicate_success_is_ignored(make_workflow, seed_cart, pay_request, backend):
    workflow, _ = make_workflow()
    attempt, _ = await _start(workflow, seed_cart, pay_request)
    await workflow.handle_event("s1", GatewaySuccess(reference=attempt.reference))

    again = await workflow.handle_event("s1", GatewaySuccess(reference=attempt.reference))

    assert again.status == S.ORDER_CREATED
    assert len(backend.calls("/orders/verify-payment")) == 1
    assert len(backend.calls("/orders")) == 1

@pytest.mark.asyncio
async def test_success_after_cancel_is_recorded_for_support(make_workflow, seed_cart, pay_request, backend, store):
    workflow, _ = make_workflow()
    attempt, _ = await _start(workflow, seed_cart, pay_request)

    cancelled = await workflow.handle_event("s1", GatewayCancel())
    assert cancelled.status == S.CANCELLED
    assert cancelled.notice.code == "gateway_cancelled"
    assert await workflow.can_submit("s1") is True

    late = await workflow.handle_event("s1", GatewaySuccess(reference=attempt.reference))

    assert late.status == S.LATE_SUCCESS
    assert late.notice.code == "payment_received_late"
    assert backend.requests == []
    assert await _item_count(store) == 2
    entries = await repository.list_orphans(store)
    assert [(e["reference"], e["reason"]) for e in entries] == [(attempt.reference, "late_success")]
    assert await workflow.can_submit("s1") is False

@pytest.mark.asyncio
async def test_success_for_superseded_attempt_is_recorded_for_support(make_workflow, seed_cart, pay_request, backend, store, monkeypatch):
    _fake_stripe(monkeypatch, "cs_old")
    workflow, _ = make_workflow()
    old, _ = await _start(workflow, seed_cart, pay_request, gateway="stripe")
    await workflow.handle_event("s1", GatewayCancel())
    new, _ = await workflow.start_payment("s1", pay_request())

    scope = await repository.scope_for_reference(store, "cs_old")
    late = await workflow.handle_event(scope, GatewaySuccess(reference="cs_old", raw_ids={"transaction": "pi_old"}))

    assert late.attempt_id == old.attempt_id
    assert late.status == S.LATE_SUCCESS
    assert backend.requests == []
    assert [e["reference"] for e in await repository.list_orphans(store)] == ["cs_old"]
    current = await workflow.current_attempt("s1")
    assert current.reference == new.reference
    assert current.status == S.INITIATED

@pytest.mark.asyncio
async def test_load_event_has_no_effect(make_workflow, seed_cart, pay_request):
    workflow, _ = make_workflow()
    attempt, _ = await _start(workflow, seed_cart, pay_request)
    result = await workflow.handle_event("s1", GatewayLoad())
    assert result.status == S.INITIATED
    assert result.history == attempt.history

@pytest.mark.asyncio
async def test_success_with_foreign_reference_is_ignored(make_workflow, seed_cart, pay_request, backend):
    workflow, _ = make_workflow()
    await _start(workflow, seed_cart, pay_request)
    result = await workflow.handle_event("s1", GatewaySuccess(reference="autre-ref"))
    assert result.status == S.INITIATED
    assert backend.requests == []

@pytest.mark.asyncio
async def test_event_without_attempt(make_workflow):
    workflow, _ = make_workflow()
    with pytest.raises(AttemptNotFoundError):
        await workflow.handle_event("s1", GatewayCancel())

@pytest.mark.asyncio
async def test_stripe_gateway_uses_checkout_session_id(make_workflow, seed_cart, pay_request, monkeypatch):
    captured = {}

    def fake_create_session(**kwargs):
        captured.update(kwargs)
        return {"id": "cs_test_123", "url": "https://checkout.stripe.test/cs_test_123"}

    monkeypatch.setattr(stripe_client, "create_session", fake_create_session)
    workflow, _ = make_workflow()
    await seed_cart("s1")

    attempt, session = await workflow.start_payment("s1", pay_request(gateway="stripe"))

    assert attempt.reference == "cs_test_123"
    assert session.redirect_url.endswith("cs_test_123")
    assert captured["amount_minor_units"] == 465000
    assert captured["client_reference_id"] == attempt.attempt_id

@pytest.mark.asyncio
async def test_gateway_failure_leaves_no_attempt(make_workflow, seed_cart, pay_request, monkeypatch):
    def broken_create_session(**kwargs):
        raise httpx.ConnectError("stripe down")

    monkeypatch.setattr(stripe_client, "create_session", broken_create_session)
    workflow, _ = make_workflow()
    await seed_cart("s1")

    with pytest.raises(GatewayUnavailableError):
        await workflow.start_payment("s1", pay_request(gateway="stripe"))
    assert await workflow.current_attempt("s1") is None
    assert await workflow.can_submit("s1") is True
