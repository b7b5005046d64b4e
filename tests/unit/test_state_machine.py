from collections import deque

import pytest

from storefront.errors import IllegalTransition
from storefront.payments.models import (
    AttemptStatus,
    GatewayCancel,
    GatewayError,
    GatewayLoad,
    GatewaySuccess,
    OrderConfirmed,
    PaymentAttempt,
    VerificationConfirmed,
    VerificationStarted,
)
from storefront.payments.state_machine import TRANSITIONS, apply, next_status

S = AttemptStatus


def _attempt(status=S.INITIATED, reference="abc123") -> PaymentAttempt:
    return PaymentAttempt(
        attempt_id="a1", scope="s1", gateway="paystack", status=status,
        reference=reference, amount_minor_units=465000, currency="NGN",
    )

def test_every_status_has_a_transition_table():
    assert set(TRANSITIONS) == set(AttemptStatus)

def test_order_created_unreachable_without_verified():
    # Parcours du graphe en retirant Verified: order_created ne doit pas être atteignable
    seen = {S.INITIATED}
    queue = deque([S.INITIATED])
    while queue:
        status = queue.popleft()
        for target in TRANSITIONS[status].values():
            if target == S.VERIFIED or target in seen:
                continue
            seen.add(target)
            queue.append(target)
    assert S.ORDER_CREATED not in seen

def test_success_moves_to_succeeded_client_and_keeps_ids():
    attempt = apply(_attempt(), GatewaySuccess(reference="abc123", raw_ids={"trxref": "abc123", "trans": "991"}))
    assert attempt.status == S.SUCCEEDED_CLIENT
    assert attempt.raw_ids == {"trxref": "abc123", "trans": "991"}
    assert attempt.history[-1].from_status == S.INITIATED

def test_cancel_only_from_initiated():
    assert next_status(S.INITIATED, GatewayCancel()) == S.CANCELLED
    with pytest.raises(IllegalTransition):
        next_status(S.VERIFYING, GatewayCancel())

def test_success_after_cancel_or_error_is_a_late_success():
    assert next_status(S.CANCELLED, GatewaySuccess(reference="abc123")) == S.LATE_SUCCESS
    assert next_status(S.ERRORED, GatewaySuccess(reference="abc123")) == S.LATE_SUCCESS
    late = apply(_attempt(S.CANCELLED), GatewaySuccess(reference="abc123", raw_ids={"transaction": "pi_9"}))
    assert late.is_unsettled
    assert late.raw_ids == {"transaction": "pi_9"}

def test_late_success_never_reaches_order_directly():
    assert next_status(S.LATE_SUCCESS, VerificationStarted()) == S.VERIFYING
    with pytest.raises(IllegalTransition):
        next_status(S.LATE_SUCCESS, OrderConfirmed())

def test_success_after_verify_failed_or_order_is_illegal():
    for status in (S.VERIFY_FAILED, S.ORDER_CREATED):
        with pytest.raises(IllegalTransition):
            next_status(status, GatewaySuccess(reference="abc123"))

def test_duplicate_success_is_illegal():
    with pytest.raises(IllegalTransition):
        next_status(S.SUCCEEDED_CLIENT, GatewaySuccess(reference="abc123"))

def test_error_from_initiated():
    assert next_status(S.INITIATED, GatewayError("declined")) == S.ERRORED

def test_load_never_changes_state():
    for status in AttemptStatus:
        assert next_status(status, GatewayLoad()) == status
    attempt = _attempt()
    assert apply(attempt, GatewayLoad()) is attempt

def test_apply_does_not_mutate_original():
    original = _attempt(S.SUCCEEDED_CLIENT)
    updated = apply(original, VerificationStarted())
    assert original.status == S.SUCCEEDED_CLIENT
    assert updated.status == S.VERIFYING

def test_confirmed_payload_and_order_are_recorded():
    verified = apply(_attempt(S.VERIFYING), VerificationConfirmed(payload={"amount": 465000}))
    assert verified.verification_payload == {"amount": 465000}
    created = apply(verified, OrderConfirmed(order={"id": "ord_1"}))
    assert created.status == S.ORDER_CREATED
    assert created.order == {"id": "ord_1"}

def test_reconciliation_paths():
    assert next_status(S.VERIFY_TIMED_OUT, VerificationStarted()) == S.VERIFYING
    assert next_status(S.ORDER_FAILED_POST_VERIFICATION, OrderConfirmed()) == S.ORDER_CREATED

def test_terminal_states_accept_nothing():
    for status in (S.CANCELLED, S.ERRORED, S.VERIFY_FAILED, S.ORDER_CREATED):
        with pytest.raises(IllegalTransition):
            next_status(status, VerificationStarted())
