import hashlib
import hmac
import json
import time

import pytest

from storefront.payments import stripe_client
from storefront.payments.models import GatewayCancel, GatewayError, GatewaySuccess


def _event(event_type, **obj):
    return {"type": event_type, "data": {"object": {"id": "cs_test_1", **obj}}}

def _signed(payload: bytes, secret: str) -> str:
    ts = int(time.time())
    sig = hmac.new(secret.encode(), f"{ts}.".encode() + payload, hashlib.sha256).hexdigest()
    return f"t={ts},v1={sig}"

def test_completed_and_paid_is_success():
    reference, event = stripe_client.to_gateway_event(
        _event("checkout.session.completed", payment_status="paid", payment_intent="pi_1")
    )
    assert reference == "cs_test_1"
    assert isinstance(event, GatewaySuccess)
    assert event.raw_ids == {"transaction": "pi_1"}

def test_completed_but_unpaid_is_ignored():
    assert stripe_client.to_gateway_event(_event("checkout.session.completed", payment_status="unpaid")) is None

def test_expired_is_cancel_and_failed_is_error():
    assert isinstance(stripe_client.to_gateway_event(_event("checkout.session.expired"))[1], GatewayCancel)
    assert isinstance(stripe_client.to_gateway_event(_event("checkout.session.async_payment_failed"))[1], GatewayError)

def test_unrelated_events_are_ignored():
    assert stripe_client.to_gateway_event({"type": "charge.refunded", "data": {"object": {"id": "ch_1"}}}) is None
    assert stripe_client.to_gateway_event({}) is None

def test_verify_webhook_accepts_valid_signature(monkeypatch):
    monkeypatch.setattr(stripe_client, "STRIPE_WEBHOOK_SECRET", "whsec_unit")
    payload = json.dumps(_event("checkout.session.expired")).encode()
    event = stripe_client.verify_webhook(payload, _signed(payload, "whsec_unit"))
    assert event["type"] == "checkout.session.expired"

def test_verify_webhook_rejects_bad_signature(monkeypatch):
    monkeypatch.setattr(stripe_client, "STRIPE_WEBHOOK_SECRET", "whsec_unit")
    payload = json.dumps(_event("checkout.session.expired")).encode()
    with pytest.raises(Exception):
        stripe_client.verify_webhook(payload, _signed(payload, "whsec_autre"))
