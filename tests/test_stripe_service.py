import time

import pytest
import stripe

from wefly.errors import PaymentProviderError, WebhookSignatureError
from wefly.services.stripe_service import StripeGateway

from conftest import WEBHOOK_SECRET, sign_payload, stripe_event


class FakeSession:
    def __init__(self, id, url):
        self.id = id
        self.url = url


@pytest.fixture
def stripe_gateway(settings):
    return StripeGateway(settings)


METADATA = {"booking_id": "b-1", "confirmation_code": "WEF-20251115-ABCDEF", "pax": "3", "flight_date": "2025-11-15"}


def test_create_session_sends_server_amount_and_metadata(stripe_gateway, monkeypatch):
    calls = []

    def fake_create(**params):
        calls.append(params)
        return FakeSession("cs_test_abc", "https://checkout.stripe.com/c/pay/cs_test_abc")

    monkeypatch.setattr(stripe.checkout.Session, "create", fake_create)
    session = stripe_gateway.create_session(1_020_000, "mxn", METADATA, "Balloon flight", "ana@example.com")

    assert session.id == "cs_test_abc"
    params = calls[0]
    assert params["line_items"][0]["price_data"]["unit_amount"] == 1_020_000
    assert params["metadata"] == METADATA
    assert params["payment_intent_data"] == {"metadata": METADATA}
    assert params["payment_method_types"] == ["card", "oxxo"]
    assert params["payment_method_options"]["oxxo"]["expires_after_days"] == 2
    assert params["customer_email"] == "ana@example.com"
    assert params["success_url"] == "https://wefly.com.mx/?checkout=success"


def test_provider_failure_becomes_payment_provider_error(stripe_gateway, monkeypatch):
    def fake_create(**params):
        raise stripe.APIConnectionError("timed out")

    monkeypatch.setattr(stripe.checkout.Session, "create", fake_create)
    with pytest.raises(PaymentProviderError):
        stripe_gateway.create_session(250_000, "mxn", METADATA, "Balloon flight")


def test_oxxo_rejection_falls_back_to_card_when_enabled(settings, monkeypatch):
    gateway = StripeGateway(settings.model_copy(update={"OXXO_FALLBACK_TO_CARD": True}))
    calls = []

    def fake_create(**params):
        calls.append(params["payment_method_types"])
        if "oxxo" in params["payment_method_types"]:
            raise stripe.InvalidRequestError("oxxo is not activated", "payment_method_types")
        return FakeSession("cs_test_card", None)

    monkeypatch.setattr(stripe.checkout.Session, "create", fake_create)
    session = gateway.create_session(250_000, "mxn", METADATA, "Balloon flight")

    assert session.id == "cs_test_card"
    assert calls == [["card", "oxxo"], ["card"]]


def test_oxxo_rejection_without_fallback_fails(stripe_gateway, monkeypatch):
    def fake_create(**params):
        raise stripe.InvalidRequestError("oxxo is not activated", "payment_method_types")

    monkeypatch.setattr(stripe.checkout.Session, "create", fake_create)
    with pytest.raises(PaymentProviderError):
        stripe_gateway.create_session(250_000, "mxn", METADATA, "Balloon flight")


def test_parse_event_verifies_signature(stripe_gateway):
    payload = stripe_event("checkout.session.completed", {"id": "cs_test_1", "payment_status": "paid"})
    event = stripe_gateway.parse_event(payload.encode(), sign_payload(payload))
    assert event["type"] == "checkout.session.completed"
    assert event["data"]["object"]["id"] == "cs_test_1"


def test_parse_event_rejects_wrong_secret(stripe_gateway):
    payload = stripe_event("checkout.session.completed", {"id": "cs_test_1"})
    with pytest.raises(WebhookSignatureError):
        stripe_gateway.parse_event(payload.encode(), sign_payload(payload, secret="whsec_other"))


def test_parse_event_rejects_stale_timestamp(stripe_gateway):
    payload = stripe_event("checkout.session.completed", {"id": "cs_test_1"})
    header = sign_payload(payload, WEBHOOK_SECRET, timestamp=int(time.time()) - 3600)
    with pytest.raises(WebhookSignatureError):
        stripe_gateway.parse_event(payload.encode(), header)


def test_parse_event_requires_header(stripe_gateway):
    with pytest.raises(WebhookSignatureError):
        stripe_gateway.parse_event(b"{}", None)


def test_parse_event_rejects_signed_garbage(stripe_gateway):
    payload = "not json"
    with pytest.raises(WebhookSignatureError):
        stripe_gateway.parse_event(payload.encode(), sign_payload(payload))
