import hashlib
import hmac
import json
import os
import sys
import time
from datetime import date
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.pool import StaticPool

sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from wefly.config import Settings, get_settings
from wefly.db.session import get_db, init_db, make_engine, make_session_factory
from wefly.dependencies import get_email_sender, get_payment_gateway
from wefly.errors import EmailDeliveryError
from wefly.main import app
from wefly.schemas.booking import BookingCreate
from wefly.services.ledger import BookingLedger
from wefly.services.pricing import AddonPrice, PriceTable, PricingMode
from wefly.services.stripe_service import PaymentSession, StripeGateway

WEBHOOK_SECRET = "whsec_test_secret"

BREAKFAST = "Desayuno en La Cueva"
VIDEO = "Video y fotografía"


def sign_payload(payload: str, secret: str = WEBHOOK_SECRET, timestamp: int = None) -> str:
    timestamp = timestamp or int(time.time())
    signature = hmac.new(secret.encode(), f"{timestamp}.{payload}".encode(), hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={signature}"


def stripe_event(event_type: str, obj: dict, event_id: str = "evt_test_1") -> str:
    return json.dumps({"id": event_id, "object": "event", "type": event_type, "data": {"object": obj}})


class FakeGateway(StripeGateway):
    """Stands in for Stripe's HTTP API; webhook verification is the real one."""

    def __init__(self, settings: Settings):
        self.settings = settings
        self.webhook_secret = settings.STRIPE_WEBHOOK_SECRET
        self.sessions = []
        self.expired = []
        self.fail_with = None

    def create_session(self, amount, currency, metadata, description, customer_email=None):
        if self.fail_with:
            raise self.fail_with
        self.sessions.append({
            "amount": amount,
            "currency": currency,
            "metadata": metadata,
            "description": description,
            "customer_email": customer_email,
        })
        session_id = f"cs_test_{len(self.sessions)}"
        return PaymentSession(id=session_id, url=f"https://checkout.stripe.com/c/pay/{session_id}")

    def expire_session(self, session_id):
        self.expired.append(session_id)


class RecordingEmailSender:
    def __init__(self, fail=False):
        self.sent = []
        self.fail = fail

    def send(self, to, template_id, template_data, from_email=None):
        if self.fail:
            raise EmailDeliveryError("SendGrid unreachable", to=to)
        self.sent.append({"to": to, "template_id": template_id, "data": template_data, "from": from_email})


@pytest.fixture
def settings():
    return Settings(
        STRIPE_SECRET_KEY="sk_test_dummy",
        STRIPE_WEBHOOK_SECRET=WEBHOOK_SECRET,
        PRICE_TABLE=PriceTable(
            adult=Decimal("2500"),
            child=Decimal("2200"),
            addons={
                BREAKFAST: AddonPrice(price=Decimal("600"), mode=PricingMode.PER_PASSENGER),
                VIDEO: AddonPrice(price=Decimal("1200"), mode=PricingMode.FLAT),
            },
        ),
        STAFF_NOTIFICATION_EMAIL="staff@wefly.com.mx",
        SENDGRID_TEMPLATE_CUSTOMER_CONFIRMED="d-customer-ok",
        SENDGRID_TEMPLATE_CUSTOMER_FAILED="d-customer-failed",
        SENDGRID_TEMPLATE_STAFF_CONFIRMED="d-staff-ok",
        SENDGRID_TEMPLATE_STAFF_FAILED="d-staff-failed",
        DATABASE_URL="sqlite://",
    )


@pytest.fixture
def engine():
    engine = make_engine("sqlite://", poolclass=StaticPool)
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return make_session_factory(engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def gateway(settings):
    return FakeGateway(settings)


@pytest.fixture
def email_sender():
    return RecordingEmailSender()


@pytest.fixture
def ledger(db, settings, gateway):
    return BookingLedger(db, settings, gateway)


@pytest.fixture
def booking_input():
    return BookingCreate(
        adults=2,
        children=1,
        addons=[VIDEO, {"name": BREAKFAST}],
        date=date(2025, 11, 15),
        contact={"name": "Ana López", "email": "ana@example.com", "phone": "+52 55 1234 5678"},
    )


@pytest.fixture
def client(settings, session_factory, gateway, email_sender):
    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_settings] = lambda: settings
    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_payment_gateway] = lambda: gateway
    app.dependency_overrides[get_email_sender] = lambda: email_sender
    yield TestClient(app)
    app.dependency_overrides.clear()
