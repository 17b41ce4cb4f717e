import pytest

from wefly.services.ledger import PaymentEventType, ReconciliationOutcome
from wefly.services.reconciliation import ReconciliationDriver, parse_payment_event

from conftest import RecordingEmailSender


def event(event_type, **obj):
    return {"id": "evt_1", "type": event_type, "data": {"object": obj}}


@pytest.mark.parametrize("event_type,payment_status,expected", [
    ("checkout.session.completed", "paid", PaymentEventType.SUCCEEDED),
    ("checkout.session.completed", "no_payment_required", PaymentEventType.SUCCEEDED),
    ("checkout.session.completed", "unpaid", PaymentEventType.UNKNOWN),
    ("checkout.session.async_payment_succeeded", "paid", PaymentEventType.SUCCEEDED),
    ("checkout.session.async_payment_failed", "unpaid", PaymentEventType.FAILED),
    ("checkout.session.expired", "unpaid", PaymentEventType.EXPIRED),
    ("payment_intent.succeeded", None, PaymentEventType.SUCCEEDED),
    ("payment_intent.payment_failed", None, PaymentEventType.UNKNOWN),
    ("customer.created", None, PaymentEventType.UNKNOWN),
])
def test_parse_payment_event_maps_stripe_types(event_type, payment_status, expected):
    parsed = parse_payment_event(event(event_type, id="cs_1", payment_status=payment_status,
                                       metadata={"booking_id": "b-1"}))
    assert parsed.event_type == expected
    assert parsed.payment_reference == "cs_1"
    assert parsed.metadata == {"booking_id": "b-1"}


def test_parse_tolerates_missing_object():
    parsed = parse_payment_event({"type": "checkout.session.completed"})
    assert parsed.event_type == PaymentEventType.UNKNOWN
    assert parsed.payment_reference is None
    assert parsed.metadata == {}


def test_driver_sends_customer_and_staff_emails(ledger, email_sender, booking_input):
    booking = ledger.create_pending(booking_input).booking
    driver = ReconciliationDriver(ledger, email_sender)

    result = driver.handle(event("checkout.session.completed", id=booking.payment_reference, payment_status="paid",
                                 metadata={"booking_id": booking.id}))

    assert result.outcome == ReconciliationOutcome.APPLIED
    assert [m["to"] for m in email_sender.sent] == ["ana@example.com", "staff@wefly.com.mx"]
    assert email_sender.sent[0]["data"]["confirmation_code"] == booking.confirmation_code


def test_driver_swallows_email_outage_after_state_change(ledger, booking_input):
    booking = ledger.create_pending(booking_input).booking
    driver = ReconciliationDriver(ledger, RecordingEmailSender(fail=True))

    result = driver.handle(event("checkout.session.completed", id=booking.payment_reference, payment_status="paid"))

    assert result.outcome == ReconciliationOutcome.APPLIED
    assert ledger.get(booking.id).status.value == "PAID"


def test_driver_card_flow_fires_two_events_but_emails_once(ledger, email_sender, booking_input):
    booking = ledger.create_pending(booking_input).booking
    driver = ReconciliationDriver(ledger, email_sender)

    driver.handle(event("checkout.session.completed", id=booking.payment_reference, payment_status="paid"))
    second = driver.handle(event("payment_intent.succeeded", id="pi_123",
                                 metadata={"booking_id": booking.id, "confirmation_code": booking.confirmation_code}))

    assert second.outcome == ReconciliationOutcome.ALREADY_PROCESSED
    assert len(email_sender.sent) == 2


def test_driver_oxxo_voucher_then_async_success(ledger, email_sender, booking_input):
    booking = ledger.create_pending(booking_input).booking
    driver = ReconciliationDriver(ledger, email_sender)

    voucher = driver.handle(event("checkout.session.completed", id=booking.payment_reference, payment_status="unpaid"))
    assert voucher.outcome == ReconciliationOutcome.IGNORED
    assert ledger.get(booking.id).status.value == "PENDING"

    paid = driver.handle(event("checkout.session.async_payment_succeeded", id=booking.payment_reference,
                               payment_status="paid"))
    assert paid.outcome == ReconciliationOutcome.APPLIED
    assert len(email_sender.sent) == 2


def test_driver_declined_card_then_paid_settles_as_paid(ledger, email_sender, booking_input):
    booking = ledger.create_pending(booking_input).booking
    driver = ReconciliationDriver(ledger, email_sender)

    declined = driver.handle(event("payment_intent.payment_failed", id="pi_1",
                                   metadata={"booking_id": booking.id}))
    assert declined.outcome == ReconciliationOutcome.IGNORED
    assert ledger.get(booking.id).status.value == "PENDING"
    assert email_sender.sent == []

    paid = driver.handle(event("checkout.session.completed", id=booking.payment_reference, payment_status="paid"))
    assert paid.outcome == ReconciliationOutcome.APPLIED
    assert ledger.get(booking.id).status.value == "PAID"
    assert [m["template_id"] for m in email_sender.sent] == ["d-customer-ok", "d-staff-ok"]


def test_parse_coerces_non_string_object_id():
    parsed = parse_payment_event(event("checkout.session.completed", id=12345, payment_status="paid"))
    assert parsed.payment_reference == "12345"
    assert parsed.event_type == PaymentEventType.SUCCEEDED
