import logging
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field

from wefly.errors import EmailDeliveryError
from wefly.services.ledger import BookingLedger, PaymentEventType, ReconciliationResult

logger = logging.getLogger(__name__)

# payment_intent.payment_failed is left out: a declined card keeps the session open for another attempt
STRIPE_EVENT_TYPES = {
    "checkout.session.async_payment_succeeded": PaymentEventType.SUCCEEDED,
    "checkout.session.async_payment_failed": PaymentEventType.FAILED,
    "checkout.session.expired": PaymentEventType.EXPIRED,
    "payment_intent.succeeded": PaymentEventType.SUCCEEDED,
}

# checkout.session.completed also fires for OXXO once the voucher is issued (payment_status=unpaid)
PAID_SESSION_STATUSES = ("paid", "no_payment_required")


class PaymentEvent(BaseModel):
    provider_type: str
    event_type: PaymentEventType
    payment_reference: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)


def parse_payment_event(event: Dict[str, Any]) -> PaymentEvent:
    provider_type = str(event.get("type") or "")
    obj = (event.get("data") or {}).get("object") or {}
    if not isinstance(obj, dict):
        obj = {}
    metadata = obj.get("metadata") if isinstance(obj.get("metadata"), dict) else {}

    if provider_type == "checkout.session.completed":
        paid = obj.get("payment_status") in PAID_SESSION_STATUSES
        event_type = PaymentEventType.SUCCEEDED if paid else PaymentEventType.UNKNOWN
    else:
        event_type = STRIPE_EVENT_TYPES.get(provider_type, PaymentEventType.UNKNOWN)

    reference = obj.get("id")
    return PaymentEvent(
        provider_type=provider_type,
        event_type=event_type,
        payment_reference=str(reference) if reference is not None else None,
        metadata=metadata,
    )


class ReconciliationDriver:
    """
    Applies one verified provider event to the ledger, then delivers the
    notifications the ledger asked for. E-mail failures are logged and never
    propagate, so the provider is not prompted to redeliver the event.
    """

    def __init__(self, ledger: BookingLedger, email_sender):
        self.ledger = ledger
        self.email_sender = email_sender

    def handle(self, event: Dict[str, Any]) -> ReconciliationResult:
        parsed = parse_payment_event(event)
        logger.info(f"Webhook {event.get('id')} {parsed.provider_type} -> {parsed.event_type.value}, "
                    f"reference {parsed.payment_reference}")
        result = self.ledger.reconcile(parsed.event_type, parsed.payment_reference, parsed.metadata)
        for notification in result.notifications:
            try:
                self.email_sender.send(
                    notification.to,
                    notification.template_id,
                    notification.template_data,
                    notification.from_email,
                )
            except EmailDeliveryError as e:
                logger.error(
                    f"Could not send {notification.audience} e-mail for booking {result.booking_id} "
                    f"({result.confirmation_code}), event {parsed.provider_type}: {e}"
                )
        return result
