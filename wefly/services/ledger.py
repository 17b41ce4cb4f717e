"""
Booking ledger: owns the Booking record and its lifecycle.

    PENDING --payment succeeded--> PAID --staff check-in--> CHECKED_IN
    PENDING --payment failed-----> FAILED
    PENDING --expired / sweep----> EXPIRED

Every transition is a compare-and-swap on ``status`` in the database, so
concurrent webhook deliveries for the same booking produce exactly one
transition and one set of notifications.
"""
import logging
import uuid
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import timedelta
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from wefly.config import Settings
from wefly.db import crud
from wefly.errors import InvalidStateError, NotFoundError, PaymentProviderError, PersistenceError
from wefly.models.booking import Booking, BookingStatus, utcnow
from wefly.schemas.booking import BookingCreate
from wefly.services.confirmation import generate_confirmation_code, is_confirmation_code
from wefly.services.pricing import describe_booking, price_booking

logger = logging.getLogger(__name__)

MAX_CODE_ATTEMPTS = 5


class PaymentEventType(str, Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    EXPIRED = "expired"
    UNKNOWN = "unknown"


class ReconciliationOutcome(str, Enum):
    APPLIED = "applied"
    ALREADY_PROCESSED = "already_processed"
    NOT_FOUND = "not_found"
    IGNORED = "ignored"
    ANOMALY = "anomaly"


EVENT_TARGETS = {
    PaymentEventType.SUCCEEDED: BookingStatus.PAID,
    PaymentEventType.FAILED: BookingStatus.FAILED,
    PaymentEventType.EXPIRED: BookingStatus.EXPIRED,
}

# statuses that already reflect each target; anything else outside PENDING is an anomaly
SETTLED_AS = {
    BookingStatus.PAID: {BookingStatus.PAID, BookingStatus.CHECKED_IN},
    BookingStatus.FAILED: {BookingStatus.FAILED, BookingStatus.EXPIRED},
    BookingStatus.EXPIRED: {BookingStatus.FAILED, BookingStatus.EXPIRED},
}


def next_status(status: BookingStatus, event: PaymentEventType) -> BookingStatus:
    """Total over every (status, event) pair; only PENDING ever moves."""
    target = EVENT_TARGETS.get(event)
    if target is None or status != BookingStatus.PENDING:
        return status
    return target


def classify(status: BookingStatus, event: PaymentEventType) -> ReconciliationOutcome:
    target = EVENT_TARGETS.get(event)
    if target is None:
        return ReconciliationOutcome.IGNORED
    if status == BookingStatus.PENDING:
        return ReconciliationOutcome.APPLIED
    if status in SETTLED_AS[target]:
        return ReconciliationOutcome.ALREADY_PROCESSED
    return ReconciliationOutcome.ANOMALY


class NotificationRequest(BaseModel):
    audience: str  # "customer" or "staff"
    to: str
    template_id: str
    template_data: Dict[str, Any] = Field(default_factory=dict)
    from_email: Optional[str] = None


class ReconciliationResult(BaseModel):
    outcome: ReconciliationOutcome
    event_type: PaymentEventType
    booking_id: Optional[str] = None
    confirmation_code: Optional[str] = None
    status: Optional[BookingStatus] = None
    notifications: List[NotificationRequest] = Field(default_factory=list)


@dataclass
class PendingCheckout:
    booking: Booking
    session_id: str
    checkout_url: Optional[str] = None


def format_amount(amount: int, currency: str) -> str:
    return f"${amount / 100:,.2f} {currency.upper()}"


class BookingLedger:
    def __init__(self, db: Session, settings: Settings, gateway, rng=None, clock=None):
        self.db = db
        self.settings = settings
        self.gateway = gateway
        self.rng = rng
        self.clock = clock or utcnow

    @contextmanager
    def _storage(self, action: str, **context):
        try:
            yield
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Persistence failure during {action} {context}: {e}")
            raise PersistenceError("Booking storage is unavailable.", **context) from e

    # ---- creation ----

    def create_pending(self, booking_input: BookingCreate) -> PendingCheckout:
        passengers = booking_input.passengers
        addon_names = booking_input.addon_names
        priced = price_booking(passengers, addon_names, self.settings.PRICE_TABLE)
        contact = booking_input.contact

        booking = self._insert_pending(booking_input, priced)
        metadata = {
            "booking_id": booking.id,
            "confirmation_code": booking.confirmation_code,
            "customer_name": contact.name or "",
            "customer_email": contact.email or "",
            "customer_phone": contact.phone or "",
            "flight_date": booking.flight_date.isoformat(),
            "adults": str(booking.adults),
            "children": str(booking.children),
            "pax": str(booking.passengers),
            "server_total": str(booking.total_amount),
        }

        try:
            session = self.gateway.create_session(
                amount=booking.total_amount,
                currency=booking.currency,
                metadata=metadata,
                description=describe_booking(passengers, addon_names),
                customer_email=contact.email,
            )
        except PaymentProviderError:
            logger.error(f"Payment session failed for booking {booking.id} ({booking.confirmation_code}); marking FAILED")
            try:
                with self._storage("fail-on-session-error", booking_id=booking.id):
                    crud.transition_status(self.db, booking.id, BookingStatus.PENDING, BookingStatus.FAILED)
            except PersistenceError:
                # left PENDING; the expiry sweep settles it
                pass
            raise

        try:
            with self._storage("set-payment-reference", booking_id=booking.id, payment_reference=session.id):
                crud.set_payment_reference(self.db, booking.id, session.id)
                booking = crud.get_booking(self.db, booking.id)
        except PersistenceError:
            self._cancel_orphan(session.id, booking.id)
            raise

        logger.info(
            f"Booking {booking.id} ({booking.confirmation_code}) pending, "
            f"total {booking.total_amount} {booking.currency}, session {session.id}"
        )
        return PendingCheckout(booking=booking, session_id=session.id, checkout_url=session.url)

    def _insert_pending(self, booking_input: BookingCreate, priced) -> Booking:
        contact = booking_input.contact
        for attempt in range(1, MAX_CODE_ATTEMPTS + 1):
            booking = Booking(
                id=str(uuid.uuid4()),
                confirmation_code=generate_confirmation_code(
                    booking_input.flight_date, self.rng, prefix=self.settings.CONFIRMATION_PREFIX
                ),
                adults=booking_input.adults,
                children=booking_input.children,
                addons=[line.model_dump(mode="json", exclude={"kind"}) for line in priced.lines if line.kind == "addon"],
                flight_date=booking_input.flight_date,
                contact_name=contact.name,
                contact_email=contact.email,
                contact_phone=contact.phone,
                total_amount=priced.total_amount,
                currency=self.settings.CURRENCY,
                status=BookingStatus.PENDING,
                created_at=self.clock(),
            )
            try:
                return crud.create_booking(self.db, booking)
            except IntegrityError:
                self.db.rollback()
                logger.warning(f"Confirmation code collision on {booking.confirmation_code} (attempt {attempt})")
            except SQLAlchemyError as e:
                self.db.rollback()
                logger.error(f"Could not persist booking {booking.id}: {e}")
                raise PersistenceError("Booking storage is unavailable.", booking_id=booking.id) from e
        raise PersistenceError("Could not allocate a unique confirmation code.")

    def _cancel_orphan(self, session_id: str, booking_id: str) -> None:
        try:
            self.gateway.expire_session(session_id)
            logger.warning(f"Expired orphaned payment session {session_id} for booking {booking_id}")
        except PaymentProviderError:
            logger.error(f"Orphaned payment session {session_id} for booking {booking_id} needs manual review")

    # ---- lookups ----

    def get(self, id_or_code: str) -> Booking:
        value = id_or_code.strip()
        with self._storage("lookup", key=value):
            if is_confirmation_code(value.upper()):
                booking = crud.get_booking_by_code(self.db, value.upper())
            else:
                booking = crud.get_booking(self.db, value)
        if booking is None:
            raise NotFoundError("Booking not found.", key=value)
        return booking

    def _find_for_event(self, payment_reference: Optional[str], metadata: Dict[str, Any]) -> Optional[Booking]:
        booking = None
        if payment_reference:
            booking = crud.get_booking_by_reference(self.db, payment_reference)
        if booking is None and metadata.get("booking_id"):
            booking = crud.get_booking(self.db, str(metadata["booking_id"]))
        if booking is None and metadata.get("confirmation_code"):
            booking = crud.get_booking_by_code(self.db, str(metadata["confirmation_code"]))
        return booking

    # ---- reconciliation ----

    def reconcile(
        self,
        event_type: PaymentEventType,
        payment_reference: Optional[str],
        metadata: Optional[Dict[str, Any]] = None,
    ) -> ReconciliationResult:
        metadata = metadata or {}
        if event_type not in EVENT_TARGETS:
            logger.info(f"Ignoring {event_type.value} event for reference {payment_reference}")
            return ReconciliationResult(outcome=ReconciliationOutcome.IGNORED, event_type=event_type)

        context = {"payment_reference": payment_reference, "event_type": event_type.value}
        with self._storage("reconcile-lookup", **context):
            booking = self._find_for_event(payment_reference, metadata)
        if booking is None:
            logger.warning(f"No booking for {event_type.value} event, reference {payment_reference}, metadata {metadata}")
            return ReconciliationResult(outcome=ReconciliationOutcome.NOT_FOUND, event_type=event_type)

        target = EVENT_TARGETS[event_type]
        if booking.status == BookingStatus.PENDING:
            values = {"paid_at": self.clock()} if target == BookingStatus.PAID else {}
            with self._storage("reconcile-transition", booking_id=booking.id, **context):
                won = crud.transition_status(self.db, booking.id, BookingStatus.PENDING, target, **values)
                booking = crud.get_booking(self.db, booking.id)
            if won:
                logger.info(f"Booking {booking.id} ({booking.confirmation_code}) PENDING -> {target.value} "
                            f"on {event_type.value}, reference {payment_reference}")
                return ReconciliationResult(
                    outcome=ReconciliationOutcome.APPLIED,
                    event_type=event_type,
                    booking_id=booking.id,
                    confirmation_code=booking.confirmation_code,
                    status=booking.status,
                    notifications=self._notifications(booking, target),
                )

        outcome = classify(booking.status, event_type)
        if outcome == ReconciliationOutcome.ANOMALY:
            logger.error(f"Anomalous {event_type.value} event for booking {booking.id} "
                         f"({booking.confirmation_code}) in status {booking.status.value}, reference {payment_reference}")
        else:
            logger.info(f"Event {event_type.value} already applied to booking {booking.id} ({booking.status.value})")
        return ReconciliationResult(
            outcome=outcome,
            event_type=event_type,
            booking_id=booking.id,
            confirmation_code=booking.confirmation_code,
            status=booking.status,
        )

    def template_data(self, booking: Booking) -> Dict[str, Any]:
        return {
            "confirmation_code": booking.confirmation_code,
            "booking_id": booking.id,
            "customer_name": booking.contact_name or "",
            "customer_email": booking.contact_email or "",
            "customer_phone": booking.contact_phone or "",
            "flight_date": booking.flight_date.isoformat(),
            "adults": booking.adults,
            "children": booking.children,
            "addons": [addon["name"] for addon in booking.addons or []],
            "total": format_amount(booking.total_amount, booking.currency),
            "status": booking.status.value,
        }

    def _notifications(self, booking: Booking, target: BookingStatus) -> List[NotificationRequest]:
        s = self.settings
        if target == BookingStatus.PAID:
            customer_template, staff_template = s.SENDGRID_TEMPLATE_CUSTOMER_CONFIRMED, s.SENDGRID_TEMPLATE_STAFF_CONFIRMED
        elif target == BookingStatus.FAILED:
            customer_template, staff_template = s.SENDGRID_TEMPLATE_CUSTOMER_FAILED, s.SENDGRID_TEMPLATE_STAFF_FAILED
        else:
            return []

        data = self.template_data(booking)
        requests = []
        if booking.contact_email and customer_template:
            requests.append(NotificationRequest(
                audience="customer", to=booking.contact_email, template_id=customer_template,
                template_data=data, from_email=s.EMAIL_FROM,
            ))
        elif booking.contact_email:
            logger.warning(f"No customer template configured for {target.value}; booking {booking.id} not e-mailed")
        if s.STAFF_NOTIFICATION_EMAIL and staff_template:
            requests.append(NotificationRequest(
                audience="staff", to=s.STAFF_NOTIFICATION_EMAIL, template_id=staff_template,
                template_data=data, from_email=s.EMAIL_FROM,
            ))
        return requests

    # ---- staff actions ----

    def check_in(self, confirmation_code: str) -> Booking:
        code = confirmation_code.strip().upper()
        with self._storage("check-in", confirmation_code=code):
            booking = crud.get_booking_by_code(self.db, code)
            if booking is None:
                raise NotFoundError("Booking not found.", confirmation_code=code)
            if booking.status == BookingStatus.PAID:
                crud.transition_status(self.db, booking.id, BookingStatus.PAID, BookingStatus.CHECKED_IN,
                                       checked_in_at=self.clock())
                booking = crud.get_booking(self.db, booking.id)
        if booking.status == BookingStatus.CHECKED_IN:
            logger.info(f"Booking {booking.id} ({code}) checked in")
            return booking
        raise InvalidStateError(f"Booking is {booking.status.value}, not PAID.", confirmation_code=code)

    def expire_stale(self, now=None) -> List[Booking]:
        cutoff = (now or self.clock()) - timedelta(minutes=self.settings.PENDING_EXPIRY_MINUTES)
        expired = []
        with self._storage("expiry-sweep"):
            candidates = crud.list_stale_pending(self.db, cutoff)
        for booking in candidates:
            with self._storage("expire", booking_id=booking.id):
                if not crud.transition_status(self.db, booking.id, BookingStatus.PENDING, BookingStatus.EXPIRED):
                    continue
                booking = crud.get_booking(self.db, booking.id)
            expired.append(booking)
            logger.info(f"Booking {booking.id} ({booking.confirmation_code}) expired unpaid")
            if booking.payment_reference:
                try:
                    self.gateway.expire_session(booking.payment_reference)
                except PaymentProviderError:
                    logger.warning(f"Session {booking.payment_reference} could not be expired at the provider")
        return expired
