from typing import List, Optional

from sqlalchemy import update
from sqlalchemy.orm import Session

from wefly.models.booking import Booking, BookingStatus, utcnow


def create_booking(db: Session, booking: Booking) -> Booking:
    db.add(booking)
    db.commit()
    db.refresh(booking)
    return booking


def get_booking(db: Session, booking_id: str) -> Optional[Booking]:
    return db.query(Booking).populate_existing().filter(Booking.id == booking_id).first()


def get_booking_by_code(db: Session, confirmation_code: str) -> Optional[Booking]:
    return db.query(Booking).populate_existing().filter(Booking.confirmation_code == confirmation_code).first()


def get_booking_by_reference(db: Session, payment_reference: str) -> Optional[Booking]:
    return db.query(Booking).populate_existing().filter(Booking.payment_reference == payment_reference).first()


def set_payment_reference(db: Session, booking_id: str, payment_reference: str) -> bool:
    """Attach the provider session id once; later calls are no-ops."""
    result = db.execute(
        update(Booking)
        .where(Booking.id == booking_id, Booking.payment_reference.is_(None))
        .values(payment_reference=payment_reference, updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    db.commit()
    return result.rowcount == 1


def transition_status(
    db: Session,
    booking_id: str,
    from_status: BookingStatus,
    to_status: BookingStatus,
    **values,
) -> bool:
    """
    Compare-and-swap on ``status``. Returns True only for the caller whose
    UPDATE actually matched the expected current status.
    """
    result = db.execute(
        update(Booking)
        .where(Booking.id == booking_id, Booking.status == from_status)
        .values(status=to_status, updated_at=utcnow(), **values)
        .execution_options(synchronize_session=False)
    )
    db.commit()
    return result.rowcount == 1


def list_stale_pending(db: Session, created_before) -> List[Booking]:
    return (
        db.query(Booking)
        .filter(Booking.status == BookingStatus.PENDING, Booking.created_at < created_before)
        .order_by(Booking.created_at)
        .all()
    )
