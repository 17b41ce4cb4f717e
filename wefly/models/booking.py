import datetime
import enum
import uuid

from sqlalchemy import Column, Date, DateTime, Enum, Integer, JSON, String
from sqlalchemy.orm import declarative_base

Base = declarative_base()


class BookingStatus(str, enum.Enum):
    PENDING = "PENDING"
    PAID = "PAID"
    CHECKED_IN = "CHECKED_IN"
    FAILED = "FAILED"
    EXPIRED = "EXPIRED"


def utcnow():
    return datetime.datetime.now(datetime.timezone.utc).replace(tzinfo=None)


class Booking(Base):
    __tablename__ = "bookings"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    confirmation_code = Column(String(32), nullable=False, unique=True, index=True)
    adults = Column(Integer, nullable=False, default=0)
    children = Column(Integer, nullable=False, default=0)
    addons = Column(JSON, nullable=False, default=list)
    flight_date = Column(Date, nullable=False)
    contact_name = Column(String)
    contact_email = Column(String)
    contact_phone = Column(String)
    total_amount = Column(Integer, nullable=False)
    currency = Column(String(8), nullable=False, default="mxn")
    payment_reference = Column(String, index=True)
    status = Column(Enum(BookingStatus, native_enum=False, length=16), nullable=False, default=BookingStatus.PENDING)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)
    paid_at = Column(DateTime)
    checked_in_at = Column(DateTime)

    @property
    def passengers(self) -> int:
        return (self.adults or 0) + (self.children or 0)
