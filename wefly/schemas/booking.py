from datetime import date, datetime
from typing import List, Optional, Union

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator


class PassengerCounts(BaseModel):
    model_config = ConfigDict(extra="forbid")

    adults: int = Field(0, ge=0, le=50)
    children: int = Field(0, ge=0, le=50)


class AddonSelection(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str = Field(..., min_length=1, max_length=100)


class Contact(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: Optional[str] = Field(None, max_length=200)
    email: Optional[EmailStr] = None
    phone: Optional[str] = Field(None, max_length=40)

    @field_validator("name", "phone", mode="before")
    @classmethod
    def strip_blank(cls, value):
        if isinstance(value, str):
            value = value.strip()
            return value or None
        return value

    @field_validator("email", mode="before")
    @classmethod
    def blank_email_is_none(cls, value):
        if isinstance(value, str) and not value.strip():
            return None
        return value.strip() if isinstance(value, str) else value


class BookingCreate(BaseModel):
    """
    Request body for creating a booking. Prices and totals are not accepted:
    unknown fields are rejected.
    """

    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    adults: int = Field(0, ge=0, le=50)
    children: int = Field(0, ge=0, le=50)
    addons: List[Union[AddonSelection, str]] = Field(default_factory=list)
    flight_date: date = Field(..., alias="date")
    contact: Contact = Field(default_factory=Contact)

    @property
    def passengers(self) -> PassengerCounts:
        return PassengerCounts(adults=self.adults, children=self.children)

    @property
    def addon_names(self) -> List[str]:
        return [a.strip() if isinstance(a, str) else a.name.strip() for a in self.addons]


class CheckoutResponse(BaseModel):
    id: str  # payment session id, kept for the existing frontend
    url: Optional[str] = None
    booking_id: str
    confirmation_code: str
    status: str
    total_amount: int
    currency: str


class BookingOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    confirmation_code: str
    status: str
    flight_date: date
    adults: int
    children: int
    addons: list
    total_amount: int
    currency: str
    contact_name: Optional[str] = None
    created_at: datetime
    paid_at: Optional[datetime] = None
    checked_in_at: Optional[datetime] = None

    @field_validator("status", mode="before")
    @classmethod
    def status_value(cls, value):
        return getattr(value, "value", value)


class WebhookAck(BaseModel):
    received: bool = True
    outcome: Optional[str] = None


class ExpirySweepResponse(BaseModel):
    expired: List[str]
