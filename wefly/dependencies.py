import secrets
from functools import lru_cache
from typing import Optional

from fastapi import Depends, Header, HTTPException
from sqlalchemy.orm import Session

from wefly.config import Settings, get_settings
from wefly.db.session import get_db
from wefly.services.email_service import SendGridEmailSender
from wefly.services.ledger import BookingLedger
from wefly.services.reconciliation import ReconciliationDriver
from wefly.services.stripe_service import StripeGateway


@lru_cache
def get_payment_gateway() -> StripeGateway:
    return StripeGateway(get_settings())


@lru_cache
def get_email_sender() -> SendGridEmailSender:
    return SendGridEmailSender(get_settings())


def get_ledger(
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
    gateway=Depends(get_payment_gateway),
) -> BookingLedger:
    return BookingLedger(db, settings, gateway)


def get_driver(
    ledger: BookingLedger = Depends(get_ledger),
    email_sender=Depends(get_email_sender),
) -> ReconciliationDriver:
    return ReconciliationDriver(ledger, email_sender)


def require_staff(
    x_staff_token: Optional[str] = Header(None),
    settings: Settings = Depends(get_settings),
):
    if settings.STAFF_API_TOKEN and not secrets.compare_digest(x_staff_token or "", settings.STAFF_API_TOKEN):
        raise HTTPException(status_code=401, detail="Staff token required.")
