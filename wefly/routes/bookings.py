import logging

from fastapi import APIRouter, Body, Depends

from wefly.dependencies import get_ledger, require_staff
from wefly.schemas.booking import BookingCreate, BookingOut, CheckoutResponse, ExpirySweepResponse
from wefly.services.ledger import BookingLedger

router = APIRouter()
logger = logging.getLogger(__name__)


@router.post("/bookings", response_model=CheckoutResponse)
@router.post("/create-checkout-session", response_model=CheckoutResponse, include_in_schema=False)
def create_booking(booking: BookingCreate = Body(...), ledger: BookingLedger = Depends(get_ledger)):
    pending = ledger.create_pending(booking)
    saved = pending.booking
    return CheckoutResponse(
        id=pending.session_id,
        url=pending.checkout_url,
        booking_id=saved.id,
        confirmation_code=saved.confirmation_code,
        status=saved.status.value,
        total_amount=saved.total_amount,
        currency=saved.currency,
    )


@router.post("/bookings/expire-stale", response_model=ExpirySweepResponse, dependencies=[Depends(require_staff)])
def expire_stale_bookings(ledger: BookingLedger = Depends(get_ledger)):
    expired = ledger.expire_stale()
    logger.info(f"Expiry sweep expired {len(expired)} booking(s)")
    return {"expired": [b.confirmation_code for b in expired]}


@router.get("/bookings/{id_or_code}", response_model=BookingOut)
def get_booking(id_or_code: str, ledger: BookingLedger = Depends(get_ledger)):
    return ledger.get(id_or_code)


@router.post("/bookings/{code}/check-in", response_model=BookingOut, dependencies=[Depends(require_staff)])
def check_in(code: str, ledger: BookingLedger = Depends(get_ledger)):
    return ledger.check_in(code)
