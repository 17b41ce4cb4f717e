import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from starlette.concurrency import run_in_threadpool

from wefly.dependencies import get_driver, get_payment_gateway
from wefly.errors import WebhookSignatureError
from wefly.schemas.booking import WebhookAck
from wefly.services.reconciliation import ReconciliationDriver

router = APIRouter()
logger = logging.getLogger(__name__)


@router.post("/payment-webhook", response_model=WebhookAck)
@router.post("/webhook", response_model=WebhookAck, include_in_schema=False)
async def payment_webhook(
    request: Request,
    gateway=Depends(get_payment_gateway),
    driver: ReconciliationDriver = Depends(get_driver),
):
    payload = await request.body()
    sig_header = request.headers.get("stripe-signature")

    if not gateway.webhook_secret:
        logger.warning("Webhook received but STRIPE_WEBHOOK_SECRET is not set; event not processed")
        return WebhookAck(received=True)

    try:
        event = gateway.parse_event(payload, sig_header)
    except WebhookSignatureError as e:
        raise HTTPException(status_code=400, detail=f"Webhook Error: {e.message}")

    # any outcome, NOT_FOUND included, is acknowledged so the provider stops redelivering
    result = await run_in_threadpool(driver.handle, event)
    return WebhookAck(received=True, outcome=result.outcome.value)
