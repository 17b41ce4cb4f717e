# wefly/services/stripe_service.py
import json
import logging
from typing import Dict, Optional

import stripe
from pydantic import BaseModel

from wefly.config import Settings
from wefly.errors import PaymentProviderError, WebhookSignatureError

logger = logging.getLogger(__name__)


class PaymentSession(BaseModel):
    id: str
    url: Optional[str] = None


class StripeGateway:
    """Thin wrapper over Stripe Checkout: session creation, expiry and webhook parsing."""

    def __init__(self, settings: Settings):
        self.settings = settings
        self.api_key = settings.STRIPE_SECRET_KEY
        self.webhook_secret = settings.STRIPE_WEBHOOK_SECRET
        # the core never retries; the provider already redelivers webhooks
        stripe.max_network_retries = 0
        stripe.default_http_client = stripe.new_default_http_client(timeout=settings.PROVIDER_TIMEOUT_SECONDS)

    def _session_params(self, amount: int, currency: str, metadata: Dict[str, str], description: str,
                        customer_email: Optional[str], with_oxxo: bool) -> dict:
        params = {
            "mode": "payment",
            "locale": "es",
            "currency": currency,
            "line_items": [{
                "quantity": 1,
                "price_data": {
                    "currency": currency,
                    "unit_amount": amount,
                    "product_data": {
                        "name": description,
                        "metadata": {
                            "pax": metadata.get("pax", ""),
                            "flight_date": metadata.get("flight_date", ""),
                        },
                    },
                },
            }],
            "allow_promotion_codes": False,
            "billing_address_collection": "auto",
            "phone_number_collection": {"enabled": True},
            "payment_method_types": ["card"],
            "success_url": self.settings.success_url,
            "cancel_url": self.settings.cancel_url,
            "metadata": metadata,
            "payment_intent_data": {"metadata": metadata},
        }
        if with_oxxo:
            params["payment_method_types"] = ["card", "oxxo"]
            params["payment_method_options"] = {
                "oxxo": {"expires_after_days": self.settings.OXXO_EXPIRES_AFTER_DAYS}
            }
        if customer_email:
            params["customer_email"] = customer_email
        return params

    def create_session(self, amount: int, currency: str, metadata: Dict[str, str], description: str,
                       customer_email: Optional[str] = None) -> PaymentSession:
        with_oxxo = self.settings.OXXO_ENABLED
        try:
            session = stripe.checkout.Session.create(
                api_key=self.api_key,
                **self._session_params(amount, currency, metadata, description, customer_email, with_oxxo),
            )
        except stripe.InvalidRequestError as e:
            if not (with_oxxo and self.settings.OXXO_FALLBACK_TO_CARD):
                logger.error(f"[Stripe Error] session create rejected for booking {metadata.get('booking_id')}: {e}")
                raise PaymentProviderError("Payment session could not be created.", booking_id=metadata.get("booking_id")) from e
            logger.warning(f"[Stripe] OXXO session rejected for booking {metadata.get('booking_id')}, retrying card only: {e}")
            session = self._create_card_only(amount, currency, metadata, description, customer_email)
        except stripe.StripeError as e:
            logger.error(f"[Stripe Error] session create failed for booking {metadata.get('booking_id')}: {e}")
            raise PaymentProviderError("Payment session could not be created.", booking_id=metadata.get("booking_id")) from e
        return PaymentSession(id=session.id, url=session.url)

    def _create_card_only(self, amount, currency, metadata, description, customer_email):
        try:
            return stripe.checkout.Session.create(
                api_key=self.api_key,
                **self._session_params(amount, currency, metadata, description, customer_email, False),
            )
        except stripe.StripeError as e:
            logger.error(f"[Stripe Error] card-only session create failed for booking {metadata.get('booking_id')}: {e}")
            raise PaymentProviderError("Payment session could not be created.", booking_id=metadata.get("booking_id")) from e

    def expire_session(self, session_id: str) -> None:
        try:
            stripe.checkout.Session.expire(session_id, api_key=self.api_key)
        except stripe.StripeError as e:
            logger.error(f"[Stripe Error] could not expire orphaned session {session_id}: {e}")
            raise PaymentProviderError("Payment session could not be expired.", payment_reference=session_id) from e

    def parse_event(self, payload: bytes, sig_header: Optional[str]) -> dict:
        """
        Verify the ``Stripe-Signature`` header and return the event as a plain dict.
        """
        if not self.webhook_secret:
            raise WebhookSignatureError("Webhook secret is not configured.")
        if not sig_header:
            raise WebhookSignatureError("Missing Stripe-Signature header.")
        if isinstance(payload, bytes):
            try:
                payload = payload.decode("utf-8")
            except UnicodeDecodeError as e:
                raise WebhookSignatureError("Invalid payload encoding.") from e
        try:
            stripe.Webhook.construct_event(payload, sig_header, self.webhook_secret)
        except stripe.SignatureVerificationError as e:
            logger.warning(f"[Stripe Webhook Error] Invalid signature: {e}")
            raise WebhookSignatureError("Invalid signature.") from e
        except ValueError as e:
            logger.warning(f"[Stripe Webhook Error] Invalid payload: {e}")
            raise WebhookSignatureError("Invalid payload.") from e
        try:
            event = json.loads(payload)
        except ValueError as e:
            logger.warning(f"[Stripe Webhook Error] Invalid payload: {e}")
            raise WebhookSignatureError("Invalid payload.") from e
        if not isinstance(event, dict) or "type" not in event:
            raise WebhookSignatureError("Invalid payload.")
        return event
