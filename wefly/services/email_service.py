# wefly/services/email_service.py
import logging
from typing import Any, Dict, Optional

from python_http_client.exceptions import HTTPError
from sendgrid import SendGridAPIClient
from sendgrid.helpers.mail import Mail

from wefly.config import Settings
from wefly.errors import EmailDeliveryError

logger = logging.getLogger(__name__)


class SendGridEmailSender:
    """Sends SendGrid dynamic-template e-mails."""

    def __init__(self, settings: Settings):
        self.default_from = settings.EMAIL_FROM
        self.client: Optional[SendGridAPIClient] = None
        if settings.SENDGRID_API_KEY:
            self.client = SendGridAPIClient(settings.SENDGRID_API_KEY)
            self.client.client.timeout = settings.PROVIDER_TIMEOUT_SECONDS

    def send(self, to: str, template_id: str, template_data: Dict[str, Any], from_email: Optional[str] = None) -> None:
        if self.client is None:
            raise EmailDeliveryError("SendGrid is not configured.", to=to, template_id=template_id)
        message = Mail(from_email=from_email or self.default_from, to_emails=to)
        message.template_id = template_id
        message.dynamic_template_data = template_data
        try:
            response = self.client.send(message)
        except HTTPError as e:
            raise EmailDeliveryError(f"SendGrid rejected the message: {e}", to=to, template_id=template_id) from e
        except OSError as e:
            # connection errors and timeouts from urllib
            raise EmailDeliveryError(f"SendGrid unreachable: {e}", to=to, template_id=template_id) from e
        logger.info(f"Email {template_id} sent to {to} (status {response.status_code})")
