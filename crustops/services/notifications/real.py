"""
Twilio / SendGrid Notification Service

Used in staging and production. Both SDKs are blocking, so every call
runs in a worker thread. A channel whose credentials are missing reports
failure instead of raising, which lets the Celery task decide to retry.
"""

import asyncio
import logging
from typing import Optional

from sendgrid import SendGridAPIClient
from sendgrid.helpers.mail import Mail
from twilio.base.exceptions import TwilioException
from twilio.rest import Client as TwilioClient

from crustops.core.config import get_settings
from crustops.services.notifications.base import BaseNotificationService, NotificationResult

logger = logging.getLogger(__name__)

SENDGRID_ACCEPTED = (200, 201, 202)


class RealNotificationService(BaseNotificationService):

    def __init__(self):
        settings = get_settings()

        self.twilio_client = None
        self.twilio_from_number = settings.twilio_phone_number
        if settings.twilio_account_sid and settings.twilio_auth_token:
            self.twilio_client = TwilioClient(settings.twilio_account_sid, settings.twilio_auth_token)
        else:
            logger.warning("Twilio credentials not configured - SMS disabled")

        self.sendgrid_client = None
        self.sendgrid_from_email = settings.sendgrid_from_email
        if settings.sendgrid_api_key:
            self.sendgrid_client = SendGridAPIClient(settings.sendgrid_api_key)
        else:
            logger.warning("SendGrid API key not configured - email disabled")

    @property
    def provider_name(self) -> str:
        return "real"

    async def send_sms(self, to_phone: str, message: str) -> NotificationResult:
        if self.twilio_client is None:
            return NotificationResult(success=False, error_message="Twilio not configured", provider="twilio")

        try:
            sent = await asyncio.to_thread(
                self.twilio_client.messages.create,
                body=message,
                from_=self.twilio_from_number,
                to=to_phone,
            )
        except TwilioException as e:
            logger.error(f"Twilio rejected SMS to {to_phone}: {e}")
            return NotificationResult(success=False, error_message=str(e), provider="twilio")

        logger.info(f"SMS to {to_phone} queued at Twilio: {sent.sid}")
        return NotificationResult(success=True, message_id=sent.sid, provider="twilio")

    async def send_email(
        self,
        to_email: str,
        subject: str,
        body_html: str,
        body_text: Optional[str] = None,
    ) -> NotificationResult:
        if self.sendgrid_client is None:
            return NotificationResult(success=False, error_message="SendGrid not configured", provider="sendgrid")

        mail = Mail(
            from_email=self.sendgrid_from_email,
            to_emails=to_email,
            subject=subject,
            html_content=body_html,
            plain_text_content=body_text,
        )
        try:
            response = await asyncio.to_thread(self.sendgrid_client.send, mail)
        except Exception as e:
            # python-http-client raises HTTPError subclasses per status code
            logger.error(f"SendGrid rejected email to {to_email}: {e}")
            return NotificationResult(success=False, error_message=str(e), provider="sendgrid")

        accepted = response.status_code in SENDGRID_ACCEPTED
        logger.info(f"Email to {to_email}: HTTP {response.status_code}")
        return NotificationResult(
            success=accepted,
            message_id=response.headers.get("X-Message-Id"),
            error_message=None if accepted else f"HTTP {response.status_code}",
            provider="sendgrid",
        )

    async def health_check(self) -> bool:
        return self.twilio_client is not None and self.sendgrid_client is not None
