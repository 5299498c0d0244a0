"""
Console Notification Service

Used in development: nothing leaves the machine. Each message is logged
in full (which is how OTP login codes reach the developer) and kept in
``sent`` so tests can inspect it.
"""

import asyncio
import logging
import random
import uuid
from typing import Optional

from crustops.services.notifications.base import BaseNotificationService, NotificationResult

logger = logging.getLogger(__name__)


class MockNotificationService(BaseNotificationService):

    def __init__(
        self,
        failure_rate: float = 0.0,
        min_latency: float = 0.0,
        max_latency: float = 0.05,
    ):
        self.failure_rate = failure_rate
        self.min_latency = min_latency
        self.max_latency = max_latency
        self.sent: list[dict] = []
        logger.info(f"MockNotificationService initialized (failure_rate={failure_rate:.0%})")

    @property
    def provider_name(self) -> str:
        return "mock"

    async def _deliver(self, channel: str, to: str, body: str) -> NotificationResult:
        if self.max_latency > 0:
            await asyncio.sleep(random.uniform(self.min_latency, self.max_latency))

        if random.random() < self.failure_rate:
            logger.warning(f"[{channel.upper()}] simulated failure to {to}")
            return NotificationResult(
                success=False,
                error_message=f"Simulated {channel} failure",
                provider=self.provider_name,
            )

        message_id = f"{channel}_mock_{uuid.uuid4().hex[:12]}"
        self.sent.append({"channel": channel, "to": to, "body": body})
        logger.info(f"[{channel.upper()}] To: {to} | {body} (ID: {message_id})")
        return NotificationResult(success=True, message_id=message_id, provider=self.provider_name)

    async def send_sms(self, to_phone: str, message: str) -> NotificationResult:
        return await self._deliver("sms", to_phone, message)

    async def send_email(
        self,
        to_email: str,
        subject: str,
        body_html: str,
        body_text: Optional[str] = None,
    ) -> NotificationResult:
        # Only the subject is logged; the text part duplicates the SMS
        return await self._deliver("email", to_email, subject)

    async def health_check(self) -> bool:
        return True
