"""
Notification services.

``get_notification_service()`` returns the console service in development
and the Twilio/SendGrid service in staging and production. The instance
is cached per process; the Celery worker and the API each hold one.
"""

import logging
from functools import lru_cache

from crustops.core.config import get_settings
from crustops.services.notifications.base import (
    BaseNotificationService,
    NotificationResult,
    OrderConfirmation,
)
from crustops.services.notifications.mock import MockNotificationService

logger = logging.getLogger(__name__)


@lru_cache()
def get_notification_service() -> BaseNotificationService:
    settings = get_settings()

    if not settings.use_real_services:
        service = MockNotificationService(failure_rate=settings.mock_notification_failure_rate)
    else:
        # Provider SDKs are only imported where they are used
        from crustops.services.notifications.real import RealNotificationService
        service = RealNotificationService()

    logger.info(f"Notification service: {service.provider_name} ({settings.env_mode.value})")
    return service


def reset_notification_service() -> None:
    get_notification_service.cache_clear()


__all__ = [
    "get_notification_service",
    "reset_notification_service",
    "BaseNotificationService",
    "NotificationResult",
    "OrderConfirmation",
    "MockNotificationService",
]
