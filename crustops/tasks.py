"""
Celery Tasks

Customer messages (``notifications`` queue) and the spreadsheet ledger
(``exports`` queue). The API only ever calls ``.delay``; a task failure
never reaches the customer's HTTP request.
"""

import asyncio
import logging
import time
from datetime import datetime

from crustops.celery_worker import celery_app
from crustops.services.excel_manager import ExcelManager
from crustops.services.notifications import get_notification_service, OrderConfirmation

logger = logging.getLogger(__name__)


# =============================================================================
# NOTIFICATIONS
# =============================================================================

@celery_app.task(bind=True, max_retries=3, default_retry_delay=5)
def send_sms_notification(self, to_phone: str, message: str) -> dict:
    """Text a customer; a provider failure is retried up to three times."""
    result = asyncio.run(get_notification_service().send_sms(to_phone, message))

    if not result.success:
        logger.warning(f"SMS to {to_phone} failed (task {self.request.id}): {result.error_message}")
        raise self.retry(exc=RuntimeError(result.error_message or "SMS failed"))

    return result.to_dict()


@celery_app.task(bind=True, max_retries=3, default_retry_delay=5)
def send_order_confirmation(self, confirmation_data: dict) -> dict:
    confirmation = OrderConfirmation(**confirmation_data)
    result = asyncio.run(get_notification_service().send_order_confirmation(confirmation))

    if not result.success:
        logger.warning(f"Confirmation for #{confirmation.short_id} failed (task {self.request.id})")
        raise self.retry(exc=RuntimeError(result.error_message or "Confirmation failed"))

    return result.to_dict()


# =============================================================================
# EXPORTS
# =============================================================================

@celery_app.task(
    bind=True,
    max_retries=3,
    default_retry_delay=5,
    autoretry_for=(OSError,),
    retry_backoff=True,
)
def export_order_to_excel(self, order_data: dict) -> dict:
    """
    Append a placed order to the spreadsheet ledger.

    ``ExcelManager.export_order`` reports lock timeouts and write errors
    in its result; an unusable data directory raises and is retried.
    """
    order_id = order_data.get("order_id", "unknown")
    started = time.perf_counter()

    result = ExcelManager.export_order(order_data)

    result["task_id"] = self.request.id
    result["processing_time_seconds"] = round(time.perf_counter() - started, 3)

    if result["success"]:
        logger.info(f"Order {order_id} in ledger after {result['processing_time_seconds']}s")
    else:
        logger.warning(f"Order {order_id} not in ledger: {result['message']}")

    return result


@celery_app.task
def health_check() -> dict:
    """Round-trip check that a worker is consuming tasks."""
    return {"status": "healthy", "worker": "celery", "timestamp": datetime.now().isoformat()}
