"""
Celery Worker

Customer messages and spreadsheet exports run here, off the request path.
They go to separate queues so a slow Excel write never delays an OTP.

Run with:
    celery -A crustops.celery_worker worker -Q notifications,exports --loglevel=info
"""

from celery import Celery

from crustops.core.config import get_settings

settings = get_settings()

celery_app = Celery(
    "crustops",
    broker=settings.redis_url,
    backend=settings.redis_url,
    include=["crustops.tasks"],
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,

    task_routes={
        "crustops.tasks.send_sms_notification": {"queue": "notifications"},
        "crustops.tasks.send_order_confirmation": {"queue": "notifications"},
        "crustops.tasks.export_order_to_excel": {"queue": "exports"},
    },
    task_default_queue="notifications",

    # Exports append to one workbook under a file lock; one at a time per process
    worker_prefetch_multiplier=1,
    worker_concurrency=4,

    result_expires=3600,

    task_acks_late=True,
    task_reject_on_worker_lost=True,
    task_always_eager=settings.celery_always_eager,

    broker_connection_retry_on_startup=True,
)


if __name__ == "__main__":
    celery_app.start()
