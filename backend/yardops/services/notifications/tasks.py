"""
Celery tasks for the e-mail outbox.

The request path delivers each outbox row once, right after commit. Rows
that failed there are picked up by ``retry_failed_emails`` on a beat
schedule until they are sent or run out of attempts.
"""

import asyncio
from typing import Any

from celery import Celery, Task, shared_task

from yardops.core.config import get_settings
from yardops.core.logging import get_logger
from yardops.database.connection import get_session
from yardops.services.notifications.service import NotificationService

logger = get_logger(__name__)
settings = get_settings()

celery_app = Celery("yardops", broker=settings.celery_broker_url)
celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    timezone=settings.business_timezone,
    beat_schedule={
        "retry-failed-emails": {
            "task": "notifications.retry_failed_emails",
            "schedule": float(settings.outbox_retry_interval_seconds),
        },
    },
)


class OutboxTask(Task):
    """Base task that logs outbox task outcomes."""

    def on_failure(
        self,
        exc: Exception,
        task_id: str,
        args: tuple,
        kwargs: dict,
        einfo: Any,
    ) -> None:
        logger.error(
            "Outbox task failed",
            task_id=task_id,
            exception=str(exc),
            exc_info=einfo,
        )

    def on_success(self, retval: Any, task_id: str, args: tuple, kwargs: dict) -> None:
        logger.info("Outbox task completed", task_id=task_id, result=retval)


async def _retry_failed(limit: int) -> dict[str, int]:
    async with get_session() as session:
        service = NotificationService(session)
        return await service.retry_failed(limit=limit)


@shared_task(
    bind=True,
    base=OutboxTask,
    name="notifications.retry_failed_emails",
    time_limit=300,
    soft_time_limit=240,
)
def retry_failed_emails(self: Task, limit: int = 50) -> dict[str, int]:
    """
    Re-send failed outbox rows.

    Args:
        self: Task instance
        limit: Maximum rows handled per run

    Returns:
        Counts of rows retried, sent and still failing
    """
    logger.info("Retrying failed emails", task_id=self.request.id, limit=limit)
    return asyncio.run(_retry_failed(limit))
