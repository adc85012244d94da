# backend/salon_engine/tasks/celery_app.py
"""
Celery application for background notification delivery.

Redis is the broker. The only workload is the outbox, so results are not
stored unless ``CELERY_RESULT_BACKEND`` is set.
"""

import logging
from typing import Any, Type, cast

from celery import Celery, Task
from celery.schedules import crontab
from celery.signals import setup_logging

from ..core.config import settings

logger = logging.getLogger(__name__)

NOTIFICATION_QUEUE = "notifications"


class BaseTask(Task):  # type: ignore[misc]
    """Adds task id and arguments to failure log lines."""

    def on_failure(self, exc: Exception, task_id: str, args: Any, kwargs: Any, einfo: Any) -> None:
        logger.error(
            "Task %s[%s] failed: %s",
            self.name,
            task_id,
            exc,
            extra={"task_id": task_id, "task_name": self.name, "task_args": str(args)},
        )
        super().on_failure(exc, task_id, args, kwargs, einfo)


def create_celery_app() -> Celery:
    app = Celery(
        "salon_engine",
        broker=settings.celery_broker_url,
        backend=settings.celery_result_backend,
        task_cls=cast(Type[Task], BaseTask),
    )
    app.conf.update(
        task_serializer="json",
        accept_content=["json"],
        result_serializer="json",
        timezone=settings.business_timezone,
        enable_utc=True,
        # a lost worker must not lose a notification
        task_acks_late=True,
        task_reject_on_worker_lost=True,
        task_soft_time_limit=60,
        task_time_limit=120,
        worker_prefetch_multiplier=4,
        worker_hijack_root_logger=False,
        broker_transport_options={"visibility_timeout": 3600},
        task_always_eager=settings.is_testing,
        imports=("salon_engine.tasks.notification_tasks",),
        task_routes={"outbox.*": {"queue": NOTIFICATION_QUEUE}},
        beat_schedule={
            "dispatch-pending-outbox": {
                "task": "outbox.dispatch_pending",
                "schedule": crontab(minute="*"),
                "options": {"queue": NOTIFICATION_QUEUE},
            },
        },
    )
    return app


@setup_logging.connect  # type: ignore[misc]
def config_loggers(*args: Any, **kwargs: Any) -> None:
    logging.basicConfig(
        level=settings.log_level, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )


celery_app = create_celery_app()
