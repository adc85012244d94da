#!/usr/bin/env python3
# backend/run_celery_worker.py
"""
Local Celery worker for booking notifications.

Consumes the notifications queue. Start a beat process next to it
(``celery -A salon_engine.tasks.celery_app beat``) so due outbox rows get
picked up every minute.
"""
import os
from pathlib import Path
import sys

backend_dir = Path(__file__).parent
sys.path.insert(0, str(backend_dir))
os.chdir(backend_dir)

from salon_engine.tasks.celery_app import NOTIFICATION_QUEUE, celery_app  # noqa: E402

if __name__ == "__main__":
    queues = os.getenv("CELERY_QUEUES", f"{NOTIFICATION_QUEUE},celery")
    concurrency = os.getenv("CELERY_CONCURRENCY", "2")
    print(f"🚀 Celery worker on queues [{queues}] with concurrency {concurrency}")

    celery_app.worker_main(
        argv=[
            "worker",
            "--loglevel=info",
            f"--concurrency={concurrency}",
            "--max-tasks-per-child=100",
            "-Q",
            queues,
        ]
    )
