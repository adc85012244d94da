#!/usr/bin/env python3
# backend/run_celery_beat.py
"""
Local Celery beat.

Fires ``outbox.dispatch_pending`` once a minute; run it alongside
``run_celery_worker.py``.
"""
import os
from pathlib import Path
import sys

backend_dir = Path(__file__).parent
sys.path.insert(0, str(backend_dir))
os.chdir(backend_dir)

from salon_engine.tasks.celery_app import celery_app  # noqa: E402

if __name__ == "__main__":
    print("⏰ Celery beat scheduling outbox dispatch every minute")
    celery_app.start(argv=["beat", "--loglevel=info"])
