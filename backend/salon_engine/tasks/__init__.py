# backend/salon_engine/tasks/__init__.py
"""
Celery tasks package for the salon booking engine.

Contains the outbox delivery tasks that hand booking state-change facts to
the notification collaborator.
"""
