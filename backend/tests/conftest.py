# backend/tests/conftest.py
"""
Pytest configuration for the booking engine test-suite.

Tests run against an in-memory SQLite database shared through a StaticPool,
so the FastAPI app, the services and the Celery task helpers all see the
same schema. Tables are recreated for every test.
"""

import os

# Set testing mode BEFORE any salon_engine imports so the engine binds to the test URL
os.environ["IS_TESTING"] = "true"
os.environ.setdefault("PAYSTACK_SECRET_KEY", "")
os.environ["CI"] = "true"

from datetime import datetime, timezone
from decimal import Decimal
from typing import Callable, Iterator, Optional

from fastapi.testclient import TestClient
import pytest
from sqlalchemy.orm import Session

from salon_engine.core.actor import Actor
from salon_engine.core.config import settings
from salon_engine.core.enums import (
    BookingStatus,
    CustomerType,
    PaymentStatus,
    WorkerRole,
    WorkerStatus,
)
from salon_engine.core.retry import RetryPolicy
from salon_engine.database import Base, SessionLocal, engine
from salon_engine.models import Booking, Worker, WorkerAssignment

settings.is_testing = True


def _validate_test_database_url(database_url: str) -> None:
    """Refuse to run the suite against anything but SQLite."""
    if not database_url.startswith("sqlite"):
        raise RuntimeError(f"Refusing to run tests against {database_url}")

_validate_test_database_url(str(engine.url))


@pytest.fixture
def db() -> Iterator[Session]:
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.rollback()
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def no_sleep_policy() -> RetryPolicy:
    """Three attempts with recorded, not real, sleeps."""
    sleeps: list = []
    return RetryPolicy(max_attempts=3, base_delay=0.05, multiplier=2.0, max_delay=1.0, sleep=sleeps.append)


@pytest.fixture
def staff() -> Actor:
    return Actor(id="staff-1", role=WorkerRole.STAFF)


@pytest.fixture
def manager() -> Actor:
    return Actor(id="manager-1", role=WorkerRole.MANAGER)


@pytest.fixture
def admin() -> Actor:
    return Actor(id="admin-1", role=WorkerRole.ADMIN)


@pytest.fixture
def base_time() -> datetime:
    return datetime(2026, 3, 10, 9, 0, tzinfo=timezone.utc)


@pytest.fixture
def make_worker(db: Session) -> Callable[..., Worker]:
    counter = {"n": 0}

    def _make(
        name: Optional[str] = None,
        status: WorkerStatus = WorkerStatus.AVAILABLE,
        is_active: bool = True,
        role: WorkerRole = WorkerRole.STAFF,
        worker_id: Optional[str] = None,
    ) -> Worker:
        counter["n"] += 1
        worker = Worker(
            name=name or f"Worker {counter['n']}",
            email=f"worker{counter['n']}@salon.test",
            current_status=status.value,
            is_active=is_active,
            role=role.value,
        )
        if worker_id:
            worker.id = worker_id
        db.add(worker)
        db.commit()
        return worker

    return _make


@pytest.fixture
def make_booking(db: Session, base_time: datetime) -> Callable[..., Booking]:
    def _make(
        start: Optional[datetime] = None,
        duration: int = 60,
        status: BookingStatus = BookingStatus.SCHEDULED,
        payment_status: PaymentStatus = PaymentStatus.PENDING,
        customer_type: CustomerType = CustomerType.PRE_BOOKED,
        customer_id: Optional[str] = "customer-1",
        customer_name: str = "Ada",
        payment_reference: Optional[str] = None,
        booking_id: Optional[str] = None,
    ) -> Booking:
        booking = Booking(
            scheduled_at=start or base_time,
            duration_minutes=duration,
            status=status.value,
            payment_status=payment_status.value,
            customer_type=customer_type.value,
            customer_id=customer_id,
            customer_name=customer_name,
            payment_reference=payment_reference,
            total_amount=Decimal("5000.00"),
        )
        if booking_id:
            booking.id = booking_id
        db.add(booking)
        db.commit()
        return booking

    return _make


@pytest.fixture
def assign(db: Session) -> Callable[..., WorkerAssignment]:
    """Insert an active assignment directly, bypassing the service."""

    def _assign(booking: Booking, worker: Worker, is_active: bool = True) -> WorkerAssignment:
        assignment = WorkerAssignment(
            booking_id=booking.id,
            worker_id=worker.id,
            starts_at=booking.starts_at,
            ends_at=booking.ends_at,
            is_active=is_active,
        )
        db.add(assignment)
        db.commit()
        return assignment

    return _assign


@pytest.fixture
def client(db: Session) -> Iterator[TestClient]:
    """Test client whose requests share the test session."""
    from salon_engine.api.dependencies import get_db
    from salon_engine.main import app

    def override_get_db() -> Iterator[Session]:
        yield db

    app.dependency_overrides[get_db] = override_get_db
    test_client = TestClient(app)

    yield test_client

    app.dependency_overrides.clear()
    test_client.close()
