"""
Prometheus metrics for the salon booking engine.

Service timings are fed by ``@BaseService.measure_operation``; the domain
counters below are incremented by the assignment, reconciliation and outbox
code paths. Everything lives in a dedicated registry exposed at ``/metrics``.
"""

from typing import Optional, cast

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Histogram,
    generate_latest,
)

# kept apart from the global registry so tests and workers can import freely
REGISTRY = CollectorRegistry()

service_operation_duration_seconds = Histogram(
    "salon_service_operation_duration_seconds",
    "Service operation duration in seconds",
    ["service", "operation"],
    registry=REGISTRY,
    buckets=(0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5),
)

service_operations_total = Counter(
    "salon_service_operations_total",
    "Total number of service operations",
    ["service", "operation", "status"],
    registry=REGISTRY,
)

errors_total = Counter(
    "salon_errors_total",
    "Total number of errors",
    ["service", "operation", "error_type"],
    registry=REGISTRY,
)

worker_assignment_total = Counter(
    "salon_worker_assignment_total",
    "Worker assignment attempts by outcome",
    ["outcome"],  # assigned | conflict | unavailable | invalid | exhausted
    registry=REGISTRY,
)

assignment_retry_total = Counter(
    "salon_assignment_retry_total",
    "Transient failures retried inside the assignment transaction",
    ["reason"],
    registry=REGISTRY,
)

payment_events_total = Counter(
    "salon_payment_events_total",
    "Payment events by reporting channel and outcome",
    ["channel", "outcome"],  # applied | duplicate | noop | anomaly | ignored | override
    registry=REGISTRY,
)

notifications_outbox_total = Counter(
    "salon_notifications_outbox_total",
    "Total notification outbox events by terminal status",
    ["status", "event_type"],
    registry=REGISTRY,
)

notifications_outbox_attempt_total = Counter(
    "salon_notifications_outbox_attempt_total",
    "Number of notification outbox delivery attempts",
    ["event_type"],
    registry=REGISTRY,
)


class PrometheusMetrics:
    """Thin static facade so call sites never touch metric objects directly."""

    @staticmethod
    def record_service_operation(
        service: str,
        operation: str,
        duration: float,
        status: str = "success",
        error_type: Optional[str] = None,
    ) -> None:
        service_operation_duration_seconds.labels(service=service, operation=operation).observe(duration)
        service_operations_total.labels(service=service, operation=operation, status=status).inc()
        if error_type:
            errors_total.labels(service=service, operation=operation, error_type=error_type).inc()

    @staticmethod
    def record_assignment(outcome: str) -> None:
        worker_assignment_total.labels(outcome=outcome).inc()

    @staticmethod
    def record_assignment_retry(reason: str) -> None:
        assignment_retry_total.labels(reason=reason).inc()

    @staticmethod
    def record_payment_event(channel: str, outcome: str) -> None:
        payment_events_total.labels(channel=channel, outcome=outcome).inc()

    @staticmethod
    def record_notification_attempt(event_type: str) -> None:
        notifications_outbox_attempt_total.labels(event_type=event_type).inc()

    @staticmethod
    def record_notification_outcome(event_type: str, status: str) -> None:
        """``status`` is sent or failed; retries are not outcomes."""
        notifications_outbox_total.labels(status=status, event_type=event_type).inc()

    @staticmethod
    def get_metrics() -> bytes:
        return cast(bytes, generate_latest(REGISTRY))

    @staticmethod
    def get_content_type() -> str:
        return cast(str, CONTENT_TYPE_LATEST)


prometheus_metrics = PrometheusMetrics()
