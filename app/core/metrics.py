from __future__ import annotations

from contextlib import contextmanager

from prometheus_client import CollectorRegistry, Counter, Histogram, generate_latest

registry = CollectorRegistry(auto_describe=True)

EXPORTS_CREATED_TOTAL = Counter(
    "roomscan_exports_created_total",
    "Export jobs created, labeled by how conversion was triggered.",
    ["trigger"],
    registry=registry,
)

CONVERSION_DURATION = Histogram(
    "roomscan_conversion_duration_seconds",
    "Wall time of USDZ to GLB conversions.",
    ["mode"],
    registry=registry,
    buckets=(0.05, 0.1, 0.25, 0.5, 1, 2.5, 5, 10, 30, 60, 120, 240),
)

CONVERSIONS_TOTAL = Counter(
    "roomscan_conversions_total",
    "Finished export conversions by outcome.",
    ["outcome"],
    registry=registry,
)

CONVERSION_ERRORS_TOTAL = Counter(
    "roomscan_conversion_errors_total",
    "Conversion engine failures by error code.",
    ["code"],
    registry=registry,
)

STORAGE_OPERATIONS_TOTAL = Counter(
    "roomscan_storage_operations_total",
    "Object store calls partitioned by operation and status.",
    ["operation", "status"],
    registry=registry,
)

DELETIONS_TOTAL = Counter(
    "roomscan_deletions_total",
    "Cascading export deletions by result.",
    ["result"],
    registry=registry,
)

NOTIFICATIONS_TOTAL = Counter(
    "roomscan_notifications_total",
    "Export-ready notifications by status.",
    ["status"],
    registry=registry,
)


def record_export_created(trigger: str) -> None:
    EXPORTS_CREATED_TOTAL.labels(trigger=trigger).inc()


def record_conversion_outcome(outcome: str) -> None:
    CONVERSIONS_TOTAL.labels(outcome=outcome).inc()


def record_conversion_error(code: str) -> None:
    CONVERSION_ERRORS_TOTAL.labels(code=code).inc()


def record_deletion(result: str) -> None:
    DELETIONS_TOTAL.labels(result=result).inc()


def record_notification(status: str) -> None:
    NOTIFICATIONS_TOTAL.labels(status=status).inc()


@contextmanager
def track_conversion(mode: str):
    with CONVERSION_DURATION.labels(mode=mode).time():
        yield


@contextmanager
def track_storage_call(operation: str):
    try:
        yield
        STORAGE_OPERATIONS_TOTAL.labels(operation=operation, status="success").inc()
    except Exception:
        STORAGE_OPERATIONS_TOTAL.labels(operation=operation, status="error").inc()
        raise


def get_metrics_payload() -> bytes:
    return generate_latest(registry)
