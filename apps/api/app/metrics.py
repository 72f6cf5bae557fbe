from __future__ import annotations

import re

from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest
from starlette.requests import Request


http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "path", "status"],
)

http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "path"],
)

notices_created_total = Counter(
    "notices_created_total",
    "Total notices persisted by type",
    ["notice_type"],
)

notices_suppressed_total = Counter(
    "notices_suppressed_total",
    "Total notices suppressed by the dedup window, by type and matching rule",
    ["notice_type", "rule"],
)

notices_replaced_total = Counter(
    "notices_replaced_total",
    "Total prior notices deleted by a replace policy",
    ["notice_type"],
)

notices_duplicates_removed_total = Counter(
    "notices_duplicates_removed_total",
    "Total notices deleted by duplicate sweeps",
)

notification_store_failures_total = Counter(
    "notification_store_failures_total",
    "Total swallowed persistence failures in best-effort components",
    ["component", "operation"],
)

reassignment_transitions_total = Counter(
    "reassignment_transitions_total",
    "Total reassignment approval transitions by outcome",
    ["outcome"],
)

activity_entries_total = Counter(
    "activity_entries_total",
    "Total activity log entries by status",
    ["status"],
)

reminder_scan_duration_seconds = Histogram(
    "reminder_scan_duration_seconds",
    "Reminder scan duration in seconds",
)


_UUID_RE = re.compile(
    r"\b[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[1-5][0-9a-fA-F]{3}-[89abAB][0-9a-fA-F]{3}-[0-9a-fA-F]{12}\b"
)
_INT_RE = re.compile(r"/\d+\b")
_PATH_PARAM_RE = re.compile(r"\{[^{}]+\}")


def _sanitize_path(path: str) -> str:
    without_uuids = _UUID_RE.sub("{id}", path)
    return _INT_RE.sub("/{id}", without_uuids)


def resolve_http_path_label(request: Request) -> str:
    route = request.scope.get("route")
    if route is not None:
        path_format = getattr(route, "path_format", None) or getattr(route, "path", None)
        if isinstance(path_format, str) and path_format:
            return _PATH_PARAM_RE.sub("{id}", path_format)
    return _sanitize_path(request.url.path)


def observe_http_request(method: str, path: str, status: int, duration: float) -> None:
    http_requests_total.labels(method=method, path=path, status=str(status)).inc()
    http_request_duration_seconds.labels(method=method, path=path).observe(duration)


def observe_notice_created(notice_type: str) -> None:
    notices_created_total.labels(notice_type=notice_type).inc()


def observe_notice_suppressed(notice_type: str, rule: str) -> None:
    notices_suppressed_total.labels(notice_type=notice_type, rule=rule).inc()


def observe_notices_replaced(notice_type: str, count: int) -> None:
    if count > 0:
        notices_replaced_total.labels(notice_type=notice_type).inc(count)


def observe_duplicates_removed(count: int) -> None:
    if count > 0:
        notices_duplicates_removed_total.inc(count)


def observe_store_failure(component: str, operation: str) -> None:
    notification_store_failures_total.labels(component=component, operation=operation).inc()


def observe_reassignment_transition(outcome: str) -> None:
    reassignment_transitions_total.labels(outcome=outcome).inc()


def observe_activity_entry(status: str) -> None:
    activity_entries_total.labels(status=status).inc()


def observe_reminder_scan(duration: float) -> None:
    reminder_scan_duration_seconds.observe(duration)


def generate_metrics_payload() -> bytes:
    return generate_latest()


def metrics_content_type() -> str:
    return CONTENT_TYPE_LATEST
