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

crm_primary_flag_changes_total = Counter(
    "crm_primary_flag_changes_total",
    "Primary/default flag mutations by entity and operation",
    ["entity", "operation"],
)

crm_primary_flag_conflicts_total = Counter(
    "crm_primary_flag_conflicts_total",
    "Primary/default flag writes rejected because a group ended up with more than one flagged row",
    ["entity"],
)

crm_import_rows_total = Counter(
    "crm_import_rows_total",
    "CSV import rows by entity and outcome",
    ["entity", "outcome"],
)


_INT_RE = re.compile(r"/\d+\b")
_PATH_PARAM_RE = re.compile(r"\{[^{}]+\}")


def _normalize_route_template(path: str) -> str:
    return _PATH_PARAM_RE.sub("{id}", path)


def _sanitize_path(path: str) -> str:
    return _INT_RE.sub("/{id}", path)


def resolve_http_path_label(request: Request) -> str:
    route = request.scope.get("route")
    if route is not None:
        path_format = getattr(route, "path_format", None)
        if isinstance(path_format, str) and path_format:
            return _normalize_route_template(path_format)
        route_path = getattr(route, "path", None)
        if isinstance(route_path, str) and route_path:
            return _normalize_route_template(route_path)
    return _sanitize_path(request.url.path)


def observe_http_request(method: str, path: str, status: int, duration: float) -> None:
    http_requests_total.labels(method=method, path=path, status=str(status)).inc()
    http_request_duration_seconds.labels(method=method, path=path).observe(duration)


def observe_primary_flag_change(entity: str, operation: str) -> None:
    crm_primary_flag_changes_total.labels(entity=entity, operation=operation).inc()


def observe_primary_flag_conflict(entity: str) -> None:
    crm_primary_flag_conflicts_total.labels(entity=entity).inc()


def observe_import_row(entity: str, outcome: str, count: int = 1) -> None:
    if count > 0:
        crm_import_rows_total.labels(entity=entity, outcome=outcome).inc(count)


def generate_metrics_payload() -> bytes:
    return generate_latest()


def metrics_content_type() -> str:
    return CONTENT_TYPE_LATEST
