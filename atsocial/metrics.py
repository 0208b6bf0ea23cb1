from __future__ import annotations

import time

from fastapi import Response
from prometheus_client import CONTENT_TYPE_LATEST, Counter, Gauge, Info, generate_latest

from atsocial.core.settings import S

METRICS_ENABLED = S.metrics_enabled

STORE_ERRORS = Counter(
    "sns_store_errors_total",
    "Store calls that failed at the backend",
    ["operation"],
)
CONDITIONAL_CONFLICTS = Counter(
    "sns_conditional_conflicts_total",
    "Conditional writes that lost (duplicate edge or identifier)",
    ["entity"],
)
EDGE_WRITES = Counter(
    "sns_edge_writes_total",
    "Like/follow edge writes that changed state",
    ["entity", "action"],
)
ACCOUNT_DELETIONS = Counter(
    "sns_account_deletions_total",
    "Account deletions by outcome",
    ["outcome"],
)
UPTIME_SECONDS = Gauge(
    "sns_uptime_seconds",
    "Process uptime in seconds",
)
APP_INFO = Info(
    "sns",
    "Social data layer metadata",
)

_START_TIME = time.monotonic()


def record_store_error(operation: str) -> None:
    if METRICS_ENABLED:
        STORE_ERRORS.labels(operation=operation).inc()


def record_conflict(entity: str) -> None:
    if METRICS_ENABLED:
        CONDITIONAL_CONFLICTS.labels(entity=entity).inc()


def record_edge_write(entity: str, action: str) -> None:
    if METRICS_ENABLED:
        EDGE_WRITES.labels(entity=entity, action=action).inc()


def record_account_deletion(outcome: str) -> None:
    if METRICS_ENABLED:
        ACCOUNT_DELETIONS.labels(outcome=outcome).inc()


def set_app_info(name: str, version: str) -> None:
    APP_INFO.info({"name": name, "version": version})


def metrics_text() -> bytes:
    UPTIME_SECONDS.set(time.monotonic() - _START_TIME)
    return generate_latest()


def metrics_endpoint() -> Response:
    return Response(metrics_text(), media_type=CONTENT_TYPE_LATEST)
