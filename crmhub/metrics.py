from __future__ import annotations

from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest


backend_requests_total = Counter(
    "crmhub_backend_requests_total",
    "Total backend calls by operation and outcome",
    ["operation", "outcome"],
)

backend_request_duration_seconds = Histogram(
    "crmhub_backend_request_duration_seconds",
    "Backend call duration in seconds",
    ["operation"],
)

workflow_runs_total = Counter(
    "crmhub_workflow_runs_total",
    "Total orchestrated workflow runs by outcome",
    ["workflow", "outcome"],
)

optimistic_reverts_total = Counter(
    "crmhub_optimistic_reverts_total",
    "Total optimistic updates reverted after a backend failure",
    ["operation"],
)

activity_log_failures_total = Counter(
    "crmhub_activity_log_failures_total",
    "Total activity-log writes that failed and were dropped",
)


def observe_backend_call(operation: str, outcome: str, duration: float) -> None:
    backend_requests_total.labels(operation=operation, outcome=outcome).inc()
    backend_request_duration_seconds.labels(operation=operation).observe(duration)


def observe_workflow(workflow: str, outcome: str) -> None:
    workflow_runs_total.labels(workflow=workflow, outcome=outcome).inc()


def observe_optimistic_revert(operation: str) -> None:
    optimistic_reverts_total.labels(operation=operation).inc()


def observe_activity_log_failure() -> None:
    activity_log_failures_total.inc()


def generate_metrics_payload() -> bytes:
    return generate_latest()


def metrics_content_type() -> str:
    return CONTENT_TYPE_LATEST
