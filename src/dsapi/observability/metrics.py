"""Prometheus metrics for the dataset control plane."""

from prometheus_client import Counter, Histogram, Info

app_info = Info("dsapi_app", "Dataset API application info")

http_requests_counter = Counter(
    "dsapi_http_requests_total",
    "Total number of HTTP requests handled",
    ["method", "status"],
)

http_request_duration_histogram = Histogram(
    "dsapi_http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method"],
    buckets=[0.01, 0.05, 0.1, 0.5, 1.0, 5.0, 15.0, 30.0, 60.0],
)

backend_errors_counter = Counter(
    "dsapi_backend_errors_total",
    "Backend errors by classified kind",
    ["kind"],
)

rollback_counter = Counter(
    "dsapi_rollbacks_total",
    "Number of rollbacks executed",
    ["operation"],
)

rollback_task_failures_counter = Counter(
    "dsapi_rollback_task_failures_total",
    "Number of compensating actions that failed during rollback",
    ["operation"],
)

audit_flush_counter = Counter(
    "dsapi_audit_flushes_total",
    "Audit log batch flushes by trigger",
    ["trigger"],
)

audit_events_counter = Counter(
    "dsapi_audit_events_total",
    "Audit log events written",
)

audit_flush_failures_counter = Counter(
    "dsapi_audit_flush_failures_total",
    "Audit log batch flushes that failed",
)

datasets_counter = Counter(
    "dsapi_dataset_operations_total",
    "Dataset lifecycle operations by outcome",
    ["operation", "result"],
)
