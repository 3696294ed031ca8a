from prometheus_client import Counter, Histogram, Gauge, REGISTRY


# modules can be imported more than once (reloads, test runs); reuse the registered collector
def get_or_create_metric(name, documentation, metric_type, **kwargs):
    try:
        return metric_type(name, documentation, **kwargs)
    except ValueError:
        return REGISTRY._names_to_collectors[name]


REQUESTS_TOTAL = get_or_create_metric(
    "syllabus_requests_total",
    "Total API requests",
    Counter,
    labelnames=["endpoint", "status"],
)

IMPORTS_TOTAL = get_or_create_metric(
    "syllabus_imports_total",
    "Import sessions by terminal stage",
    Counter,
    labelnames=["outcome"],
)

IMPORT_FAILURES_TOTAL = get_or_create_metric(
    "syllabus_import_failures_total",
    "Failed imports by error category",
    Counter,
    labelnames=["category"],
)

IMPORT_DURATION_SECONDS = get_or_create_metric(
    "syllabus_import_duration_seconds",
    "Wall time of an import session",
    Histogram,
)

PARSE_REQUESTS_TOTAL = get_or_create_metric(
    "syllabus_parse_requests_total",
    "Parser HTTP attempts",
    Counter,
    labelnames=["status"],
)

PARSE_LATENCY_SECONDS = get_or_create_metric(
    "syllabus_parse_latency_seconds",
    "Parser round-trip latency",
    Histogram,
)

DRAFTS_SKIPPED_TOTAL = get_or_create_metric(
    "syllabus_drafts_skipped_total", "Drafts dropped by validation", Counter
)

EVENTS_IN_STORE = get_or_create_metric(
    "syllabus_events_in_store", "Events currently held by the store", Gauge
)

DIRTY_EVENTS = get_or_create_metric(
    "syllabus_dirty_events", "Events with unsynced local changes", Gauge
)

REMOTE_FAILURES_TOTAL = get_or_create_metric(
    "syllabus_remote_failures_total",
    "Remote backend failures",
    Counter,
    labelnames=["operation"],
)
