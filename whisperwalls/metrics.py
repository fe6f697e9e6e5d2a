from prometheus_client import Counter, Histogram

# ---------------------------------------------------------------------------
# Custom Prometheus metrics – exported via /metrics route exposed by
# prometheus_fastapi_instrumentator in whisperwalls.utils.observability.configure_observability().
# ---------------------------------------------------------------------------

ASTRA_DB_QUERY_DURATION_SECONDS = Histogram(
    "astra_db_query_duration_seconds",
    "Latency of Astra DB Data API queries (seconds)",
    ["operation"],
)

CLASSIFIER_CALL_DURATION_SECONDS = Histogram(
    "classifier_call_duration_seconds",
    "Latency of mood / content classifier calls (seconds)",
    ["classifier"],
)

CLASSIFIER_FALLBACK_TOTAL = Counter(
    "classifier_fallback_total",
    "Classifier calls that degraded to the local fallback",
    ["classifier", "reason"],
)

MODERATION_DECISIONS_TOTAL = Counter(
    "moderation_decisions_total",
    "Automatic and human moderation outcomes",
    ["outcome"],
)

RATE_LIMIT_REJECTIONS_TOTAL = Counter(
    "rate_limit_rejections_total",
    "Requests rejected by the per-subject rate limiter",
    ["action"],
)

EXPIRED_MESSAGES_SWEPT_TOTAL = Counter(
    "expired_messages_swept_total",
    "Ephemeral messages physically deleted by the expiration sweeper",
)
