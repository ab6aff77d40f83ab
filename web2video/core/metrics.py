from prometheus_client import (
    Counter,
    Histogram,
    generate_latest,
    CONTENT_TYPE_LATEST,
)

# ---------------------------------------------------------------------------
# Retrieval
# ---------------------------------------------------------------------------
fetch_requests_total = Counter(
    "fetch_requests_total",
    "Total retrievals by final outcome",
    ["status"],
)
fetch_attempts_total = Counter(
    "fetch_attempts_total",
    "Individual tier attempts by tier and outcome",
    ["tier", "outcome"],
)
fetch_duration_seconds = Histogram(
    "fetch_duration_seconds",
    "Wall time of a full retrieval, delays included",
    buckets=[0.5, 1, 2, 5, 10, 30, 60, 120, 300],
)

# ---------------------------------------------------------------------------
# Extraction
# ---------------------------------------------------------------------------
videos_extracted_total = Counter(
    "videos_extracted_total",
    "Video references returned by the extractor, by detection kind",
    ["kind"],
)


def get_metrics() -> bytes:
    """Generate Prometheus metrics output."""
    return generate_latest()


def get_metrics_content_type() -> str:
    return CONTENT_TYPE_LATEST
