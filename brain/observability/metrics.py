"""Prometheus metrics collection.

Low-cardinality metrics for the Brain and a helper to expose them on a
Prometheus scrape endpoint.

- No per-user, per-org or per-conversation labels, and never query text
- Latency histograms are in seconds
- Metric names are stable (dashboards depend on them)
"""

from __future__ import annotations

import time
from contextlib import contextmanager
from typing import Iterator

from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest

# --------------------------------------------------------------------------------------
# Request metrics
# --------------------------------------------------------------------------------------

BRAIN_REQUESTS_TOTAL = Counter(
    "brain_requests_total",
    "Total number of /api/brain requests by response mode.",
    ["mode"],
)

BRAIN_REQUEST_ERRORS_TOTAL = Counter(
    "brain_request_errors_total",
    "Total number of /api/brain requests that failed before the response opened.",
    ["kind"],
)

# End-to-end latency (seconds). For streams this covers the handler, not the proxied body.
BRAIN_REQUEST_LATENCY_SECONDS = Histogram(
    "brain_request_latency_seconds",
    "End-to-end /api/brain handler latency in seconds.",
    buckets=(0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0),
)

# --------------------------------------------------------------------------------------
# Pipeline metrics
# --------------------------------------------------------------------------------------

BRAIN_ROUTES_TOTAL = Counter(
    "brain_routes_total",
    "Total number of routed turns by route.",
    ["route"],
)

BRAIN_ANALYSIS_TOTAL = Counter(
    "brain_analysis_total",
    "Total number of query analyses by path (llm, keyword fallback, minimal fallback).",
    ["path"],
)

BRAIN_SAFETY_OVERRIDES_TOTAL = Counter(
    "brain_safety_overrides_total",
    "Total number of analyzer 'skip search' verdicts overridden by the salutation check.",
)

BRAIN_DOWNSTREAM_ERRORS_TOTAL = Counter(
    "brain_downstream_errors_total",
    "Total number of downstream agent failures (HTTP error or transport failure).",
)

BRAIN_STREAM_ERRORS_TOTAL = Counter(
    "brain_stream_errors_total",
    "Total number of error frames written after a stream opened.",
)

BRAIN_STAGE_LATENCY_SECONDS = Histogram(
    "brain_stage_latency_seconds",
    "Latency of pipeline stages in seconds (low-cardinality by stage).",
    ["stage"],
    buckets=(0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0),
)


# --------------------------------------------------------------------------------------
# Pre-initialize labelled metrics
# --------------------------------------------------------------------------------------
#
# Labelled series are only exported once their labelset exists. Create the expected
# ones up front so a scrape right after startup already lists them.

_MODES = ("stream", "buffered")
_ERROR_KINDS = ("validation", "context", "downstream", "internal")
_ROUTES = ("conversational", "delegated")
_ANALYSIS_PATHS = ("llm", "keywords", "minimal")
_STAGES = ("config", "context", "analysis", "downstream_connect")

for _mode in _MODES:
    BRAIN_REQUESTS_TOTAL.labels(mode=_mode)

for _kind in _ERROR_KINDS:
    BRAIN_REQUEST_ERRORS_TOTAL.labels(kind=_kind)

for _route in _ROUTES:
    BRAIN_ROUTES_TOTAL.labels(route=_route)

for _path in _ANALYSIS_PATHS:
    BRAIN_ANALYSIS_TOTAL.labels(path=_path)

for _stage in _STAGES:
    BRAIN_STAGE_LATENCY_SECONDS.labels(stage=_stage)


@contextmanager
def timed(hist: Histogram) -> Iterator[None]:
    """Time a code block and observe seconds in the provided histogram."""
    t0 = time.perf_counter()
    try:
        yield
    finally:
        hist.observe(time.perf_counter() - t0)


def render_latest() -> tuple[bytes, str]:
    """Return (body, content_type) for a Prometheus scrape response."""
    body = generate_latest()
    return body, CONTENT_TYPE_LATEST
