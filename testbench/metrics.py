from prometheus_client import (
    Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST
)

# -- Metrics --
# Per-instance. In a multi-instance chain each instance exposes its own
# /metrics, so the `endpoint` label is enough to tell simulators apart.

REQUEST_COUNT = Counter(
    "http_requests_total",
    "Requests served by this test bench instance",
    ["method", "endpoint", "status"]
)

REQUEST_DURATION = Histogram(
    "http_request_duration_seconds",
    "Time to answer, including any downstream chain hops",
    ["method", "endpoint"],
    # /delay and the chain can legitimately sit near the 10s hop timeout.
    buckets=[.01, .025, .05, .1, .25, .5, 1, 2.5, 5, 10]
)

CHAIN_HOPS = Counter(
    "chain_hops_total",
    "Chain hops handled by this instance",
    # terminal | forwarded | relayed | failed
    ["outcome"]
)


def observe(method, endpoint, status, duration):
    REQUEST_DURATION.labels(method=method, endpoint=endpoint).observe(duration)
    REQUEST_COUNT.labels(method=method, endpoint=endpoint, status=str(status)).inc()


def render():
    return generate_latest(), CONTENT_TYPE_LATEST
