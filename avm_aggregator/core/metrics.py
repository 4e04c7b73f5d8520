import time
from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

# Define metrics (names follow Prometheus conventions)
REQ_COUNT = Counter("http_requests_total", "Total HTTP requests", ["path","method","code"])
REQ_LATENCY = Histogram("http_request_duration_seconds", "Request latency", ["path","method"])

# Per-source sweep outcomes
SOURCE_OUTCOMES = Counter("avm_source_outcomes_total", "Terminal status per valuation source", ["source","status"])
SOURCE_LATENCY = Histogram(
    "avm_source_duration_seconds", "Time for one source to reach a terminal status", ["source"],
    buckets=(0.5, 1, 2.5, 5, 10, 20, 40, 80, 160),
)
FALLBACK_SWEEPS = Counter("avm_fallback_sweeps_total", "Synchronous full sweeps served")

class PromMiddleware(BaseHTTPMiddleware):
    """
    Measures latency and counts requests.
    For the streaming route this times the response headers, not the whole stream.
    """
    async def dispatch(self, request: Request, call_next):
        start = time.perf_counter()
        response: Response = await call_next(request)
        elapsed = time.perf_counter() - start

        path = request.url.path
        method = request.method
        code = str(response.status_code)

        REQ_COUNT.labels(path=path, method=method, code=code).inc()
        REQ_LATENCY.labels(path=path, method=method).observe(elapsed)
        return response

def record_source_outcome(source: str, status: str, elapsed: float) -> None:
    SOURCE_OUTCOMES.labels(source=source, status=status).inc()
    SOURCE_LATENCY.labels(source=source).observe(elapsed)

async def metrics_endpoint(request: Request):
    """
    GET /v1/metrics — scraped by Prometheus.
    """
    data = generate_latest()
    return Response(content=data, media_type=CONTENT_TYPE_LATEST)
