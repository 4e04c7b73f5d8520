from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

# Routers
from .routers.avm import router as avm_router

# Core modules
from .core.config import settings
from .core.errors import InvalidAddressError, NoEstimatesError
from .core.logging import configure_logging, CorrelationIdMiddleware
from .core.metrics import PromMiddleware, metrics_endpoint

def create_app() -> FastAPI:
    """
    App factory so tests and ASGI servers can instantiate cleanly.
    """
    configure_logging()  # Set up JSON logs

    app = FastAPI(
        title="AVM Aggregator",
        version="1.0.0",
        description="Streams per-source property valuations and consolidates them into one estimate.",
    )

    # CORS: allow the UI to call the API.
    allow_origins = [o.strip() for o in settings.ALLOW_ORIGINS.split(",")] if settings.ALLOW_ORIGINS else ["*"]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=allow_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["ETag","X-Request-Id"],
    )

    # Observability middlewares
    app.add_middleware(CorrelationIdMiddleware)  # Adds/propagates X-Request-Id
    if settings.PROMETHEUS_ENABLED:
        app.add_middleware(PromMiddleware)       # Records req/latency metrics

    # Input and aggregation failures surface as {"error": ...}
    @app.exception_handler(InvalidAddressError)
    async def invalid_address(request: Request, exc: InvalidAddressError):
        return JSONResponse(status_code=400, content={"error": exc.message})

    @app.exception_handler(NoEstimatesError)
    async def no_estimates(request: Request, exc: NoEstimatesError):
        return JSONResponse(status_code=422, content={"error": exc.message})

    # Meta routes
    @app.get("/v1/health", tags=["meta"])
    def health():
        return {"status": "ok"}

    @app.get("/v1/ping", tags=["meta"])
    def ping():
        return {"pong": True}

    if settings.PROMETHEUS_ENABLED:
        # Standard Prometheus scrape endpoint
        app.add_route("/v1/metrics", metrics_endpoint, methods=["GET"])

    # Business routes
    app.include_router(avm_router, prefix="/v1", tags=["avm"])

    return app

app = create_app()
