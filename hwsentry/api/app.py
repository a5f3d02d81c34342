"""FastAPI application exposing SKU scans, history, health and analytics."""

from contextlib import asynccontextmanager

from fastapi import FastAPI, Query, Request, Response
from fastapi.responses import JSONResponse
from loguru import logger

from hwsentry.exceptions import to_http_error
from hwsentry.models import AnalyticsStats, ScanResult
from hwsentry.runtime import ScanRuntime
from hwsentry.services.errors import ServiceError
from hwsentry.settings import Settings


def client_id_for(request: Request) -> str:
    """Identify the caller for rate limiting, honouring one proxy hop."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    if request.client:
        return request.client.host
    return "anonymous"


def _runtime(request: Request) -> ScanRuntime:
    return request.app.state.runtime


async def scan_sku(sku: str, request: Request) -> ScanResult:
    """Scan a SKU across its vendors."""
    runtime = _runtime(request)
    try:
        return await runtime.orchestrator.scan(sku, client_id=client_id_for(request))
    except ServiceError as e:
        logger.info(f"Scan of {sku} rejected: {e}")
        raise to_http_error(e) from e


async def scan_history(
    sku: str, request: Request, limit: int = Query(10, ge=1, le=100)
) -> list[ScanResult]:
    """Past scans for a SKU, most recent first."""
    runtime = _runtime(request)
    try:
        return await runtime.orchestrator.get_history(sku, limit=limit)
    except ServiceError as e:
        raise to_http_error(e) from e


async def health_check(request: Request) -> JSONResponse:
    """Health check endpoint."""
    health = await _runtime(request).health()
    status_code = 200 if health["status"] == "ok" else 503
    return JSONResponse(health, status_code=status_code)


async def analytics_stats(request: Request, response: Response) -> AnalyticsStats:
    """Aggregated analytics for the dashboard."""
    stats = await _runtime(request).analytics.get_stats()
    response.headers["Cache-Control"] = "public, max-age=60, s-maxage=60"
    return stats


def create_app(
    runtime: ScanRuntime | None = None,
    settings: Settings | None = None,
) -> FastAPI:
    """Create the FastAPI app.

    Args:
        runtime: Prebuilt runtime. When omitted one is built from settings
            at startup and closed at shutdown.
        settings: Settings used to build the runtime

    Returns:
        FastAPI app
    """
    owns_runtime = runtime is None

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if owns_runtime:
            app.state.runtime = ScanRuntime.from_settings(settings)
            app.state.runtime.start()
        try:
            yield
        finally:
            if owns_runtime:
                await app.state.runtime.close()

    app = FastAPI(title="Hardware Sentry API", lifespan=lifespan)
    if runtime is not None:
        app.state.runtime = runtime

    app.get("/api/scan/{sku}", response_model=ScanResult)(scan_sku)
    app.get("/api/scan/{sku}/history", response_model=list[ScanResult])(scan_history)
    app.get("/api/health")(health_check)
    app.get("/api/analytics/stats", response_model=AnalyticsStats)(analytics_stats)

    return app
