"""
ASGI entry point: ``uvicorn inbound.main:app``.
"""
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm.exc import StaleDataError

from inbound.api.v1.router import api_router
from inbound.config import settings
from inbound.core.exceptions import ConcurrencyConflictError, InboundError
from inbound.database import async_session_factory, init_db
from inbound.jobs.scheduler import get_job_status, start_scheduler, shutdown_scheduler


logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logging.basicConfig(
        level=settings.LOG_LEVEL.upper(),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
    logger.info(f"{settings.APP_NAME} {settings.APP_VERSION} starting")

    await init_db()
    if settings.SCHEDULER_ENABLED:
        start_scheduler()

    yield

    shutdown_scheduler()
    logger.info(f"{settings.APP_NAME} stopped")


app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="Inbound receiving: PO -> ASN -> receipt session -> reconciliation -> putaway -> ledger.",
    lifespan=lifespan,
    openapi_tags=[
        {"name": "Catalog", "description": "Products, vendors, warehouses, locations, carriers and docks"},
        {"name": "Purchase Orders", "description": "Purchase order ledger and lifecycle"},
        {"name": "ASN", "description": "Advance ship notices, validation and the receiving hand-off"},
        {"name": "Receiving", "description": "Receipt sessions, completion and putaway"},
        {"name": "Inventory Ledger", "description": "Append-only ledger and on-hand balances"},
    ],
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(api_router)


def _error_response(request: Request, status_code: int, body: dict) -> JSONResponse:
    body["path"] = request.url.path
    body["method"] = request.method
    return JSONResponse(status_code=status_code, content=body)


@app.exception_handler(InboundError)
async def inbound_error_handler(request: Request, exc: InboundError):
    if exc.http_status >= 500:
        logger.error(f"{exc.code} on {request.method} {request.url.path}: {exc.message}")
    return _error_response(request, exc.http_status, exc.to_dict())


@app.exception_handler(StaleDataError)
async def stale_data_handler(request: Request, exc: StaleDataError):
    # Version check tripped at commit time instead of at an explicit flush
    conflict = ConcurrencyConflictError("Resource was modified by another request; reload and retry")
    return _error_response(request, conflict.http_status, conflict.to_dict())


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception(f"Unhandled error on {request.method} {request.url.path}")
    return _error_response(request, 500, {
        "error": str(exc),
        "kind": "InternalError",
        "code": type(exc).__name__,
        "details": {},
    })


@app.get("/health", tags=["Health"])
async def health_check():
    """Liveness plus a round trip to the database; 503 when the database is unreachable."""
    database = "connected"
    try:
        async with async_session_factory() as session:
            await session.execute(text("SELECT 1"))
    except (SQLAlchemyError, OSError) as exc:
        logger.error(f"Health check could not reach the database: {exc}")
        database = f"error: {exc}"

    healthy = database == "connected"
    body = {
        "status": "healthy" if healthy else "unhealthy",
        "app": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "checks": {"database": database},
        "jobs": get_job_status(),
    }
    return body if healthy else JSONResponse(status_code=503, content=body)


@app.get("/", tags=["Root"])
async def root():
    return {"app": settings.APP_NAME, "version": settings.APP_VERSION, "docs": "/docs"}
