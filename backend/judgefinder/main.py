"""
FastAPI application entry point
"""
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from judgefinder.api.v1.api import api_router
from judgefinder.core.config import settings
from judgefinder.core.logger import logger
from judgefinder.core.redis import close_redis
from judgefinder.middleware.correlation import CorrelationMiddleware
from judgefinder.services.background_jobs import shutdown_scheduler, start_scheduler
from judgefinder.services.courtlistener_client import courtlistener_client
from judgefinder.utils.exceptions import JudgeFinderError, RateLimited


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("%s API started", settings.APP_NAME)
    if settings.SYNC_SCHEDULER_ENABLED:
        start_scheduler()
    yield
    shutdown_scheduler()
    await courtlistener_client.aclose()
    await close_redis()
    logger.info("%s API shutdown", settings.APP_NAME)


app = FastAPI(
    title=settings.APP_NAME,
    version="1.0.0",
    docs_url="/docs" if settings.DEBUG else None,
    redoc_url="/redoc" if settings.DEBUG else None,
    openapi_url="/openapi.json" if settings.DEBUG else None,
    lifespan=lifespan,
)

# ── Routers ───────────────────────────────────────────────────────────────────
app.include_router(api_router, prefix="/api")

# ── Correlation ID middleware (must be added before CORS) ─────────────────────
app.add_middleware(CorrelationMiddleware)

# ── CORS ──────────────────────────────────────────────────────────────────────
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["X-Correlation-ID", "X-Analytics-Warning", "X-Cache-Age-Days", "Retry-After"],
)


# ── Error rendering ───────────────────────────────────────────────────────────

def _correlation_id(request: Request) -> str:
    return getattr(request.state, "correlation_id", "")


@app.exception_handler(JudgeFinderError)
async def judgefinder_error_handler(request: Request, exc: JudgeFinderError):
    level = logger.error if exc.status_code >= 500 else logger.info
    level(
        "%s on %s %s: %s", exc.code, request.method, request.url.path, exc.message,
        extra={"correlation_id": _correlation_id(request), "status": exc.status_code},
    )
    headers = {}
    if isinstance(exc, RateLimited):
        headers["Retry-After"] = str(exc.to_dict()["retry_after"])
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict(), headers=headers)


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception(
        "Unhandled error on %s %s", request.method, request.url.path,
        extra={"correlation_id": _correlation_id(request)},
    )
    return JSONResponse(
        status_code=500,
        content={"error": "Internal server error", "code": "internal_error", "message": "Internal server error"},
    )


@app.get("/")
def read_root():
    return {"message": f"{settings.APP_NAME} API is running", "version": "1.0.0", "docs": "/docs"}
