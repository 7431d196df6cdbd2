import hmac
import logging
import traceback
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address
from sqlalchemy.exc import IntegrityError
from starlette.middleware.base import BaseHTTPMiddleware
from milesconnect.api.routes import router
from milesconnect.config import settings
from milesconnect.schemas.error import ErrorResponse

logging.basicConfig(level=settings.LOG_LEVEL)
logger = logging.getLogger(__name__)

APP_VERSION = "0.1.0"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Run the simulator in the background when SIMULATION_AUTORUN is set."""
    runner = None
    if settings.SIMULATION_AUTORUN:
        from milesconnect.modules.simulation_runner import SimulationRunner
        from milesconnect.modules.simulation_scheduler import get_scheduler

        runner = SimulationRunner(get_scheduler())
        runner.start()
    app.state.simulation_runner = runner
    yield
    if runner is not None:
        # Let an in-flight tick finish its writes
        runner.stop(timeout=settings.SIMULATION_TICK_SECONDS * 10)


app = FastAPI(
    title="MilesConnect",
    description="Fleet tracking backend: route simulation, ETA and fleet status consistency.",
    version=APP_VERSION,
    lifespan=lifespan,
)

# CORS: origins from settings (supports comma-separated env var)
cors_origins = [o.strip() for o in settings.CORS_ORIGINS.split(",") if o.strip()]
app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# API key authentication middleware
class APIKeyMiddleware(BaseHTTPMiddleware):
    """Simple API key check. If MILESCONNECT_API_KEY is unset, all requests pass."""

    async def dispatch(self, request: Request, call_next):
        if settings.MILESCONNECT_API_KEY is not None:
            # Allow health check and OpenAPI docs without auth
            if request.url.path not in ("/health", "/docs", "/openapi.json", "/redoc"):
                api_key = request.headers.get("X-API-Key")
                if not hmac.compare_digest(api_key or "", settings.MILESCONNECT_API_KEY):
                    return JSONResponse(
                        status_code=401,
                        content=ErrorResponse(error="Unauthorized", detail="Invalid or missing API key").model_dump(),
                    )
        return await call_next(request)


app.add_middleware(APIKeyMiddleware)

limiter = Limiter(key_func=get_remote_address, default_limits=["60/minute"])
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

app.include_router(router, prefix="/api/v1")


# ── Structured error handlers ─────────────────────────────────────────────────

@app.exception_handler(ValueError)
async def value_error_handler(request: Request, exc: ValueError):
    return JSONResponse(
        status_code=422,
        content=ErrorResponse(error="Validation error", detail=str(exc)).model_dump(),
    )


@app.exception_handler(IntegrityError)
async def integrity_error_handler(request: Request, exc: IntegrityError):
    detail = str(exc.orig) if exc.orig else str(exc)
    return JSONResponse(status_code=409, content=ErrorResponse(error="Conflict", detail=detail).model_dump())


@app.exception_handler(Exception)
async def general_error_handler(request: Request, exc: Exception):
    logger.error("Unhandled exception on %s %s:\n%s", request.method, request.url.path, traceback.format_exc())
    return JSONResponse(
        status_code=500,
        content=ErrorResponse(error="Internal server error", detail="An unexpected error occurred.").model_dump(),
    )


@app.get("/health")
def health() -> dict:
    return {"status": "ok", "version": APP_VERSION}
