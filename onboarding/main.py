"""
main.py — Onboarding wizard FastAPI application.

Start with: uvicorn onboarding.main:app --reload --port 8000

Every error leaves the API in one envelope:
    {"error": {"code": "...", "message": "...", "details": [{"field", "issue"}]}}
"""
import json
import logging
import os
import subprocess
import sys
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from redis.exceptions import RedisError
from starlette.exceptions import HTTPException as StarletteHTTPException

from onboarding.config import settings
from onboarding.wizard.errors import WizardError
from onboarding.wizard.schemas import ErrorBody, ErrorDetail, ErrorResponse

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------
logging.basicConfig(
    level=logging.DEBUG if settings.debug else logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


def _run_migrations() -> None:
    """alembic upgrade head, using onboarding/alembic.ini."""
    package_dir = os.path.dirname(os.path.abspath(__file__))
    result = subprocess.run(
        [sys.executable, "-m", "alembic", "upgrade", "head"],
        capture_output=True,
        text=True,
        cwd=package_dir,
    )
    if result.returncode != 0:
        logger.error("Alembic migration failed:\n%s", result.stderr)
        raise RuntimeError(f"Alembic migration failed: {result.stderr}")
    logger.info("Alembic: %s", result.stdout.strip() or "schema up to date")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Startup:  schema migrations, then the Redis pool that backs the per-client cache slots.
    Shutdown: Redis pool and database engine.
    """
    if settings.run_migrations_on_startup:
        _run_migrations()

    from onboarding.cache import create_redis_pool
    from onboarding.database import dispose_engine

    app.state.redis = await create_redis_pool()
    logger.info("Onboarding wizard v%s ready", settings.app_version)
    yield

    await app.state.redis.aclose()
    await dispose_engine()
    logger.info("Onboarding wizard stopped")


app = FastAPI(
    title="Onboarding Wizard API",
    version=settings.app_version,
    description=(
        "Session state machine for the multi-step founder onboarding wizard: "
        "step sequencing, resume links, email resume and partial-update merges."
    ),
    lifespan=lifespan,
    docs_url="/api/docs",
    redoc_url="/api/redoc",
    openapi_url="/api/openapi.json",
)

# The host must be allowed to send its cache-slot id
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["GET", "POST"],
    allow_headers=["Content-Type", "X-Client-Id"],
)


# ---------------------------------------------------------------------------
# Error envelope
# ---------------------------------------------------------------------------
def _make_error_response(
    code: str,
    message: str,
    details: list[dict[str, Any]] | None = None,
    status_code: int = 500,
) -> JSONResponse:
    body = ErrorResponse(
        error=ErrorBody(code=code, message=message, details=[ErrorDetail(**d) for d in details or []])
    )
    return JSONResponse(status_code=status_code, content=body.model_dump())


def _violations_from_message(message: str) -> list[dict[str, Any]] | None:
    """ValueErrors raised by validators carry a JSON list of {field, issue}; anything else is None."""
    try:
        parsed = json.loads(message)
    except ValueError:
        return None
    if isinstance(parsed, list) and all(isinstance(v, dict) and "issue" in v for v in parsed):
        return [{"field": v.get("field"), "issue": v["issue"]} for v in parsed]
    return None


@app.exception_handler(WizardError)
async def wizard_error_handler(request: Request, exc: WizardError) -> JSONResponse:
    """
    InvalidStepKey 400, SessionNotFound 404, SessionExpiredOrInvalid 410,
    PreconditionFailed / BootstrapSuperseded 409, TransientIOError 503.
    The suggestion, when present, is the single detail entry.
    """
    logger.info("Wizard error on %s %s code=%s", request.method, request.url.path, exc.code)
    details = [{"field": None, "issue": exc.suggestion}] if exc.suggestion else []
    return _make_error_response(exc.code, exc.message, details, exc.status_code)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Missing X-Client-Id, malformed bodies and query params."""
    details = []
    for error in exc.errors():
        field = ".".join(str(loc) for loc in error["loc"] if loc != "body")
        details.append({"field": field or None, "issue": error["msg"]})
    return _make_error_response("VALIDATION_ERROR", "Request validation failed", details, 422)


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    code_map = {
        400: "BAD_REQUEST",
        404: "NOT_FOUND",
        405: "METHOD_NOT_ALLOWED",
        409: "CONFLICT",
        410: "GONE",
        422: "VALIDATION_ERROR",
    }
    code = code_map.get(exc.status_code, f"HTTP_{exc.status_code}")
    return _make_error_response(code, str(exc.detail), status_code=exc.status_code)


@app.exception_handler(ValueError)
async def value_error_handler(request: Request, exc: ValueError) -> JSONResponse:
    """Business-rule ValueErrors (StepValidationError included) are 422 VALIDATION_ERROR."""
    details = _violations_from_message(str(exc))
    if details is not None:
        return _make_error_response("VALIDATION_ERROR", "Step validation failed", details, 422)
    return _make_error_response("VALIDATION_ERROR", str(exc), status_code=422)


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Traceback goes to the server log only; the type is echoed back in debug mode."""
    logger.error("Unhandled exception on %s %s", request.method, request.url.path, exc_info=True)
    details = [{"issue": f"{type(exc).__name__}: {exc}"}] if settings.debug else []
    return _make_error_response("INTERNAL_ERROR", "An unexpected error occurred", details, 500)


# ---------------------------------------------------------------------------
# Health
# ---------------------------------------------------------------------------
@app.get("/api/health", tags=["System"])
async def health_check(request: Request) -> dict:
    """Service status plus whether the cache slots are reachable."""
    redis_client = getattr(request.app.state, "redis", None)
    cache_status = "unavailable"
    if redis_client is not None:
        try:
            await redis_client.ping()
            cache_status = "ok"
        except RedisError:
            logger.warning("Health check: Redis ping failed")
    return {
        "status": "ok",
        "cache": cache_status,
        "version": settings.app_version,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


from onboarding.wizard.routes import router as wizard_router  # noqa: E402

app.include_router(wizard_router)
