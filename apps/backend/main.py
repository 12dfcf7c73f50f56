from fastapi import FastAPI, Request, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from dotenv import load_dotenv
from contextlib import asynccontextmanager
import os
import logging
import traceback

from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from app.config import Capabilities, get_env_presence, is_dev_mode
from app.db_config import db_config
from app.errors import AuthError, ConfigurationError, PipelineError, StorageError, UpstreamError
from app.pipeline_api import router as pipeline_router
from app.rate_limit import limiter
from app.sources import router as sources_router

load_dotenv()

logging.basicConfig(level=os.getenv("LOG_LEVEL", "INFO").upper())
logger = logging.getLogger(__name__)

GENERIC_ERROR = "An internal error occurred. Please try again later."


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Handle application lifecycle events."""
    env = os.getenv("PIPELINE_ENV", "production").lower()
    logger.info(f"[pipeline] env: PIPELINE_ENV={env}")

    from orchestrator import start_scheduler, stop_scheduler
    if db_config.is_db_enabled:
        try:
            await start_scheduler()
        except Exception as e:
            logger.error(f"[orchestrator] Failed to start scheduler: {e}")
    else:
        logger.warning("[orchestrator] No PostgreSQL database URL configured (need SUPABASE_DB_URL or DATABASE_URL), scheduler not started")

    yield

    await stop_scheduler()


app = FastAPI(title="Jinder Job Pipeline", version="0.1.0", lifespan=lifespan)

# Add rate limiter state
app.state.limiter = limiter

# Rate limit exceeded handler
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)


@app.exception_handler(AuthError)
async def auth_error_handler(request: Request, exc: AuthError):
    return JSONResponse(status_code=401, content={"error": "Unauthorized"})


@app.exception_handler(ConfigurationError)
async def configuration_error_handler(request: Request, exc: ConfigurationError):
    logger.error(f"[pipeline] Configuration error on {request.url.path}: {exc}")
    return JSONResponse(status_code=503, content={"success": False, "error": str(exc)})


@app.exception_handler(StorageError)
async def storage_error_handler(request: Request, exc: StorageError):
    logger.error(f"[pipeline] Storage error on {request.url.path}: {exc}")
    message = str(exc) if is_dev_mode() else GENERIC_ERROR
    return JSONResponse(status_code=500, content={"success": False, "error": message})


@app.exception_handler(UpstreamError)
async def upstream_error_handler(request: Request, exc: UpstreamError):
    logger.error(f"[pipeline] Upstream error on {request.url.path}: {exc}")
    message = str(exc) if is_dev_mode() else exc.user_message()
    return JSONResponse(status_code=502, content={"success": False, "error": message})


@app.exception_handler(PipelineError)
async def pipeline_error_handler(request: Request, exc: PipelineError):
    logger.error(f"[pipeline] Error on {request.url.path}: {exc}")
    message = str(exc) if is_dev_mode() else GENERIC_ERROR
    return JSONResponse(status_code=500, content={"success": False, "error": message})


# Error masking middleware
@app.middleware("http")
async def error_masking_middleware(request: Request, call_next):
    """Mask detailed errors in production; show full errors in dev."""
    try:
        return await call_next(request)
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Unhandled error: {str(e)}")
        if is_dev_mode():
            logger.error(traceback.format_exc())
            return JSONResponse(
                status_code=500,
                content={"success": False, "error": str(e), "traceback": traceback.format_exc()},
            )
        return JSONResponse(status_code=500, content={"success": False, "error": GENERIC_ERROR})


# Called from a trusted front-end only
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["GET", "POST", "PATCH", "OPTIONS"],
    allow_headers=["authorization", "x-client-info", "apikey", "content-type"],
)

app.include_router(pipeline_router)
app.include_router(sources_router)


@app.get("/api/healthz")
async def healthz():
    return Capabilities.get_status()


@app.get("/api/config/env")
async def config_env():
    """Which environment variables are set (never their values)."""
    return get_env_presence()


@app.get("/metrics")
async def metrics_endpoint():
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
