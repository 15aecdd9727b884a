"""
Email tracker API: FastAPI app, logging, middleware and startup wiring.
"""
import logging
import time
import warnings
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, RedirectResponse
from pydantic import ValidationError
from sqlalchemy.exc import OperationalError
from starlette.middleware.base import BaseHTTPMiddleware

load_dotenv()

from config import settings, validate_settings

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    datefmt='%Y-%m-%d %H:%M:%S',
    force=True
)
logger = logging.getLogger(__name__)

from database import Base, engine
# Registers the tracking tables on Base.metadata
from Tracking_module import Tracking_model  # noqa: F401
from Tracking_module.Tracking_router import router as tracking_router
from Tracking_module.scheduler import start_scheduler, shutdown_scheduler
from Login_module.Utils.rate_limiter import get_client_ip

SERVICE_NAME = "Email Tracker API"
SERVICE_VERSION = "1.0.0"


def _status_category(status_code: int) -> str:
    if status_code < 300:
        return "SUCCESS"
    if status_code < 400:
        return "REDIRECT"
    if status_code < 500:
        return "CLIENT_ERROR"
    return "SERVER_ERROR"


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """One log line per request: method, path, status, duration, client IP."""

    async def dispatch(self, request: Request, call_next):
        started = time.perf_counter()
        client_ip = get_client_ip(request)
        try:
            response = await call_next(request)
        except Exception as e:
            logger.error(
                f"{request.method} {request.url.path} | Status: 500 (SERVER_ERROR) | "
                f"Error: {e} | Duration: {time.perf_counter() - started:.3f}s | IP: {client_ip}"
            )
            raise

        logger.info(
            f"{request.method} {request.url.path} | "
            f"Status: {response.status_code} ({_status_category(response.status_code)}) | "
            f"Duration: {time.perf_counter() - started:.3f}s | IP: {client_ip}"
        )
        return response


def create_tables():
    """No migration tooling: create_all only adds missing tables."""
    try:
        Base.metadata.create_all(bind=engine)
        logger.info("Database tables ready")
    except OperationalError as e:
        logger.error(f"Database unreachable during table creation, will retry on next startup: {e}")


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(f"Starting {SERVICE_NAME} ({settings.ENVIRONMENT})")
    validate_settings(settings)
    create_tables()
    start_scheduler()
    yield
    shutdown_scheduler()
    logger.info(f"{SERVICE_NAME} stopped")


app = FastAPI(title=SERVICE_NAME, version=SERVICE_VERSION, lifespan=lifespan)


# ---------------------------------------------------------------------------
# Error responses
# ---------------------------------------------------------------------------

def _validation_details(exc) -> list:
    details = []
    for err in exc.errors():
        loc = err.get("loc") or ("body",)
        details.append({
            "source": loc[0],
            "field": loc[-1],
            "message": err.get("msg"),
            "type": err.get("type"),
        })
    return details


def _validation_response(exc, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=422,
        content={"status": "error", "message": message, "details": _validation_details(exc)},
    )


@app.exception_handler(RequestValidationError)
async def request_validation_exception_handler(request: Request, exc: RequestValidationError):
    return _validation_response(exc, "Request validation failed.")


@app.exception_handler(ValidationError)
async def pydantic_validation_exception_handler(request: Request, exc: ValidationError):
    return _validation_response(exc, "Validation failed.")


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled error on {request.method} {request.url.path}: {exc}", exc_info=True)
    return JSONResponse(status_code=500, content={"success": False, "error": "Internal server error"})


# ---------------------------------------------------------------------------
# Middleware and routes
# ---------------------------------------------------------------------------

ALLOWED_ORIGINS = [o.strip() for o in settings.ALLOWED_ORIGINS.split(",") if o.strip()]
if ALLOWED_ORIGINS == ["*"]:
    warnings.warn("CORS is set to allow all origins. This is not recommended for production.")

app.add_middleware(RequestLoggingMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_credentials=ALLOWED_ORIGINS != ["*"],
    allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type"],
)

app.include_router(tracking_router)


@app.get("/track/{tracking_id}/pixel.png", include_in_schema=False)
def legacy_tracking_pixel(tracking_id: str):
    """Pixels embedded before the API moved under /api/track"""
    return RedirectResponse(url=f"/api/track/{tracking_id}/pixel.png", status_code=301)


@app.get("/")
def root():
    return {
        "status": "success",
        "message": SERVICE_NAME,
        "version": SERVICE_VERSION,
        "endpoints": {
            "create": "/api/track/create",
            "pixel": "/api/track/{id}/pixel.png",
            "emails": "/api/track/emails",
            "stats": "/api/track/stats",
            "download": "/api/track/download/{attachment_id}",
        },
        "docs": "/docs",
    }


@app.get("/health")
def health_check():
    """Health check endpoint for container orchestration."""
    return {"status": "healthy", "service": SERVICE_NAME}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=8030, log_level="info")
