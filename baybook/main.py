from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.base import BaseHTTPMiddleware
from contextlib import asynccontextmanager
import time
import uuid

from .config import settings
from .database import create_tables
from .services.sync_scheduler import start_sync_scheduler, stop_sync_scheduler
from .utils.logging_config import setup_logging, get_logger, set_request_context, clear_request_context

from .routers import bookings, waitlist, sync, health

logger = get_logger("baybook.main")

VERSION = health.VERSION


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events"""
    setup_logging(settings.log_level, json_format=settings.log_json, terminal_id=settings.terminal_id)

    logger.info(f"Starting baybook terminal {settings.terminal_id}")
    logger.info(f"Environment: {settings.environment}")
    logger.info(f"CORS Origins: {settings.cors_origins}")

    create_tables()
    logger.info("Local booking cache ready")

    if not settings.remote_enabled:
        logger.warning("REMOTE_STORE_URL not set, bookings stay on this terminal")

    start_sync_scheduler()

    yield

    logger.info("Shutting down baybook...")
    stop_sync_scheduler()


app = FastAPI(
    title="Baybook API",
    description="Booking and availability for simulator bays with offline-first sync",
    version=VERSION,
    lifespan=lifespan
)


# CORS must be registered first
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["*"],
    expose_headers=["X-Request-ID"],
)


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        if settings.is_production:
            response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"
        return response


class RequestIdMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get("X-Request-ID", str(uuid.uuid4())[:8])
        request.state.request_id = request_id
        set_request_context(request_id)

        start = time.time()
        try:
            response = await call_next(request)
            response.headers["X-Request-ID"] = request_id
            logger.api_request(
                request.method,
                request.url.path,
                response.status_code,
                round((time.time() - start) * 1000, 2)
            )
            return response
        finally:
            clear_request_context()


app.add_middleware(RequestIdMiddleware)
app.add_middleware(SecurityHeadersMiddleware)


app.include_router(health.router)
app.include_router(bookings.router)
app.include_router(waitlist.router)
app.include_router(sync.router)


@app.get("")
@app.get("/")
def root():
    return {
        "message": "Baybook API",
        "version": VERSION,
        "docs": "/docs",
        "status": "running",
        "terminal_id": settings.terminal_id,
    }
