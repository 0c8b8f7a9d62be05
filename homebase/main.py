import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

# Registers every table on Base before create_all
from . import models  # noqa: F401
from .config import FRONTEND_URL
from .database import Base, engine
from .domain.proposals.router import router as proposals_router
from .domain.proposals.service import invalid_transition_detail
from .domain.proposals.state_machine import InvalidTransition
from .rate_limiter import get_redis_client
from .routes.appointments import router as appointments_router
from .routes.dashboard import router as dashboard_router
from .routes.notifications import router as notifications_router
from .routes.upload import router as upload_router
from .routes.users import router as users_router
from .security_headers import SecurityHeadersMiddleware

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
for noisy in ("httpx", "httpcore", "botocore", "urllib3"):
    logging.getLogger(noisy).setLevel(logging.WARNING)

logger = logging.getLogger(__name__)

SECURITY_HEADERS_ENABLED = os.getenv("SECURITY_HEADERS_ENABLED", "true").lower() == "true"
ALLOWED_ORIGINS = [
    origin.strip()
    for origin in os.getenv("ALLOWED_ORIGINS", f"{FRONTEND_URL},http://localhost:3000").split(",")
    if origin.strip()
]


def create_tables() -> None:
    try:
        Base.metadata.create_all(bind=engine, checkfirst=True)
        logger.info("✅ Proposal store tables ready")
    except SQLAlchemyError as e:
        # Several workers booting together race on CREATE TABLE
        if "already exists" in str(e) or "duplicate key" in str(e):
            logger.info("Tables already created by another worker")
        else:
            logger.error(f"❌ Failed to create tables: {e}")


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("🚀 HomeBase API starting")
    create_tables()
    if get_redis_client() is None:
        logger.warning("⚠️ Redis unavailable, upload and signing limits are per process")
    yield
    logger.info("HomeBase API stopped")


app = FastAPI(title="HomeBase API", version="1.0.0", lifespan=lifespan)


def _jsonable_errors(exc: RequestValidationError) -> list[dict]:
    # ctx may carry the raised ValueError itself
    errors = []
    for error in exc.errors():
        error = dict(error)
        if "ctx" in error:
            error["ctx"] = {key: str(value) for key, value in error["ctx"].items()}
        errors.append(error)
    return errors


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """A missing or malformed Authorization header is an auth failure, not a bad payload"""
    if any("authorization" in str(error.get("loc", "")).lower() for error in exc.errors()):
        logger.warning(f"🔒 {request.url.path}: missing or invalid Authorization header")
        return JSONResponse(
            status_code=401,
            content={"detail": "Not authenticated. Please provide a valid Bearer token in the Authorization header."},
        )

    logger.warning(f"Rejected payload for {request.method} {request.url.path}: {exc.errors()}")
    return JSONResponse(status_code=422, content={"detail": _jsonable_errors(exc)})


@app.exception_handler(InvalidTransition)
async def invalid_transition_handler(request: Request, exc: InvalidTransition):
    logger.warning(f"Refused status change on {request.url.path}: {exc}")
    return JSONResponse(status_code=409, content={"detail": invalid_transition_detail(exc)})


@app.middleware("http")
async def log_unhandled_errors(request: Request, call_next):
    try:
        return await call_next(request)
    except Exception as e:
        logger.error(f"❌ {request.method} {request.url.path} failed: {e}")
        raise


if SECURITY_HEADERS_ENABLED:
    app.add_middleware(SecurityHeadersMiddleware, exclude_paths=["/health", "/docs", "/openapi.json"])
else:
    logger.warning("Security headers disabled")

logger.info(f"CORS origins: {ALLOWED_ORIGINS}")
app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PATCH", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["*"],
)

for router in (
    users_router,
    upload_router,
    proposals_router,
    appointments_router,
    notifications_router,
    dashboard_router,
):
    app.include_router(router)


@app.get("/")
def root():
    return {"message": "HomeBase API is running"}


@app.get("/health")
def health():
    return {"status": "healthy"}


@app.get("/health/redis")
async def redis_health_check():
    client = get_redis_client()
    if client is None:
        return JSONResponse(status_code=503, content={"status": "unavailable", "redis": "disconnected"})

    try:
        client.ping()
    except Exception as e:
        logger.error(f"Redis health check failed: {e}")
        return JSONResponse(status_code=503, content={"status": "unhealthy", "redis": "error"})

    return {"status": "healthy", "redis": "connected"}
