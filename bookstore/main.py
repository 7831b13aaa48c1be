import logging
import time
from contextlib import asynccontextmanager
from fastapi import FastAPI, Depends, HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from sqlalchemy import text
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from starlette.exceptions import HTTPException as StarletteHTTPException

from bookstore import __version__, models, tokens  # noqa: F401 (models registers tables on Base)
from bookstore.config import settings
from bookstore.database import Base, SessionLocal, engine, get_db
from bookstore.errors import ApiError, Conflict, FieldError, RateLimited, Unexpected, ValidationFailed
from bookstore.logging_config import setup_logging
from bookstore.mailer import Mailer
from bookstore.notifications import NotificationDispatcher
from bookstore.rate_limiter import limiter
from bookstore.routers import auth, books, notifications, users
from bookstore.storage import SupabaseStorage

# Setup logging
setup_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup logic
    logger.info("Starting up bookstore API...")
    if not settings.SKIP_DB_INIT:
        Base.metadata.create_all(bind=engine)
        db = SessionLocal()
        try:
            tokens.purge_expired(db)
        finally:
            db.close()
    yield
    # Shutdown logic
    logger.info("Shutting down bookstore API...")


def _error_response(error: ApiError) -> JSONResponse:
    return JSONResponse(status_code=error.status_code, content=error.to_dict())


def _log_error(request: Request, error: ApiError) -> None:
    if not error.is_operational:
        logger.exception(f"Unhandled error on {request.method} {request.url.path}")
    elif error.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {error.message}")


async def api_error_handler(request: Request, exc: ApiError):
    _log_error(request, exc)
    return _error_response(exc)


async def validation_error_handler(request: Request, exc: RequestValidationError):
    errors = []
    for error in exc.errors():
        location = [str(part) for part in error.get("loc", ()) if part not in ("body", "query", "path")]
        message = str(error.get("msg", "Invalid value")).removeprefix("Value error, ")
        errors.append(FieldError(".".join(location) or "request", error.get("type", "invalid"), message))
    return _error_response(ValidationFailed(errors=errors))


async def http_error_handler(request: Request, exc: StarletteHTTPException):
    return _error_response(ApiError(str(exc.detail), status_code=exc.status_code))


async def rate_limit_handler(request: Request, exc: RateLimitExceeded):
    return _error_response(RateLimited(f"Too many requests, please try again later. ({exc.detail})"))


async def integrity_error_handler(request: Request, exc: IntegrityError):
    logger.warning(f"Integrity error on {request.method} {request.url.path}: {exc.orig}")
    detail = str(exc.orig).lower()
    if "unique" in detail or "duplicate" in detail:
        return _error_response(Conflict("Duplicate field value. Please use another value."))
    return _error_response(ValidationFailed("Invalid input data: a required value is missing or out of range."))


async def unexpected_error_handler(request: Request, exc: Exception):
    error = Unexpected(is_operational=False)
    _log_error(request, error)
    return _error_response(error)


def create_app(
    mailer: Mailer | None = None,
    storage: SupabaseStorage | None = None,
    notifier: NotificationDispatcher | None = None,
) -> FastAPI:
    app = FastAPI(
        title="Bookstore API",
        description="Book catalog and account service",
        version=__version__,
        lifespan=lifespan,
    )

    app.state.mailer = mailer or Mailer.from_settings()
    app.state.storage = storage or SupabaseStorage.from_settings()
    app.state.notifier = notifier or NotificationDispatcher()
    app.state.session_factory = SessionLocal
    app.state.limiter = limiter

    app.add_exception_handler(ApiError, api_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_error_handler)
    app.add_exception_handler(RateLimitExceeded, rate_limit_handler)
    app.add_exception_handler(IntegrityError, integrity_error_handler)
    app.add_exception_handler(Exception, unexpected_error_handler)

    app.add_middleware(SlowAPIMiddleware)

    # CORS configuration
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allow_origins or ["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        start = time.time()
        response = await call_next(request)
        duration_ms = (time.time() - start) * 1000
        logger.info(
            "%s %s -> %s (%.2f ms) ip=%s",
            request.method,
            request.url.path,
            response.status_code,
            duration_ms,
            request.client.host if request.client else "unknown",
        )
        return response

    # Health check endpoint
    @app.get("/health", tags=["System"])
    async def health_check(db: Session = Depends(get_db)):
        try:
            # Check database connection
            db.execute(text("SELECT 1"))
            return {"status": "healthy", "service": "bookstore-api", "database": "connected"}
        except Exception as e:
            logger.error(f"Health check failed: {e}")
            raise HTTPException(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                detail="Service unhealthy"
            )

    app.include_router(auth.router)
    app.include_router(books.router)
    app.include_router(users.router)
    app.include_router(notifications.router)

    return app


app = create_app()

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
