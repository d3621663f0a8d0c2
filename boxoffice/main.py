import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from sqlalchemy import text

from boxoffice.config import get_settings
from boxoffice.database import SessionLocal, init_db
from boxoffice.errors import DomainError, ErrorCode
from boxoffice.rate_limit import limiter
from boxoffice.routers import checkin, events, payments, tickets, webhooks

logger = logging.getLogger(__name__)

ERROR_STATUS = {
    ErrorCode.TICKET_NOT_FOUND: 404,
    ErrorCode.EVENT_NOT_FOUND: 404,
    ErrorCode.ALREADY_CHECKED_IN: 409,
    ErrorCode.TICKET_NOT_PAID: 409,
    ErrorCode.AMOUNT_MISMATCH: 409,
    ErrorCode.DUPLICATE_CODE: 409,
    ErrorCode.DUPLICATE_TRANSACTION: 409,
    ErrorCode.SOLD_OUT: 409,
    ErrorCode.GATEWAY_NOT_CONNECTED: 409,
    ErrorCode.ORDER_MISMATCH: 409,
    ErrorCode.WRONG_GATEWAY: 409,
    ErrorCode.UNSUPPORTED_CURRENCY: 422,
    ErrorCode.INVALID_CHECKIN_TIME: 422,
    ErrorCode.PERSISTENCE_ERROR: 503,
    ErrorCode.GATEWAY_ERROR: 503,
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialize database and scheduler on startup, stop the scheduler on shutdown."""
    settings = get_settings()
    init_db()
    if settings.enable_scheduler:
        try:
            from boxoffice.services.scheduler import init_scheduler
            init_scheduler()
        except Exception:
            logger.exception("Scheduler failed to start; unsent emails will not be retried")
    yield
    if settings.enable_scheduler:
        from boxoffice.services.scheduler import shutdown_scheduler
        shutdown_scheduler()


app = FastAPI(
    title="Box Office",
    description="Ticket issuance, payment reconciliation and door check-in",
    version="1.0.0",
    lifespan=lifespan,
)
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)


# ============== Global Error Handlers ==============

@app.exception_handler(DomainError)
async def domain_error_handler(request: Request, exc: DomainError):
    """Map domain errors to a consistent JSON body; retryable ones to 503."""
    status_code = ERROR_STATUS.get(exc.code, 400)
    if exc.retryable:
        logger.warning("Retryable failure on %s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(
        status_code=status_code,
        content={"error": exc.code.value, "detail": exc.message, "retryable": exc.retryable},
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Return a consistent JSON format for validation errors."""
    errors = []
    for err in exc.errors():
        field = " -> ".join(str(loc) for loc in err["loc"] if loc != "body")
        errors.append(f"{field}: {err['msg']}" if field else err["msg"])
    return JSONResponse(
        status_code=422,
        content={"error": "Validation error", "detail": "; ".join(errors)},
    )


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    """Catch-all for unhandled exceptions: log full traceback, return safe message."""
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content={"error": "Internal server error", "detail": "An unexpected error occurred."},
    )


# API routers (JSON endpoints, prefixed with /api)
api_prefix = "/api"
app.include_router(payments.router, prefix=api_prefix)
app.include_router(tickets.router, prefix=api_prefix)
app.include_router(events.router, prefix=api_prefix)
app.include_router(checkin.router, prefix=api_prefix)

# Gateway callbacks (keep at root)
app.include_router(webhooks.router)   # /webhooks/stripe


# ============== CORS Middleware ==============
_settings = get_settings()
_origins = [o.strip() for o in _settings.cors_origins.split(",") if o.strip()] if _settings.cors_origins else ["*"]
app.add_middleware(
    CORSMiddleware,
    allow_origins=_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/health")
def health_check():
    """Health check endpoint: verifies DB connectivity."""
    checks = {"db": "ok"}
    status = "healthy"

    db = SessionLocal()
    try:
        db.execute(text("SELECT 1"))
    except Exception as e:
        logger.warning("Health check DB query failed: %s", e)
        checks["db"] = "unreachable"
        status = "unhealthy"
    finally:
        db.close()

    code = 200 if status == "healthy" else 503
    return JSONResponse(status_code=code, content={"status": status, "checks": checks})
