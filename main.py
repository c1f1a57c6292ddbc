import logging
import sqlite3
from contextlib import asynccontextmanager
from datetime import datetime, timezone

import structlog
from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from config import get_settings
from contact_store import ContactStore
from db_models import FinalResponse, IdentifyRequest
from db_setup import get_db_connection, init_db
from errors import ErrorKind, IdentifyError, classify
from identify_service import process_contact
from middleware import RateLimitMiddleware, SecurityHeadersMiddleware
from validation import validate_identify_request


structlog.configure(
    processors=[
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.JSONRenderer()
        if get_settings().log_format == "json"
        else structlog.dev.ConsoleRenderer(),
    ],
    wrapper_class=structlog.make_filtering_bound_logger(
        logging.getLevelName(get_settings().log_level)
    ),
    context_class=dict,
    logger_factory=structlog.PrintLoggerFactory(),
    cache_logger_on_first_use=True,
)

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    init_db()
    logger.info("Contact identity API starting", db_name=settings.db_name, environment=settings.environment)
    yield
    logger.info("Contact identity API stopped")


app = FastAPI(
    title="Contact Identity Reconciliation API",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    RateLimitMiddleware,
    max_requests=get_settings().rate_limit_max_requests,
    window_seconds=get_settings().rate_limit_window_seconds,
)
app.add_middleware(SecurityHeadersMiddleware)


def get_contact_store():
    conn = get_db_connection()
    try:
        yield ContactStore(conn)
    finally:
        conn.close()


def error_response(exc: Exception) -> JSONResponse:
    kind = classify(exc)
    if kind is ErrorKind.INPUT:
        return JSONResponse(status_code=400, content={"error": str(exc)})
    if kind is ErrorKind.PERSISTENCE_CONFLICT:
        return JSONResponse(status_code=503, content={"error": "Service unavailable"})
    return JSONResponse(status_code=500, content={"error": "Internal server error"})


@app.exception_handler(IdentifyError)
async def identify_error_handler(request: Request, exc: IdentifyError):
    logger.warning("identify.rejected", kind=exc.kind.value, error=exc.message)
    return error_response(exc)

@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    message = errors[0]["msg"] if errors else "Invalid request body"
    logger.warning("identify.validation_failed", error=message)
    return error_response(IdentifyError(ErrorKind.INPUT, message))

@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.error("request.failed", path=request.url.path, error=repr(exc))
    return error_response(exc)


@app.get("/")
async def root():
    return {"message": "Contact identity API is up"}


@app.get("/health")
def health(store: ContactStore = Depends(get_contact_store)):
    try:
        store.ping()
    except sqlite3.Error as exc:
        logger.error("health.check_failed", error=str(exc))
        return JSONResponse(
            status_code=500,
            content={"status": "error", "error": "Database connection failed"},
        )
    return {"status": "ok", "timestamp": datetime.now(timezone.utc).isoformat()}


@app.post("/identify", response_model=FinalResponse)
def identify(request: IdentifyRequest, store: ContactStore = Depends(get_contact_store)):
    logger.info("identify.request", payload=request.model_dump(exclude_none=True))

    error = validate_identify_request(request)
    if error:
        raise IdentifyError(ErrorKind.INPUT, error)

    phone = request.phoneNumber
    contact = process_contact(
        store,
        request.email,
        str(phone) if phone is not None else None,
        max_retries=get_settings().max_retries,
    )

    logger.info("identify.result", contact=contact.model_dump())
    return FinalResponse(contact=contact)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
