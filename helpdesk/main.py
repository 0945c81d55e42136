"""FastAPI application and app configuration for the helpdesk API.

This module creates the FastAPI `app`, configures middleware (CORS, rate limiting),
maps domain exceptions to the standard error payload, registers the routers under
`helpdesk.routers.*`, wires event subscribers and initializes the DB on startup.
"""

from __future__ import annotations

from dotenv import load_dotenv

# Must run before helpdesk modules read their configuration from the environment
load_dotenv()

import importlib
import logging
import os
import warnings
from contextlib import asynccontextmanager
from typing import List

from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from starlette.exceptions import HTTPException as StarletteHTTPException

from helpdesk import lifecycle
from helpdesk.database import init_db
from helpdesk.errors import error_payload, make_validation_error_response
from helpdesk.events import bus
from helpdesk.notifications import WEBHOOK_TIMEOUT, register_handlers, webhooks
from helpdesk.ratelimit import DEFAULT_RATE_LIMIT, limiter, rate_limit

logger = logging.getLogger(__name__)
logging.basicConfig(level=os.getenv("LOG_LEVEL", "INFO"))

# python-jose still calls datetime.utcnow()
warnings.filterwarnings("ignore", message=r"datetime.datetime.utcnow\(\) is deprecated")
warnings.filterwarnings("ignore", message=r"Accessing argon2.__version__ is deprecated")

ROUTERS = (
    "auth",
    "users",
    "two_factor",
    "tickets",
    "comments",
    "attachments",
    "tags",
    "categories",
    "knowledge",
    "search",
    "audit_logs",
    "cache",
    "notifications",
    "system",
)

# Websocket-only routers; the limiter dependency needs an HTTP request
UNLIMITED_ROUTERS = {"notifications"}


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Lifespan startup: initializing database and other resources")
    init_db()
    yield
    logger.info("Lifespan shutdown: cleaning up resources")
    if not webhooks.drain(timeout=WEBHOOK_TIMEOUT):
        logger.warning("Shutting down with webhook deliveries still in flight")


app = FastAPI(title="Helpdesk API", version="1.0.0", lifespan=lifespan)
app.state.limiter = limiter

origins = os.getenv("CORS_ORIGINS", "*")
if origins == "*":
    allowed_origins: List[str] = ["*"]
else:
    allowed_origins = [o.strip() for o in origins.split(",") if o.strip()]

app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["*"],
    expose_headers=["ETag"],
)


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded):
    return JSONResponse(status_code=429, content=error_payload("rate_limited", "Rate limit exceeded"))


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(status_code=422, content=make_validation_error_response(exc.errors()))


_HTTP_ERROR_CODES = {
    401: "unauthorized",
    403: "forbidden",
    404: "not_found",
    405: "method_not_allowed",
}


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    # api_error() already built the standard body; anything else gets wrapped
    detail = exc.detail
    if isinstance(detail, dict) and "error" in detail:
        content = detail
    else:
        content = error_payload(_HTTP_ERROR_CODES.get(exc.status_code, "http_error"), str(detail))
    return JSONResponse(status_code=exc.status_code, content=content, headers=getattr(exc, "headers", None))


_LIFECYCLE_STATUS = {
    lifecycle.TicketNotFound: 404,
    lifecycle.AgentNotFound: 404,
    lifecycle.InvalidState: 409,
    lifecycle.RoleViolation: 400,
    lifecycle.VersionConflict: 409,
    lifecycle.LifecycleValidationError: 422,
}


@app.exception_handler(lifecycle.LifecycleError)
async def lifecycle_error_handler(request: Request, exc: lifecycle.LifecycleError):
    status_code = _LIFECYCLE_STATUS.get(type(exc), 400)
    headers = None
    if isinstance(exc, lifecycle.VersionConflict):
        headers = {"ETag": f'"{exc.current_version}"'}
    return JSONResponse(status_code=status_code, content=error_payload(exc.code, exc.message, exc.details), headers=headers)


for name in ROUTERS:
    module = importlib.import_module(f"helpdesk.routers.{name}")
    dependencies = [] if name in UNLIMITED_ROUTERS else [Depends(rate_limit)]
    app.include_router(module.router, dependencies=dependencies)
    logger.debug("Included router: %s", module.__name__)

register_handlers(bus)


__all__ = ["app", "limiter", "DEFAULT_RATE_LIMIT"]


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host=os.getenv("HOST", "0.0.0.0"), port=int(os.getenv("PORT", "8000")))
