import logging
import os

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from starlette.exceptions import HTTPException as StarletteHTTPException

from .core.config import settings
from .core.structured_logging import setup_logging
from .models.exceptions import (
    OnlookBaseException,
    EXCEPTION_HANDLERS,
    to_http_exception
)
from .middleware.request_response import RequestResponseMiddleware
from .middleware.request_size_limit import RequestSizeLimitMiddleware
from .routers import credits, generate, generations, health
from .services import storage_adapter


setup_logging(settings.log_level)
logger = logging.getLogger(__name__)

app = FastAPI(
    title=settings.service_name,
    description="Onlook API - virtual try-on generation backed by a per-user credit ledger",
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc",
)

app.add_middleware(RequestSizeLimitMiddleware, max_size=settings.max_request_size)

origins = [o.strip() for o in (settings.cors_allow_origins or "").split(",") if o.strip()]
if not origins:
    # Default: wildcard in dev; none in prod
    is_production = settings.service_env in ["prod", "production"]
    origins = [] if is_production else ["*"]

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=False,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type", "X-Request-ID"]
)

# Added last so it wraps everything else
app.add_middleware(RequestResponseMiddleware)


@app.exception_handler(OnlookBaseException)
async def onlook_exception_handler(request: Request, exc: OnlookBaseException):
    """Map domain exceptions to their HTTP status and JSON body."""
    for exc_type, handler in EXCEPTION_HANDLERS.items():
        if isinstance(exc, exc_type):
            http_exc = handler(exc)
            return JSONResponse(
                status_code=http_exc.status_code,
                content=http_exc.detail
            )

    http_exc = to_http_exception(exc, status_code=500)
    return JSONResponse(
        status_code=http_exc.status_code,
        content=http_exc.detail
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Request validation failures are a client error, not a 422."""
    return JSONResponse(
        status_code=400,
        content={
            "error": "invalid_request",
            "message": "Invalid request body",
            "errors": [
                {"loc": list(e.get("loc", [])), "msg": e.get("msg", "")}
                for e in exc.errors()
            ],
        },
    )


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    """Standardize HTTP errors (like 404/405) to the error/message shape."""
    message = exc.detail if isinstance(exc.detail, str) else "Request failed"
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": message.lower().replace(" ", "_"), "message": message},
    )


app.include_router(generate.router)
app.include_router(credits.router)
app.include_router(generations.router)
app.include_router(health.router)

# Static serving for local storage
if storage_adapter.backend_name() == "local":
    os.makedirs(settings.local_storage_dir, exist_ok=True)
    app.mount("/static", StaticFiles(directory=settings.local_storage_dir), name="static")
