"""Request/Response middleware for consistent API behavior.

Assigns a request id, times the request, logs request and response
metadata and turns anything that escapes the routers into a JSON 500.
"""

from __future__ import annotations

import time
import logging
from typing import Callable
from uuid import uuid4

from fastapi import Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from ..core.structured_logging import request_id_var, user_id_var

logger = logging.getLogger(__name__)


class RequestResponseMiddleware(BaseHTTPMiddleware):
    """Middleware for consistent request/response handling."""

    def __init__(
        self,
        app: ASGIApp,
        log_requests: bool = True,
        log_responses: bool = True,
    ):
        super().__init__(app)
        self.log_requests = log_requests
        self.log_responses = log_responses

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get("x-request-id") or str(uuid4())
        request.state.request_id = request_id
        request_token = request_id_var.set(request_id)
        user_token = user_id_var.set(None)

        start_time = time.time()
        request.state._start_time = start_time

        if self.log_requests:
            self._log_request(request, request_id)

        try:
            response = await call_next(request)
        except Exception as e:
            processing_time_ms = int((time.time() - start_time) * 1000)
            logger.error(
                "Unhandled exception in request processing",
                extra={
                    "request_id": request_id,
                    "method": request.method,
                    "path": request.url.path,
                    "error": str(e),
                    "processing_time_ms": processing_time_ms,
                },
                exc_info=True
            )
            response = JSONResponse(
                status_code=500,
                content={
                    "error": "internal_error",
                    "message": "An unexpected error occurred while processing your request",
                },
            )
        finally:
            request_id_var.reset(request_token)
            user_id_var.reset(user_token)

        processing_time_ms = int((time.time() - start_time) * 1000)
        response.headers["X-Request-ID"] = request_id
        response.headers["X-Process-Time"] = f"{processing_time_ms}ms"

        if self.log_responses:
            self._log_response(request, response, request_id, processing_time_ms)
        return response

    def _log_request(self, request: Request, request_id: str):
        log_data = {
            "request_id": request_id,
            "method": request.method,
            "path": request.url.path,
            "user_agent": request.headers.get("user-agent", ""),
            "remote_addr": request.client.host if request.client else "unknown",
            "content_length": request.headers.get("content-length", 0),
            # Never log the token itself
            "auth_present": "authorization" in request.headers,
        }
        logger.info(f"Incoming request: {request.method} {request.url.path}", extra=log_data)

    def _log_response(self, request: Request, response: Response, request_id: str, processing_time_ms: int):
        log_data = {
            "request_id": request_id,
            "method": request.method,
            "path": request.url.path,
            "status_code": response.status_code,
            "processing_time_ms": processing_time_ms,
        }
        if response.status_code >= 500:
            logger.error(f"Request failed: {request.method} {request.url.path}", extra=log_data)
        elif response.status_code >= 400:
            logger.warning(f"Request rejected: {request.method} {request.url.path}", extra=log_data)
        else:
            logger.info(f"Request completed: {request.method} {request.url.path}", extra=log_data)
