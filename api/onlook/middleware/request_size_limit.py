"""Request size limiting middleware.

Generation requests carry two photos as base64 data URLs, so the limit is
sized for that rather than for ordinary JSON bodies.
"""

import logging
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.types import ASGIApp

logger = logging.getLogger(__name__)


class RequestSizeLimitMiddleware(BaseHTTPMiddleware):
    """Reject requests whose Content-Length exceeds ``max_size`` bytes.

    The check happens before the body is read.
    """

    def __init__(self, app: ASGIApp, max_size: int = 26214400):  # 25MB default
        super().__init__(app)
        self.max_size = max_size
        self.max_size_mb = max_size / (1024 * 1024)

    async def dispatch(self, request: Request, call_next):
        content_length = request.headers.get("content-length")

        if content_length:
            try:
                size = int(content_length)
            except (ValueError, TypeError):
                logger.warning(f"Invalid Content-Length header: {content_length}")
                return JSONResponse(
                    status_code=400,
                    content={
                        "error": "invalid_request",
                        "message": "Invalid Content-Length header"
                    }
                )
            if size > self.max_size:
                logger.warning(
                    f"Request size {size} bytes exceeds limit {self.max_size} bytes",
                    extra={
                        "content_length": size,
                        "max_size": self.max_size,
                        "client": request.client.host if request.client else "unknown"
                    }
                )
                return JSONResponse(
                    status_code=413,
                    content={
                        "error": "payload_too_large",
                        "message": f"Request body too large. Maximum size is {self.max_size_mb:.1f}MB",
                        "max_size_bytes": self.max_size
                    }
                )

        return await call_next(request)
