"""Custom exception classes for the Onlook API.

Each exception carries a human-readable message plus structured details.
The handlers at the bottom of the module convert them to HTTP errors with
the stable ``error`` codes the mobile client switches on.
"""

from typing import Dict, Any, Optional, List
from fastapi import HTTPException


class OnlookBaseException(Exception):
    """Base exception for all Onlook API errors."""

    error_code = "internal_error"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)


class MissingFieldsException(OnlookBaseException):
    """Raised when required request fields are absent or empty."""

    error_code = "missing_fields"

    def __init__(self, fields: List[str]):
        self.fields = fields
        super().__init__("Missing required fields", {"fields": fields})


class UnauthorizedException(OnlookBaseException):
    """Raised when the bearer credential is missing, malformed or rejected."""

    error_code = "unauthorized"

    def __init__(self, message: str = "Invalid or expired session."):
        super().__init__(message)


class InsufficientCreditsException(OnlookBaseException):
    """Raised when the ledger refuses to consume a credit."""

    error_code = "payment_required"

    def __init__(self, message: str = "Insufficient credits.", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details)


class MalformedInputException(OnlookBaseException):
    """Raised when an image payload is not a base64 image data URL."""

    error_code = "malformed_input"

    def __init__(self, field: str, message: str = "Expected a base64 data URL: data:image/<type>;base64,<...>"):
        self.field = field
        super().__init__(message, {"field": field})


class GenerationFailedException(OnlookBaseException):
    """Raised when the image edit provider call or its result handling fails."""

    error_code = "generation_failed"

    def __init__(self,
                 message: str,
                 provider: Optional[str] = None,
                 model: Optional[str] = None,
                 details: Optional[Dict[str, Any]] = None):
        self.provider = provider
        self.model = model
        generation_details = details or {}
        if provider:
            generation_details["provider"] = provider
        if model:
            generation_details["model"] = model
        super().__init__(message, generation_details)


class LedgerUnavailableException(OnlookBaseException):
    """Raised when the credit ledger cannot be read."""

    error_code = "ledger_unavailable"


class StorageException(OnlookBaseException):
    """Raised when storage operations fail."""

    error_code = "storage_failed"

    def __init__(self,
                 operation: str,
                 key: Optional[str] = None,
                 storage_backend: Optional[str] = None,
                 details: Optional[Dict[str, Any]] = None):
        self.operation = operation
        self.key = key
        self.storage_backend = storage_backend
        message = f"Storage {operation} failed"
        storage_details = details or {}
        if key:
            storage_details["key"] = key
        if storage_backend:
            storage_details["backend"] = storage_backend
        super().__init__(message, storage_details)


# HTTP Exception converters for FastAPI
def to_http_exception(exc: OnlookBaseException, status_code: int = 500) -> HTTPException:
    """Convert custom exception to HTTPException for FastAPI."""
    detail = {
        "error": exc.error_code,
        "message": exc.message,
        **exc.details
    }
    return HTTPException(status_code=status_code, detail=detail)


def bad_request_to_http_exception(exc: OnlookBaseException) -> HTTPException:
    return to_http_exception(exc, status_code=400)


def unauthorized_to_http_exception(exc: UnauthorizedException) -> HTTPException:
    return to_http_exception(exc, status_code=401)


def payment_required_to_http_exception(exc: InsufficientCreditsException) -> HTTPException:
    """Payment required gets its own status so the client can offer a top-up."""
    return to_http_exception(exc, status_code=402)


def generation_to_http_exception(exc: GenerationFailedException) -> HTTPException:
    return to_http_exception(exc, status_code=500)


def ledger_to_http_exception(exc: LedgerUnavailableException) -> HTTPException:
    return to_http_exception(exc, status_code=503)


def storage_to_http_exception(exc: StorageException) -> HTTPException:
    return to_http_exception(exc, status_code=500)


# Exception handler registry
EXCEPTION_HANDLERS = {
    MissingFieldsException: bad_request_to_http_exception,
    MalformedInputException: bad_request_to_http_exception,
    UnauthorizedException: unauthorized_to_http_exception,
    InsufficientCreditsException: payment_required_to_http_exception,
    GenerationFailedException: generation_to_http_exception,
    LedgerUnavailableException: ledger_to_http_exception,
    StorageException: storage_to_http_exception,
}
