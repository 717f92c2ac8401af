"""
Shared error handling for the Service Marketplace.
"""

from typing import Dict, Any, Optional
from pydantic import BaseModel


class ErrorResponse(BaseModel):
    """Standard error response format."""

    code: str
    message: str
    details: Dict[str, Any] = {}


class MarketplaceException(Exception):
    """Base exception for Service Marketplace services."""

    status_code = 400

    def __init__(self, code: str, message: str, details: Optional[Dict[str, Any]] = None):
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_response(self) -> ErrorResponse:
        """Convert to the structured error response used in logs."""
        return ErrorResponse(
            code=self.code,
            message=self.message,
            details=self.details
        )

    def to_payload(self) -> Dict[str, Any]:
        """Body returned to the HTTP caller."""
        return {"message": self.message}


class ValidationError(MarketplaceException):
    """Validation-related errors."""

    status_code = 400

    def __init__(self, message: str = "Validation failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("VALIDATION_ERROR", message, details)


class RateLimitError(MarketplaceException):
    """Rate limiting errors."""

    status_code = 429

    def __init__(
        self,
        message: str = "Too many requests. Please try again later.",
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__("RATE_LIMIT_ERROR", message, details)

    def to_payload(self) -> Dict[str, Any]:
        return {"status": self.status_code, "error": self.message}


class StoreError(MarketplaceException):
    """Document store failures. The cause is logged, never returned."""

    status_code = 500

    def __init__(self, message: str = "Internal server error", details: Optional[Dict[str, Any]] = None):
        super().__init__("STORE_ERROR", message, details)
