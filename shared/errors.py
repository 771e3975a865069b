"""
Shared error handling for the Transaction Gatekeeper.
"""

from typing import Dict, Any, Optional
from pydantic import BaseModel, Field

from shared.logging import request_id_var


class ErrorResponse(BaseModel):
    """Standard error response format."""

    request_id: Optional[str] = None
    code: str
    message: str
    details: Dict[str, Any] = Field(default_factory=dict)


class GatewayException(Exception):
    """Base exception for gatekeeper services."""

    status_code: int = 500

    def __init__(
        self,
        code: str,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        status_code: Optional[int] = None,
    ):
        self.code = code
        self.message = message
        self.details = details or {}
        if status_code is not None:
            self.status_code = status_code
        super().__init__(message)

    def to_response(self) -> ErrorResponse:
        """Convert to error response."""
        return ErrorResponse(
            request_id=request_id_var.get(),
            code=self.code,
            message=self.message,
            details=self.details
        )


class InvalidRequestError(GatewayException):
    """Caller supplied an incomplete or malformed request. Never retried."""

    status_code = 400

    def __init__(self, message: str = "Incomplete request parameters", details: Optional[Dict[str, Any]] = None):
        super().__init__("INVALID_REQUEST", message, details)


class StoreUnavailableError(GatewayException):
    """The shared state store could not be reached or timed out."""

    def __init__(self, message: str = "State store unavailable", details: Optional[Dict[str, Any]] = None):
        super().__init__("STORE_UNAVAILABLE", message, details)


class ProcessorFailureError(GatewayException):
    """The downstream transaction processor failed after an allow decision."""

    def __init__(self, message: str = "Transaction processor failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("PROCESSOR_FAILURE", message, details)


class ScriptError(GatewayException):
    """The gatekeeper script returned a result of unexpected shape."""

    def __init__(self, message: str = "Unexpected gatekeeper script result", details: Optional[Dict[str, Any]] = None):
        super().__init__("SCRIPT_ERROR", message, details)
