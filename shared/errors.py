"""
Shared error handling for the Token Verifier.
"""

from enum import Enum
from typing import Dict, Any, Optional

from pydantic import BaseModel

from shared.logging import request_id_var


class ErrorResponse(BaseModel):
    """Standard error response format."""

    request_id: Optional[str] = None
    code: str
    message: str
    details: Dict[str, Any] = {}


class VerifierException(Exception):
    """Base exception for Token Verifier errors."""

    def __init__(self, code: str, message: str, details: Optional[Dict[str, Any]] = None):
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_response(self) -> ErrorResponse:
        """Convert to error response."""
        return ErrorResponse(
            request_id=request_id_var.get(),
            code=self.code,
            message=self.message,
            details=self.details
        )


class AuthenticationError(VerifierException):
    """Caller could not be authenticated.

    The message and details stay internal; ``to_response`` always renders
    the same generic body so callers cannot tell rejection reasons apart.
    """

    def __init__(self, message: str = "Authentication failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("UNAUTHORIZED", message, details)

    def to_response(self) -> ErrorResponse:
        return ErrorResponse(
            request_id=request_id_var.get(),
            code=self.code,
            message="Unauthorized",
        )


class ConfigurationError(VerifierException):
    """A required configuration value is absent or invalid."""

    def __init__(self, message: str = "Configuration missing", details: Optional[Dict[str, Any]] = None):
        super().__init__("CONFIGURATION_MISSING", message, details)


class DiscoveryFailureCause(str, Enum):
    """Why fetching provider metadata or keys failed."""
    NETWORK = "network"
    HTTP_STATUS = "http_status"
    PARSE = "parse"
    MISSING_FIELD = "missing_field"


class DiscoveryError(VerifierException):
    """Provider metadata or key set could not be retrieved."""

    def __init__(self,
                 cause: DiscoveryFailureCause,
                 message: str = "Discovery failed",
                 details: Optional[Dict[str, Any]] = None,
                 transient: bool = False):
        super().__init__("DISCOVERY_FAILURE", message, details)
        self.cause = cause
        self.transient = transient

    def __str__(self) -> str:
        return f"{self.cause.value}: {self.message}"
