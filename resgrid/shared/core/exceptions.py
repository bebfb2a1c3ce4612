from typing import Optional, Dict, Any, List


class ResgridException(Exception):
    """Base exception for all Resource Grid errors."""

    def __init__(
        self,
        message: str,
        code: str = "internal_error",
        status_code: int = 500,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.status_code = status_code
        self.details = details or {}

    def __str__(self) -> str:
        return f"[{self.code}] {self.message} (status={self.status_code})"


class TransportError(ResgridException):
    """
    Raised when a fetch or mutate call fails on the wire.

    Covers network failures, timeouts, non-2xx responses and bodies that
    cannot be decoded into the expected shape. `upstream_status` is the
    HTTP status of the response when one was received.
    """

    def __init__(
        self,
        message: str,
        code: str = "transport_error",
        upstream_status: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, code=code, status_code=502, details=details)
        self.upstream_status = upstream_status

    @property
    def retryable(self) -> bool:
        if self.code == "malformed_response":
            return False
        if self.upstream_status is None:
            return True
        return self.upstream_status == 429 or self.upstream_status >= 500


class ValidationError(ResgridException):
    """Raised when create/update input fails client-side validation."""

    def __init__(
        self,
        message: str,
        field_errors: Optional[Dict[str, List[str]]] = None,
        code: str = "validation_error",
    ):
        self.field_errors = field_errors or {}
        super().__init__(
            message,
            code=code,
            status_code=422,
            details={"fields": self.field_errors},
        )


class CacheConsistencyViolation(ResgridException):
    """Raised inside the query cache when a write targets superseded state."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            message, code="cache_consistency_violation", status_code=500, details=details
        )


class ConfigurationError(ResgridException):
    """Raised when application configuration is invalid or missing."""

    def __init__(self, message: str, code: str = "config_error", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, code=code, status_code=500, details=details)


class ResourceNotFoundError(ResgridException):
    """Raised when a requested entity is not found."""

    def __init__(self, message: str, code: str = "not_found", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, code=code, status_code=404, details=details)
