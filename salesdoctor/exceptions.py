"""
Custom exception hierarchy for Sales Doctor API operations.

Exception Hierarchy:
    SalesDoctorError (base)
    ├── TransportError         - Network/timeout/non-2xx (recoverable via cache)
    ├── UpstreamAPIError       - API answered status=false
    ├── AuthenticationError    - Login rejected
    │   └── AuthExpiredError   - Token refresh + single retry failed
    └── DataShapeError         - Response missing the expected structure

    ValidationError            - Input validation failed
    └── ConfigValidationError  - Tunable outside its valid range
"""
from typing import Any


class SalesDoctorError(Exception):
    """Base exception for all Sales Doctor upstream errors."""

    def __init__(self, message: str, details: str = None):
        self.message = message
        self.details = details
        super().__init__(self.message)

    def __str__(self) -> str:
        if self.details:
            return f"{self.message}: {self.details}"
        return self.message


class TransportError(SalesDoctorError):
    """
    Upstream unreachable, timed out, or answered with a non-2xx status.

    Recovered by the engine through cache fallback.
    """

    def __init__(self, message: str, details: str = None, status_code: int = None):
        super().__init__(message, details)
        self.status_code = status_code


class UpstreamAPIError(SalesDoctorError):
    """API envelope came back with status=false for a non-auth reason."""

    def __init__(self, message: str, details: str = None, method: str = None, error_code: Any = None):
        super().__init__(message, details)
        self.method = method
        self.error_code = error_code


class AuthenticationError(SalesDoctorError):
    """Login was rejected by the upstream."""


class AuthExpiredError(AuthenticationError):
    """
    Authorization failed mid-request and could not be recovered.

    Raised after one re-login and one retry of the original call both
    failed. The caller has to re-authenticate.
    """

    def __init__(self, message: str, details: str = None, method: str = None):
        super().__init__(message, details)
        self.method = method


class DataShapeError(SalesDoctorError):
    """
    Response has an unexpected structure.

    Only raised for whole responses; single malformed records are coerced
    to zero/unknown by the model adapters instead.
    """

    def __init__(self, message: str, details: str = None, expected: str = None, got: str = None):
        super().__init__(message, details)
        self.expected = expected
        self.got = got


class ValidationError(Exception):
    """
    Input validation failed.

    Used for validating caller input before processing.
    """

    def __init__(self, field: str, message: str, value: Any = None):
        self.field = field
        self.message = message
        self.value = value
        super().__init__(f"{field}: {message}")

    def __str__(self) -> str:
        if self.value is not None:
            return f"{self.field}: {self.message} (got: {self.value!r})"
        return f"{self.field}: {self.message}"


class ConfigValidationError(ValidationError):
    """A runtime tunable (exchange rate, thresholds) was rejected; the previous value stays."""
