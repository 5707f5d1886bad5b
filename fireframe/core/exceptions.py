"""Application exceptions shared by data access, stores and routes."""

from typing import Any, Optional


class AppException(Exception):
    """Base application exception, rendered as JSON by the API handlers."""

    status_code = 500
    default_code = "INTERNAL_ERROR"

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        status_code: Optional[int] = None,
        details: Any = None,
    ) -> None:
        self.message = message
        self.code = code or self.default_code
        if status_code is not None:
            self.status_code = status_code
        self.details = details
        super().__init__(message)


class ProviderError(AppException):
    """A request to the backend (auth, table, storage or realtime) failed.

    ``code`` carries the provider's own error code when it reports one
    (e.g. ``PGRST116`` or ``invalid_credentials``).
    """

    status_code = 502
    default_code = "PROVIDER_ERROR"


class ValidationError(AppException):
    """Input rejected before any request reached the backend."""

    status_code = 400
    default_code = "VALIDATION_ERROR"


class ConfigurationError(AppException):
    """Required configuration is missing; fatal at startup."""

    default_code = "CONFIGURATION_ERROR"
