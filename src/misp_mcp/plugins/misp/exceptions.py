"""Exceptions raised by the MISP REST client."""

from __future__ import annotations


class MispError(Exception):
    """Base exception for MISP API failures."""

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class MispAPIError(MispError):
    """Raised when a MISP request fails or returns an unusable response."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        details: dict | None = None,
    ):
        super().__init__(message, details)
        self.status_code = status_code


class MispAuthenticationError(MispAPIError):
    """Raised when MISP rejects the API key (401 or 403)."""

    def __init__(self, status_code: int = 401):
        super().__init__("Authentication failed: invalid API key", status_code=status_code)


class MispNotFoundError(MispAPIError):
    """Raised when the requested MISP resource does not exist."""

    def __init__(self, resource: str):
        super().__init__(
            f"Resource not found: {resource}",
            status_code=404,
            details={"resource": resource},
        )
