"""
Exception classes for the Polaris inventory auditor.

Every error carries the HTTP status and response body when one was involved,
so the stage that catches it can log the platform's diagnostics.
"""


class PolarisAuditError(Exception):
    """Base exception for all auditor errors."""

    def __init__(self, message: str, status: int = 0, body: str = ""):
        self.status = status
        self.body = body
        super().__init__(message)


class ConfigurationError(PolarisAuditError):
    """Raised when credentials or URL templates are missing or invalid."""


class AuthenticationError(PolarisAuditError):
    """Raised when the platform does not hand out a session token."""


class ResourceFetchError(PolarisAuditError):
    """Raised when a resource request fails after all retries."""


class FileSystemError(PolarisAuditError):
    """Raised when the output directory or an artifact cannot be accessed."""
