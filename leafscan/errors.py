"""
Error taxonomy for the analysis API.

Every request-time failure is a LeafScanError carrying an HTTP status, a
machine readable code and a human readable message. The exception handlers in
leafscan.main render them as ``{success: false, error: {...}}``.
"""
from typing import Any, Dict, Iterable, Optional


class LeafScanError(Exception):
    status_code = 500
    default_code = "INTERNAL_SERVER_ERROR"

    def __init__(self, message: str, code: Optional[str] = None, details: Any = None):
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code
        self.details = details if details is not None else {}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "message": self.message,
            "details": self.details,
            "code": self.code,
        }


class InvalidRequestError(LeafScanError):
    """Bad input shape, size or type. The caller can fix it."""
    status_code = 400
    default_code = "BAD_REQUEST"


class NoIdentificationError(LeafScanError):
    """The identification provider returned no candidates for the image."""
    status_code = 400
    default_code = "NO_SUGGESTIONS"

    def __init__(self, message: str = "Could not identify plant from the image", details: Any = None):
        super().__init__(message, details=details)


class UpstreamUnavailableError(LeafScanError):
    """A provider failed, timed out or answered with a non-success status."""
    status_code = 502
    default_code = "UPSTREAM_UNAVAILABLE"

    def __init__(
        self,
        message: str,
        provider: str,
        upstream_status: Optional[int] = None,
    ):
        payload = {"provider": provider}
        if upstream_status is not None:
            payload["status"] = upstream_status
        super().__init__(message, details=payload)
        self.provider = provider
        self.upstream_status = upstream_status


class StorageError(LeafScanError):
    status_code = 502
    default_code = "STORAGE_ERROR"


class InternalError(LeafScanError):
    status_code = 500
    default_code = "INTERNAL_SERVER_ERROR"


class ConfigurationError(Exception):
    """Raised by the startup sequence when required settings are missing."""

    def __init__(self, missing: Iterable[str]):
        self.missing = list(missing)
        super().__init__(f"Missing required environment variables: {', '.join(self.missing)}")
