"""
Storefront Session Error Classes

Every failure the session manager can surface derives from SessionError.
Decode and storage-read failures are handled inside the package and never
reach callers; renewal failures surface once as a terminal error.
"""

from datetime import datetime, timezone
from typing import Any, Dict, Optional


class SessionError(Exception):
    """Base error class for the session manager."""

    def __init__(
        self,
        code: str,
        message: str,
        status_code: int = 0,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.code = code
        self.message = message
        self.status_code = status_code
        self.details = details or {}
        self.timestamp = datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for logging/serialization."""
        return {
            "name": self.__class__.__name__,
            "code": self.code,
            "message": self.message,
            "status_code": self.status_code,
            "details": self.details,
            "timestamp": self.timestamp,
        }

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(code={self.code!r}, message={self.message!r})"


class ConfigurationError(SessionError):
    """Configuration error."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__("CONFIGURATION_ERROR", message, 0, details)


class ValidationError(SessionError):
    """Invalid payload (e.g. a credential pushed by the host shell)."""

    def __init__(
        self,
        message: str,
        code: str = "VALIDATION_ERROR",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(code, message, 400, details)


class MalformedTokenError(SessionError):
    """The access token could not be decoded."""

    def __init__(self, message: str = "Malformed token", details: Optional[Dict[str, Any]] = None):
        super().__init__("MALFORMED_TOKEN", message, 0, details)


class StorageWriteError(SessionError):
    """A storage tier (or every selected tier) failed to persist."""

    def __init__(
        self,
        message: str,
        tiers: Optional[list] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__("STORAGE_WRITE_FAILED", message, 0, details)
        self.tiers = tiers or []


class RenewalError(SessionError):
    """Base class for credential renewal failures. Always terminal for the session."""


class RenewalNetworkError(RenewalError):
    """Transient network or server failure (including timeout) during renewal."""

    def __init__(
        self,
        message: str,
        status_code: int = 0,
        details: Optional[Dict[str, Any]] = None,
        retryable: bool = True,
    ):
        super().__init__("RENEWAL_NETWORK_ERROR", message, status_code, details)
        self.retryable = retryable


class RenewalRejectedError(RenewalError):
    """The server refused the refresh token, or there was none to send."""

    def __init__(
        self,
        message: str,
        status_code: int = 401,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__("RENEWAL_REJECTED", message, status_code, details)


class SessionTerminatedError(SessionError):
    """Raised to renewal waiters when logout (or a new login) cuts the renewal short."""

    def __init__(self, message: str = "Session terminated", reason: Optional[str] = None):
        super().__init__("SESSION_TERMINATED", message, 0, {"reason": reason} if reason else None)
        self.reason = reason


def is_session_error(error: Any) -> bool:
    """Check if error is a SessionError."""
    return isinstance(error, SessionError)


def is_retryable_error(error: Any) -> bool:
    """Check if a renewal error may be retried."""
    if isinstance(error, RenewalNetworkError):
        return error.retryable
    return False


def is_terminal_error(error: Any) -> bool:
    """Check if error ends the session (logout cascade)."""
    return isinstance(error, (RenewalError, SessionTerminatedError))
