"""
Storefront Session

Client-side session and credential lifecycle manager for the storefront:
multi-tier credential storage, proactive and reactive single-flight token
renewal, and an event bridge to an embedding native shell.
"""

from .manager import SessionManager
from .types import (
    SessionConfig,
    Tier,
    Claims,
    CredentialPair,
    SessionRecord,
    SessionEvent,
    SessionEventType,
    ExternalCredential,
    Storage,
    OutboundChannel,
)
from .errors import (
    SessionError,
    ConfigurationError,
    ValidationError,
    MalformedTokenError,
    StorageWriteError,
    RenewalError,
    RenewalNetworkError,
    RenewalRejectedError,
    SessionTerminatedError,
    is_session_error,
    is_retryable_error,
    is_terminal_error,
)
from .storage import MemoryStorage, FileStorage, CookieStorage, StorageCoordinator
from .policy import SessionPolicy
from .scheduler import RefreshScheduler, SchedulerState
from .gate import RetryGate
from .bridge import HostBridge, SessionEventBus, NullChannel, CallbackChannel
from .guard import RouteGuard

__version__ = "0.1.0"
__all__ = [
    # Manager
    "SessionManager",
    # Types
    "SessionConfig",
    "Tier",
    "Claims",
    "CredentialPair",
    "SessionRecord",
    "SessionEvent",
    "SessionEventType",
    "ExternalCredential",
    "Storage",
    "OutboundChannel",
    # Errors
    "SessionError",
    "ConfigurationError",
    "ValidationError",
    "MalformedTokenError",
    "StorageWriteError",
    "RenewalError",
    "RenewalNetworkError",
    "RenewalRejectedError",
    "SessionTerminatedError",
    "is_session_error",
    "is_retryable_error",
    "is_terminal_error",
    # Storage
    "MemoryStorage",
    "FileStorage",
    "CookieStorage",
    "StorageCoordinator",
    # Components
    "SessionPolicy",
    "RefreshScheduler",
    "SchedulerState",
    "RetryGate",
    "HostBridge",
    "SessionEventBus",
    "NullChannel",
    "CallbackChannel",
    "RouteGuard",
]
