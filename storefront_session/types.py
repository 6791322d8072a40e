"""
Storefront Session Type Definitions

Configuration, the session data model, and the small protocols that storage
backends and host channels implement.
"""

import os
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, FrozenSet, Optional, Protocol, runtime_checkable


# Fixed keys each storage tier holds its two values under
ACCESS_TOKEN_KEY = "accessToken"
REFRESH_TOKEN_KEY = "refreshToken"

# Tokens that carry "iat" but no "exp" expire this long after issue (7 hours)
DEFAULT_TOKEN_MAX_AGE = 7 * 60 * 60


class Tier(str, Enum):
    """Storage tiers, declared in read priority order."""
    DURABLE = "durable"
    EPHEMERAL = "ephemeral"
    COOKIE_VISIBLE = "cookie_visible"


# Read priority: Durable -> Ephemeral -> CookieVisible
TIER_PRIORITY = (Tier.DURABLE, Tier.EPHEMERAL, Tier.COOKIE_VISIBLE)


@runtime_checkable
class Storage(Protocol):
    """Storage interface for a single tier."""

    def get(self, key: str) -> Optional[str]:
        """Get a stored value."""
        ...

    def set(self, key: str, value: str) -> None:
        """Store a value."""
        ...

    def clear(self) -> None:
        """Remove every value this tier holds."""
        ...


@runtime_checkable
class OutboundChannel(Protocol):
    """Message channel to an embedding native shell."""

    def send(self, event: Dict[str, Any]) -> None:
        """Post an event to the host."""
        ...


@dataclass
class SessionConfig:
    """Session manager configuration."""

    # API base URL of the storefront backend
    base_url: str = "https://api.stylewh.com"
    # Server route consulted by renew()
    renewal_endpoint: str = "/auth/refresh"
    # Server route for best-effort remote invalidation on logout
    logout_endpoint: str = "/user/logout"
    # Seconds before expiry to renew proactively (default: 300)
    safety_margin: float = 300
    # Response statuses the retry gate treats as authentication failures
    auth_failure_status_codes: FrozenSet[int] = frozenset({401})
    # Bound on the renewal network call in seconds (default: 10)
    renewal_timeout: float = 10.0
    # Extra attempts for transient renewal failures (default: 2)
    renewal_retry_attempts: int = 2
    # Base delay for exponential backoff between renewal attempts
    retry_delay: float = 1.0
    # Lifetime of tokens that carry "iat" but no "exp"
    default_token_max_age: float = DEFAULT_TOKEN_MAX_AGE
    # Cookie scope for the CookieVisible tier
    cookie_path: str = "/"
    cookie_domain: Optional[str] = None
    # Write the CookieVisible tier regardless of keep_session
    cookie_visible_always: bool = True
    # Running inside an embedding native shell
    is_host_context: bool = False
    # Enable debug logging (default: False)
    debug: bool = False
    # Custom headers to include in gated requests
    headers: Optional[Dict[str, str]] = None

    @classmethod
    def from_env(
        cls,
        prefix: str = "STOREFRONT_SESSION_",
        environ: Optional[Dict[str, str]] = None,
        **overrides: Any,
    ) -> "SessionConfig":
        """Build a config from environment variables, e.g. STOREFRONT_SESSION_SAFETY_MARGIN."""
        env = os.environ if environ is None else environ
        values: Dict[str, Any] = {}

        def read(name: str) -> Optional[str]:
            value = env.get(prefix + name)
            return value.strip() if value is not None and value.strip() else None

        if read("BASE_URL"):
            values["base_url"] = read("BASE_URL")
        if read("RENEWAL_ENDPOINT"):
            values["renewal_endpoint"] = read("RENEWAL_ENDPOINT")
        if read("LOGOUT_ENDPOINT"):
            values["logout_endpoint"] = read("LOGOUT_ENDPOINT")
        if read("SAFETY_MARGIN"):
            values["safety_margin"] = float(read("SAFETY_MARGIN"))  # type: ignore[arg-type]
        if read("RENEWAL_TIMEOUT"):
            values["renewal_timeout"] = float(read("RENEWAL_TIMEOUT"))  # type: ignore[arg-type]
        if read("AUTH_FAILURE_STATUS_CODES"):
            codes = read("AUTH_FAILURE_STATUS_CODES") or ""
            values["auth_failure_status_codes"] = frozenset(
                int(code) for code in codes.split(",") if code.strip()
            )
        if read("DEBUG"):
            values["debug"] = (read("DEBUG") or "").lower() in ("1", "true", "yes", "on")

        values.update(overrides)
        return cls(**values)


@dataclass(frozen=True)
class Claims:
    """Decoded (unverified) claims of an access token."""

    expires_at: float
    subject: Optional[str] = None
    issued_at: Optional[float] = None
    email: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict, compare=False)


@dataclass(frozen=True)
class CredentialPair:
    """Access token plus optional refresh token."""

    access_token: str
    refresh_token: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Serialize for the host channel."""
        return {"token": self.access_token, "refreshToken": self.refresh_token}


@dataclass(frozen=True)
class SessionRecord:
    """A stored session: credentials, derived expiry and the tiers it lives in."""

    credentials: CredentialPair
    expires_at: float
    tiers: FrozenSet[Tier] = frozenset()

    @property
    def access_token(self) -> str:
        return self.credentials.access_token

    @property
    def refresh_token(self) -> Optional[str]:
        return self.credentials.refresh_token

    def is_expired(self, now: Optional[float] = None) -> bool:
        return (time.time() if now is None else now) >= self.expires_at


class SessionEventType(str, Enum):
    LOGIN = "login"
    LOGOUT = "logout"
    REFRESH = "refresh"


@dataclass(frozen=True)
class SessionEvent:
    """In-process notification dispatched to session event subscribers."""

    type: SessionEventType
    record: Optional[SessionRecord] = None
    reason: Optional[str] = None
    source: str = "local"
    timestamp: float = field(default_factory=time.time)


SessionEventHandler = Callable[[SessionEvent], None]


@dataclass
class ExternalCredential:
    """Credential pushed into the web context by the embedding host."""

    access_token: str
    refresh_token: Optional[str] = None
    subject_id: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ExternalCredential":
        """Create from a host payload. Shape is checked by the host bridge."""
        return cls(
            access_token=data["accessToken"],
            refresh_token=data.get("refreshToken"),
            subject_id=data.get("subjectId"),
        )
