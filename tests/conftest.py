"""
Shared fixtures for the storefront session tests.
"""

import base64
import json
from typing import Any, Dict, Optional

import pytest

from storefront_session import MemoryStorage, SessionConfig, SessionManager


BASE_URL = "https://api.shop.example"
REFRESH_URL = f"{BASE_URL}/auth/refresh"
LOGOUT_URL = f"{BASE_URL}/user/logout"

# Fixed wall clock for deterministic expiry maths
NOW = 1_700_000_000.0

# Unverified, but has to be valid base64url for the JWT parser
SIGNATURE = base64.urlsafe_b64encode(b"signature").decode("ascii").rstrip("=")


def _segment(data: Dict[str, Any]) -> str:
    raw = json.dumps(data).encode("utf-8")
    return base64.urlsafe_b64encode(raw).decode("ascii").rstrip("=")


def make_token(
    exp: Optional[float] = None,
    sub: Optional[str] = "user_123",
    iat: Optional[float] = None,
    **claims: Any,
) -> str:
    """Build an unsigned three-part token carrying the given claims."""
    payload: Dict[str, Any] = dict(claims)
    if exp is not None:
        payload["exp"] = exp
    if iat is not None:
        payload["iat"] = iat
    if sub is not None:
        payload["sub"] = sub
    return f"{_segment({'alg': 'HS256', 'typ': 'JWT'})}.{_segment(payload)}.{SIGNATURE}"


class FakeClock:
    """Manually advanced time source."""

    def __init__(self, now: float = NOW) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingChannel:
    """Outbound host channel that keeps every posted message."""

    def __init__(self) -> None:
        self.messages = []

    def send(self, event: Dict[str, Any]) -> None:
        self.messages.append(event)

    def types(self):
        return [message["type"] for message in self.messages]


class BrokenStorage:
    """Storage whose writes always fail."""

    def get(self, key: str) -> Optional[str]:
        return None

    def set(self, key: str, value: str) -> None:
        raise OSError("disk full")

    def clear(self) -> None:
        return None


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def channel() -> RecordingChannel:
    return RecordingChannel()


@pytest.fixture
def config() -> SessionConfig:
    """Configuration with renewal retries disabled."""
    return SessionConfig(
        base_url=BASE_URL,
        renewal_retry_attempts=0,
        retry_delay=0.0,
        debug=True,
    )


@pytest.fixture
def durable() -> MemoryStorage:
    return MemoryStorage()


@pytest.fixture
def ephemeral() -> MemoryStorage:
    return MemoryStorage()


@pytest.fixture
def make_manager(config, durable, ephemeral, clock, channel):
    """Factory for managers wired to in-memory tiers and the fake clock."""

    def factory(session_config: Optional[SessionConfig] = None, **overrides: Any) -> SessionManager:
        kwargs: Dict[str, Any] = {
            "durable": durable,
            "ephemeral": ephemeral,
            "channel": channel,
            "clock": clock,
        }
        kwargs.update(overrides)
        return SessionManager(session_config or config, **kwargs)

    return factory
