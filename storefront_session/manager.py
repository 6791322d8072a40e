"""
Storefront Session Manager

Public entry point of the session lifecycle. One SessionManager owns the
storage coordinator, the refresh scheduler, the single renewal state, the
retry gate and the host bridge, and is handed by reference to each of them.
"""

import logging
import time
from typing import Any, Callable, Dict, FrozenSet, Iterable, Optional, Union

import httpx

from . import codec
from .bridge import HostBridge
from .errors import ConfigurationError, StorageWriteError
from .gate import RetryGate
from .policy import SessionPolicy
from .renewal import Renewal
from .scheduler import RefreshScheduler
from .storage import CookieStorage, FileStorage, MemoryStorage, StorageCoordinator
from .types import (
    CredentialPair,
    OutboundChannel,
    SessionConfig,
    SessionEventHandler,
    SessionRecord,
    Storage,
    Tier,
)


logger = logging.getLogger("storefront_session")

# Timeout for gated storefront API requests, in seconds
DEFAULT_REQUEST_TIMEOUT = 10.0


class SessionManager:
    """
    Client-side session and credential lifecycle manager.

    Keeps a bearer credential valid across restarts, storage tiers and an
    embedding native shell, renewing it before expiry and on the first
    authentication failure of an outgoing request.

    Args:
        config: Session configuration (defaults to SessionConfig())
        durable: Durable tier backend (default: FileStorage())
        ephemeral: Ephemeral tier backend (default: MemoryStorage())
        cookie: CookieVisible tier backend (default: the gated client's cookie jar)
        channel: Outbound channel to the embedding host, if any
        http_client: Client used for gated storefront requests
        clock: Time source in epoch seconds
    """

    def __init__(
        self,
        config: Optional[SessionConfig] = None,
        *,
        durable: Optional[Storage] = None,
        ephemeral: Optional[Storage] = None,
        cookie: Optional[Storage] = None,
        channel: Optional[OutboundChannel] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        config = config or SessionConfig()
        self._validate_config(config)

        self.config = config
        self._debug = config.debug
        self._clock = clock

        # HTTP clients: the gated client and a raw one that never passes the gate
        self._owns_http_client = http_client is None
        self._http_client = http_client or httpx.AsyncClient(
            base_url=config.base_url,
            timeout=DEFAULT_REQUEST_TIMEOUT,
        )
        self._raw_client = httpx.AsyncClient(
            base_url=config.base_url,
            timeout=config.renewal_timeout,
            headers={"Content-Type": "application/json"},
        )

        if cookie is None:
            cookie = CookieStorage(
                self._http_client.cookies,
                domain=config.cookie_domain or httpx.URL(config.base_url).host,
                path=config.cookie_path,
            )

        self.coordinator = StorageCoordinator(
            {
                Tier.DURABLE: durable if durable is not None else FileStorage(),
                Tier.EPHEMERAL: ephemeral if ephemeral is not None else MemoryStorage(),
                Tier.COOKIE_VISIBLE: cookie,
            },
            clock=clock,
            default_token_max_age=config.default_token_max_age,
        )
        self.policy = SessionPolicy(cookie_visible_always=config.cookie_visible_always)
        self.scheduler = RefreshScheduler(self, config.safety_margin, clock=clock)
        self.renewal = Renewal(self, self._raw_client)
        self.gate = RetryGate(
            self,
            self._http_client,
            config.auth_failure_status_codes,
            config.renewal_endpoint,
            headers=config.headers,
        )
        self.bridge = HostBridge(self, channel)

        # Whether a session has been established (or rehydrated) and not torn down
        self._active = False

        self._log(f"SessionManager initialized (host_context={config.is_host_context})")

    def _validate_config(self, config: SessionConfig) -> None:
        """Validate configuration."""
        if not config.base_url:
            raise ConfigurationError("base_url is required")
        for name in ("renewal_endpoint", "logout_endpoint"):
            if not getattr(config, name, "").startswith("/"):
                raise ConfigurationError(f"{name} must be a path starting with '/'")
        if config.safety_margin < 0:
            raise ConfigurationError("safety_margin must not be negative")
        if not config.auth_failure_status_codes:
            raise ConfigurationError("auth_failure_status_codes must not be empty")
        if config.renewal_timeout <= 0:
            raise ConfigurationError("renewal_timeout must be positive")
        if config.renewal_retry_attempts < 0:
            raise ConfigurationError("renewal_retry_attempts must not be negative")

    def _log(self, message: str, *args: Any) -> None:
        """Log debug message."""
        if self._debug:
            logger.debug(f"[Session] {message}", *args)

    # =========================================================================
    # Session Lifecycle
    # =========================================================================

    def login(
        self,
        access_token: str,
        refresh_token: Optional[str] = None,
        keep_session: bool = False,
    ) -> SessionRecord:
        """
        Establish a session from freshly issued credentials.

        Args:
            access_token: Bearer token returned by the login call
            refresh_token: Refresh token, if the server issued one
            keep_session: Persist across restarts ("keep me signed in")

        Returns:
            The stored SessionRecord

        Raises:
            StorageWriteError: If no storage tier could persist the session
        """
        tiers = self.policy.choose_tiers(keep_session, self.config.is_host_context)
        self._log(f"Login (keep_session={keep_session}, tiers={sorted(t.value for t in tiers)})")
        return self._establish(CredentialPair(access_token, refresh_token or None), tiers)

    async def logout(self) -> None:
        """
        Log out: best-effort remote invalidation, then local teardown.

        Safe to call repeatedly.
        """
        self._log("Logout")

        # Stop timers and renewal waiters before the first suspension point
        self.scheduler.cancel()
        self.renewal.abort(reason="logout")

        record = self.coordinator.peek()
        if record is not None:
            claims = codec.try_decode(record.access_token, self.config.default_token_max_age)
            body: Optional[Dict[str, Any]] = {"email": claims.email} if claims and claims.email else None
            try:
                await self._raw_client.post(
                    self.config.logout_endpoint,
                    json=body,
                    headers={"Authorization": f"Bearer {record.access_token}"},
                )
            except httpx.HTTPError as e:
                logger.warning("Remote logout failed (ignored): %s", e)

        self._teardown(reason="logout")

    def restore(self) -> Optional[SessionRecord]:
        """Rehydrate a stored session and arm proactive renewal for it."""
        record = self._current_record()
        if record is not None:
            self.scheduler.on_session_established(record)
            self._log("Session restored from storage")
        return record

    async def renew(self, stale_token: Optional[str] = None) -> SessionRecord:
        """Renew the credential (single flight, shared with the scheduler and the gate)."""
        return await self.renewal.renew(stale_token=stale_token)

    # =========================================================================
    # State Methods
    # =========================================================================

    def get_access_token(self) -> Optional[str]:
        """Current access token if unexpired. Discovering expiry logs the session out."""
        record = self._current_record()
        return record.access_token if record else None

    def is_authenticated(self) -> bool:
        return self.get_access_token() is not None

    def on_session_event(self, handler: SessionEventHandler) -> Callable[[], None]:
        """Subscribe to login/logout/refresh events. Returns an unsubscribe callable."""
        return self.bridge.events.subscribe(handler)

    # =========================================================================
    # Host Interface
    # =========================================================================

    def receive_external_credential(self, payload: Dict[str, Any]) -> SessionRecord:
        """Accept {accessToken, refreshToken?, subjectId?} from the native host."""
        return self.bridge.receive_external_credential(payload)

    async def handle_host_message(self, message: Union[str, Dict[str, Any]]) -> Optional[SessionRecord]:
        """Dispatch a raw message posted by the native host."""
        return await self.bridge.handle_host_message(message)

    # =========================================================================
    # Requests
    # =========================================================================

    @property
    def client(self) -> httpx.AsyncClient:
        return self._http_client

    async def request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        """Send a storefront API request through the retry gate."""
        return await self.gate.request(method, url, **kwargs)

    async def get(self, url: str, **kwargs: Any) -> httpx.Response:
        return await self.gate.get(url, **kwargs)

    async def post(self, url: str, **kwargs: Any) -> httpx.Response:
        return await self.gate.post(url, **kwargs)

    # =========================================================================
    # Internal Methods
    # =========================================================================

    def _current_record(self) -> Optional[SessionRecord]:
        record = self.coordinator.read()
        if record is None:
            if self._active:
                self._log("Stored session expired")
                self._teardown(reason="expired")
            return None
        self._active = True
        return record

    def _establish(
        self,
        credentials: CredentialPair,
        tiers: FrozenSet[Tier],
        source: str = "local",
    ) -> SessionRecord:
        """Replace whatever is stored with a new session and announce it."""
        self.renewal.abort(reason="superseded")
        self.coordinator.clear()

        try:
            record = self.coordinator.write(self.coordinator.build_record(credentials, tiers), tiers)
        except StorageWriteError:
            self._teardown(reason="storage_failure")
            raise

        self._active = True
        if codec.try_decode(credentials.access_token, self.config.default_token_max_age) is None:
            logger.warning("Access token could not be decoded; proactive renewal not scheduled")
            self.scheduler.cancel()
        else:
            self.scheduler.on_session_established(record)

        self.bridge.notify_login(record, source=source)
        return record

    def _commit_renewal(self, credentials: CredentialPair, tiers: Iterable[Tier]) -> SessionRecord:
        """Persist renewed credentials into the tiers that held the previous session."""
        tiers = frozenset(tiers) or self.policy.choose_tiers(False, self.config.is_host_context)
        record = self.coordinator.write(self.coordinator.build_record(credentials, tiers), tiers)
        self._active = True
        self.scheduler.on_session_established(record, renewed=True)
        self.bridge.notify_refresh(record)
        self._log("Renewal committed")
        return record

    def _teardown(self, reason: str = "logout") -> bool:
        """
        Local logout cascade. Idempotent: only the call that ends an active
        session notifies the host and subscribers.
        """
        was_active = self._active
        self._active = False
        self.scheduler.cancel()
        self.renewal.abort(reason=reason)
        self.coordinator.clear()
        if was_active:
            self._log(f"Session ended ({reason})")
            self.bridge.notify_logout(reason)
        return was_active

    async def close(self) -> None:
        """Stop timers and close HTTP clients. Stored credentials are kept."""
        self.scheduler.cancel()
        self.renewal.abort(reason="closed")
        if self._owns_http_client:
            await self._http_client.aclose()
        await self._raw_client.aclose()

    async def __aenter__(self) -> "SessionManager":
        self.restore()
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()
