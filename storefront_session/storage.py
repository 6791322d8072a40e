"""
Storefront Session Storage

Tier backends and the StorageCoordinator, the only component that mutates
them. Each tier holds two opaque strings under ACCESS_TOKEN_KEY and
REFRESH_TOKEN_KEY.
"""

import json
import logging
import os
import threading
import time
from pathlib import Path
from typing import Any, Callable, Dict, FrozenSet, Iterable, List, Mapping, Optional, Tuple

import httpx

from . import codec
from .errors import StorageWriteError
from .types import (
    ACCESS_TOKEN_KEY,
    DEFAULT_TOKEN_MAX_AGE,
    REFRESH_TOKEN_KEY,
    TIER_PRIORITY,
    CredentialPair,
    SessionRecord,
    Storage,
    Tier,
)


logger = logging.getLogger("storefront_session.storage")

_KEYS = (ACCESS_TOKEN_KEY, REFRESH_TOKEN_KEY)


class MemoryStorage:
    """In-memory storage (ephemeral tier, gone when the process ends)."""

    def __init__(self) -> None:
        self._values: Dict[str, str] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            return self._values.get(key)

    def set(self, key: str, value: str) -> None:
        with self._lock:
            self._values[key] = value

    def clear(self) -> None:
        with self._lock:
            self._values.clear()


class FileStorage:
    """File-based storage (durable tier, survives restarts)."""

    def __init__(self, file_path: Optional[str] = None) -> None:
        """
        Initialize file storage.

        Args:
            file_path: Path to the session file. Defaults to ~/.storefront/session.json
        """
        if file_path:
            self._file_path = Path(file_path)
        else:
            self._file_path = Path.home() / ".storefront" / "session.json"

        self._lock = threading.Lock()

    @property
    def path(self) -> Path:
        return self._file_path

    def _read_data(self) -> Dict[str, Any]:
        """Read stored values; an unreadable file counts as empty."""
        try:
            if self._file_path.exists():
                with open(self._file_path, "r") as f:
                    data = json.load(f)
                    return data if isinstance(data, dict) else {}
        except (json.JSONDecodeError, OSError) as e:
            logger.warning("Unreadable session file %s: %s", self._file_path, e)
        return {}

    def _write_data(self, data: Dict[str, Any]) -> None:
        try:
            self._file_path.parent.mkdir(parents=True, exist_ok=True)
            with open(self._file_path, "w") as f:
                json.dump(data, f)
            # Owner read/write only
            os.chmod(self._file_path, 0o600)
        except OSError as e:
            raise StorageWriteError(
                f"Could not write {self._file_path}", details={"reason": str(e)}
            )

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            value = self._read_data().get(key)
            return value if isinstance(value, str) else None

    def set(self, key: str, value: str) -> None:
        with self._lock:
            data = self._read_data()
            data[key] = value
            self._write_data(data)

    def clear(self) -> None:
        with self._lock:
            try:
                if self._file_path.exists():
                    self._file_path.unlink()
            except OSError as e:
                logger.warning("Could not remove session file %s: %s", self._file_path, e)


class CookieStorage:
    """
    Cookie-visible storage.

    Values live in an httpx cookie jar under a domain and path scope. Pass the
    jar of the client that sends storefront requests (``client.cookies``) so
    the values ride along on subsequent same-origin requests.
    """

    def __init__(
        self,
        cookies: Optional[httpx.Cookies] = None,
        domain: str = "",
        path: str = "/",
    ) -> None:
        self._cookies = cookies if cookies is not None else httpx.Cookies()
        self._domain = domain
        self._path = path
        self._lock = threading.Lock()

    @property
    def cookies(self) -> httpx.Cookies:
        return self._cookies

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            for cookie in self._cookies.jar:
                if cookie.name == key and cookie.domain == self._domain and cookie.path == self._path:
                    return cookie.value
            return None

    def set(self, key: str, value: str) -> None:
        with self._lock:
            self._cookies.set(key, value, domain=self._domain, path=self._path)

    def clear(self) -> None:
        with self._lock:
            stale = [
                cookie for cookie in self._cookies.jar
                if cookie.name in _KEYS and cookie.domain == self._domain and cookie.path == self._path
            ]
            for cookie in stale:
                self._cookies.jar.clear(cookie.domain, cookie.path, cookie.name)


class StorageCoordinator:
    """
    Reads and writes session records across the storage tiers.

    Tiers are probed in priority order Durable -> Ephemeral -> CookieVisible.
    A tier that fails to persist is logged and skipped; only a failure of
    every selected tier is raised.
    """

    def __init__(
        self,
        tiers: Mapping[Tier, Storage],
        clock: Callable[[], float] = time.time,
        default_token_max_age: float = DEFAULT_TOKEN_MAX_AGE,
    ) -> None:
        self._tiers: List[Tuple[Tier, Storage]] = [
            (tier, tiers[tier]) for tier in TIER_PRIORITY if tier in tiers
        ]
        self._clock = clock
        self._default_max_age = default_token_max_age

    @property
    def tiers(self) -> FrozenSet[Tier]:
        return frozenset(tier for tier, _ in self._tiers)

    def storage_for(self, tier: Tier) -> Optional[Storage]:
        for candidate, storage in self._tiers:
            if candidate is tier:
                return storage
        return None

    def build_record(self, credentials: CredentialPair, tiers: Iterable[Tier]) -> SessionRecord:
        """Create a record whose expiry is derived from the access token."""
        return SessionRecord(
            credentials=credentials,
            expires_at=codec.expires_at(credentials.access_token, self._default_max_age),
            tiers=frozenset(tiers),
        )

    def write(self, record: SessionRecord, tiers: Iterable[Tier]) -> SessionRecord:
        """
        Persist a record into each selected tier.

        Returns:
            The record as written (expiry re-derived, tiers = tiers that succeeded)

        Raises:
            StorageWriteError: If no selected tier could be written
        """
        wanted = frozenset(tiers)
        selected = [tier for tier in TIER_PRIORITY if tier in wanted]
        written: List[Tier] = []
        failed: List[Tier] = []

        for tier in selected:
            storage = self.storage_for(tier)
            if storage is None:
                logger.warning("No backend configured for %s tier", tier.value)
                failed.append(tier)
                continue
            try:
                storage.set(ACCESS_TOKEN_KEY, record.access_token)
                if record.refresh_token:
                    storage.set(REFRESH_TOKEN_KEY, record.refresh_token)
                written.append(tier)
            except Exception as e:
                logger.warning("Failed to persist session to %s tier: %s", tier.value, e)
                failed.append(tier)
                # A half-written tier must not keep serving the previous token
                try:
                    storage.clear()
                except Exception as clear_error:
                    logger.warning("Failed to clear %s tier: %s", tier.value, clear_error)

        if not written:
            raise StorageWriteError(
                "Session could not be persisted to any storage tier",
                tiers=[tier.value for tier in failed],
            )

        return self.build_record(record.credentials, written)

    def _read_tier(self, tier: Tier, storage: Storage) -> Tuple[Optional[str], Optional[str]]:
        try:
            access = storage.get(ACCESS_TOKEN_KEY)
            refresh = storage.get(REFRESH_TOKEN_KEY)
        except Exception as e:
            logger.warning("Failed to read %s tier: %s", tier.value, e)
            return None, None
        access = access.strip() if access and access.strip() else None
        refresh = refresh.strip() if refresh and refresh.strip() else None
        return access, refresh

    def _snapshot(self) -> List[Tuple[Tier, str, Optional[str]]]:
        snapshot = []
        for tier, storage in self._tiers:
            access, refresh = self._read_tier(tier, storage)
            if access:
                snapshot.append((tier, access, refresh))
        return snapshot

    def _record_from(
        self, chosen: Tuple[Tier, str, Optional[str]], snapshot: List[Tuple[Tier, str, Optional[str]]]
    ) -> SessionRecord:
        _, access, refresh = chosen
        if refresh is None:
            refresh = next((r for _, _, r in snapshot if r), None)
        holders = [tier for tier, token, _ in snapshot if token == access]
        return self.build_record(CredentialPair(access, refresh), holders)

    def read(self) -> Optional[SessionRecord]:
        """
        Return the highest priority unexpired record.

        If every populated tier holds an expired (or undecodable) record, all
        tiers are cleared and None is returned.
        """
        snapshot = self._snapshot()
        if not snapshot:
            return None

        now = self._clock()
        for entry in snapshot:
            record = self._record_from(entry, snapshot)
            if not record.is_expired(now):
                return record

        logger.debug("Every stored session is expired; clearing all tiers")
        self.clear()
        return None

    def peek(self) -> Optional[SessionRecord]:
        """Highest priority stored record, expired or not. Never clears."""
        snapshot = self._snapshot()
        if not snapshot:
            return None
        return self._record_from(snapshot[0], snapshot)

    def clear(self) -> None:
        """Purge every tier, ignoring individual backend errors."""
        for tier, storage in self._tiers:
            try:
                storage.clear()
            except Exception as e:
                logger.warning("Failed to clear %s tier: %s", tier.value, e)
