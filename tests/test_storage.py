"""
Tests for the storage tiers and the StorageCoordinator.
"""

import json
import os
import stat

import httpx
import pytest

from storefront_session import (
    CookieStorage,
    CredentialPair,
    FileStorage,
    MemoryStorage,
    StorageCoordinator,
    StorageWriteError,
    Tier,
)
from storefront_session.types import ACCESS_TOKEN_KEY, REFRESH_TOKEN_KEY

from conftest import NOW, BrokenStorage, FakeClock, make_token


# =============================================================================
# Test Fixtures
# =============================================================================

@pytest.fixture
def tiers():
    return {
        Tier.DURABLE: MemoryStorage(),
        Tier.EPHEMERAL: MemoryStorage(),
        Tier.COOKIE_VISIBLE: CookieStorage(domain="api.shop.example"),
    }


@pytest.fixture
def coordinator(tiers, clock):
    return StorageCoordinator(tiers, clock=clock)


def _write(coordinator, access, refresh, tiers):
    record = coordinator.build_record(CredentialPair(access, refresh), tiers)
    return coordinator.write(record, tiers)


# =============================================================================
# Backend Tests
# =============================================================================

class TestMemoryStorage:
    """Tests for MemoryStorage."""

    def test_set_get_clear(self):
        """Test values are stored and cleared."""
        storage = MemoryStorage()
        storage.set(ACCESS_TOKEN_KEY, "tok")
        assert storage.get(ACCESS_TOKEN_KEY) == "tok"
        storage.clear()
        assert storage.get(ACCESS_TOKEN_KEY) is None


class TestFileStorage:
    """Tests for FileStorage."""

    def test_persists_across_instances(self, tmp_path):
        """Test values survive a new FileStorage on the same path."""
        path = tmp_path / "session.json"
        FileStorage(str(path)).set(ACCESS_TOKEN_KEY, "tok")
        assert FileStorage(str(path)).get(ACCESS_TOKEN_KEY) == "tok"

    def test_file_permissions(self, tmp_path):
        """Test the session file is only readable by its owner."""
        path = tmp_path / "nested" / "session.json"
        FileStorage(str(path)).set(ACCESS_TOKEN_KEY, "tok")
        if os.name == "posix":
            assert stat.S_IMODE(path.stat().st_mode) == 0o600

    def test_corrupt_file_reads_as_empty(self, tmp_path):
        """Test an unreadable file counts as an empty tier."""
        path = tmp_path / "session.json"
        path.write_text("{not json")
        storage = FileStorage(str(path))
        assert storage.get(ACCESS_TOKEN_KEY) is None
        storage.set(ACCESS_TOKEN_KEY, "tok")
        assert json.loads(path.read_text()) == {ACCESS_TOKEN_KEY: "tok"}

    def test_clear_removes_file(self, tmp_path):
        """Test clear deletes the file and tolerates a missing one."""
        path = tmp_path / "session.json"
        storage = FileStorage(str(path))
        storage.set(ACCESS_TOKEN_KEY, "tok")
        storage.clear()
        assert not path.exists()
        storage.clear()

    def test_write_failure_raises(self, tmp_path):
        """Test an unwritable location raises StorageWriteError."""
        blocker = tmp_path / "blocker"
        blocker.write_text("")
        storage = FileStorage(str(blocker / "session.json"))
        with pytest.raises(StorageWriteError):
            storage.set(ACCESS_TOKEN_KEY, "tok")


class TestCookieStorage:
    """Tests for CookieStorage."""

    def test_scoped_to_domain_and_path(self):
        """Test values are written with the configured scope."""
        cookies = httpx.Cookies()
        storage = CookieStorage(cookies, domain="api.shop.example", path="/")
        storage.set(ACCESS_TOKEN_KEY, "tok")

        assert storage.get(ACCESS_TOKEN_KEY) == "tok"
        cookie = next(iter(cookies.jar))
        assert cookie.domain == "api.shop.example"
        assert cookie.path == "/"

    def test_other_scopes_are_ignored(self):
        """Test cookies with another domain are neither read nor cleared."""
        cookies = httpx.Cookies()
        cookies.set(ACCESS_TOKEN_KEY, "foreign", domain="other.example", path="/")
        storage = CookieStorage(cookies, domain="api.shop.example")

        assert storage.get(ACCESS_TOKEN_KEY) is None
        storage.set(ACCESS_TOKEN_KEY, "tok")
        storage.set(REFRESH_TOKEN_KEY, "ref")
        storage.clear()

        assert storage.get(ACCESS_TOKEN_KEY) is None
        assert cookies.get(ACCESS_TOKEN_KEY, domain="other.example") == "foreign"

    def test_clear_on_empty_jar(self):
        """Test clear tolerates missing cookies."""
        CookieStorage(domain="api.shop.example").clear()

    def test_sent_with_requests(self):
        """Test stored values ride along on same-origin requests."""
        client = httpx.Client(base_url="https://api.shop.example")
        storage = CookieStorage(client.cookies, domain="api.shop.example")
        storage.set(ACCESS_TOKEN_KEY, "tok")

        request = client.build_request("GET", "/products")
        assert "accessToken=tok" in request.headers.get("Cookie", "")
        client.close()


# =============================================================================
# Coordinator Tests
# =============================================================================

class TestCoordinatorWrite:
    """Tests for StorageCoordinator.write()."""

    def test_writes_only_selected_tiers(self, coordinator, tiers):
        """Test non-selected tiers are left untouched."""
        token = make_token(exp=NOW + 3600)
        record = _write(coordinator, token, "refA", {Tier.EPHEMERAL, Tier.COOKIE_VISIBLE})

        assert record.tiers == frozenset({Tier.EPHEMERAL, Tier.COOKIE_VISIBLE})
        assert record.expires_at == NOW + 3600
        assert tiers[Tier.DURABLE].get(ACCESS_TOKEN_KEY) is None
        assert tiers[Tier.EPHEMERAL].get(ACCESS_TOKEN_KEY) == token
        assert tiers[Tier.COOKIE_VISIBLE].get(REFRESH_TOKEN_KEY) == "refA"

    def test_accepts_generator_of_tiers(self, coordinator):
        """Test tiers may be passed as a one-shot iterable."""
        token = make_token(exp=NOW + 3600)
        record = coordinator.build_record(CredentialPair(token, "refA"), [Tier.DURABLE])
        written = coordinator.write(record, (tier for tier in [Tier.DURABLE, Tier.EPHEMERAL]))
        assert written.tiers == frozenset({Tier.DURABLE, Tier.EPHEMERAL})

    def test_partial_failure_is_tolerated(self, clock):
        """Test a failing tier is skipped when another succeeds."""
        ephemeral = MemoryStorage()
        coordinator = StorageCoordinator(
            {Tier.DURABLE: BrokenStorage(), Tier.EPHEMERAL: ephemeral}, clock=clock
        )
        token = make_token(exp=NOW + 3600)
        record = _write(coordinator, token, "refA", {Tier.DURABLE, Tier.EPHEMERAL})

        assert record.tiers == frozenset({Tier.EPHEMERAL})
        assert ephemeral.get(ACCESS_TOKEN_KEY) == token

    def test_total_failure_raises(self, clock):
        """Test a failure of every selected tier raises StorageWriteError."""
        coordinator = StorageCoordinator({Tier.DURABLE: BrokenStorage()}, clock=clock)
        with pytest.raises(StorageWriteError) as exc_info:
            _write(coordinator, make_token(exp=NOW + 60), None, {Tier.DURABLE})
        assert exc_info.value.tiers == ["durable"]

    def test_missing_backend_counts_as_failure(self, clock):
        """Test a selected tier without a backend is reported as failed."""
        coordinator = StorageCoordinator({Tier.EPHEMERAL: MemoryStorage()}, clock=clock)
        with pytest.raises(StorageWriteError):
            _write(coordinator, make_token(exp=NOW + 60), None, {Tier.DURABLE})


class TestCoordinatorRead:
    """Tests for StorageCoordinator.read() and peek()."""

    def test_empty(self, coordinator):
        """Test reading empty storage returns None."""
        assert coordinator.read() is None
        assert coordinator.peek() is None

    def test_priority_order(self, coordinator, tiers):
        """Test Durable wins over Ephemeral and CookieVisible."""
        durable_token = make_token(exp=NOW + 3600, sub="durable")
        other_token = make_token(exp=NOW + 3600, sub="other")
        tiers[Tier.COOKIE_VISIBLE].set(ACCESS_TOKEN_KEY, other_token)
        tiers[Tier.EPHEMERAL].set(ACCESS_TOKEN_KEY, other_token)
        tiers[Tier.DURABLE].set(ACCESS_TOKEN_KEY, durable_token)

        record = coordinator.read()
        assert record.access_token == durable_token
        assert record.tiers == frozenset({Tier.DURABLE})

    def test_skips_expired_tier(self, coordinator, tiers):
        """Test an expired higher priority record yields to a valid one."""
        valid = make_token(exp=NOW + 3600)
        tiers[Tier.DURABLE].set(ACCESS_TOKEN_KEY, make_token(exp=NOW - 1))
        tiers[Tier.EPHEMERAL].set(ACCESS_TOKEN_KEY, valid)

        assert coordinator.read().access_token == valid

    def test_all_expired_clears_everything(self, coordinator, tiers):
        """Test an all-expired store is purged on read."""
        expired = make_token(exp=NOW - 1)
        _write(coordinator, expired, "refA", {Tier.DURABLE, Tier.EPHEMERAL, Tier.COOKIE_VISIBLE})

        assert coordinator.read() is None
        for storage in tiers.values():
            assert storage.get(ACCESS_TOKEN_KEY) is None
            assert storage.get(REFRESH_TOKEN_KEY) is None

    def test_undecodable_token_is_expired(self, coordinator, tiers):
        """Test garbage in storage reads as logged out."""
        tiers[Tier.EPHEMERAL].set(ACCESS_TOKEN_KEY, "garbage")
        assert coordinator.read() is None
        assert tiers[Tier.EPHEMERAL].get(ACCESS_TOKEN_KEY) is None

    def test_peek_returns_expired_without_clearing(self, coordinator, tiers):
        """Test peek exposes an expired session's refresh token."""
        expired = make_token(exp=NOW - 1)
        _write(coordinator, expired, "refA", {Tier.DURABLE})

        record = coordinator.peek()
        assert record.access_token == expired
        assert record.refresh_token == "refA"
        assert tiers[Tier.DURABLE].get(ACCESS_TOKEN_KEY) == expired

    def test_refresh_token_from_another_tier(self, coordinator, tiers):
        """Test a missing refresh token is taken from a lower tier."""
        token = make_token(exp=NOW + 3600)
        tiers[Tier.EPHEMERAL].set(ACCESS_TOKEN_KEY, token)
        tiers[Tier.COOKIE_VISIBLE].set(ACCESS_TOKEN_KEY, token)
        tiers[Tier.COOKIE_VISIBLE].set(REFRESH_TOKEN_KEY, "refA")

        record = coordinator.read()
        assert record.refresh_token == "refA"
        assert record.tiers == frozenset({Tier.EPHEMERAL, Tier.COOKIE_VISIBLE})

    def test_expiry_follows_clock(self, tiers):
        """Test records expire as the clock advances."""
        clock = FakeClock()
        coordinator = StorageCoordinator(tiers, clock=clock)
        _write(coordinator, make_token(exp=NOW + 10), None, {Tier.EPHEMERAL})

        assert coordinator.read() is not None
        clock.advance(10)
        assert coordinator.read() is None


class TestCoordinatorClear:
    """Tests for StorageCoordinator.clear()."""

    def test_clear_tolerates_backend_errors(self, clock):
        """Test one failing backend does not stop the others being cleared."""

        class ExplodingClear(MemoryStorage):
            def clear(self) -> None:
                raise OSError("locked")

        ephemeral = MemoryStorage()
        ephemeral.set(ACCESS_TOKEN_KEY, "tok")
        coordinator = StorageCoordinator(
            {Tier.DURABLE: ExplodingClear(), Tier.EPHEMERAL: ephemeral}, clock=clock
        )
        coordinator.clear()
        assert ephemeral.get(ACCESS_TOKEN_KEY) is None
