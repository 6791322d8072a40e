"""
Credential Renewal

The one guarded renew() operation. The refresh scheduler and the retry gate
both call it, so a proactive and a reactive renewal can never run at the same
time: while a renewal is in flight every caller awaits the same future.
"""

import asyncio
import logging
from typing import TYPE_CHECKING, Any, Dict, Optional

import httpx

from .errors import (
    RenewalError,
    RenewalNetworkError,
    RenewalRejectedError,
    SessionError,
    SessionTerminatedError,
    is_retryable_error,
)
from .types import CredentialPair, SessionRecord, Tier

if TYPE_CHECKING:
    from .manager import SessionManager


logger = logging.getLogger("storefront_session.renewal")

# Backoff ceiling between renewal attempts, in seconds
MAX_RETRY_DELAY = 5.0


def _consume_exception(future: "asyncio.Future[Any]") -> None:
    # Waiters may all be gone; mark the exception retrieved.
    if not future.cancelled():
        future.exception()


class Renewal:
    """Single-flight credential renewal against the renewal endpoint."""

    def __init__(self, manager: "SessionManager", http_client: httpx.AsyncClient) -> None:
        self._manager = manager
        self._http_client = http_client
        self._future: Optional["asyncio.Future[SessionRecord]"] = None
        self._task: Optional["asyncio.Task[None]"] = None
        self.calls = 0

    @property
    def in_flight(self) -> bool:
        return self._future is not None and not self._future.done()

    async def renew(self, stale_token: Optional[str] = None) -> SessionRecord:
        """
        Renew the session credential, sharing any renewal already in flight.

        Args:
            stale_token: The access token a failed request was sent with. If the
                session already holds a different, valid token, that session is
                returned without another renewal.

        Raises:
            RenewalError: If the renewal failed (the session has been torn down)
            SessionTerminatedError: If logout cut the renewal short
        """
        if not self.in_flight and stale_token is not None:
            current = self._manager.coordinator.peek()
            if (
                current is not None
                and current.access_token != stale_token
                and not current.is_expired(self._manager._clock())
            ):
                return current

        if not self.in_flight:
            self._start()

        assert self._future is not None
        return await asyncio.shield(self._future)

    def _start(self) -> None:
        loop = asyncio.get_running_loop()
        future: "asyncio.Future[SessionRecord]" = loop.create_future()
        future.add_done_callback(_consume_exception)
        future.add_done_callback(self._reset)
        self._future = future
        self._task = loop.create_task(self._run(future))
        self._manager._log("Renewal started")

    def _reset(self, future: "asyncio.Future[SessionRecord]") -> None:
        if self._future is future:
            self._future = None
            self._task = None

    def abort(self, reason: str = "logout") -> None:
        """Reject every waiter with SessionTerminatedError and stop the renewal."""
        future, task = self._future, self._task
        if future is not None and not future.done():
            future.set_exception(SessionTerminatedError("Session terminated during renewal", reason))
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()

    async def _run(self, future: "asyncio.Future[SessionRecord]") -> None:
        try:
            previous = self._manager.coordinator.peek()
            if previous is None or not previous.refresh_token:
                raise RenewalRejectedError("No refresh token available")

            credentials = await self._request_with_retry(previous)
            if future.done():
                return

            # Persist before resolving: no waiter replays against a stale read
            record = self._manager._commit_renewal(credentials, previous.tiers)
        except asyncio.CancelledError:
            raise
        except SessionError as e:
            self._fail(future, e)
            return
        except Exception as e:
            logger.exception("Unexpected error during renewal")
            self._fail(future, RenewalNetworkError(str(e) or "Renewal failed", retryable=False))
            return

        if not future.done():
            future.set_result(record)

    def _fail(self, future: "asyncio.Future[SessionRecord]", error: SessionError) -> None:
        if future.done():
            return
        logger.warning("Credential renewal failed: %s", error.message)
        future.set_exception(error)
        self._manager._teardown(reason="renewal_failed")

    async def _request_with_retry(self, previous: SessionRecord) -> CredentialPair:
        attempts = self._manager.config.renewal_retry_attempts
        delay = self._manager.config.retry_delay

        for attempt in range(attempts + 1):
            try:
                return await self._request(previous)
            except RenewalError as error:
                if not is_retryable_error(error) or attempt == attempts:
                    raise
                wait = min(delay * (2 ** attempt), MAX_RETRY_DELAY)
                self._manager._log(f"Renewal attempt {attempt + 1} failed; retrying in {wait}s")
                await asyncio.sleep(wait)

        raise RenewalNetworkError("Renewal failed after retries")

    async def _request(self, previous: SessionRecord) -> CredentialPair:
        """POST the refresh token to the renewal endpoint."""
        config = self._manager.config
        self.calls += 1
        body = {
            "refreshToken": previous.refresh_token,
            "autoLogin": Tier.DURABLE in previous.tiers,
        }

        try:
            response = await self._http_client.post(
                config.renewal_endpoint,
                json=body,
                timeout=config.renewal_timeout,
            )
        except httpx.TimeoutException:
            raise RenewalNetworkError("Renewal request timed out", details={"timeout": config.renewal_timeout})
        except httpx.RequestError as e:
            raise RenewalNetworkError(str(e) or "Renewal request failed")

        return self._handle_response(response, previous)

    def _handle_response(self, response: httpx.Response, previous: SessionRecord) -> CredentialPair:
        if 400 <= response.status_code < 500 and response.status_code not in (408, 429):
            raise RenewalRejectedError(
                f"Renewal rejected with HTTP {response.status_code}",
                status_code=response.status_code,
            )
        if not response.is_success:
            raise RenewalNetworkError(
                f"Renewal failed with HTTP {response.status_code}",
                status_code=response.status_code,
            )

        try:
            data: Dict[str, Any] = response.json()
        except ValueError:
            raise RenewalNetworkError("Renewal response is not JSON", status_code=response.status_code, retryable=False)
        if isinstance(data, dict) and isinstance(data.get("data"), dict):
            data = data["data"]

        access_token = data.get("accessToken") if isinstance(data, dict) else None
        if not isinstance(access_token, str) or not access_token:
            raise RenewalNetworkError(
                "Renewal response has no access token", status_code=response.status_code, retryable=False
            )

        # Keep the previous refresh token when the server does not rotate it
        refresh_token = data.get("refreshToken") or previous.refresh_token
        return CredentialPair(access_token, refresh_token)
