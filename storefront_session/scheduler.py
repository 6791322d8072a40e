"""
Refresh Scheduler

Arms a one-shot event-loop timer that renews the session a safety margin
before its access token expires.
"""

import asyncio
import logging
import time
from enum import Enum
from typing import TYPE_CHECKING, Callable, Optional

from .errors import SessionError, SessionTerminatedError
from .types import SessionRecord

if TYPE_CHECKING:
    from .manager import SessionManager


logger = logging.getLogger("storefront_session.scheduler")

# Shortest re-arm after a renewal that returned a token already inside the margin
MIN_RENEWAL_INTERVAL = 10.0


class SchedulerState(str, Enum):
    IDLE = "idle"
    SCHEDULED = "scheduled"
    FIRED = "fired"


class RefreshScheduler:
    """Proactive renewal timer. Idle -> Scheduled -> Fired -> (Idle | Scheduled)."""

    def __init__(
        self,
        manager: "SessionManager",
        safety_margin: float,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._manager = manager
        self._safety_margin = safety_margin
        self._clock = clock
        self._handle: Optional[asyncio.Handle] = None
        self._task: Optional["asyncio.Task[None]"] = None
        self.state = SchedulerState.IDLE
        self.next_delay: Optional[float] = None

    def on_session_established(self, record: SessionRecord, renewed: bool = False) -> None:
        """
        (Re)arm the timer for a freshly written session.

        A session whose token is already inside the safety margin renews on
        the next loop turn, unless it was just renewed. Then the timer waits
        half the remaining lifetime (at least MIN_RENEWAL_INTERVAL) so a server
        issuing short-lived tokens cannot drive back-to-back renewals.
        """
        self.cancel()

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning("No running event loop; proactive renewal not scheduled")
            return

        now = self._clock()
        delay = record.expires_at - now - self._safety_margin
        if delay <= 0 and renewed:
            delay = max((record.expires_at - now) / 2, MIN_RENEWAL_INTERVAL)

        if delay <= 0:
            # Zero-delay, but never from inside the caller's frame
            self._handle = loop.call_soon(self._fire)
            self.next_delay = 0.0
        else:
            self._handle = loop.call_later(delay, self._fire)
            self.next_delay = delay

        self.state = SchedulerState.SCHEDULED
        self._manager._log(f"Renewal scheduled in {self.next_delay:.1f}s")

    def cancel(self) -> None:
        """Clear any pending timer."""
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None
        self.next_delay = None
        self.state = SchedulerState.IDLE

    def _fire(self) -> None:
        self._handle = None
        self.state = SchedulerState.FIRED
        self._task = asyncio.ensure_future(self._on_fire())

    async def _on_fire(self) -> None:
        try:
            await self._manager.renew()
        except SessionTerminatedError:
            # Logout or a newer login took over
            return
        except SessionError as e:
            # renew() has already run the logout cascade; teardown is idempotent
            logger.info("Proactive renewal failed: %s", e.message)
            self._manager._teardown(reason="renewal_failed")
            return
        # On success the renewal commit re-armed the timer
        if self.state is SchedulerState.FIRED:
            self.state = SchedulerState.IDLE
