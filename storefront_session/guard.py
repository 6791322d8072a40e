"""
Route Guard

Decides whether a path needs the login entry point and performs the forced
redirect once per terminal loss of authentication, however many concurrent
failures reported it.
"""

import logging
from typing import TYPE_CHECKING, Callable, Iterable, Optional

from .types import SessionEvent, SessionEventType

if TYPE_CHECKING:
    from .manager import SessionManager


logger = logging.getLogger("storefront_session.guard")

DEFAULT_PUBLIC_PATHS = frozenset({
    "/login",
    "/landing",
    "/signup",
    "/findid",
    "/findPassword",
    "/link",
    "/",
})


class RouteGuard:
    """
    Login redirect decisions for the storefront router.

    Args:
        manager: Session manager to observe
        redirect: Called with login_path when the session is lost
        public_paths: Paths reachable without a session
        login_path: Login entry point
    """

    def __init__(
        self,
        manager: "SessionManager",
        redirect: Callable[[str], None],
        public_paths: Optional[Iterable[str]] = None,
        login_path: str = "/login",
    ) -> None:
        self._manager = manager
        self._redirect = redirect
        self.public_paths = frozenset(public_paths) if public_paths is not None else DEFAULT_PUBLIC_PATHS
        self.login_path = login_path
        self._armed = manager.is_authenticated()
        self.redirects = 0
        self._unsubscribe = manager.on_session_event(self._on_event)

    def is_public(self, path: str) -> bool:
        return path in self.public_paths

    def needs_redirect(self, path: str) -> bool:
        """True for a protected path while no valid session exists."""
        if self.is_public(path):
            return False
        return not self._manager.is_authenticated()

    def _on_event(self, event: SessionEvent) -> None:
        if event.type in (SessionEventType.LOGIN, SessionEventType.REFRESH):
            self._armed = True
            return
        if event.type is SessionEventType.LOGOUT and self._armed:
            self._armed = False
            self.redirects += 1
            logger.debug("Session lost (%s); redirecting to %s", event.reason, self.login_path)
            self._redirect(self.login_path)

    def close(self) -> None:
        self._unsubscribe()
