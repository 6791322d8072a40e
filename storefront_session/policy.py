"""
Session Policy

Decides which storage tiers a new session is written to.
"""

from typing import FrozenSet

from .types import Tier


class SessionPolicy:
    """
    Tier selection for new sessions.

    Args:
        cookie_visible_always: Write the CookieVisible tier whatever the
            keep_session choice, so server-rendered requests and the embedding
            shell can read the credential. When False the CookieVisible tier is
            only written in a host context.
    """

    def __init__(self, cookie_visible_always: bool = True) -> None:
        self.cookie_visible_always = cookie_visible_always

    def choose_tiers(self, keep_session: bool, is_host_context: bool) -> FrozenSet[Tier]:
        tiers = set()

        if is_host_context:
            # The native shell owns its process lifecycle and always persists
            tiers.add(Tier.DURABLE)
        elif keep_session:
            tiers.add(Tier.DURABLE)
        else:
            tiers.add(Tier.EPHEMERAL)

        if self.cookie_visible_always or is_host_context:
            tiers.add(Tier.COOKIE_VISIBLE)

        return frozenset(tiers)
