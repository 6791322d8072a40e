"""
Storefront Session - Basic Usage Example

This example demonstrates logging in, making authenticated storefront
requests through the retry gate, reacting to session events and logging out.
"""

import asyncio
import logging

from storefront_session import (
    CallbackChannel,
    RenewalError,
    RouteGuard,
    SessionConfig,
    SessionEvent,
    SessionManager,
)


def on_event(event: SessionEvent) -> None:
    print(f"Session event: {event.type.value} (source={event.source}, reason={event.reason})")


async def main():
    logging.basicConfig(level=logging.DEBUG)

    config = SessionConfig.from_env(debug=True)

    # A webview shell would pass its postMessage here
    channel = CallbackChannel(lambda message: print(f"-> host: {message}"))

    async with SessionManager(config, channel=channel) as session:
        session.on_session_event(on_event)
        guard = RouteGuard(session, redirect=lambda path: print(f"Redirecting to {path}"))

        print(f"Restored session: {session.is_authenticated()}")
        print(f"/mypage needs login: {guard.needs_redirect('/mypage')}")

        # Tokens come from the storefront's own login call
        # session.login(access_token, refresh_token, keep_session=True)

        try:
            response = await session.get("/user/info")
            print(f"GET /user/info -> HTTP {response.status_code}")
        except RenewalError as e:
            print(f"Session ended: {e.message}")
        except Exception as e:
            print(f"Error (expected without real API): {type(e).__name__}")

        await session.logout()
        guard.close()


if __name__ == "__main__":
    asyncio.run(main())
