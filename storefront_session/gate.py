"""
Retry Gate

Sends storefront API requests with the session's bearer credential. When a
response is classified as an authentication failure the gate drives one
shared renewal and replays the request once with the new credential.
"""

import logging
from typing import TYPE_CHECKING, Any, Dict, FrozenSet, Optional

import httpx

if TYPE_CHECKING:
    from .manager import SessionManager


logger = logging.getLogger("storefront_session.gate")

# request.extensions key marking a request that has already been replayed
RETRIED_EXTENSION = "storefront_session.retried"


class RetryGate:
    """Authenticating wrapper around an httpx.AsyncClient."""

    def __init__(
        self,
        manager: "SessionManager",
        http_client: httpx.AsyncClient,
        auth_failure_status_codes: FrozenSet[int],
        renewal_endpoint: str,
        headers: Optional[Dict[str, str]] = None,
    ) -> None:
        self._manager = manager
        self._http_client = http_client
        self._auth_failure_status_codes = frozenset(auth_failure_status_codes)
        # Path the renewal endpoint resolves to under the client's base_url
        self._renewal_path = http_client.base_url.path + renewal_endpoint.lstrip("/")
        self._custom_headers = headers or {}

    @property
    def client(self) -> httpx.AsyncClient:
        return self._http_client

    def is_auth_failure(self, response: httpx.Response) -> bool:
        return response.status_code in self._auth_failure_status_codes

    def _bypasses(self, request: httpx.Request) -> bool:
        return request.url.path == self._renewal_path

    def _authorize(self, request: httpx.Request, token: Optional[str]) -> None:
        if token:
            request.headers["Authorization"] = f"Bearer {token}"
        elif "Authorization" in request.headers:
            del request.headers["Authorization"]

    async def request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        """Build and send a request through the gate."""
        headers = {**self._custom_headers, **(kwargs.pop("headers", None) or {})}
        request = self._http_client.build_request(method, url, headers=headers, **kwargs)
        return await self.send(request)

    async def get(self, url: str, **kwargs: Any) -> httpx.Response:
        return await self.request("GET", url, **kwargs)

    async def post(self, url: str, **kwargs: Any) -> httpx.Response:
        return await self.request("POST", url, **kwargs)

    async def send(self, request: httpx.Request) -> httpx.Response:
        """
        Send a request, renewing and replaying once on authentication failure.

        Non-auth failures are returned (or raised, for transport errors)
        unchanged.

        Raises:
            RenewalError: If the renewal the failure triggered did not succeed
            SessionTerminatedError: If logout interrupted the renewal
        """
        if self._bypasses(request):
            return await self._http_client.send(request)

        # Expired tokens are still sent; the resulting failure drives the renewal
        current = self._manager.coordinator.peek()
        token = current.access_token if current else None
        self._authorize(request, token)
        response = await self._http_client.send(request)

        if not self.is_auth_failure(response) or request.extensions.get(RETRIED_EXTENSION):
            return response
        if token is None:
            # No session to renew
            return response

        request.extensions[RETRIED_EXTENSION] = True
        await response.aclose()
        self._manager._log(f"{request.method} {request.url.path} got HTTP {response.status_code}; renewing")

        record = await self._manager.renew(stale_token=token)

        self._authorize(request, record.access_token)
        if "Cookie" in request.headers:
            del request.headers["Cookie"]
        self._http_client.cookies.set_cookie_header(request)
        replayed = await self._http_client.send(request)
        if self.is_auth_failure(replayed):
            logger.warning(
                "%s %s still failed with HTTP %s after renewal",
                request.method, request.url.path, replayed.status_code,
            )
        return replayed
