"""
Host Bridge

Forwards session lifecycle events to an embedding native shell and to
in-process subscribers, and accepts credentials the shell pushes in after its
own native login.

Outbound messages:
    {"type": "login", "token": "...", "refreshToken": "..."}
    {"type": "refresh", "token": "...", "refreshToken": "..."}
    {"type": "logout"}

Inbound messages (handle_host_message):
    {"type": "loginInfoReceived", "detail": {"userInfo": {"token": ..., "refreshToken": ...}}}
    {"type": "login", "accessToken": ..., "refreshToken": ..., "subjectId": ...}
    {"type": "logout"}
"""

import json
import logging
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Optional, Union

from . import codec
from .errors import ValidationError
from .types import (
    CredentialPair,
    ExternalCredential,
    OutboundChannel,
    SessionEvent,
    SessionEventHandler,
    SessionEventType,
    SessionRecord,
)

if TYPE_CHECKING:
    from .manager import SessionManager


logger = logging.getLogger("storefront_session.bridge")


class NullChannel:
    """Channel used when no native host embeds the web context."""

    def send(self, event: Dict[str, Any]) -> None:
        return None


class CallbackChannel:
    """Serializes events to JSON and hands them to a callable (e.g. a webview postMessage)."""

    def __init__(self, post_message: Callable[[str], None]) -> None:
        self._post_message = post_message

    def send(self, event: Dict[str, Any]) -> None:
        self._post_message(json.dumps(event))


class SessionEventBus:
    """In-process dispatch of session events to subscribers."""

    def __init__(self) -> None:
        self._handlers: List[SessionEventHandler] = []

    def subscribe(self, handler: SessionEventHandler) -> Callable[[], None]:
        """Register a handler. Returns a callable that unsubscribes it."""
        self._handlers.append(handler)

        def unsubscribe() -> None:
            if handler in self._handlers:
                self._handlers.remove(handler)

        return unsubscribe

    def emit(self, event: SessionEvent) -> None:
        for handler in list(self._handlers):
            try:
                handler(event)
            except Exception:
                logger.exception("Session event handler failed for %s event", event.type.value)

    def __len__(self) -> int:
        return len(self._handlers)


class HostBridge:
    """
    Session events to and from the embedding host.

    In-process events are dispatched whether or not a host is attached; the
    host channel only receives messages when one is.
    """

    def __init__(self, manager: "SessionManager", channel: Optional[OutboundChannel] = None) -> None:
        self._manager = manager
        self._channel = channel
        self.events = SessionEventBus()

    @property
    def has_host(self) -> bool:
        return self._channel is not None and not isinstance(self._channel, NullChannel)

    def _post(self, message: Dict[str, Any]) -> None:
        if not self.has_host:
            return
        try:
            self._channel.send(message)  # type: ignore[union-attr]
        except Exception as e:
            logger.warning("Failed to post %s message to host: %s", message.get("type"), e)

    # =========================================================================
    # Outbound
    # =========================================================================

    def notify_login(self, record: SessionRecord, source: str = "local") -> None:
        if source == "local":
            self._post({"type": "login", **record.credentials.to_dict()})
        self.events.emit(SessionEvent(SessionEventType.LOGIN, record=record, source=source))

    def notify_refresh(self, record: SessionRecord) -> None:
        self._post({"type": "refresh", **record.credentials.to_dict()})
        self.events.emit(SessionEvent(SessionEventType.REFRESH, record=record))

    def notify_logout(self, reason: Optional[str] = None) -> None:
        self._post({"type": "logout"})
        self.events.emit(SessionEvent(SessionEventType.LOGOUT, reason=reason))

    # =========================================================================
    # Inbound
    # =========================================================================

    def _validate(self, payload: Any) -> ExternalCredential:
        if not isinstance(payload, dict):
            raise ValidationError("Host credential must be an object", "INVALID_HOST_PAYLOAD")

        access_token = payload.get("accessToken")
        if not isinstance(access_token, str) or not access_token.strip():
            raise ValidationError("accessToken must be a non-empty string", "INVALID_HOST_PAYLOAD")

        for name in ("refreshToken", "subjectId"):
            value = payload.get(name)
            if value is not None and not isinstance(value, str):
                raise ValidationError(f"{name} must be a string", "INVALID_HOST_PAYLOAD")

        credential = ExternalCredential.from_dict(payload)

        if credential.subject_id:
            claims = codec.try_decode(credential.access_token)
            if claims and claims.subject and claims.subject != credential.subject_id:
                raise ValidationError(
                    "subjectId does not match the token subject",
                    "SUBJECT_MISMATCH",
                    {"subject_id": credential.subject_id},
                )

        return credential

    def receive_external_credential(self, payload: Dict[str, Any]) -> SessionRecord:
        """
        Accept a credential from the host's native login flow.

        Host-originated credentials are always stored as durable.

        Raises:
            ValidationError: If the payload has the wrong shape
        """
        credential = self._validate(payload)
        tiers = self._manager.policy.choose_tiers(keep_session=True, is_host_context=True)
        return self._manager._establish(
            CredentialPair(credential.access_token.strip(), credential.refresh_token or None),
            tiers,
            source="host",
        )

    async def handle_host_message(self, message: Union[str, Dict[str, Any]]) -> Optional[SessionRecord]:
        """Dispatch a raw message posted by the host shell."""
        if isinstance(message, str):
            try:
                message = json.loads(message)
            except ValueError:
                raise ValidationError("Host message is not valid JSON", "INVALID_HOST_PAYLOAD")
        if not isinstance(message, dict):
            raise ValidationError("Host message must be an object", "INVALID_HOST_PAYLOAD")

        message_type = message.get("type")

        if message_type == "loginInfoReceived":
            detail = message.get("detail") or {}
            user_info = detail.get("userInfo") or {} if isinstance(detail, dict) else {}
            if not isinstance(user_info, dict):
                raise ValidationError("userInfo must be an object", "INVALID_HOST_PAYLOAD")
            return self.receive_external_credential({
                "accessToken": user_info.get("token"),
                "refreshToken": user_info.get("refreshToken"),
                "subjectId": user_info.get("id"),
            })

        if message_type == "login":
            return self.receive_external_credential(
                {key: value for key, value in message.items() if key != "type"}
            )

        if message_type == "logout":
            await self._manager.logout()
            return None

        logger.debug("Ignoring host message of type %r", message_type)
        return None
