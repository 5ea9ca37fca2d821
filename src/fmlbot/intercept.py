"""Login interception for a single client connection.

``InterceptedConnection`` sits between the external client and the rest of
the world. Once installed it owns the client's ``write`` and ``emit``:

- the handshake packet leaves with the FML3 marker appended to its server
  address, every other packet passes through untouched
- ``login_plugin_request`` events never reach the client's listeners; each
  one is answered with exactly one ``login_plugin_response`` and then handed
  to the optional handler registered with ``on_login_plugin_request``
"""
from __future__ import annotations

import logging
from typing import Any, Callable, Mapping, Optional, Protocol

from .constants import (
    CHANNEL_FIELD,
    DATA_FIELD,
    FML3_MARKER,
    HANDSHAKE_CHANNEL,
    HANDSHAKE_PACKET,
    LOGIN_PLUGIN_REQUEST,
    LOGIN_PLUGIN_RESPONSE,
    LOGIN_WRAPPER_CHANNEL,
    MESSAGE_ID_FIELD,
    SERVER_HOST_FIELD,
)
from .handshake import DEFAULT_TABLE, DiscriminatorTable, build_response_frame
from .packet import LoginWrapper

logger = logging.getLogger(__name__)

PluginRequestHandler = Callable[[Mapping[str, Any], dict], None]


class Client(Protocol):
    """The part of the external game client this package relies on."""

    def write(self, name: str, data: Any) -> Any: ...

    def emit(self, event: str, *args: Any) -> Any: ...

    def on(self, event: str, listener: Callable[..., Any]) -> Any: ...

    def once(self, event: str, listener: Callable[..., Any]) -> Any: ...

    def quit(self) -> Any: ...


class InterceptedConnection:
    def __init__(
        self,
        client: Client,
        table: DiscriminatorTable = DEFAULT_TABLE,
        marker: str = FML3_MARKER,
    ):
        self.client = client
        self.table = table
        self.marker = marker
        self._write: Optional[Callable[..., Any]] = None
        self._emit: Optional[Callable[..., Any]] = None
        self._handler: Optional[PluginRequestHandler] = None

    @property
    def installed(self) -> bool:
        return self._write is not None

    def install(self) -> "InterceptedConnection":
        if self.installed:
            return self
        self._write = self.client.write
        self._emit = self.client.emit
        self.client.write = self.write  # type: ignore[method-assign]
        self.client.emit = self.emit  # type: ignore[method-assign]
        return self

    def uninstall(self) -> None:
        if not self.installed:
            return
        self.client.write = self._write  # type: ignore[method-assign]
        self.client.emit = self._emit  # type: ignore[method-assign]
        self._write = None
        self._emit = None

    def on_login_plugin_request(self, handler: Optional[PluginRequestHandler]) -> None:
        self._handler = handler

    def _require_installed(self) -> None:
        if not self.installed:
            raise RuntimeError("interception not installed")

    def write(self, name: str, data: Any = None) -> Any:
        self._require_installed()
        if name == HANDSHAKE_PACKET and data and data.get(SERVER_HOST_FIELD):
            data = {**data, SERVER_HOST_FIELD: data[SERVER_HOST_FIELD] + self.marker}
        return self._write(name, data)

    def emit(self, event: str, *args: Any) -> Any:
        self._require_installed()
        if event == LOGIN_PLUGIN_REQUEST:
            self.handle_login_plugin_request(args[0] if args else {})
            return True
        return self._emit(event, *args)

    def handle_login_plugin_request(self, packet: Mapping[str, Any]) -> dict:
        self._require_installed()
        message_id = packet.get(MESSAGE_ID_FIELD)
        channel = packet.get(CHANNEL_FIELD)
        data = packet.get(DATA_FIELD)
        logger.debug("login plugin request id=%s channel=%s", message_id, channel)

        response: dict = {MESSAGE_ID_FIELD: message_id}
        if channel == LOGIN_WRAPPER_CHANNEL and data:
            wrapped = self.answer_wrapped(bytes(data))
            if wrapped is not None:
                response[DATA_FIELD] = wrapped

        self._write(LOGIN_PLUGIN_RESPONSE, response)

        if self._handler is not None:
            try:
                self._handler(packet, response)
            except Exception:
                logger.exception("login plugin handler failed for id=%s", message_id)
        return response

    def answer_wrapped(self, data: bytes) -> Optional[bytes]:
        """Reply to a loginwrapper payload, or ``None`` for an empty response."""
        try:
            request = LoginWrapper.from_bytes(data)
        except ValueError as e:
            logger.warning("malformed loginwrapper envelope (%d bytes): %s", len(data), e)
            return None

        disc = request.payload[0] if request.payload else None
        logger.debug("  inner=%s disc=%s", request.channel, disc)
        if request.channel != HANDSHAKE_CHANNEL:
            return None

        reply = build_response_frame(request.payload, self.table)
        logger.debug("  reply disc=%d (%d bytes)", reply[0], len(reply))
        return LoginWrapper(request.channel, reply).to_bytes()
