"""Reconnect state machine for the keepalive player.

    stopped -> connecting -> online
    connecting | online -> reconnecting -> connecting   (after the retry delay)
    any -> stopped                                      (stop() only)

Only one connection exists at a time. Connection failures of any kind turn
into ``reconnecting`` plus a single one-shot retry timer; nothing but
``stop()`` ends the loop.
"""
from __future__ import annotations

import enum
import json
import logging
import threading
from dataclasses import dataclass
from typing import Any, Callable, Optional, Protocol

from .config import BotConfig
from .constants import EVENT_END, EVENT_ERROR, EVENT_KICKED, EVENT_SPAWN
from .intercept import Client, InterceptedConnection

logger = logging.getLogger(__name__)


class BotState(str, enum.Enum):
    STOPPED = "stopped"
    CONNECTING = "connecting"
    ONLINE = "online"
    RECONNECTING = "reconnecting"


@dataclass(frozen=True, slots=True)
class StatusEvent:
    status: BotState
    detail: str = ""

    def to_dict(self) -> dict[str, str]:
        return {"status": self.status.value, "detail": self.detail}


StatusCallback = Callable[[StatusEvent], None]
ClientFactory = Callable[..., Client]


class TimerHandle(Protocol):
    def cancel(self) -> None: ...


class Scheduler(Protocol):
    def call_later(self, delay_s: float, fn: Callable[[], None]) -> TimerHandle: ...


class ThreadingScheduler:
    def call_later(self, delay_s: float, fn: Callable[[], None]) -> TimerHandle:
        timer = threading.Timer(delay_s, fn)
        timer.daemon = True
        timer.start()
        return timer


@dataclass(slots=True)
class ConnectionSession:
    attempt: int
    client: Client
    interception: InterceptedConnection

    def close(self) -> None:
        _quit(self.client, self.attempt)


def _quit(client: Client, attempt: int) -> None:
    try:
        client.quit()
    except Exception:
        logger.debug("quit failed on attempt %d", attempt, exc_info=True)


class _PendingRetry:
    __slots__ = ("handle",)

    def __init__(self) -> None:
        self.handle: Optional[TimerHandle] = None


def describe_error(err: Any) -> str:
    if err is None:
        return ""
    return str(err) or type(err).__name__


def describe_kick(reason: Any) -> str:
    if isinstance(reason, str):
        return reason
    return json.dumps(reason, separators=(",", ":"), default=str)


class KeepaliveBot:
    def __init__(
        self,
        config: BotConfig,
        client_factory: ClientFactory,
        scheduler: Optional[Scheduler] = None,
    ):
        self.config = config.validate()
        self.client_factory = client_factory
        self.scheduler: Scheduler = scheduler or ThreadingScheduler()
        self.attempts = 0
        self._lock = threading.Lock()
        self._state = BotState.STOPPED
        self._session: Optional[ConnectionSession] = None
        self._pending: Optional[_PendingRetry] = None
        self._on_status: Optional[StatusCallback] = None

    @property
    def status(self) -> BotState:
        return self._state

    def get_status(self) -> BotState:
        return self._state

    def start(self, on_status: Optional[StatusCallback] = None) -> None:
        attempt = None
        with self._lock:
            self._on_status = on_status
            if self._state is not BotState.STOPPED:
                event = StatusEvent(self._state)
            else:
                attempt = self._begin_attempt()
                event = StatusEvent(BotState.CONNECTING)
        self._notify(event)
        if attempt is not None:
            self._connect(attempt)

    def stop(self) -> None:
        with self._lock:
            self._state = BotState.STOPPED
            self._cancel_retry()
            session = self._detach()
        logger.info("bot stopped")
        if session is not None:
            session.close()
        self._notify(StatusEvent(BotState.STOPPED))

    def _notify(self, event: StatusEvent) -> None:
        callback = self._on_status
        if callback is None:
            return
        try:
            callback(event)
        except Exception:
            logger.exception("status callback failed for %s", event.status.value)

    def _transition(self, state: BotState, detail: str = "") -> StatusEvent:
        self._state = state
        if detail:
            logger.info("status -> %s (%s)", state.value, detail)
        else:
            logger.info("status -> %s", state.value)
        return StatusEvent(state, detail)

    def _begin_attempt(self) -> int:
        self._transition(BotState.CONNECTING)
        self.attempts += 1
        return self.attempts

    def _is_current(self, attempt: int) -> bool:
        return self._state is BotState.CONNECTING and self.attempts == attempt

    def _connect(self, attempt: int) -> None:
        # collaborator calls happen outside the lock; the lock only guards
        # state, and every re-entry checks that the attempt is still current
        with self._lock:
            if not self._is_current(attempt):
                return
        logger.info("connecting to %s as %s (attempt %d)", self.config.address, self.config.username, attempt)

        client: Optional[Client] = None
        try:
            client = self.client_factory(**self.config.client_options())
            interception = InterceptedConnection(client, self.config.discriminators).install()
        except Exception as e:
            logger.warning("connection setup failed on attempt %d", attempt, exc_info=True)
            if client is not None:
                _quit(client, attempt)
            self._fail_attempt(attempt, describe_error(e))
            return

        session = ConnectionSession(attempt, client, interception)
        with self._lock:
            current = self._is_current(attempt)
            if current:
                self._session = session
        if not current:
            logger.info("dropping client from superseded attempt %d", attempt)
            session.close()
            return

        try:
            client.once(EVENT_SPAWN, lambda *_: self._on_spawn(session))
            client.on(EVENT_ERROR, lambda err=None, *_: self._on_failure(session, describe_error(err)))
            client.on(EVENT_END, lambda reason=None, *_: self._on_failure(session, describe_error(reason)))
            client.on(EVENT_KICKED, lambda reason=None, *_: self._on_failure(session, describe_kick(reason)))
        except Exception as e:
            logger.warning("listener registration failed on attempt %d", attempt, exc_info=True)
            self._on_failure(session, describe_error(e))

    def _fail_attempt(self, attempt: int, detail: str) -> None:
        with self._lock:
            if not self._is_current(attempt):
                return
            event = self._transition(BotState.RECONNECTING, detail)
        self._notify(event)
        self._retry_if_reconnecting()

    def _on_spawn(self, session: ConnectionSession) -> None:
        with self._lock:
            if session is not self._session or self._state is BotState.STOPPED:
                return
            event = self._transition(BotState.ONLINE)
        self._notify(event)

    def _on_failure(self, session: ConnectionSession, detail: str) -> None:
        with self._lock:
            if self._state is BotState.STOPPED:
                return
            if session is not self._session:
                logger.debug("ignoring event from stale attempt %d: %s", session.attempt, detail)
                return
            logger.warning("connection lost on attempt %d: %s", session.attempt, detail)
            self._detach()
            event = self._transition(BotState.RECONNECTING, detail)
        session.close()
        self._notify(event)
        self._retry_if_reconnecting()

    def _detach(self) -> Optional[ConnectionSession]:
        session, self._session = self._session, None
        return session

    def _retry_if_reconnecting(self) -> None:
        with self._lock:
            if self._state is BotState.RECONNECTING and self._session is None:
                self._schedule_retry()

    def _schedule_retry(self) -> None:
        if self._pending is not None:
            return
        delay = self.config.reconnect_delay_s
        pending = _PendingRetry()
        self._pending = pending
        pending.handle = self.scheduler.call_later(delay, lambda: self._retry(pending))
        logger.info("retrying in %.1fs", delay)

    def _cancel_retry(self) -> None:
        pending, self._pending = self._pending, None
        if pending is not None and pending.handle is not None:
            pending.handle.cancel()

    def _retry(self, pending: _PendingRetry) -> None:
        with self._lock:
            if pending is not self._pending:
                return
            self._pending = None
            if self._state is not BotState.RECONNECTING:
                return
            attempt = self._begin_attempt()
        self._notify(StatusEvent(BotState.CONNECTING))
        self._connect(attempt)
