from __future__ import annotations

from collections import defaultdict

import pytest

from fmlbot.bot import KeepaliveBot
from fmlbot.config import BotConfig


class FakeClient:
    """In-memory stand-in for the external game client."""

    def __init__(self, **options):
        self.options = options
        self.written = []
        self.listeners = defaultdict(list)
        self.quit_calls = 0

    def write(self, name, data=None):
        self.written.append((name, data))

    def emit(self, event, *args):
        listeners = list(self.listeners[event])
        for fn, once in listeners:
            if once:
                self.listeners[event].remove((fn, once))
            fn(*args)
        return bool(listeners)

    def on(self, event, fn):
        self.listeners[event].append((fn, False))

    def once(self, event, fn):
        self.listeners[event].append((fn, True))

    def quit(self):
        self.quit_calls += 1
        self.emit("end", "quit")


class ManualTimer:
    def __init__(self, delay_s, fn):
        self.delay_s = delay_s
        self.fn = fn
        self.cancelled = False
        self.fired = False

    def cancel(self):
        self.cancelled = True


class ManualScheduler:
    def __init__(self):
        self.timers = []

    def call_later(self, delay_s, fn):
        timer = ManualTimer(delay_s, fn)
        self.timers.append(timer)
        return timer

    @property
    def pending(self):
        return [t for t in self.timers if not t.cancelled and not t.fired]

    def fire(self, timer):
        timer.fired = True
        timer.fn()

    def run_pending(self):
        for timer in self.pending:
            self.fire(timer)


@pytest.fixture
def scheduler():
    return ManualScheduler()


@pytest.fixture
def clients():
    return []


@pytest.fixture
def factory(clients):
    def create(**options):
        client = FakeClient(**options)
        clients.append(client)
        return client

    return create


@pytest.fixture
def events():
    return []


@pytest.fixture
def make_bot(factory, scheduler):
    def make(client_factory=None, **overrides):
        config = BotConfig(host="play.example.net", **overrides)
        return KeepaliveBot(config, client_factory or factory, scheduler=scheduler)

    return make
