from __future__ import annotations

import threading

import pytest

from fmlbot.bot import BotState, KeepaliveBot, StatusEvent, ThreadingScheduler, describe_kick
from fmlbot.config import BotConfig

from conftest import FakeClient


def statuses(events):
    return [e.status for e in events]


def test_connect_then_online(make_bot, clients, events):
    bot = make_bot()
    assert bot.get_status() is BotState.STOPPED

    bot.start(events.append)
    assert bot.get_status() is BotState.CONNECTING
    assert len(clients) == 1
    assert clients[0].options == {
        "host": "play.example.net",
        "port": 25565,
        "username": "GardenBot",
        "auth": "offline",
        "version": "1.20.1",
    }

    clients[0].emit("spawn")
    assert bot.status is BotState.ONLINE
    assert statuses(events) == [BotState.CONNECTING, BotState.ONLINE]


def test_spawn_only_counts_once(make_bot, clients, events):
    bot = make_bot()
    bot.start(events.append)
    clients[0].emit("spawn")
    clients[0].emit("spawn")
    assert statuses(events) == [BotState.CONNECTING, BotState.ONLINE]


def test_interception_installed_on_each_connection(make_bot, clients):
    bot = make_bot()
    bot.start()
    clients[0].write("set_protocol", {"serverHost": "play.example.net"})
    assert clients[0].written[-1] == ("set_protocol", {"serverHost": "play.example.net\0FML3\0"})

    clients[0].emit("login_plugin_request", {"messageId": 0, "channel": "x:y"})
    assert clients[0].written[-1] == ("login_plugin_response", {"messageId": 0})


def test_start_twice_keeps_one_connection(make_bot, clients, events):
    bot = make_bot()
    bot.start(events.append)
    second = []
    bot.start(second.append)

    assert len(clients) == 1
    assert second == [StatusEvent(BotState.CONNECTING)]

    clients[0].emit("spawn")
    assert statuses(events) == [BotState.CONNECTING]
    assert statuses(second) == [BotState.CONNECTING, BotState.ONLINE]
    assert len(clients) == 1


def test_error_schedules_one_retry(make_bot, clients, scheduler, events):
    bot = make_bot(reconnect_delay_s=12.5)
    bot.start(events.append)
    clients[0].emit("spawn")

    clients[0].emit("error", ConnectionResetError("connection reset"))

    assert bot.status is BotState.RECONNECTING
    assert events[-1] == StatusEvent(BotState.RECONNECTING, "connection reset")
    assert clients[0].quit_calls == 1
    assert len(scheduler.pending) == 1
    assert scheduler.pending[0].delay_s == 12.5

    # late events from the torn-down client change nothing
    clients[0].emit("end", "socketClosed")
    clients[0].emit("kicked", "bye")
    assert len(scheduler.pending) == 1
    assert statuses(events) == [BotState.CONNECTING, BotState.ONLINE, BotState.RECONNECTING]


def test_retry_reconnects(make_bot, clients, scheduler, events):
    bot = make_bot()
    bot.start(events.append)
    clients[0].emit("end", "socketClosed")

    scheduler.run_pending()

    assert bot.status is BotState.CONNECTING
    assert len(clients) == 2
    assert bot.attempts == 2
    clients[1].emit("spawn")
    assert statuses(events) == [
        BotState.CONNECTING,
        BotState.RECONNECTING,
        BotState.CONNECTING,
        BotState.ONLINE,
    ]


def test_stale_client_cannot_drive_new_session(make_bot, clients, scheduler):
    bot = make_bot()
    bot.start()
    clients[0].emit("end", "socketClosed")
    scheduler.run_pending()

    clients[0].emit("spawn")
    assert bot.status is BotState.CONNECTING
    clients[0].emit("error", OSError("old"))
    assert bot.status is BotState.CONNECTING
    assert scheduler.pending == []


def test_kick_reason_formats(make_bot, clients, events):
    bot = make_bot()
    bot.start(events.append)
    clients[0].emit("kicked", {"translate": "multiplayer.disconnect.kicked"}, True)

    assert events[-1].detail == '{"translate":"multiplayer.disconnect.kicked"}'
    assert describe_kick("You are banned") == "You are banned"


def test_end_without_reason(make_bot, clients, events):
    bot = make_bot()
    bot.start(events.append)
    clients[0].emit("end")
    assert events[-1] == StatusEvent(BotState.RECONNECTING, "")


def test_stop_while_reconnecting_cancels_retry(make_bot, clients, scheduler, events):
    bot = make_bot()
    bot.start(events.append)
    clients[0].emit("error", OSError("refused"))
    timer = scheduler.pending[0]

    bot.stop()

    assert timer.cancelled
    assert bot.status is BotState.STOPPED
    assert events[-1] == StatusEvent(BotState.STOPPED)
    before = list(events)

    # a timer that was already in flight when stop() ran
    scheduler.fire(timer)

    assert events == before
    assert len(clients) == 1
    assert bot.status is BotState.STOPPED


def test_stop_tears_down_and_ignores_residual_events(make_bot, clients, scheduler, events):
    bot = make_bot()
    bot.start(events.append)
    clients[0].emit("spawn")

    bot.stop()

    assert clients[0].quit_calls == 1
    clients[0].emit("error", OSError("late"))
    clients[0].emit("kicked", "late")
    assert statuses(events) == [BotState.CONNECTING, BotState.ONLINE, BotState.STOPPED]
    assert scheduler.pending == []


def test_stop_when_already_stopped_notifies_once(make_bot, events):
    bot = make_bot()
    bot.start(events.append)
    bot.stop()
    bot.stop()
    assert statuses(events) == [BotState.CONNECTING, BotState.STOPPED, BotState.STOPPED]


def test_restart_after_stop(make_bot, clients, events):
    bot = make_bot()
    bot.start(events.append)
    bot.stop()
    bot.start(events.append)

    assert len(clients) == 2
    assert bot.status is BotState.CONNECTING


def test_factory_failure_schedules_retry(make_bot, scheduler, events):
    calls = []

    def broken(**options):
        calls.append(options)
        raise RuntimeError("no route to host")

    bot = make_bot(client_factory=broken)
    bot.start(events.append)

    assert events[-1] == StatusEvent(BotState.RECONNECTING, "no route to host")
    assert len(scheduler.pending) == 1

    scheduler.run_pending()
    assert len(calls) == 2
    assert len(scheduler.pending) == 1


def test_failing_callback_does_not_break_transitions(make_bot, clients):
    def boom(event):
        raise RuntimeError("ui went away")

    bot = make_bot()
    bot.start(boom)
    clients[0].emit("spawn")
    assert bot.status is BotState.ONLINE


def test_stop_from_callback_during_connect(make_bot, clients):
    bot = make_bot()

    def on_status(event):
        if event.status is BotState.CONNECTING:
            bot.stop()

    bot.start(on_status)

    assert clients == []
    assert bot.status is BotState.STOPPED


def test_status_event_dict():
    assert StatusEvent(BotState.RECONNECTING, "timeout").to_dict() == {
        "status": "reconnecting",
        "detail": "timeout",
    }


def test_invalid_config_rejected(factory):
    with pytest.raises(ValueError):
        KeepaliveBot(BotConfig(host=""), factory)


def test_threading_scheduler_cancel():
    fired = []
    timer = ThreadingScheduler().call_later(60.0, lambda: fired.append(True))
    timer.cancel()
    assert fired == []


class ReaderThreadClient(FakeClient):
    """Delivers ``end`` from its own reader thread and joins it in ``quit``."""

    reader_alive = None

    def quit(self):
        self.quit_calls += 1
        reader = threading.Thread(target=self.emit, args=("end", "socketClosed"))
        reader.start()
        reader.join(timeout=2.0)
        self.reader_alive = reader.is_alive()


def test_stop_does_not_block_client_reader(scheduler, events):
    created = []

    def create(**options):
        created.append(ReaderThreadClient(**options))
        return created[-1]

    bot = KeepaliveBot(BotConfig(host="h"), create, scheduler=scheduler)
    bot.start(events.append)
    created[0].emit("spawn")

    bot.stop()

    assert created[0].reader_alive is False
    assert statuses(events) == [BotState.CONNECTING, BotState.ONLINE, BotState.STOPPED]


def test_failure_teardown_does_not_block_client_reader(scheduler, events):
    created = []

    def create(**options):
        created.append(ReaderThreadClient(**options))
        return created[-1]

    bot = KeepaliveBot(BotConfig(host="h"), create, scheduler=scheduler)
    bot.start(events.append)
    created[0].emit("error", OSError("reset"))

    assert created[0].reader_alive is False
    assert bot.status is BotState.RECONNECTING
    assert len(scheduler.pending) == 1


def test_stop_does_not_wait_for_slow_connect(scheduler, events):
    entered = threading.Event()
    release = threading.Event()
    created = []

    def slow(**options):
        entered.set()
        release.wait(5.0)
        created.append(FakeClient(**options))
        return created[-1]

    bot = KeepaliveBot(BotConfig(host="h"), slow, scheduler=scheduler)
    starter = threading.Thread(target=bot.start, args=(events.append,))
    starter.start()
    assert entered.wait(2.0)

    stopper = threading.Thread(target=bot.stop)
    stopper.start()
    stopper.join(timeout=2.0)
    assert not stopper.is_alive()
    assert bot.get_status() is BotState.STOPPED

    release.set()
    starter.join(timeout=2.0)
    assert not starter.is_alive()
    assert created[0].quit_calls == 1
    assert bot.get_status() is BotState.STOPPED
    assert scheduler.pending == []
    assert statuses(events) == [BotState.CONNECTING, BotState.STOPPED]
