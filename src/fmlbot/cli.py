from __future__ import annotations

import argparse
import importlib
import json
import logging
import time

from .bot import ClientFactory, KeepaliveBot, StatusEvent
from .config import BotConfig
from .constants import (
    DEFAULT_AUTH,
    DEFAULT_PORT,
    DEFAULT_RECONNECT_DELAY_S,
    DEFAULT_USERNAME,
    DEFAULT_VERSION,
    DISC_CHANNEL_DATA,
    DISC_CHANNEL_DATA_REPLY,
    DISC_MOD_LIST,
    DISC_MOD_LIST_REPLY,
)
from .handshake import DiscriminatorTable, build_response_frame


def load_factory(path: str) -> ClientFactory:
    """Resolve ``package.module:callable``."""
    module_name, sep, attr = path.partition(":")
    if not sep or not module_name or not attr:
        raise ValueError(f"expected module:callable, got {path!r}")
    obj = importlib.import_module(module_name)
    for part in attr.split("."):
        obj = getattr(obj, part)
    if not callable(obj):
        raise ValueError(f"{path} is not callable")
    return obj


def table_from_args(args: argparse.Namespace) -> DiscriminatorTable:
    return DiscriminatorTable(
        mod_list=args.disc_mod_list,
        mod_list_reply=args.disc_mod_list_reply,
        channel_data=args.disc_channel_data,
        channel_data_reply=args.disc_channel_data_reply,
    )


def emit(payload: dict, as_json: bool) -> None:
    print(json.dumps(payload) if as_json else payload, flush=True)


def cmd_run(args: argparse.Namespace) -> int:
    try:
        config = BotConfig(
            host=args.host,
            port=args.port,
            username=args.username,
            version=args.version,
            auth=args.auth,
            reconnect_delay_s=args.reconnect_delay,
            discriminators=table_from_args(args),
        ).validate()
        factory = load_factory(args.client_factory)
    except (ValueError, ImportError, AttributeError) as e:
        raise SystemExit(f"fmlbot: {e}")

    def on_status(event: StatusEvent) -> None:
        emit(event.to_dict(), args.json)

    bot = KeepaliveBot(config, factory)
    bot.start(on_status)
    try:
        while True:
            time.sleep(1.0)
    except KeyboardInterrupt:
        logging.info("interrupted")
    finally:
        bot.stop()
    return 0


def cmd_respond(args: argparse.Namespace) -> int:
    try:
        raw = bytes.fromhex(args.frame)
        table = table_from_args(args)
    except ValueError as e:
        raise SystemExit(f"fmlbot: {e}")

    reply = build_response_frame(raw, table)
    payload = {
        "request_disc": raw[0] if raw else None,
        "reply_disc": reply[0],
        "reply": reply.hex(),
    }
    emit(payload, args.json)
    return 0


def cmd_status_table(args: argparse.Namespace) -> int:
    try:
        table = table_from_args(args)
    except ValueError as e:
        raise SystemExit(f"fmlbot: {e}")
    emit(table.as_dict(), args.json)
    return 0


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="fmlbot", description="Keep a player connected to a Forge (FML3) server.")
    p.add_argument("--log-level", default="INFO", choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"])
    sub = p.add_subparsers(dest="cmd", required=True)

    def add_common(x: argparse.ArgumentParser) -> None:
        x.add_argument("--disc-mod-list", type=int, default=DISC_MOD_LIST)
        x.add_argument("--disc-mod-list-reply", type=int, default=DISC_MOD_LIST_REPLY)
        x.add_argument("--disc-channel-data", type=int, default=DISC_CHANNEL_DATA)
        x.add_argument("--disc-channel-data-reply", type=int, default=DISC_CHANNEL_DATA_REPLY)
        x.add_argument("--json", action="store_true")

    run = sub.add_parser("run", help="connect and stay connected until interrupted")
    add_common(run)
    run.add_argument("--host", required=True)
    run.add_argument("--port", type=int, default=DEFAULT_PORT)
    run.add_argument("--username", default=DEFAULT_USERNAME)
    run.add_argument("--version", default=DEFAULT_VERSION)
    run.add_argument("--auth", default=DEFAULT_AUTH)
    run.add_argument("--reconnect-delay", type=float, default=DEFAULT_RECONNECT_DELAY_S, help="seconds")
    run.add_argument(
        "--client-factory",
        required=True,
        help="module:callable returning a game client; called with host, port, username, auth, version",
    )
    run.set_defaults(func=cmd_run)

    respond = sub.add_parser("respond", help="answer a hex-encoded fml:handshake frame")
    add_common(respond)
    respond.add_argument("frame", help="hex bytes, discriminator first")
    respond.set_defaults(func=cmd_respond)

    table = sub.add_parser("status-table", help="print the discriminator table in use")
    add_common(table)
    table.set_defaults(func=cmd_status_table)

    return p


def main(argv: list[str] | None = None) -> int:
    p = build_parser()
    args = p.parse_args(argv)
    logging.basicConfig(level=getattr(logging, args.log_level), format="%(asctime)s [%(levelname)s] %(message)s")
    return int(args.func(args))


if __name__ == "__main__":
    raise SystemExit(main())
