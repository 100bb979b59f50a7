from __future__ import annotations

import argparse
import asyncio
import json
from pathlib import Path

from trusera_sdk.client import TruseraClient
from trusera_sdk.config import default_config_path, init_config, load_config
from trusera_sdk.enums import EventType
from trusera_sdk.errors import TruseraError
from trusera_sdk.events import create_event
from trusera_sdk.logging import configure_logging, get_logger

logger = get_logger("cli")


def _config_path(args: argparse.Namespace) -> Path | None:
    return Path(args.config).expanduser() if args.config else None


def cmd_init(args: argparse.Namespace) -> int:
    path = init_config(_config_path(args))
    print(f"initialized config: {path}")
    return 0


def cmd_register(args: argparse.Namespace) -> int:
    client = TruseraClient.from_config(load_config(_config_path(args)))

    async def _run() -> str:
        try:
            return await client.register_agent(args.name, args.framework)
        finally:
            await client.close()

    agent_id = asyncio.run(_run())
    print(agent_id)
    return 0


def cmd_send_event(args: argparse.Namespace) -> int:
    try:
        payload = json.loads(args.payload)
    except json.JSONDecodeError as exc:
        raise TruseraError(f"--payload is not valid JSON: {exc}") from exc
    if not isinstance(payload, dict):
        raise TruseraError("--payload must be a JSON object")
    client = TruseraClient.from_config(load_config(_config_path(args)))
    event = create_event(EventType(args.type), args.name, payload)

    async def _run() -> int:
        client.track(event)
        await client.close()
        return client.get_queue_size()

    undelivered = asyncio.run(_run())
    if undelivered:
        logger.error("event was not delivered", extra={"event_id": event.id})
        return 1
    print(event.id)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="trusera")
    parser.add_argument("--verbose", action="store_true")
    subparsers = parser.add_subparsers(dest="command", required=True)

    init_parser = subparsers.add_parser("init", help="write a default config file")
    init_parser.add_argument("--config", type=str, default=str(default_config_path()))
    init_parser.set_defaults(func=cmd_init)

    register_parser = subparsers.add_parser("register", help="register an agent and print its id")
    register_parser.add_argument("--config", type=str, default=str(default_config_path()))
    register_parser.add_argument("--name", required=True)
    register_parser.add_argument("--framework", default="custom")
    register_parser.set_defaults(func=cmd_register)

    send_parser = subparsers.add_parser("send-event", help="send a single event to the collector")
    send_parser.add_argument("--config", type=str, default=str(default_config_path()))
    send_parser.add_argument("--type", choices=[item.value for item in EventType], default=EventType.DECISION.value)
    send_parser.add_argument("--name", required=True)
    send_parser.add_argument("--payload", default="{}")
    send_parser.set_defaults(func=cmd_send_event)

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(bool(args.verbose))
    try:
        return int(args.func(args))
    except TruseraError as exc:
        logger.error("%s", exc)
        return 2
