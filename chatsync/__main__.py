"""CLI entry point for chatsync."""

import argparse
import asyncio
import json
import logging
import signal
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from .config import Config, load_config
from .stores import ADD, MessageStore, MessageRecord, UserStore
from .sync import SyncClient

logger = logging.getLogger(__name__)

LOG_LEVELS = {
    "warning": logging.WARNING,
    "info": logging.INFO,
    "debug": logging.DEBUG,
}

# Chat lines go to stdout; log records never do
TEXT_LOG_FORMAT = "%(asctime)s %(levelname)-7s %(name)s: %(message)s"


class JSONFormatter(logging.Formatter):
    """Render each record as a single JSON line with a UTC timestamp."""

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, timezone.utc).isoformat(
                timespec="milliseconds"
            ),
            "level": record.levelname,
            "component": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            entry["error"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


def setup_logging(
    verbose: bool = False, log_level: str | None = None, json_output: bool = False
) -> int:
    """Send log records to stderr and return the effective level.

    An explicit ``log_level`` wins over ``verbose``. Without either, only
    warnings are shown so the console stays readable while chatting.
    """
    if log_level:
        level = LOG_LEVELS.get(log_level, logging.INFO)
    else:
        level = logging.DEBUG if verbose else logging.WARNING

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(
        JSONFormatter() if json_output else logging.Formatter(TEXT_LOG_FORMAT, "%H:%M:%S")
    )
    logging.basicConfig(level=level, handlers=[handler], force=True)

    # httpx logs every request at info; the poll loop makes one a minute
    logging.getLogger("httpx").setLevel(max(level, logging.WARNING))
    return level


def _apply_cli_overrides(config: Config, args: argparse.Namespace) -> Config:
    """Apply --server/--nick/--email over the loaded config."""
    if server := getattr(args, "server", None):
        config.server.base_url = server if server.endswith("/") else server + "/"
    if nick := getattr(args, "nick", None):
        config.identity.nick_name = nick
    if email := getattr(args, "email", None):
        config.identity.email = email
    return config


def format_message(record: MessageRecord) -> str:
    """Render a message as one console line in local time."""
    clock = record.occurred_at.astimezone().strftime("%H:%M:%S")
    if record.is_synthetic:
        verb = "joined" if record.kind == "join" else "left"
        return f"[{clock}] * {record.nick_name} {verb}"
    return f"[{clock}] <{record.nick_name}> {record.body}"


def _print_message(action: str, record: Any) -> None:
    if action == ADD:
        print(format_message(record), flush=True)


def _print_raw(action: str, record: Any) -> None:
    if action == ADD:
        print(json.dumps(record.to_dict()), flush=True)


def handle_input_line(client: SyncClient, users: UserStore, line: str) -> str | None:
    """Act on one line typed at the console.

    ``/who`` lists the users currently online. Any other non-blank line is
    sent as a chat message; it is printed once the server echoes it back.

    Returns:
        Text to show the user, or None.
    """
    text = line.strip()
    if not text:
        return None
    if text == "/who":
        names = users.sorted_nick_names()
        return f"* online: {', '.join(names) if names else 'nobody'}"
    client.send(text)
    return None


async def _forward_stdin(
    client: SyncClient, users: UserStore, stop_event: asyncio.Event
) -> None:
    """Read console lines and hand them to ``handle_input_line`` until EOF."""
    loop = asyncio.get_running_loop()
    reader = asyncio.StreamReader()
    try:
        transport, _ = await loop.connect_read_pipe(
            lambda: asyncio.StreamReaderProtocol(reader), sys.stdin
        )
    except (ValueError, OSError, NotImplementedError) as e:
        logger.info(f"Console input unavailable ({e}), following only")
        return

    try:
        while not stop_event.is_set():
            raw = await reader.readline()
            if not raw:
                logger.debug("Console input closed, following only")
                return
            reply = handle_input_line(client, users, raw.decode("utf-8", errors="replace"))
            if reply:
                print(reply, flush=True)
    finally:
        transport.close()


async def cmd_run(args: argparse.Namespace) -> int:
    """Join the chat, print messages and send typed lines until interrupted."""
    config = _apply_cli_overrides(load_config(args.config), args)
    if not config.identity.nick_name:
        print("Error: a nickname is required (--nick or identity.nick_name)", file=sys.stderr)
        return 1

    messages = MessageStore()
    users = UserStore()
    messages.subscribe(_print_raw if args.raw else _print_message)
    client = SyncClient.from_config(config, messages, users)

    print(f"Connecting to {config.server.base_url} as {config.identity.nick_name}")

    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except (NotImplementedError, RuntimeError):
            pass  # Not supported on this platform; Ctrl-C still interrupts

    if not await client.start():
        await client.stop()
        print(f"Error: could not join {config.server.base_url}", file=sys.stderr)
        return 1

    input_task = None
    if not args.listen_only:
        input_task = asyncio.create_task(_forward_stdin(client, users, stop_event))

    try:
        await stop_event.wait()
    finally:
        print("\nShutting down...")
        if input_task is not None:
            input_task.cancel()
            try:
                await input_task
            except asyncio.CancelledError:
                pass
        await client.stop()

    return 0


async def cmd_send(args: argparse.Namespace) -> int:
    """Post a single message."""
    config = _apply_cli_overrides(load_config(args.config), args)
    if not config.identity.nick_name:
        print("Error: a nickname is required (--nick or identity.nick_name)", file=sys.stderr)
        return 1

    client = SyncClient.from_config(config, MessageStore(), UserStore())
    try:
        sent = await client.post_message(args.text)
    finally:
        await client.close()

    if not sent:
        print("Error: message was not accepted", file=sys.stderr)
        return 1
    return 0


def _add_identity_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--server", type=str, default=None, help="Chat server base URL")
    parser.add_argument("--nick", type=str, default=None, help="Nickname to chat as")
    parser.add_argument("--email", type=str, default=None, help="Email address (used for the avatar)")


def main() -> int:
    """Main entry point."""
    parser = argparse.ArgumentParser(
        prog="chatsync",
        description="Long-polling chat client",
    )
    parser.add_argument(
        "-c", "--config",
        type=Path,
        default=None,
        help="Path to config file (default: built-in defaults)",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        choices=["warning", "info", "debug"],
        default=None,
        help="Set log level explicitly (overrides -v/--verbose)",
    )
    parser.add_argument(
        "--json",
        action="store_true",
        help="Output logs as JSON for machine parsing",
    )

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # Run command
    run_parser = subparsers.add_parser("run", help="Join the chat, follow messages and send typed lines")
    _add_identity_arguments(run_parser)
    run_parser.add_argument(
        "--listen-only",
        action="store_true",
        help="Do not read messages to send from stdin",
    )
    run_parser.add_argument(
        "--raw",
        action="store_true",
        help="Print each message as a JSON object instead of a chat line",
    )
    run_parser.set_defaults(func=cmd_run)

    # Send command
    send_parser = subparsers.add_parser("send", help="Send one message")
    _add_identity_arguments(send_parser)
    send_parser.add_argument("text", help="Message text")
    send_parser.set_defaults(func=cmd_send)

    args = parser.parse_args()

    setup_logging(args.verbose, args.log_level, args.json)

    if not args.command:
        parser.print_help()
        return 1

    try:
        return asyncio.run(args.func(args))
    except KeyboardInterrupt:
        return 130


if __name__ == "__main__":
    sys.exit(main())
