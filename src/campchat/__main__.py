"""CLI entry point for campchat."""

from __future__ import annotations

import argparse
import asyncio
import sys

from campchat.app import CampChatApp
from campchat.config import AppConfig, load_config, load_config_or_default
from campchat.core.errors import ChatError
from campchat.core.types import TimeWindow
from campchat.history.browser import TRANSCRIPT_FORMATS
from campchat.log import setup_logging


def _add_config_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("-c", "--config", default="campchat.yaml", help="Path to config file")
    parser.add_argument("-e", "--env", default=".env", help="Path to .env file")


def main() -> None:
    parser = argparse.ArgumentParser(
        prog="campchat",
        description="Campground chat widget client (guest portal and staff console)",
    )
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # chat command
    chat_parser = subparsers.add_parser("chat", help="Open the interactive chat widget")
    _add_config_args(chat_parser)
    chat_parser.add_argument("--json-logs", action="store_true", help="Emit JSON log lines")

    # config-check command
    check_parser = subparsers.add_parser("config-check", help="Validate configuration")
    _add_config_args(check_parser)

    # conversations command
    list_parser = subparsers.add_parser("conversations", help="List or search past conversations")
    _add_config_args(list_parser)
    list_parser.add_argument("-q", "--query", default="", help="Free-text search")
    list_parser.add_argument(
        "-w", "--window", default="all", choices=[w.value for w in TimeWindow], help="Time window"
    )
    list_parser.add_argument("--all-pages", action="store_true", help="Follow cursors to the end")

    # transcript command
    transcript_parser = subparsers.add_parser("transcript", help="Export a conversation transcript")
    _add_config_args(transcript_parser)
    transcript_parser.add_argument("conversation_id", help="Conversation to export")
    transcript_parser.add_argument(
        "-f", "--format", default="markdown", choices=TRANSCRIPT_FORMATS, help="Transcript format"
    )

    args = parser.parse_args()

    if args.command is None:
        # Default to chat
        args.command = "chat"
        args.config = "campchat.yaml"
        args.env = ".env"
        args.json_logs = False

    match args.command:
        case "config-check":
            _check_config(args.config, args.env)
        case "chat":
            _chat(args.config, args.env, args.json_logs)
        case "conversations":
            _conversations(args.config, args.env, args.query, args.window, args.all_pages)
        case "transcript":
            _transcript(args.config, args.env, args.conversation_id, args.format)


def _load(config_path: str, env_path: str) -> AppConfig:
    try:
        config = load_config_or_default(config_path, env_path)
    except Exception as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)
    if not config.widget.campground_id:
        print("Error: widget.campground_id is not set", file=sys.stderr)
        print("Copy config.example.yaml to campchat.yaml or set CAMPCHAT_CAMPGROUND_ID")
        sys.exit(1)
    return config


def _check_config(config_path: str, env_path: str) -> None:
    """Validate configuration and print summary."""
    try:
        config = load_config(config_path, env_path)
        widget = config.widget
        print(f"Configuration valid: {config_path}")
        print(f"  API: {config.api.base_url}")
        print(f"  Campground: {widget.campground_id or '(not set)'}")
        print(f"  Mode: {widget.mode.value}")
        print(f"  Transport: {widget.transport.value}")
        if widget.transport.value == "socket":
            print(f"  Socket URL: {config.api.resolved_socket_url()}")
        print(f"  Signed in: {'yes' if widget.auth_token else 'no'}")
        print(f"  Attachments: max {config.attachments.max_bytes} bytes, {', '.join(config.attachments.allowed_types)}")
    except Exception as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)


def _chat(config_path: str, env_path: str, json_logs: bool) -> None:
    """Run the interactive widget until /quit or EOF."""
    config = _load(config_path, env_path)
    setup_logging(config.log_level, json_output=json_logs)

    async def _async_main() -> None:
        from campchat.shell.terminal import TerminalShell

        app = CampChatApp(config)
        await app.start()
        try:
            await TerminalShell(app).run()
        finally:
            await app.stop()

    try:
        asyncio.run(_async_main())
    except KeyboardInterrupt:
        pass


def _conversations(config_path: str, env_path: str, query: str, window: str, all_pages: bool) -> None:
    config = _load(config_path, env_path)
    setup_logging(config.log_level)

    async def _async_main() -> None:
        app = CampChatApp(config)
        try:
            if not app.history.enabled:
                print("History requires an auth token.", file=sys.stderr)
                sys.exit(1)
            browser = app.history.conversations
            await browser.search(query, window)
            if all_pages:
                await browser.pager.load_all()
            if browser.pager.error:
                print(f"Error: {browser.pager.error}", file=sys.stderr)
                sys.exit(1)
            for summary in browser.conversations:
                stamp = summary.last_message_at or summary.updated_at
                print(f"{summary.id}\t{stamp.isoformat() if stamp else '-'}\t{summary.title or ''}")
            if browser.has_more:
                print("(more available: use --all-pages)", file=sys.stderr)
        finally:
            await app.stop()

    asyncio.run(_async_main())


def _transcript(config_path: str, env_path: str, conversation_id: str, fmt: str) -> None:
    config = _load(config_path, env_path)
    setup_logging(config.log_level)

    async def _async_main() -> None:
        app = CampChatApp(config)
        try:
            print(await app.history.transcript(conversation_id, fmt))
        except ChatError as e:
            print(f"Error: {e}", file=sys.stderr)
            sys.exit(1)
        finally:
            await app.stop()

    asyncio.run(_async_main())


if __name__ == "__main__":
    main()
