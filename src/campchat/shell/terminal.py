"""Interactive terminal front end for the chat widget."""

from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import Awaitable, Callable

from campchat.app import CampChatApp
from campchat.core.errors import ChatError
from campchat.core.types import AttachmentStatus, Rating, Role, TimeWindow, Visibility
from campchat.log import get_logger
from campchat.shell.render import format_file_size, relative_time, render_artifact, render_thread

logger = get_logger(__name__)

HELP = """Commands:
  /attach <path>          stage a file (jpeg, png, gif, webp, pdf; max 10 MB)
  /remove <n>             drop staged file n
  /retry                  resend the last failed message
  /action <n>             choose option n of the pending action
  /up | /down             rate the last assistant reply
  /regenerate             ask for a new version of the last reply
  /reply <n>              answer with suggested question n
  /edit                   load your last message into the composer
  /tool <name> [json]     run a tool with JSON arguments
  /clear                  start a new conversation
  /internal               toggle internal notes (staff only)
  /history [query]        list past conversations
  /window <7d|30d|90d|all> filter the conversation list
  /more                   load more conversations
  /resume <n>             continue conversation n from the list
  /transcript [fmt]       export the active conversation
  /artifact               show the open artifact
  /quit                   leave
End a line with \\ to continue on the next line (Shift+Enter)."""


class TerminalShell:
    """Line-oriented shell: each input line is a key sequence ending in Enter."""

    def __init__(self, app: CampChatApp, read_line: Callable[[str], Awaitable[str]] | None = None):
        self.app = app
        self.widget = app.widget
        self._read_line = read_line or _read_stdin
        self._printed = 0
        self._running = False
        self.widget.subscribe(self._on_change)

    async def run(self) -> None:
        self._running = True
        print(f"campchat · {self.app.scope.mode.value} · {self.app.transport.kind.value} (type /help)")
        if not self.app.scope.has_auth:
            print("(not signed in: attachments and history are unavailable)")
        await self.widget.open()
        while self._running:
            prompt = "[internal] > " if self.widget.composer.visibility == Visibility.INTERNAL else "> "
            try:
                line = await self._read_line(prompt)
            except EOFError:
                break
            if line.startswith("/") and not self.widget.composer.text:
                await self._command(line)
                continue
            if line.endswith("\\"):
                self.widget.composer.text += line[:-1]
                await self.widget.key("Enter", shift=True)
                continue
            self.widget.composer.text += line
            await self.pipeline_settled()
            await self.widget.key("Enter")
        self.widget.close()

    async def pipeline_settled(self) -> None:
        if self.app.pipeline.is_uploading:
            print("(waiting for uploads…)")
            await self.app.pipeline.wait_idle()

    def _on_change(self) -> None:
        messages = self.app.manager.messages
        if len(messages) < self._printed:
            self._printed = 0
        fresh = [m for m in messages[self._printed:] if not m.streaming and not m.is_pending]
        if len(fresh) != len(messages[self._printed:]):
            return
        if fresh:
            print()
            print(
                render_thread(
                    fresh,
                    resolved_actions=self.app.manager.resolved_actions,
                    action_errors=self.app.manager.action_errors,
                )
            )
            print()
            self._printed = len(messages)

    async def _command(self, line: str) -> None:
        name, _, arg = line[1:].partition(" ")
        arg = arg.strip()
        manager = self.app.manager
        try:
            match name:
                case "quit" | "exit":
                    self._running = False
                case "help":
                    print(HELP)
                case "attach":
                    await self._attach(arg)
                case "remove":
                    items = self.app.pipeline.items
                    index = int(arg) - 1
                    if 0 <= index < len(items):
                        self.app.pipeline.remove(items[index].id)
                    self._print_tray()
                case "retry":
                    failed = [m for m in manager.messages if m.is_failed]
                    if failed:
                        await manager.retry_message(failed[-1].id)
                    else:
                        print("Nothing to retry.")
                case "action":
                    action = manager.pending_action
                    if action is None:
                        print("No pending action.")
                        return
                    option = action.options[int(arg) - 1]
                    await manager.execute_action(action.action_id, option.id)
                    if error := manager.action_error(action.action_id):
                        print(f"! {error}")
                case "up" | "down":
                    target = self._last_assistant_id()
                    if target:
                        manager.submit_feedback(target, Rating.UP if name == "up" else Rating.DOWN)
                case "regenerate":
                    target = self._last_assistant_id()
                    if target:
                        await manager.regenerate_message(target)
                case "tool":
                    tool, _, raw_args = arg.partition(" ")
                    if not tool:
                        raise ValueError(name)
                    args = json.loads(raw_args) if raw_args.strip() else {}
                    if not await manager.execute_tool(tool, args):
                        print(f"! {manager.tool_error(tool)}")
                case "reply":
                    target = self._last_assistant_id()
                    if target is None:
                        print("Nothing to answer.")
                        return
                    await self.widget.quick_reply(target, int(arg) - 1)
                case "edit":
                    own = [m for m in manager.messages if m.role == Role.USER and m.content]
                    if own and self.widget.edit(own[-1].id):
                        print(f"Editing: {self.widget.composer.text}")
                        print("(press Enter to send it, or type to append)")
                    else:
                        print("Nothing to edit.")
                case "clear":
                    manager.clear_messages()
                    print("Started a new conversation.")
                case "internal":
                    if not self.widget.composer.can_toggle_visibility:
                        print("Internal notes are only available to staff.")
                    else:
                        print(f"Visibility: {self.widget.composer.toggle_visibility().value}")
                case "history":
                    if self._require_history():
                        await self.widget.history.conversations.set_query(arg)
                        self._print_conversations()
                case "window":
                    if self._require_history():
                        await self.widget.history.conversations.set_window(TimeWindow(arg or "all"))
                        self._print_conversations()
                case "more":
                    if self._require_history():
                        await self.widget.history.conversations.load_more()
                        self._print_conversations()
                case "resume":
                    if self._require_history():
                        summaries = self.widget.history.conversations.conversations
                        summary = summaries[int(arg) - 1]
                        if await self.widget.resume(summary.id):
                            self._printed = 0
                            self._on_change()
                        else:
                            print("Could not load that conversation.")
                case "transcript":
                    if self._require_history() and manager.conversation_id:
                        print(await self.widget.history.transcript(manager.conversation_id, arg or "markdown"))
                case "artifact":
                    artifact = self.widget.active_artifact
                    if artifact is None:
                        print("No artifact.")
                    else:
                        print(f"[{artifact.kind.value}] {artifact.title or ''}")
                        print(render_artifact(artifact.payload))
                case _:
                    print(f"Unknown command /{name}. Type /help.")
        except (ValueError, IndexError):
            print("Invalid argument. Type /help.")
        except ChatError as e:
            logger.warning("command_failed", command=name, error=str(e))
            print(f"! {e}")

    async def _attach(self, arg: str) -> None:
        if not self.widget.attachments_enabled:
            print("Sign in to attach files.")
            return
        try:
            await self.app.pipeline.add_path(Path(arg).expanduser())
        except OSError as e:
            print(f"! Could not read {arg}: {e.strerror or e}")
            return
        self._print_tray()

    def _print_tray(self) -> None:
        for index, item in enumerate(self.app.pipeline.items, start=1):
            status = item.error if item.status == AttachmentStatus.ERROR else item.status.value
            print(f"  {index}. {item.filename} ({format_file_size(item.size)}) - {status}")

    def _print_conversations(self) -> None:
        browser = self.widget.history.conversations
        if not browser.conversations:
            print("No conversations.")
        for index, summary in enumerate(browser.conversations, start=1):
            when = summary.last_message_at or summary.updated_at
            stamp = relative_time(when) if when else ""
            print(f"  {index}. {summary.title or 'Conversation'} · {stamp}")
            if summary.last_message_preview:
                print(f"     {summary.last_message_preview[:80]}")
        if browser.has_more:
            print("  (/more for older conversations)")

    def _require_history(self) -> bool:
        if not self.widget.history_enabled:
            print("Sign in to browse history.")
            return False
        return True

    def _last_assistant_id(self) -> str | None:
        for message in reversed(self.app.manager.messages):
            if message.role == Role.ASSISTANT:
                return message.id
        return None


async def _read_stdin(prompt: str) -> str:
    return await asyncio.to_thread(input, prompt)
