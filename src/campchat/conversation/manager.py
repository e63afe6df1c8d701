"""Conversation state manager: the single writer of the live message list."""

from __future__ import annotations

import asyncio
from dataclasses import replace
from typing import Any, Callable, Iterable, Optional, Sequence

from campchat.core.errors import ChatError, NoActiveConversationError
from campchat.core.session import SessionScope, new_local_id
from campchat.core.types import Delivery, ParticipantMode, Rating, Role, Visibility
from campchat.conversation.context import build_assistant_context
from campchat.log import get_logger
from campchat.messages.codec import attachment_to_wire, parse_message
from campchat.messages.models import (
    ActionRequired,
    AttachmentDescriptor,
    Message,
    ToolCall,
    ToolResult,
)
from campchat.messages.reducer import Fragment, ThreadState, apply_fragment, finalize_open
from campchat.transport.base import ChatTransport, FragmentSink

logger = get_logger(__name__)

Listener = Callable[[], None]


class ConversationManager:
    """Owns messages and session identifiers for one widget.

    Every mutation goes through this class; readers get immutable snapshots
    and subscribe for change notifications. Network failures never escape the
    public coroutines: they become failed deliveries, action errors or system
    messages.
    """

    def __init__(self, transport: ChatTransport, scope: SessionScope):
        self._transport = transport
        self._api = transport.api
        self._scope = scope
        self._thread = ThreadState()
        self._conversation_id: Optional[str] = None
        self._epoch = 0
        self._is_sending = False
        self._awaiting_reply: Optional[asyncio.Event] = None
        self._is_executing_action = False
        self._is_executing_tool = False
        self._feedback: dict[str, Rating] = {}
        self._resolved_actions: set[str] = set()
        self._action_errors: dict[str, str] = {}
        self._tool_errors: dict[str, str] = {}
        self._listeners: list[Listener] = []
        self._background: set[asyncio.Task[Any]] = set()

        transport.on_status(self._on_status)
        transport.on_typing(self._on_typing)
        transport.on_error(self._on_stream_error)

    # -- read side ------------------------------------------------------------------

    @property
    def messages(self) -> tuple[Message, ...]:
        return self._thread.messages

    @property
    def conversation_id(self) -> Optional[str]:
        return self._conversation_id

    @property
    def session_id(self) -> str:
        return self._scope.session_id

    @property
    def scope(self) -> SessionScope:
        return self._scope

    @property
    def transport(self) -> ChatTransport:
        return self._transport

    @property
    def is_typing(self) -> bool:
        return self._thread.is_typing

    @property
    def is_sending(self) -> bool:
        return self._is_sending

    @property
    def is_connected(self) -> bool:
        return self._transport.is_connected

    @property
    def is_executing_action(self) -> bool:
        return self._is_executing_action

    @property
    def is_executing_tool(self) -> bool:
        return self._is_executing_tool

    @property
    def pending_action(self) -> Optional[ActionRequired]:
        """Action of the latest assistant message, unless already resolved.

        A newer assistant message supersedes any earlier unresolved action.
        """
        for message in reversed(self._thread.messages):
            if message.role != Role.ASSISTANT:
                continue
            action = message.action_required
            if action is None or action.action_id in self._resolved_actions:
                return None
            return action
        return None

    @property
    def resolved_actions(self) -> frozenset[str]:
        return frozenset(self._resolved_actions)

    @property
    def action_errors(self) -> dict[str, str]:
        return dict(self._action_errors)

    def feedback_for(self, message_id: str) -> Optional[Rating]:
        return self._feedback.get(message_id)

    def action_error(self, action_id: str) -> Optional[str]:
        return self._action_errors.get(action_id)

    def tool_error(self, tool: str) -> Optional[str]:
        return self._tool_errors.get(tool)

    def get_message(self, message_id: str) -> Optional[Message]:
        return next((m for m in self._thread.messages if m.id == message_id), None)

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a change listener; returns an unsubscribe function."""
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    # -- lifecycle ------------------------------------------------------------------

    async def connect(self) -> None:
        await self._transport.connect()

    async def close(self) -> None:
        """Tear down the transport; pending fire-and-forget calls are awaited first."""
        await self.drain()
        await self._transport.close()

    async def drain(self) -> None:
        """Wait for background calls (feedback submissions) to settle."""
        if self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    # -- sending --------------------------------------------------------------------

    async def send_message(
        self,
        text: str,
        attachments: Sequence[AttachmentDescriptor] = (),
        visibility: Visibility = Visibility.PUBLIC,
    ) -> Optional[Message]:
        """Echo a user message optimistically, then deliver it.

        Returns the (final state of the) user message, or None when there was
        nothing to send or a send is already in flight.
        """
        trimmed = text.strip()
        if not trimmed and not attachments:
            return None
        if self._is_sending:
            logger.debug("send_ignored_in_flight")
            return None
        if visibility == Visibility.INTERNAL and self._scope.mode != ParticipantMode.STAFF:
            raise ValueError("Internal notes are only available to staff")

        message = Message(
            id=new_local_id("user"),
            role=Role.USER,
            content=trimmed,
            attachments=tuple(attachments),
            visibility=visibility,
            conversation_id=self._conversation_id,
            delivery=Delivery.PENDING,
        )
        self._thread = replace(self._thread, messages=self._thread.messages + (message,))
        self._notify()
        return await self._deliver(message.id)

    async def retry_message(self, message_id: str) -> Optional[Message]:
        """Re-deliver a failed user message in place (no duplicate is created)."""
        message = self.get_message(message_id)
        if message is None or not message.is_failed or self._is_sending:
            return None
        self._update_message(message_id, delivery=Delivery.PENDING, error=None)
        self._notify()
        return await self._deliver(message_id)

    def build_payload(self, message: Message) -> dict[str, Any]:
        """Request body for one user turn."""
        prior = [m for m in self._thread.messages if m.id != message.id]
        payload: dict[str, Any] = {
            "campgroundId": self._scope.campground_id,
            "mode": self._scope.mode.value,
            "sessionId": self._scope.session_id,
            "conversationId": self._conversation_id,
            "message": message.content,
            "visibility": message.visibility.value,
            "history": build_assistant_context(prior),
            "context": {},
        }
        if message.attachments:
            payload["attachments"] = [attachment_to_wire(a) for a in message.attachments]
        return payload

    async def _deliver(self, message_id: str) -> Optional[Message]:
        message = self.get_message(message_id)
        if message is None:
            return None

        payload = self.build_payload(message)
        epoch = self._epoch
        reply_done = asyncio.Event()
        self._is_sending = True
        self._thread = replace(self._thread, is_typing=True)
        self._notify()

        try:
            receipt = await self._transport.send(payload, self._sink_for(epoch, reply_done))
        except ChatError as e:
            logger.warning(
                "send_failed",
                message_id=message_id,
                retryable=e.retryable,
                error=str(e),
                transport=self._transport.kind.value,
            )
            reply_done.set()
            self._update_message(message_id, delivery=Delivery.FAILED, error=str(e) or "Failed to send")
            if epoch == self._epoch:
                self._thread = finalize_open(self._thread)
        else:
            self._update_message(message_id, delivery=Delivery.CONFIRMED, error=None)
            if epoch == self._epoch and receipt.conversation_id and not self._conversation_id:
                self._adopt_conversation(receipt.conversation_id)
            logger.info(
                "message_sent",
                message_id=message_id,
                conversation_id=self._conversation_id,
                visibility=payload["visibility"],
            )
        finally:
            if reply_done.is_set() or epoch != self._epoch or not self._transport.is_connected:
                self._is_sending = False
            else:
                # Acknowledged but still streaming: the terminal fragment re-enables sending.
                self._awaiting_reply = reply_done
            self._notify()
        return self.get_message(message_id)

    def _sink_for(self, epoch: int, reply_done: asyncio.Event) -> FragmentSink:
        def _sink(fragment: Fragment) -> None:
            if fragment.is_terminal:
                reply_done.set()
                if self._awaiting_reply is reply_done:
                    self._awaiting_reply = None
                    self._is_sending = False
            if epoch != self._epoch:
                logger.debug("fragment_dropped_stale", response_id=fragment.response_id)
                return
            meta = fragment.meta
            if meta and meta.conversation_id and not self._conversation_id:
                self._adopt_conversation(meta.conversation_id)
            self._thread = apply_fragment(self._thread, fragment, self._conversation_id)
            self._notify()

        return _sink

    # -- actions and tools ----------------------------------------------------------

    async def execute_action(self, action_id: str, option_id: str) -> bool:
        """Submit the chosen option of a pending action. Returns True on success."""
        self._action_errors.pop(action_id, None)
        if not self._conversation_id:
            self._action_errors[action_id] = str(NoActiveConversationError())
            self._notify()
            return False

        self._is_executing_action = True
        self._notify()
        try:
            data = await self._api.execute_action(self._conversation_id, action_id, option_id)
        except ChatError as e:
            logger.warning("action_failed", action_id=action_id, option_id=option_id, error=str(e))
            self._action_errors[action_id] = str(e) or "Failed to execute action"
            return False
        else:
            success, message, error = _outcome(data, "Action completed")
            if not success:
                self._action_errors[action_id] = error or message
                logger.info("action_rejected", action_id=action_id, error=error)
                return False
            self._resolved_actions.add(action_id)
            self._append(
                Message(
                    id=new_local_id("result"),
                    role=Role.ASSISTANT,
                    content=message,
                    conversation_id=self._conversation_id,
                )
            )
            logger.info("action_executed", action_id=action_id, option_id=option_id)
            return True
        finally:
            self._is_executing_action = False
            self._notify()

    async def execute_tool(self, tool: str, args: dict[str, Any] | None = None) -> bool:
        """Run a backend-proposed tool the user confirmed directly."""
        args = args or {}
        self._tool_errors.pop(tool, None)
        if not self._conversation_id:
            self._tool_errors[tool] = str(NoActiveConversationError())
            self._notify()
            return False

        self._is_executing_tool = True
        self._thread = replace(self._thread, is_typing=True)
        self._notify()
        try:
            data = await self._api.execute_tool(self._conversation_id, tool, args)
        except ChatError as e:
            logger.warning("tool_failed", tool=tool, error=str(e))
            self._tool_errors[tool] = str(e) or "Failed to execute tool"
            return False
        else:
            success, message, error = _outcome(data, "Tool completed")
            result = data.get("result") if isinstance(data, dict) else None
            if result is None:
                result = {
                    "success": success,
                    "message": message,
                    "prevalidateFailed": isinstance(data, dict) and data.get("prevalidateFailed") is True,
                }
            call_id = new_local_id("tool")
            self._append(
                Message(
                    id=new_local_id("tool"),
                    role=Role.ASSISTANT,
                    content=message,
                    tool_calls=(ToolCall(id=call_id, name=tool, args=args),),
                    tool_results=(ToolResult(tool_call_id=call_id, result=result, error=error),),
                    conversation_id=self._conversation_id,
                )
            )
            if not success:
                self._tool_errors[tool] = error or message
            logger.info("tool_executed", tool=tool, success=success)
            return success
        finally:
            self._is_executing_tool = False
            self._thread = replace(self._thread, is_typing=False)
            self._notify()

    # -- regenerate and feedback ----------------------------------------------------

    async def regenerate_message(self, message_id: str) -> Optional[Message]:
        """Ask the assistant to reproduce a prior reply; the new reply is appended."""
        if self._is_sending:
            return None
        self._is_sending = True
        self._thread = replace(self._thread, is_typing=True)
        self._notify()
        try:
            data = await self._api.regenerate(message_id)
        except ChatError as e:
            logger.warning("regenerate_failed", message_id=message_id, error=str(e))
            self._append_system(str(e) or "Failed to regenerate message")
            return None
        else:
            reply = parse_message(data)
            if reply is None:
                self._append_system("Invalid regenerate response")
                return None
            if reply.conversation_id and not self._conversation_id:
                self._adopt_conversation(reply.conversation_id)
            reply = replace(reply, role=Role.ASSISTANT)
            self._append(reply)
            return reply
        finally:
            self._is_sending = False
            self._thread = replace(self._thread, is_typing=False)
            self._notify()

    def submit_feedback(self, message_id: str, rating: Rating | str) -> asyncio.Task[None]:
        """Record a rating locally and submit it in the background."""
        rating = Rating(rating)
        previous = self._feedback.get(message_id)
        self._feedback[message_id] = rating
        self._notify()

        async def _submit() -> None:
            try:
                await self._api.submit_feedback(message_id, rating.value)
            except ChatError as e:
                logger.warning("feedback_failed", message_id=message_id, error=str(e))
                if previous is None:
                    self._feedback.pop(message_id, None)
                else:
                    self._feedback[message_id] = previous
                self._notify()

        task = asyncio.create_task(_submit())
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    # -- local resets ---------------------------------------------------------------

    def clear_messages(self) -> None:
        """Start over: empty list, no conversation, late fragments ignored."""
        self._epoch += 1
        self._release_reply()
        self._thread = ThreadState()
        self._conversation_id = None
        self._resolved_actions.clear()
        self._action_errors.clear()
        self._tool_errors.clear()
        self._feedback.clear()
        self._notify()

    def replace_messages(self, messages: Iterable[Message]) -> None:
        """Swap in a message list (resuming from history)."""
        self._epoch += 1
        self._release_reply()
        self._thread = ThreadState(
            messages=tuple(replace(m, streaming=False) for m in messages)
        )
        self._action_errors.clear()
        self._tool_errors.clear()
        self._notify()

    async def set_active_conversation(self, conversation_id: Optional[str]) -> None:
        """Rebind the live session to an existing conversation."""
        if conversation_id != self._conversation_id:
            self._epoch += 1
            self._release_reply()
            self._thread = finalize_open(self._thread)
        self._conversation_id = conversation_id
        if conversation_id:
            await self._transport.join_conversation(conversation_id)
        logger.info("conversation_activated", conversation_id=conversation_id)
        self._notify()

    # -- transport callbacks --------------------------------------------------------

    def _on_status(self, connected: bool) -> None:
        logger.info("transport_status", connected=connected, transport=self._transport.kind.value)
        self._notify()

    def _on_typing(self, typing: bool) -> None:
        self._thread = replace(self._thread, is_typing=typing)
        self._notify()

    def _on_stream_error(self, response_id: Optional[str], error: str) -> None:
        logger.warning("stream_error", response_id=response_id, error=error)
        self._append_system(error)

    # -- helpers --------------------------------------------------------------------

    def _release_reply(self) -> None:
        if self._awaiting_reply is not None:
            self._awaiting_reply = None
            self._is_sending = False

    def _adopt_conversation(self, conversation_id: str) -> None:
        self._conversation_id = conversation_id
        logger.info("conversation_assigned", conversation_id=conversation_id)

    def _append(self, message: Message) -> None:
        self._thread = replace(self._thread, messages=self._thread.messages + (message,))
        self._notify()

    def _append_system(self, text: str) -> None:
        self._append(
            Message(
                id=new_local_id("error"),
                role=Role.SYSTEM,
                content=text,
                conversation_id=self._conversation_id,
            )
        )

    def _update_message(self, message_id: str, **changes: Any) -> None:
        self._thread = replace(
            self._thread,
            messages=tuple(
                replace(m, **changes) if m.id == message_id else m for m in self._thread.messages
            ),
        )

    def _notify(self) -> None:
        for listener in list(self._listeners):
            try:
                listener()
            except Exception as e:
                logger.error("listener_error", error=str(e))


def _outcome(data: Any, default_message: str) -> tuple[bool, str, Optional[str]]:
    """Normalize an action/tool response into (success, message, error)."""
    if not isinstance(data, dict):
        return False, "Invalid response", "Invalid response"
    success = data.get("success") if isinstance(data.get("success"), bool) else False
    message = data.get("message") if isinstance(data.get("message"), str) else default_message
    error = data.get("error") if isinstance(data.get("error"), str) else None
    return success, message, error
