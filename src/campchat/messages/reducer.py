"""Shared reduction of streamed fragments into the message list.

Every transport produces the same fragment vocabulary and hands it to
``apply_fragment``; none of them touch the message list directly.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime
from enum import StrEnum
from typing import Iterable, Optional

from campchat.core.types import Role, Visibility
from campchat.messages.models import (
    ActionRequired,
    Message,
    MessagePart,
    ToolCall,
    ToolResult,
    utcnow,
)


# Late fragments only arrive for recent responses; older ids are forgotten.
MAX_CLOSED = 64


class FragmentKind(StrEnum):
    TEXT = "text"
    META = "meta"
    TOOL_CALL = "tool_call"
    TOOL_RESULT = "tool_result"
    ACTION = "action"
    DONE = "done"


@dataclass(frozen=True, slots=True)
class StreamMeta:
    """Structured snapshot attached to a response (complete events, SSE data)."""

    conversation_id: Optional[str] = None
    message_id: Optional[str] = None
    content: Optional[str] = None
    parts: tuple[MessagePart, ...] = ()
    tool_calls: tuple[ToolCall, ...] = ()
    tool_results: tuple[ToolResult, ...] = ()
    action_required: Optional[ActionRequired] = None
    clarifying_questions: tuple[str, ...] = ()
    visibility: Optional[Visibility] = None
    created_at: Optional[datetime] = None


@dataclass(frozen=True, slots=True)
class Fragment:
    response_id: str
    kind: FragmentKind
    text: str = ""
    tool_call: Optional[ToolCall] = None
    tool_result: Optional[ToolResult] = None
    action_required: Optional[ActionRequired] = None
    meta: Optional[StreamMeta] = None

    @classmethod
    def delta(cls, response_id: str, text: str) -> Fragment:
        return cls(response_id=response_id, kind=FragmentKind.TEXT, text=text)

    @classmethod
    def snapshot(cls, response_id: str, meta: StreamMeta) -> Fragment:
        return cls(response_id=response_id, kind=FragmentKind.META, meta=meta)

    @classmethod
    def call(cls, response_id: str, tool_call: ToolCall) -> Fragment:
        return cls(response_id=response_id, kind=FragmentKind.TOOL_CALL, tool_call=tool_call)

    @classmethod
    def result(cls, response_id: str, tool_result: ToolResult) -> Fragment:
        return cls(response_id=response_id, kind=FragmentKind.TOOL_RESULT, tool_result=tool_result)

    @classmethod
    def action(cls, response_id: str, action_required: ActionRequired) -> Fragment:
        return cls(response_id=response_id, kind=FragmentKind.ACTION, action_required=action_required)

    @classmethod
    def done(cls, response_id: str) -> Fragment:
        return cls(response_id=response_id, kind=FragmentKind.DONE)

    @property
    def is_terminal(self) -> bool:
        return self.kind == FragmentKind.DONE


@dataclass(frozen=True, slots=True)
class ThreadState:
    """Message list plus the bookkeeping the reducer needs for idempotence."""

    messages: tuple[Message, ...] = ()
    closed: tuple[str, ...] = ()  # most recent terminated response ids, oldest first
    is_typing: bool = False


def merge_tool_calls(existing: Iterable[ToolCall], incoming: Iterable[ToolCall]) -> tuple[ToolCall, ...]:
    merged = list(existing)
    seen = {c.id for c in merged}
    for call in incoming:
        if call.id not in seen:
            merged.append(call)
            seen.add(call.id)
    return tuple(merged)


def merge_tool_results(
    existing: Iterable[ToolResult], incoming: Iterable[ToolResult]
) -> tuple[ToolResult, ...]:
    merged = list(existing)
    for result in incoming:
        for idx, current in enumerate(merged):
            if current.tool_call_id == result.tool_call_id:
                merged[idx] = result
                break
        else:
            merged.append(result)
    return tuple(merged)


def _apply_meta(message: Message, meta: StreamMeta) -> Message:
    updates: dict = {}
    if meta.content:
        updates["content"] = meta.content
    if meta.parts:
        updates["parts"] = meta.parts
    if meta.tool_calls:
        updates["tool_calls"] = merge_tool_calls(message.tool_calls, meta.tool_calls)
    if meta.tool_results:
        updates["tool_results"] = merge_tool_results(message.tool_results, meta.tool_results)
    if meta.action_required is not None:
        updates["action_required"] = meta.action_required
    if meta.clarifying_questions:
        updates["clarifying_questions"] = meta.clarifying_questions
    if meta.visibility is not None:
        updates["visibility"] = meta.visibility
    if meta.conversation_id:
        updates["conversation_id"] = meta.conversation_id
    return replace(message, **updates) if updates else message


def _merge(message: Message, fragment: Fragment) -> Message:
    match fragment.kind:
        case FragmentKind.TEXT:
            return replace(message, content=message.content + fragment.text)
        case FragmentKind.META:
            return _apply_meta(message, fragment.meta) if fragment.meta else message
        case FragmentKind.TOOL_CALL:
            return replace(
                message, tool_calls=merge_tool_calls(message.tool_calls, [fragment.tool_call])
            )
        case FragmentKind.TOOL_RESULT:
            return replace(
                message, tool_results=merge_tool_results(message.tool_results, [fragment.tool_result])
            )
        case FragmentKind.ACTION:
            return replace(message, action_required=fragment.action_required)
    return message


def _unique_id(candidate: str, messages: Iterable[Message]) -> str:
    taken = {m.id for m in messages}
    if candidate not in taken:
        return candidate
    n = 2
    while f"{candidate}-{n}" in taken:
        n += 1
    return f"{candidate}-{n}"


def _new_assistant_message(
    fragment: Fragment, conversation_id: Optional[str], messages: tuple[Message, ...]
) -> Message:
    meta = fragment.meta
    candidate = meta.message_id if meta and meta.message_id else fragment.response_id
    return Message(
        id=_unique_id(candidate, messages),
        role=Role.ASSISTANT,
        created_at=(meta.created_at if meta and meta.created_at else utcnow()),
        conversation_id=conversation_id,
        response_id=fragment.response_id,
        streaming=True,
    )


def _close(closed: tuple[str, ...], response_ids: Iterable[str]) -> tuple[str, ...]:
    fresh = [rid for rid in dict.fromkeys(response_ids) if rid not in closed]
    return (closed + tuple(fresh))[-MAX_CLOSED:]


def apply_fragment(
    state: ThreadState, fragment: Fragment, conversation_id: Optional[str] = None
) -> ThreadState:
    """Fold one fragment into the thread.

    Only the trailing assistant message tagged with the fragment's response id
    has content merged into it; anything else appends a continuation with its
    own id. A terminal clears ``streaming`` on every message of its response,
    wherever it sits. Fragments for a response that has already terminated
    (including repeated terminals) leave the state as is.
    """
    rid = fragment.response_id
    if rid in state.closed:
        return state

    messages = state.messages
    last = messages[-1] if messages else None
    owns_tail = last is not None and last.role == Role.ASSISTANT and last.response_id == rid

    if fragment.is_terminal:
        messages = tuple(
            replace(m, streaming=False) if m.response_id == rid and m.streaming else m
            for m in messages
        )
        return ThreadState(messages=messages, closed=_close(state.closed, [rid]), is_typing=False)

    if owns_tail:
        return replace(state, messages=messages[:-1] + (_merge(last, fragment),))

    created = _merge(_new_assistant_message(fragment, conversation_id, messages), fragment)
    return replace(state, messages=messages + (created,))


def finalize_open(state: ThreadState) -> ThreadState:
    """Close every still-streaming message, e.g. after a stream broke off."""
    open_ids = [m.response_id for m in state.messages if m.streaming and m.response_id]
    if not open_ids:
        return replace(state, is_typing=False)
    return ThreadState(
        messages=tuple(replace(m, streaming=False) if m.streaming else m for m in state.messages),
        closed=_close(state.closed, open_ids),
        is_typing=False,
    )
