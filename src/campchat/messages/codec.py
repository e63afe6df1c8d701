"""Lenient conversion between backend JSON payloads and message models.

The backend is a collaborator, not a schema we own, so every parser tolerates
missing or malformed fields: invalid entries are dropped rather than raised.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Optional

from campchat.core.types import ActionKind, Role, Visibility
from campchat.messages.models import (
    ActionOption,
    ActionRequired,
    AttachmentDescriptor,
    ConversationSummary,
    Message,
    MessagePart,
    ToolCall,
    ToolResult,
    utcnow,
)
from campchat.messages.reducer import StreamMeta

_CARD_KEYS = ("jsonRender", "jsonRenderTree", "uiRender", "uiTree", "report", "layout", "tree")


def _str(value: Any) -> Optional[str]:
    return value if isinstance(value, str) else None


def parse_datetime(value: Any) -> Optional[datetime]:
    if not isinstance(value, str) or not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def parse_visibility(value: Any) -> Visibility:
    return Visibility.INTERNAL if value == "internal" else Visibility.PUBLIC


def parse_role(value: Any) -> Role:
    try:
        return Role(value)
    except ValueError:
        return Role.ASSISTANT


def parse_attachment(value: Any) -> Optional[AttachmentDescriptor]:
    if not isinstance(value, dict):
        return None
    name = _str(value.get("name"))
    content_type = _str(value.get("contentType"))
    size = value.get("size")
    if name is None or content_type is None or not isinstance(size, int) or isinstance(size, bool):
        return None
    return AttachmentDescriptor(
        name=name,
        content_type=content_type,
        size=size,
        storage_key=_str(value.get("storageKey")),
        url=_str(value.get("url")) or _str(value.get("publicUrl")),
        download_url=_str(value.get("downloadUrl")),
    )


def attachment_to_wire(attachment: AttachmentDescriptor) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "name": attachment.name,
        "contentType": attachment.content_type,
        "size": attachment.size,
    }
    if attachment.storage_key is not None:
        payload["storageKey"] = attachment.storage_key
    if attachment.url is not None:
        payload["url"] = attachment.url
    if attachment.download_url is not None:
        payload["downloadUrl"] = attachment.download_url
    return payload


def parse_tool_call(value: Any) -> Optional[ToolCall]:
    if not isinstance(value, dict):
        return None
    call_id, name, args = value.get("id"), value.get("name"), value.get("args")
    if not isinstance(call_id, str) or not isinstance(name, str) or not isinstance(args, dict):
        return None
    return ToolCall(id=call_id, name=name, args=args)


def parse_tool_result(value: Any) -> Optional[ToolResult]:
    if not isinstance(value, dict) or not isinstance(value.get("toolCallId"), str):
        return None
    return ToolResult(
        tool_call_id=value["toolCallId"],
        result=value.get("result"),
        error=_str(value.get("error")),
    )


def parse_action_required(value: Any) -> Optional[ActionRequired]:
    if not isinstance(value, dict):
        return None
    try:
        kind = ActionKind(value.get("type"))
    except ValueError:
        return None
    action_id, title, description = value.get("actionId"), value.get("title"), value.get("description")
    if not all(isinstance(v, str) for v in (action_id, title, description)):
        return None
    options = tuple(
        ActionOption(id=o["id"], label=o["label"], variant=_str(o.get("variant")) or "default")
        for o in value.get("options") or []
        if isinstance(o, dict) and isinstance(o.get("id"), str) and isinstance(o.get("label"), str)
    )
    data = value.get("data")
    return ActionRequired(
        kind=kind,
        action_id=action_id,
        title=title,
        description=description,
        summary=_str(value.get("summary")),
        data=data if isinstance(data, dict) else {},
        options=options,
    )


def parse_part(value: Any) -> Optional[MessagePart]:
    if not isinstance(value, dict):
        return None
    kind = value.get("type")
    if kind == "text" and isinstance(value.get("text"), str):
        return MessagePart(type="text", text=value["text"])
    if kind == "tool" and isinstance(value.get("name"), str) and isinstance(value.get("callId"), str):
        args = value.get("args")
        return MessagePart(
            type="tool",
            name=value["name"],
            call_id=value["callId"],
            args=args if isinstance(args, dict) else None,
            result=value.get("result"),
            error=_str(value.get("error")),
        )
    if kind == "file":
        attachment = parse_attachment(value.get("file"))
        return MessagePart(type="file", file=attachment) if attachment else None
    if kind == "card":
        return MessagePart(
            type="card",
            title=_str(value.get("title")),
            summary=_str(value.get("summary")),
            payload=value.get("payload"),
        )
    return None


def _parse_list(values: Any, parser) -> tuple:
    if not isinstance(values, list):
        return ()
    return tuple(item for item in (parser(v) for v in values) if item is not None)


def parse_tool_calls(values: Any) -> tuple[ToolCall, ...]:
    return _parse_list(values, parse_tool_call)


def parse_tool_results(values: Any) -> tuple[ToolResult, ...]:
    return _parse_list(values, parse_tool_result)


def parse_parts(values: Any) -> tuple[MessagePart, ...]:
    return _parse_list(values, parse_part)


def parse_attachments(values: Any) -> tuple[AttachmentDescriptor, ...]:
    return _parse_list(values, parse_attachment)


def parse_clarifying_questions(values: Any) -> tuple[str, ...]:
    """Quick-reply prompts offered with a reply; non-strings and blanks are dropped."""
    if not isinstance(values, list):
        return ()
    return tuple(v.strip() for v in values if isinstance(v, str) and v.strip())


def parse_message(value: Any, conversation_id: Optional[str] = None) -> Optional[Message]:
    """Parse a history item or a complete assistant reply."""
    if not isinstance(value, dict):
        return None
    message_id = _str(value.get("id")) or _str(value.get("messageId"))
    content = value.get("content")
    if message_id is None or not isinstance(content, str):
        return None
    return Message(
        id=message_id,
        role=parse_role(value.get("role", "assistant")),
        content=content,
        parts=parse_parts(value.get("parts")),
        tool_calls=parse_tool_calls(value.get("toolCalls")),
        tool_results=parse_tool_results(value.get("toolResults")),
        attachments=parse_attachments(value.get("attachments")),
        action_required=parse_action_required(value.get("actionRequired")),
        clarifying_questions=parse_clarifying_questions(value.get("clarifyingQuestions")),
        visibility=parse_visibility(value.get("visibility")),
        created_at=parse_datetime(value.get("createdAt")) or utcnow(),
        conversation_id=_str(value.get("conversationId")) or conversation_id,
    )


def parse_conversation_summary(value: Any) -> Optional[ConversationSummary]:
    if not isinstance(value, dict) or not isinstance(value.get("id"), str):
        return None
    return ConversationSummary(
        id=value["id"],
        title=_str(value.get("title")),
        updated_at=parse_datetime(value.get("updatedAt")),
        last_message_preview=_str(value.get("lastMessagePreview")),
        last_message_at=parse_datetime(value.get("lastMessageAt")),
    )


def extract_card_part(result: Any) -> Optional[MessagePart]:
    """Find a generic render tree inside a tool result and wrap it as a card."""
    if not isinstance(result, dict):
        return None
    candidate = next((result[k] for k in _CARD_KEYS if isinstance(result.get(k), dict)), None)
    if candidate is None:
        return None
    return MessagePart(
        type="card",
        title=_str(candidate.get("title")) or _str(result.get("title")),
        summary=_str(candidate.get("summary")) or _str(result.get("summary")),
        payload=candidate,
    )


def build_parts(message: Message) -> tuple[MessagePart, ...]:
    """Derive ordered parts for a message that arrived without explicit parts."""
    if message.parts:
        return message.parts

    parts: list[MessagePart] = []
    if message.content.strip():
        parts.append(MessagePart(type="text", text=message.content))
    for attachment in message.attachments:
        parts.append(MessagePart(type="file", file=attachment))

    results_by_id = {r.tool_call_id: r for r in message.tool_results}
    if message.tool_calls:
        for call in message.tool_calls:
            result = results_by_id.get(call.id)
            parts.append(
                MessagePart(
                    type="tool",
                    name=call.name,
                    call_id=call.id,
                    args=call.args,
                    result=result.result if result else None,
                    error=result.error if result else None,
                )
            )
    else:
        for result in message.tool_results:
            parts.append(
                MessagePart(
                    type="tool", name="tool", call_id=result.tool_call_id,
                    result=result.result, error=result.error,
                )
            )

    for result in message.tool_results:
        card = extract_card_part(result.result)
        if card:
            parts.append(card)
    return tuple(parts)


def parse_stream_meta(value: Any) -> Optional[StreamMeta]:
    """Build a StreamMeta from a complete event, SSE data payload or full reply."""
    if not isinstance(value, dict):
        return None
    visibility = value.get("visibility")
    return StreamMeta(
        conversation_id=_str(value.get("conversationId")),
        message_id=_str(value.get("messageId")),
        content=_str(value.get("content")),
        parts=parse_parts(value.get("parts")),
        tool_calls=parse_tool_calls(value.get("toolCalls")),
        tool_results=parse_tool_results(value.get("toolResults")),
        action_required=parse_action_required(value.get("actionRequired")),
        clarifying_questions=parse_clarifying_questions(value.get("clarifyingQuestions")),
        visibility=parse_visibility(visibility) if visibility in ("public", "internal") else None,
        created_at=parse_datetime(value.get("createdAt")),
    )
