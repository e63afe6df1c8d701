"""Plain-text rendering of the message list for the terminal shell."""

from __future__ import annotations

import json
from datetime import datetime
from typing import Any, Iterable, Optional

from campchat.core.types import Role
from campchat.log import get_logger
from campchat.messages.codec import build_parts
from campchat.messages.models import ActionRequired, AttachmentDescriptor, Message, MessagePart, utcnow
from campchat.shell.artifacts import classify

logger = get_logger(__name__)

_ROLE_LABELS = {
    Role.USER: "You",
    Role.ASSISTANT: "Assistant",
    Role.SYSTEM: "System",
    Role.TOOL: "Tool",
}


def relative_time(when: datetime, now: Optional[datetime] = None) -> str:
    now = now or utcnow()
    seconds = int((now - when).total_seconds())
    if seconds < 60:
        return "just now"
    minutes = seconds // 60
    if minutes < 60:
        return f"{minutes}m ago"
    hours = minutes // 60
    if hours < 24:
        return f"{hours}h ago"
    days = hours // 24
    if days < 7:
        return f"{days}d ago"
    return when.strftime("%b %d")


def format_file_size(size: int) -> str:
    if size < 1024:
        return f"{size} B"
    kb = size / 1024
    if kb < 1024:
        return f"{kb:.1f} KB"
    return f"{kb / 1024:.1f} MB"


def render_attachment(attachment: AttachmentDescriptor) -> str:
    kind = "image" if attachment.is_image else "file"
    line = f"  [{kind}] {attachment.name} ({format_file_size(attachment.size)})"
    if attachment.href:
        line += f" {attachment.href}"
    return line


def render_action(action: ActionRequired, resolved: bool = False, error: Optional[str] = None) -> list[str]:
    lines = [f"  ┌ {action.title}", f"  │ {action.description}"]
    if action.summary:
        lines.append(f"  │ {action.summary}")
    if resolved:
        lines.append("  └ (done)")
        return lines
    for index, option in enumerate(action.options, start=1):
        lines.append(f"  │ {index}. {option.label}")
    if error:
        lines.append(f"  │ ! {error}")
    lines.append(f"  └ /action {action.action_id} <number>")
    return lines


def _summarize_result(result: Any) -> Optional[str]:
    if not isinstance(result, dict):
        return None
    if isinstance(result.get("message"), str):
        return result["message"]
    kind = classify(result)
    if kind is not None:
        return f"{kind.value} available in the artifact panel"
    return None


def render_part(part: MessagePart) -> list[str]:
    match part.type:
        case "text":
            return [part.text or ""]
        case "file" if part.file is not None:
            return [render_attachment(part.file)]
        case "tool":
            if part.error:
                return [f"  ✗ {part.name}: {part.error}"]
            summary = _summarize_result(part.result)
            return [f"  ⚙ {part.name}" + (f": {summary}" if summary else "")]
        case "card":
            return [f"  ▣ {part.title or 'Report'}" + (f" - {part.summary}" if part.summary else "")]
        case _:
            return []


def render_message(
    message: Message,
    now: Optional[datetime] = None,
    resolved_actions: Iterable[str] = (),
    action_errors: Optional[dict[str, str]] = None,
) -> str:
    header = f"{_ROLE_LABELS.get(message.role, message.role.value)} · {relative_time(message.created_at, now)}"
    if message.is_internal:
        header += " · internal note"
    if message.streaming:
        header += " · typing…"
    lines = [header]

    for part in build_parts(message):
        lines.extend(render_part(part))

    if message.action_required is not None:
        action = message.action_required
        lines.extend(
            render_action(
                action,
                resolved=action.action_id in set(resolved_actions),
                error=(action_errors or {}).get(action.action_id),
            )
        )

    if message.clarifying_questions and not message.streaming:
        for index, question in enumerate(message.clarifying_questions, start=1):
            lines.append(f"  ? {index}. {question}")
        lines.append("  (/reply <number> to answer)")

    if message.is_pending:
        lines.append("  (sending…)")
    elif message.is_failed:
        lines.append(f"  ! Not delivered: {message.error or 'Failed to send'} (/retry to try again)")
    return "\n".join(lines)


def render_thread(
    messages: Iterable[Message],
    now: Optional[datetime] = None,
    resolved_actions: Iterable[str] = (),
    action_errors: Optional[dict[str, str]] = None,
) -> str:
    """Render every message; one that fails to render is replaced by a placeholder."""
    resolved = set(resolved_actions)
    blocks: list[str] = []
    for message in messages:
        try:
            blocks.append(render_message(message, now, resolved, action_errors))
        except Exception as e:
            logger.error("message_render_failed", message_id=message.id, error=str(e))
            blocks.append(f"[message {message.id} could not be displayed]")
    return "\n\n".join(blocks)


def render_artifact(payload: Any) -> str:
    return json.dumps(payload, indent=2, ensure_ascii=False, default=str)
