"""Construction of the assistant-facing context sent with each turn."""

from __future__ import annotations

from typing import Any, Iterable

from campchat.core.types import Role
from campchat.messages.models import Message

CONTEXT_TURNS = 6


def is_assistant_visible(message: Message) -> bool:
    """Whether a message may ever be shown to the assistant.

    Internal staff notes never qualify, nor do messages that were never
    delivered.
    """
    return (
        message.role in (Role.USER, Role.ASSISTANT)
        and not message.is_internal
        and not message.is_failed
        and not message.streaming
        and bool(message.content.strip())
    )


def build_assistant_context(messages: Iterable[Message], limit: int = CONTEXT_TURNS) -> list[dict[str, Any]]:
    """Return the trailing ``limit`` public user/assistant turns as role/content pairs."""
    visible = [m for m in messages if is_assistant_visible(m)]
    return [{"role": m.role.value, "content": m.content} for m in visible[-limit:]]
