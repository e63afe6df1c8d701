"""Message, attachment and conversation models shared by every layer."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Generic, Optional, TypeVar

from campchat.core.types import ActionKind, Delivery, Role, Visibility

T = TypeVar("T")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True, slots=True)
class AttachmentDescriptor:
    """Server-confirmed attachment, immutable once part of a message."""

    name: str
    content_type: str
    size: int
    storage_key: Optional[str] = None
    url: Optional[str] = None
    download_url: Optional[str] = None

    @property
    def href(self) -> Optional[str]:
        return self.download_url or self.url

    @property
    def is_image(self) -> bool:
        return self.content_type.startswith("image/")


@dataclass(frozen=True, slots=True)
class ToolCall:
    id: str
    name: str
    args: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class ToolResult:
    tool_call_id: str
    result: Any = None
    error: Optional[str] = None


@dataclass(frozen=True, slots=True)
class ActionOption:
    id: str
    label: str
    variant: str = "default"  # "default" | "destructive" | "outline"


@dataclass(frozen=True, slots=True)
class ActionRequired:
    """Assistant request for explicit approval before a side effect."""

    kind: ActionKind
    action_id: str
    title: str
    description: str
    summary: Optional[str] = None
    data: dict[str, Any] = field(default_factory=dict)
    options: tuple[ActionOption, ...] = ()


@dataclass(frozen=True, slots=True)
class MessagePart:
    """One typed fragment of a message body: text, tool, file or card."""

    type: str
    text: Optional[str] = None
    name: Optional[str] = None
    call_id: Optional[str] = None
    args: Optional[dict[str, Any]] = None
    result: Any = None
    error: Optional[str] = None
    file: Optional[AttachmentDescriptor] = None
    title: Optional[str] = None
    summary: Optional[str] = None
    payload: Any = None


@dataclass(frozen=True, slots=True)
class Message:
    id: str
    role: Role
    content: str = ""
    parts: tuple[MessagePart, ...] = ()
    tool_calls: tuple[ToolCall, ...] = ()
    tool_results: tuple[ToolResult, ...] = ()
    attachments: tuple[AttachmentDescriptor, ...] = ()
    action_required: Optional[ActionRequired] = None
    clarifying_questions: tuple[str, ...] = ()
    visibility: Visibility = Visibility.PUBLIC
    created_at: datetime = field(default_factory=utcnow)
    conversation_id: Optional[str] = None
    response_id: Optional[str] = None  # streamed assistant turns only
    streaming: bool = False
    delivery: Optional[Delivery] = None  # outgoing user messages only
    error: Optional[str] = None  # set when delivery failed

    @property
    def is_internal(self) -> bool:
        return self.visibility == Visibility.INTERNAL

    @property
    def is_failed(self) -> bool:
        return self.delivery == Delivery.FAILED

    @property
    def is_pending(self) -> bool:
        return self.delivery == Delivery.PENDING


@dataclass(frozen=True, slots=True)
class ConversationSummary:
    id: str
    title: Optional[str] = None
    updated_at: Optional[datetime] = None
    last_message_preview: Optional[str] = None
    last_message_at: Optional[datetime] = None


@dataclass(frozen=True, slots=True)
class Page(Generic[T]):
    """One page of a cursor-paginated listing."""

    items: list[T]
    next_cursor: Optional[str] = None

    @property
    def has_more(self) -> bool:
        return self.next_cursor is not None
