"""Shared types and enumerations."""

from __future__ import annotations

from enum import StrEnum


class Role(StrEnum):
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"
    SYSTEM = "system"


class Visibility(StrEnum):
    PUBLIC = "public"
    INTERNAL = "internal"


class ParticipantMode(StrEnum):
    GUEST = "guest"
    STAFF = "staff"


class ActionKind(StrEnum):
    CONFIRMATION = "confirmation"
    FORM = "form"
    SELECTION = "selection"


class Delivery(StrEnum):
    """Delivery state of an outgoing user message."""

    PENDING = "pending"
    CONFIRMED = "confirmed"
    FAILED = "failed"


class TransportKind(StrEnum):
    REQUEST = "request"
    SOCKET = "socket"
    SSE = "sse"


class AttachmentStatus(StrEnum):
    UPLOADING = "uploading"
    READY = "ready"
    ERROR = "error"


class ArtifactKind(StrEnum):
    AVAILABILITY = "availability"
    QUOTE = "quote"
    OCCUPANCY = "occupancy"
    REVENUE = "revenue"
    RENDER_TREE = "render_tree"


class Rating(StrEnum):
    UP = "up"
    DOWN = "down"


class TimeWindow(StrEnum):
    """Relative windows offered by the conversation history filter."""

    LAST_7_DAYS = "7d"
    LAST_30_DAYS = "30d"
    LAST_90_DAYS = "90d"
    ALL = "all"

    @property
    def days(self) -> int | None:
        return {"7d": 7, "30d": 30, "90d": 90}.get(self.value)
