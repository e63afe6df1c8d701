"""Recognizing rich tool-result payloads that belong in the artifact panel."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable, Optional

from campchat.config import ShellConfig
from campchat.core.types import ArtifactKind, ParticipantMode, Role
from campchat.messages.models import Message

_RENDER_TREE_KEYS = ("jsonRender", "jsonRenderTree", "uiRender", "uiTree", "report", "layout", "tree")


@dataclass(frozen=True, slots=True)
class Artifact:
    kind: ArtifactKind
    message_id: str
    payload: dict[str, Any]
    title: Optional[str] = None


def classify(payload: Any) -> Optional[ArtifactKind]:
    """Single entry point for artifact detection. Specific shapes win over a bare render tree."""
    if not isinstance(payload, dict):
        return None
    if isinstance(payload.get("availableSites"), list):
        return ArtifactKind.AVAILABILITY
    if isinstance(payload.get("quote"), dict):
        return ArtifactKind.QUOTE
    if isinstance(payload.get("occupancy"), dict):
        return ArtifactKind.OCCUPANCY
    if isinstance(payload.get("revenue"), dict):
        return ArtifactKind.REVENUE
    if any(isinstance(payload.get(k), dict) for k in _RENDER_TREE_KEYS):
        return ArtifactKind.RENDER_TREE
    if payload.get("type") == "card" or ("root" in payload and "elements" in payload):
        return ArtifactKind.RENDER_TREE
    return None


def _title_of(payload: dict[str, Any]) -> Optional[str]:
    for key in _RENDER_TREE_KEYS:
        nested = payload.get(key)
        if isinstance(nested, dict) and isinstance(nested.get("title"), str):
            return nested["title"]
    title = payload.get("title")
    return title if isinstance(title, str) else None


def _candidate_payloads(message: Message) -> Iterable[Any]:
    for result in message.tool_results:
        if result.error is None:
            yield result.result
    for part in message.parts:
        if part.type == "card":
            yield part.payload
        elif part.type == "tool" and part.error is None:
            yield part.result


def message_artifacts(message: Message) -> list[Artifact]:
    artifacts: list[Artifact] = []
    seen: set[int] = set()
    for payload in _candidate_payloads(message):
        kind = classify(payload)
        if kind is None or id(payload) in seen:
            continue
        seen.add(id(payload))
        artifacts.append(Artifact(kind=kind, message_id=message.id, payload=payload, title=_title_of(payload)))
    return artifacts


def should_auto_open(message: Message, mode: ParticipantMode, config: ShellConfig) -> bool:
    """New assistant messages with a recognized payload open the panel when the mode allows it."""
    if message.role != Role.ASSISTANT or message.streaming:
        return False
    enabled = config.auto_open_artifacts_staff if mode == ParticipantMode.STAFF else config.auto_open_artifacts_guest
    return enabled and bool(message_artifacts(message))
