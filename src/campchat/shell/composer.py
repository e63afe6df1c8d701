"""Composer state: draft text, visibility toggle, send gating and key handling."""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from typing import Optional

from campchat.attachments.pipeline import AttachmentPipeline
from campchat.core.types import ParticipantMode, Visibility


class KeyAction(StrEnum):
    SEND = "send"
    NEWLINE = "newline"
    NONE = "none"


def handle_key(key: str, shift: bool = False) -> KeyAction:
    """Enter sends, Shift+Enter inserts a newline, everything else is plain input."""
    if key != "Enter":
        return KeyAction.NONE
    return KeyAction.NEWLINE if shift else KeyAction.SEND


def can_send(text: str, is_sending: bool, pipeline: Optional[AttachmentPipeline] = None) -> bool:
    if is_sending:
        return False
    if pipeline is not None and pipeline.is_uploading:
        return False
    has_ready = pipeline is not None and bool(pipeline.ready_items)
    return bool(text.strip()) or has_ready


@dataclass(slots=True)
class Composer:
    mode: ParticipantMode
    text: str = ""
    visibility: Visibility = Visibility.PUBLIC

    @property
    def can_toggle_visibility(self) -> bool:
        return self.mode == ParticipantMode.STAFF

    def toggle_visibility(self) -> Visibility:
        if not self.can_toggle_visibility:
            return self.visibility
        self.visibility = Visibility.PUBLIC if self.visibility == Visibility.INTERNAL else Visibility.INTERNAL
        return self.visibility

    def key(self, key: str, shift: bool = False) -> KeyAction:
        action = handle_key(key, shift)
        if action == KeyAction.NEWLINE:
            self.text += "\n"
        return action

    def take(self) -> tuple[str, Visibility]:
        """Hand the draft over for sending and clear it. Visibility sticks."""
        text, self.text = self.text, ""
        return text, self.visibility

    def restore(self, text: str) -> None:
        if not self.text:
            self.text = text
