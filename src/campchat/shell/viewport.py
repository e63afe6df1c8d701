"""Viewport follow mode as a pure state machine.

The shell feeds it scroll positions and appended message ids; it answers
whether to auto-scroll and whether to show "jump to latest".
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from enum import StrEnum
from typing import Optional, Sequence

DEFAULT_THRESHOLD_PX = 80


class FollowMode(StrEnum):
    FOLLOWING = "following"
    DETACHED = "detached"


@dataclass(frozen=True, slots=True)
class ScrollMetrics:
    scroll_top: float
    scroll_height: float
    client_height: float

    @property
    def distance_from_bottom(self) -> float:
        return max(self.scroll_height - self.scroll_top - self.client_height, 0.0)


@dataclass(frozen=True, slots=True)
class Viewport:
    mode: FollowMode = FollowMode.FOLLOWING
    first_unseen_id: Optional[str] = None
    unseen_count: int = 0
    threshold_px: int = DEFAULT_THRESHOLD_PX

    @property
    def show_jump_to_latest(self) -> bool:
        return self.mode == FollowMode.DETACHED and self.unseen_count > 0

    @property
    def is_following(self) -> bool:
        return self.mode == FollowMode.FOLLOWING


def on_scroll(view: Viewport, metrics: ScrollMetrics) -> Viewport:
    """User or programmatic scroll. Reaching the bottom band re-attaches."""
    if metrics.distance_from_bottom <= view.threshold_px:
        return replace(view, mode=FollowMode.FOLLOWING, first_unseen_id=None, unseen_count=0)
    return replace(view, mode=FollowMode.DETACHED)


def on_messages_appended(view: Viewport, message_ids: Sequence[str]) -> tuple[Viewport, bool]:
    """Returns the new state and whether the shell should scroll to the bottom."""
    if not message_ids:
        return view, False
    if view.mode == FollowMode.FOLLOWING:
        return view, True
    first = view.first_unseen_id or message_ids[0]
    return replace(view, first_unseen_id=first, unseen_count=view.unseen_count + len(message_ids)), False


def jump_to_latest(view: Viewport) -> Viewport:
    return replace(view, mode=FollowMode.FOLLOWING, first_unseen_id=None, unseen_count=0)


def appended_ids(before: Sequence[str], after: Sequence[str]) -> list[str]:
    """Ids in ``after`` that were not present in ``before``."""
    seen = set(before)
    return [message_id for message_id in after if message_id not in seen]
