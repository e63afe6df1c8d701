"""Session scope and ephemeral session identifiers."""

from __future__ import annotations

import uuid
from dataclasses import dataclass

from campchat.core.types import ParticipantMode


def new_session_id() -> str:
    """Generate the per-widget session id (never persisted)."""
    return uuid.uuid4().hex[:12]


def new_local_id(prefix: str) -> str:
    """Client-side id for optimistic messages and staged items."""
    return f"{prefix}_{uuid.uuid4().hex[:12]}"


@dataclass(frozen=True, slots=True)
class SessionScope:
    """Everything a transport needs to address the backend for one widget."""

    campground_id: str
    mode: ParticipantMode
    session_id: str
    auth_token: str | None = None
    guest_id: str | None = None

    @property
    def is_guest(self) -> bool:
        return self.mode == ParticipantMode.GUEST

    @property
    def has_auth(self) -> bool:
        return bool(self.auth_token)

    def headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.auth_token:
            headers["Authorization"] = f"Bearer {self.auth_token}"
        if self.guest_id:
            headers["x-guest-id"] = self.guest_id
        return headers
