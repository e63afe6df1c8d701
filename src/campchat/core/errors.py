"""Exception hierarchy for the chat core."""

from __future__ import annotations


class ChatError(Exception):
    """Base class for every error raised by campchat."""

    retryable: bool = False


class ApiError(ChatError):
    """Non-2xx response from the backend."""

    def __init__(self, status_code: int, detail: str = ""):
        self.status_code = status_code
        self.detail = detail
        super().__init__(detail or f"Request failed with status {status_code}")

    @property
    def retryable(self) -> bool:  # type: ignore[override]
        return self.status_code == 0 or self.status_code >= 500 or self.status_code == 429


class TransportDisconnectedError(ChatError):
    """The persistent connection is down; the send was not attempted."""

    retryable = True

    def __init__(self, message: str = "Chat is disconnected. Please try again."):
        super().__init__(message)


class SendError(ChatError):
    """A message could not be delivered."""

    retryable = True


class AttachmentValidationError(ChatError):
    """A staged file failed client-side checks."""


class UploadError(ChatError):
    """Signing or uploading an attachment failed."""

    retryable = True


class ActionError(ChatError):
    """Executing an action or tool failed."""

    retryable = True


class NoActiveConversationError(ChatError):
    def __init__(self) -> None:
        super().__init__("No active conversation")
