"""Abstract chat transport interface shared by all three drivers."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable, Optional

from campchat.core.types import TransportKind
from campchat.messages.reducer import Fragment
from campchat.transport.api import ChatApi

FragmentSink = Callable[[Fragment], None]


@dataclass(frozen=True, slots=True)
class SendReceipt:
    """What the backend acknowledged for one send."""

    conversation_id: Optional[str] = None
    response_id: Optional[str] = None


class ChatTransport(ABC):
    """Base class for message delivery drivers.

    A driver turns an outgoing payload into fragments pushed to ``sink``.
    It never owns the message list; reduction happens in the caller.
    To add a driver, subclass this and implement ``kind`` and ``send``.
    """

    def __init__(self, api: ChatApi):
        self.api = api
        self._connected = False
        self._status_callback: Callable[[bool], None] | None = None
        self._typing_callback: Callable[[bool], None] | None = None
        self._error_callback: Callable[[Optional[str], str], None] | None = None

    @property
    @abstractmethod
    def kind(self) -> TransportKind:
        ...

    @property
    def is_connected(self) -> bool:
        return self._connected

    async def connect(self) -> None:
        """Open whatever session the driver needs. Stateless drivers just mark connected."""
        self._set_connected(True)

    async def close(self) -> None:
        self._set_connected(False)

    @abstractmethod
    async def send(self, payload: dict[str, Any], sink: FragmentSink) -> SendReceipt:
        """Deliver one user turn.

        Fragments of the reply go to ``sink``; a terminal fragment is always
        delivered for a reply that started. Raises ``ChatError`` subclasses
        when the turn could not be delivered.
        """
        ...

    async def join_conversation(self, conversation_id: str) -> None:
        """Subscribe to server pushes for a conversation (socket driver only)."""

    def on_status(self, callback: Callable[[bool], None]) -> None:
        self._status_callback = callback

    def on_typing(self, callback: Callable[[bool], None]) -> None:
        self._typing_callback = callback

    def on_error(self, callback: Callable[[Optional[str], str], None]) -> None:
        """Register the callback for server-reported stream errors (response id, message)."""
        self._error_callback = callback

    def _set_connected(self, connected: bool) -> None:
        if connected == self._connected:
            return
        self._connected = connected
        if self._status_callback:
            self._status_callback(connected)

    def _emit_typing(self, typing: bool) -> None:
        if self._typing_callback:
            self._typing_callback(typing)

    def _emit_error(self, response_id: Optional[str], message: str) -> None:
        if self._error_callback:
            self._error_callback(response_id, message)
