"""Transport drivers and the factory that picks one from configuration."""

from __future__ import annotations

from campchat.config import AppConfig
from campchat.core.types import TransportKind
from campchat.transport.api import ChatApi
from campchat.transport.base import ChatTransport


def create_transport(config: AppConfig, api: ChatApi) -> ChatTransport:
    """Instantiate the driver selected by the widget's streaming settings."""
    match config.widget.transport:
        case TransportKind.REQUEST:
            from campchat.transport.polling import RequestResponseTransport

            return RequestResponseTransport(api)
        case TransportKind.SSE:
            from campchat.transport.sse import EventStreamTransport

            return EventStreamTransport(api)
        case TransportKind.SOCKET:
            from campchat.transport.socket import SocketTransport

            return SocketTransport(api, config.api.resolved_socket_url(), config.reconnect)
        case _:
            raise ValueError(f"Unknown transport: {config.widget.transport}")
