"""Request/response driver: one POST per turn returns the whole reply."""

from __future__ import annotations

from typing import Any

from campchat.core.errors import SendError
from campchat.core.session import new_local_id
from campchat.core.types import TransportKind
from campchat.log import get_logger
from campchat.messages.codec import parse_stream_meta
from campchat.messages.reducer import Fragment
from campchat.transport.base import ChatTransport, FragmentSink, SendReceipt

logger = get_logger(__name__)


class RequestResponseTransport(ChatTransport):
    """Non-streaming driver. Always reports connected."""

    @property
    def kind(self) -> TransportKind:
        return TransportKind.REQUEST

    async def connect(self) -> None:
        self._set_connected(True)

    async def close(self) -> None:
        # Nothing persistent to tear down; stays "connected" by contract.
        pass

    async def send(self, payload: dict[str, Any], sink: FragmentSink) -> SendReceipt:
        data = await self.api.send_message(payload)
        meta = parse_stream_meta(data)
        if meta is None:
            raise SendError("Invalid response from chat service")

        response_id = meta.message_id or new_local_id("resp")
        if meta.content is not None or meta.tool_results or meta.action_required:
            sink(Fragment.snapshot(response_id, meta))
        sink(Fragment.done(response_id))
        logger.debug("reply_received", response_id=response_id, conversation_id=meta.conversation_id)
        return SendReceipt(conversation_id=meta.conversation_id, response_id=response_id)
