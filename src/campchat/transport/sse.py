"""Event-stream driver: each send opens its own server-sent-event response."""

from __future__ import annotations

import json
from typing import Any, AsyncIterator

from campchat.core.errors import ApiError, ChatError, SendError
from campchat.core.session import new_local_id
from campchat.core.types import TransportKind
from campchat.log import get_logger
from campchat.messages.codec import parse_stream_meta
from campchat.messages.reducer import Fragment
from campchat.transport.base import ChatTransport, FragmentSink, SendReceipt

logger = get_logger(__name__)

STREAM_PATH = "/chat/stream"


async def iter_sse_data(lines: AsyncIterator[str]) -> AsyncIterator[str]:
    """Yield the ``data`` payload of each event in a text/event-stream body.

    Multi-line data fields are joined with newlines; comments and other
    fields are skipped.
    """
    data_lines: list[str] = []
    async for line in lines:
        line = line.rstrip("\r")
        if not line:
            if data_lines:
                yield "\n".join(data_lines)
                data_lines = []
            continue
        if line.startswith(":"):
            continue
        field, _, value = line.partition(":")
        if field == "data":
            data_lines.append(value[1:] if value.startswith(" ") else value)
    if data_lines:
        yield "\n".join(data_lines)


class EventStreamTransport(ChatTransport):
    """One-way streaming driver; connection state is tracked per request."""

    @property
    def kind(self) -> TransportKind:
        return TransportKind.SSE

    async def send(self, payload: dict[str, Any], sink: FragmentSink) -> SendReceipt:
        response_id = new_local_id("resp")
        scope = self.api.scope
        body = {**payload, "mode": scope.mode.value, "campgroundId": scope.campground_id}
        conversation_id = payload.get("conversationId")
        started = False

        try:
            async with self.api.stream(STREAM_PATH, body) as response:
                self._set_connected(True)
                async for raw in iter_sse_data(response.aiter_lines()):
                    try:
                        event = json.loads(raw)
                    except json.JSONDecodeError:
                        logger.debug("sse_bad_event", raw=raw[:200])
                        continue
                    if not isinstance(event, dict):
                        continue

                    match event.get("type"):
                        case "text" if isinstance(event.get("value"), str):
                            started = True
                            sink(Fragment.delta(response_id, event["value"]))
                        case "data" if isinstance(event.get("data"), dict):
                            meta = parse_stream_meta(event["data"])
                            if meta is not None:
                                started = True
                                conversation_id = meta.conversation_id or conversation_id
                                sink(Fragment.snapshot(response_id, meta))
                        case "error":
                            message = event.get("message") or event.get("error") or "Stream failed"
                            self._emit_error(response_id, str(message))
                        case "done":
                            sink(Fragment.done(response_id))
        except ChatError as e:
            self._set_connected(False)
            if started:
                sink(Fragment.done(response_id))
            if isinstance(e, ApiError):
                raise SendError(e.detail or "Failed to stream response") from e
            raise

        # A stream that ended without "done" is still over.
        sink(Fragment.done(response_id))
        return SendReceipt(conversation_id=conversation_id, response_id=response_id)
