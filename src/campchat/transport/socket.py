"""Socket driver: persistent WebSocket carrying streamed reply fragments."""

from __future__ import annotations

import asyncio
import json
from typing import Any, Awaitable, Callable, Optional
from urllib.parse import urlencode

import websockets
from websockets.exceptions import ConnectionClosed, WebSocketException

from campchat.config import ReconnectConfig
from campchat.core.errors import ApiError, SendError, TransportDisconnectedError
from campchat.core.session import new_local_id
from campchat.core.types import TransportKind
from campchat.log import get_logger
from campchat.messages.codec import (
    parse_action_required,
    parse_stream_meta,
    parse_tool_call,
    parse_tool_result,
)
from campchat.messages.reducer import Fragment
from campchat.transport.api import ChatApi
from campchat.transport.base import ChatTransport, FragmentSink, SendReceipt

logger = get_logger(__name__)

ConnectFactory = Callable[[str], Awaitable[Any]]


def backoff_delay(attempt: int, config: ReconnectConfig) -> float:
    """Delay before reconnect attempt ``attempt`` (1-based), capped at max_delay."""
    return min(config.initial_delay * config.multiplier ** max(attempt - 1, 0), config.max_delay)


class SocketTransport(ChatTransport):
    """Bidirectional driver.

    Turns are acknowledged over HTTP; the reply streams back on the socket as
    ``chat:token`` frames closed by ``chat:complete``. Frames are JSON objects
    of the form ``{"event": name, "data": {...}}``.
    """

    def __init__(
        self,
        api: ChatApi,
        socket_url: str,
        reconnect: ReconnectConfig | None = None,
        connect_factory: ConnectFactory | None = None,
    ):
        super().__init__(api)
        scope = api.scope
        auth = {"campgroundId": scope.campground_id}
        if scope.auth_token:
            auth["token"] = scope.auth_token
        if scope.guest_id:
            auth["guestId"] = scope.guest_id
        self._url = f"{socket_url.rstrip('/')}/chat?{urlencode(auth)}"
        self._reconnect = reconnect or ReconnectConfig()
        self._connect_factory: ConnectFactory = connect_factory or websockets.connect
        self._ws: Any = None
        self._task: asyncio.Task[None] | None = None
        self._closing = False
        self._ready = asyncio.Event()
        self._sinks: dict[str, FragmentSink] = {}
        self._current_response_id: Optional[str] = None
        self._conversation_id: Optional[str] = None

    @property
    def kind(self) -> TransportKind:
        return TransportKind.SOCKET

    async def connect(self, wait: float = 5.0) -> None:
        """Start the connection loop and wait up to ``wait`` seconds for the first handshake."""
        if self._task is None or self._task.done():
            self._closing = False
            self._task = asyncio.create_task(self._run(), name="campchat-socket")
        try:
            await asyncio.wait_for(self._ready.wait(), timeout=wait)
        except asyncio.TimeoutError:
            logger.warning("socket_connect_pending", url=self._url.split("?")[0], waited=wait)

    async def close(self) -> None:
        self._closing = True
        ws = self._ws
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        if ws is not None:
            await ws.close()
        self._ws = None
        self._sinks.clear()
        self._ready.clear()
        self._set_connected(False)
        logger.info("socket_closed")

    async def send(self, payload: dict[str, Any], sink: FragmentSink) -> SendReceipt:
        if not self.is_connected:
            raise TransportDisconnectedError()

        response_id = new_local_id("resp")
        self._sinks[response_id] = sink
        self._current_response_id = response_id
        try:
            data = await self.api.send_message_streamed({**payload, "responseId": response_id})
        except ApiError as e:
            self._sinks.pop(response_id, None)
            raise SendError(e.detail or "Failed to send message") from e

        conversation_id = data.get("conversationId") if isinstance(data, dict) else None
        if isinstance(conversation_id, str) and conversation_id != self._conversation_id:
            await self.join_conversation(conversation_id)
        return SendReceipt(
            conversation_id=conversation_id if isinstance(conversation_id, str) else None,
            response_id=response_id,
        )

    async def join_conversation(self, conversation_id: str) -> None:
        self._conversation_id = conversation_id
        if self._ws is not None:
            await self._emit("conversation:join", {"conversationId": conversation_id})

    async def _emit(self, event: str, data: dict[str, Any]) -> None:
        try:
            await self._ws.send(json.dumps({"event": event, "data": data}))
        except ConnectionClosed as e:
            logger.warning("socket_emit_failed", event_name=event, error=str(e))

    async def _run(self) -> None:
        attempt = 0
        while not self._closing:
            try:
                ws = await self._connect_factory(self._url)
            except (OSError, asyncio.TimeoutError, WebSocketException) as e:
                logger.warning("socket_connect_failed", attempt=attempt, error=str(e))
            else:
                attempt = 0
                await self._serve(ws)

            if self._closing:
                break
            attempt += 1
            if self._reconnect.max_attempts and attempt > self._reconnect.max_attempts:
                logger.error("socket_reconnect_gave_up", attempts=attempt - 1)
                break
            delay = backoff_delay(attempt, self._reconnect)
            logger.info("socket_reconnecting", attempt=attempt, delay=delay)
            await asyncio.sleep(delay)

    async def _serve(self, ws: Any) -> None:
        self._ws = ws
        self._set_connected(True)
        self._ready.set()
        logger.info("socket_connected")
        if self._conversation_id:
            await self._emit("conversation:join", {"conversationId": self._conversation_id})
        try:
            async for raw in ws:
                self._dispatch(raw)
        except ConnectionClosed as e:
            logger.warning("socket_connection_lost", reason=str(e))
        finally:
            self._ws = None
            self._ready.clear()
            self._set_connected(False)
            if not self._closing:
                self._abandon_open_replies()

    def _abandon_open_replies(self) -> None:
        for response_id, sink in list(self._sinks.items()):
            self._emit_error(response_id, "Connection lost while receiving a reply")
            sink(Fragment.done(response_id))
        self._sinks.clear()

    def _route(self, data: dict[str, Any]) -> tuple[Optional[str], Optional[FragmentSink]]:
        response_id = data.get("responseId")
        if not isinstance(response_id, str):
            response_id = self._current_response_id
        if response_id is None:
            return None, None
        return response_id, self._sinks.get(response_id)

    def _dispatch(self, raw: str | bytes) -> None:
        try:
            frame = json.loads(raw)
        except (json.JSONDecodeError, UnicodeDecodeError):
            logger.debug("socket_bad_frame", raw=str(raw)[:200])
            return
        if not isinstance(frame, dict):
            return
        event = frame.get("event")
        data = frame.get("data") if isinstance(frame.get("data"), dict) else {}

        if event == "chat:typing":
            self._emit_typing(bool(data.get("isTyping")))
            return

        response_id, sink = self._route(data)
        if sink is None:
            if event in ("chat:token", "chat:complete", "chat:error"):
                logger.debug("socket_unrouted_frame", event_name=event, response_id=response_id)
            return

        match event:
            case "chat:token":
                if isinstance(data.get("token"), str) and data["token"]:
                    sink(Fragment.delta(response_id, data["token"]))
                if tool_call := parse_tool_call(data.get("toolCall")):
                    sink(Fragment.call(response_id, tool_call))
                if tool_result := parse_tool_result(data.get("toolResult")):
                    sink(Fragment.result(response_id, tool_result))
                if action := parse_action_required(data.get("actionRequired")):
                    sink(Fragment.action(response_id, action))
            case "chat:complete":
                meta = parse_stream_meta(data)
                if meta is not None:
                    sink(Fragment.snapshot(response_id, meta))
                sink(Fragment.done(response_id))
                self._sinks.pop(response_id, None)
            case "chat:error":
                message = data.get("error") or "Something went wrong. Please try again."
                self._emit_error(response_id, str(message))
                sink(Fragment.done(response_id))
                self._sinks.pop(response_id, None)
