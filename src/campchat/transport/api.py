"""Thin async HTTP client for the chat endpoints of the reservation API."""

from __future__ import annotations

from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime
from typing import Any, AsyncIterator, Optional

import httpx

from campchat.config import ApiConfig
from campchat.core.errors import ActionError, ApiError
from campchat.core.session import SessionScope
from campchat.log import get_logger
from campchat.messages.codec import parse_conversation_summary, parse_message
from campchat.messages.models import ConversationSummary, Message, Page

logger = get_logger(__name__)


@dataclass(frozen=True, slots=True)
class SignedUpload:
    upload_url: str
    storage_key: str
    public_url: str
    download_url: Optional[str] = None


def _error_detail(response: httpx.Response) -> str:
    try:
        data = response.json()
    except ValueError:
        return response.text
    if isinstance(data, dict):
        message = data.get("message") or data.get("error")
        if isinstance(message, list):
            return "; ".join(str(m) for m in message)
        if message:
            return str(message)
    return response.text


class ChatApi:
    """Endpoint routing (guest portal vs. staff) plus JSON request helpers.

    Network failures and non-2xx responses both surface as ``ApiError``; a
    status code of 0 means the request never got a response.
    """

    def __init__(
        self,
        config: ApiConfig,
        scope: SessionScope,
        client: httpx.AsyncClient | None = None,
    ):
        self._config = config
        self._scope = scope
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            base_url=config.base_url.rstrip("/"), timeout=config.timeout
        )

    @property
    def scope(self) -> SessionScope:
        return self._scope

    @property
    def client(self) -> httpx.AsyncClient:
        return self._client

    def endpoint(self, path: str) -> str:
        cid = self._scope.campground_id
        prefix = f"/chat/portal/{cid}" if self._scope.is_guest else f"/chat/campgrounds/{cid}"
        return f"{prefix}/{path.lstrip('/')}"

    async def request(
        self,
        method: str,
        url: str,
        *,
        json: Any = None,
        params: dict[str, Any] | None = None,
    ) -> Any:
        try:
            response = await self._client.request(
                method, url, json=json, params=params, headers=self._scope.headers()
            )
        except httpx.HTTPError as e:
            logger.warning("api_network_error", method=method, url=url, error=str(e))
            raise ApiError(0, str(e) or "Network error") from e

        if response.is_error:
            detail = _error_detail(response)
            logger.warning("api_error", method=method, url=url, status=response.status_code, detail=detail)
            raise ApiError(response.status_code, detail)

        if not response.content:
            return None
        try:
            return response.json()
        except ValueError:
            return None

    @asynccontextmanager
    async def stream(self, url: str, body: dict[str, Any]) -> AsyncIterator[httpx.Response]:
        """POST and yield the open response for incremental reading."""
        headers = {**self._scope.headers(), "Accept": "text/event-stream"}
        try:
            async with self._client.stream("POST", url, json=body, headers=headers) as response:
                if response.is_error:
                    await response.aread()
                    raise ApiError(response.status_code, _error_detail(response))
                yield response
        except httpx.HTTPError as e:
            logger.warning("api_stream_error", url=url, error=str(e))
            raise ApiError(0, str(e) or "Stream interrupted") from e

    # -- conversation turn endpoints ------------------------------------------------

    async def send_message(self, payload: dict[str, Any]) -> Any:
        return await self.request("POST", self.endpoint("message"), json=payload)

    async def send_message_streamed(self, payload: dict[str, Any]) -> Any:
        """Acknowledge-only send whose reply arrives over the socket."""
        return await self.request("POST", self.endpoint("message/stream"), json=payload)

    async def execute_action(self, conversation_id: str, action_id: str, option_id: str) -> Any:
        try:
            return await self.request(
                "POST",
                self.endpoint("action"),
                json={
                    "conversationId": conversation_id,
                    "actionId": action_id,
                    "selectedOption": option_id,
                    "sessionId": self._scope.session_id,
                },
            )
        except ApiError as e:
            raise ActionError(e.detail or "Failed to execute action") from e

    async def execute_tool(self, conversation_id: str, tool: str, args: dict[str, Any]) -> Any:
        try:
            return await self.request(
                "POST",
                self.endpoint("tools/execute"),
                json={
                    "conversationId": conversation_id,
                    "tool": tool,
                    "args": args,
                    "sessionId": self._scope.session_id,
                },
            )
        except ApiError as e:
            raise ActionError(e.detail or "Failed to execute tool") from e

    async def submit_feedback(self, message_id: str, value: str) -> None:
        await self.request(
            "POST",
            self.endpoint("feedback"),
            json={"messageId": message_id, "value": value, "sessionId": self._scope.session_id},
        )

    async def regenerate(self, message_id: str) -> Any:
        return await self.request(
            "POST",
            self.endpoint("regenerate"),
            json={"messageId": message_id, "sessionId": self._scope.session_id},
        )

    # -- attachments ----------------------------------------------------------------

    async def sign_attachment(self, filename: str, content_type: str, size: int) -> SignedUpload:
        data = await self.request(
            "POST",
            self.endpoint("attachments/sign"),
            json={"filename": filename, "contentType": content_type, "size": size},
        )
        if not isinstance(data, dict) or not all(
            isinstance(data.get(k), str) for k in ("uploadUrl", "storageKey", "publicUrl")
        ):
            raise ApiError(502, "Invalid upload signature response")
        download_url = data.get("downloadUrl")
        return SignedUpload(
            upload_url=data["uploadUrl"],
            storage_key=data["storageKey"],
            public_url=data["publicUrl"],
            download_url=download_url if isinstance(download_url, str) else None,
        )

    async def upload(self, upload_url: str, data: bytes, content_type: str) -> None:
        """PUT raw bytes to a pre-signed storage URL (no API credentials)."""
        try:
            response = await self._client.put(
                upload_url, content=data, headers={"Content-Type": content_type}
            )
        except httpx.HTTPError as e:
            raise ApiError(0, str(e) or "Upload failed") from e
        if response.is_error:
            raise ApiError(response.status_code, f"Upload failed ({response.status_code})")

    # -- history --------------------------------------------------------------------

    async def list_conversations(
        self,
        query: str | None = None,
        since: datetime | None = None,
        cursor: str | None = None,
        limit: int = 20,
    ) -> Page[ConversationSummary]:
        params: dict[str, Any] = {"limit": limit}
        if query and query.strip():
            params["query"] = query.strip()
        if since is not None:
            params["since"] = since.isoformat()
        if cursor:
            params["before"] = cursor
        data = await self.request("GET", self.endpoint("conversations"), params=params) or {}
        raw_items = data.get("items", data.get("conversations", [])) if isinstance(data, dict) else []
        items = [s for s in (parse_conversation_summary(v) for v in raw_items or []) if s]
        return Page(items=items, next_cursor=_next_cursor(data))

    async def get_history(
        self, conversation_id: str, cursor: str | None = None, limit: int = 50
    ) -> Page[Message]:
        params: dict[str, Any] = {"conversationId": conversation_id, "limit": limit}
        if cursor:
            params["before"] = cursor
        data = await self.request("GET", self.endpoint("history"), params=params) or {}
        raw_items = data.get("items", data.get("messages", [])) if isinstance(data, dict) else []
        items = [m for m in (parse_message(v, conversation_id) for v in raw_items or []) if m]
        return Page(items=items, next_cursor=_next_cursor(data))

    async def get_transcript(self, conversation_id: str, fmt: str = "markdown") -> Any:
        return await self.request(
            "GET",
            self.endpoint(f"conversations/{conversation_id}/transcript"),
            params={"format": fmt},
        )

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()


def _next_cursor(data: Any) -> Optional[str]:
    if not isinstance(data, dict):
        return None
    cursor = data.get("nextCursor")
    return cursor if isinstance(cursor, str) and cursor else None
