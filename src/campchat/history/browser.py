"""Conversation history: searchable conversation list, per-conversation message pages, resume."""

from __future__ import annotations

import json
from datetime import datetime, timedelta
from typing import Callable, Optional

from campchat.config import HistoryConfig
from campchat.conversation.manager import ConversationManager
from campchat.core.types import TimeWindow
from campchat.history.pager import CursorPager
from campchat.log import get_logger
from campchat.messages.models import ConversationSummary, Message, Page, utcnow
from campchat.transport.api import ChatApi

logger = get_logger(__name__)

TRANSCRIPT_FORMATS = ("markdown", "text", "json")


def window_start(window: TimeWindow, now: datetime) -> Optional[datetime]:
    days = window.days
    return now - timedelta(days=days) if days is not None else None


class ConversationBrowser:
    """The "Conversations" tab: query + time window over a cursor-paged list."""

    def __init__(
        self,
        api: ChatApi,
        config: HistoryConfig | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._api = api
        self._config = config or HistoryConfig()
        self._clock = clock
        self._query = ""
        self._window = TimeWindow.ALL
        self._pager: CursorPager[ConversationSummary] = CursorPager(self._fetch, name="conversations")

    @property
    def query(self) -> str:
        return self._query

    @property
    def window(self) -> TimeWindow:
        return self._window

    @property
    def pager(self) -> CursorPager[ConversationSummary]:
        return self._pager

    @property
    def conversations(self) -> tuple[ConversationSummary, ...]:
        return self._pager.items

    @property
    def has_more(self) -> bool:
        return self._pager.has_more

    @property
    def is_loading(self) -> bool:
        return self._pager.is_loading

    async def _fetch(self, cursor: Optional[str]) -> Page[ConversationSummary]:
        return await self._api.list_conversations(
            query=self._query or None,
            since=window_start(self._window, self._clock()),
            cursor=cursor,
            limit=self._config.page_size,
        )

    async def set_query(self, query: str) -> bool:
        self._query = query.strip()
        return await self._pager.reload()

    async def set_window(self, window: TimeWindow | str) -> bool:
        self._window = TimeWindow(window)
        return await self._pager.reload()

    async def search(self, query: str, window: TimeWindow | str = TimeWindow.ALL) -> bool:
        """Set both filters with a single reload."""
        self._query = query.strip()
        self._window = TimeWindow(window)
        return await self._pager.reload()

    async def load_more(self) -> bool:
        return await self._pager.load_more()

    async def refresh(self) -> bool:
        return await self._pager.reload()


class MessageHistory:
    """Older-first message pages of one stored conversation."""

    def __init__(self, api: ChatApi, conversation_id: str, config: HistoryConfig | None = None):
        self._api = api
        self._conversation_id = conversation_id
        self._config = config or HistoryConfig()
        # Each page is chronological and older pages come later, so they go in front.
        self._pager: CursorPager[Message] = CursorPager(self._fetch, prepend=True, name="history")

    @property
    def conversation_id(self) -> str:
        return self._conversation_id

    @property
    def messages(self) -> tuple[Message, ...]:
        return self._pager.items

    @property
    def has_more(self) -> bool:
        return self._pager.has_more

    @property
    def error(self) -> Optional[str]:
        return self._pager.error

    async def _fetch(self, cursor: Optional[str]) -> Page[Message]:
        return await self._api.get_history(
            self._conversation_id, cursor=cursor, limit=self._config.message_page_size
        )

    async def load(self) -> tuple[Message, ...]:
        if not self._pager.loaded:
            await self._pager.load_more()
        return self.messages

    async def load_older(self) -> bool:
        return await self._pager.load_more()

    def cancel(self) -> None:
        self._pager.reset()


class HistoryBrowser:
    """Ties the conversation list and message pages to the live session.

    Selecting a conversation replaces any previously opened one; the fetch of
    a superseded selection is cancelled.
    """

    def __init__(self, api: ChatApi, manager: ConversationManager, config: HistoryConfig | None = None):
        self._api = api
        self._manager = manager
        self._config = config or HistoryConfig()
        self.conversations = ConversationBrowser(api, self._config)
        self._selected: Optional[MessageHistory] = None

    @property
    def enabled(self) -> bool:
        """History needs a signed-in session."""
        return self._api.scope.has_auth

    @property
    def selected(self) -> Optional[MessageHistory]:
        return self._selected

    async def open(self, conversation_id: str) -> tuple[Message, ...]:
        if self._selected is not None and self._selected.conversation_id != conversation_id:
            self._selected.cancel()
        if self._selected is None or self._selected.conversation_id != conversation_id:
            self._selected = MessageHistory(self._api, conversation_id, self._config)
        return await self._selected.load()

    async def resume(self, conversation_id: str | None = None) -> bool:
        """Replace the live conversation with the stored one."""
        if conversation_id is not None:
            await self.open(conversation_id)
        selected = self._selected
        if selected is None or selected.error is not None:
            return False
        self._manager.replace_messages(selected.messages)
        await self._manager.set_active_conversation(selected.conversation_id)
        logger.info(
            "conversation_resumed",
            conversation_id=selected.conversation_id,
            message_count=len(selected.messages),
        )
        return True

    async def transcript(self, conversation_id: str, fmt: str = "markdown") -> str:
        if fmt not in TRANSCRIPT_FORMATS:
            raise ValueError(f"Unsupported transcript format: {fmt}")
        data = await self._api.get_transcript(conversation_id, fmt)
        if isinstance(data, dict):
            content = data.get("content")
            if isinstance(content, str):
                return content
            return json.dumps(data, indent=2, ensure_ascii=False)
        if isinstance(data, list):
            return json.dumps(data, indent=2, ensure_ascii=False)
        return data or ""
