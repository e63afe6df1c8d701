"""Cursor pagination with a single in-flight fetch per list."""

from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, Generic, Optional, TypeVar

from campchat.core.errors import ChatError
from campchat.log import get_logger
from campchat.messages.models import Page

logger = get_logger(__name__)

T = TypeVar("T")

PageFetcher = Callable[[Optional[str]], Awaitable[Page[T]]]


class CursorPager(Generic[T]):
    """Accumulates pages from ``fetch(cursor)``.

    ``reset()`` cancels whatever fetch is running; a result that arrives for
    an older generation is dropped.
    """

    def __init__(self, fetch: PageFetcher[T], *, prepend: bool = False, name: str = "pager"):
        self._fetch = fetch
        self._prepend = prepend
        self._name = name
        self._items: list[T] = []
        self._cursor: Optional[str] = None
        self._has_more = True
        self._loaded = False
        self._error: Optional[str] = None
        self._generation = 0
        self._task: asyncio.Task[Page[T]] | None = None

    @property
    def items(self) -> tuple[T, ...]:
        return tuple(self._items)

    @property
    def has_more(self) -> bool:
        return self._has_more

    @property
    def loaded(self) -> bool:
        return self._loaded

    @property
    def is_loading(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def error(self) -> Optional[str]:
        return self._error

    @property
    def generation(self) -> int:
        return self._generation

    def reset(self, fetch: PageFetcher[T] | None = None) -> None:
        """Drop accumulated state and supersede any in-flight fetch."""
        self._generation += 1
        if self._task is not None and not self._task.done():
            self._task.cancel()
            logger.debug("page_fetch_superseded", pager=self._name, generation=self._generation)
        self._task = None
        if fetch is not None:
            self._fetch = fetch
        self._items = []
        self._cursor = None
        self._has_more = True
        self._loaded = False
        self._error = None

    async def load_more(self) -> bool:
        """Fetch the next page. Returns False when nothing was applied."""
        if self.is_loading or not self._has_more:
            return False

        generation = self._generation
        task = asyncio.create_task(self._fetch(self._cursor), name=f"{self._name}-fetch")
        self._task = task
        try:
            page = await task
        except asyncio.CancelledError:
            if generation != self._generation:
                return False
            raise
        except ChatError as e:
            if generation == self._generation:
                self._error = str(e)
                logger.warning("page_fetch_failed", pager=self._name, error=str(e))
            return False
        finally:
            if self._task is task:
                self._task = None

        if generation != self._generation:
            return False

        if self._prepend:
            self._items = list(page.items) + self._items
        else:
            self._items.extend(page.items)
        self._cursor = page.next_cursor
        self._has_more = page.has_more
        self._loaded = True
        self._error = None
        return True

    async def reload(self) -> bool:
        self.reset()
        return await self.load_more()

    async def load_all(self) -> tuple[T, ...]:
        while self._has_more:
            if not await self.load_more():
                break
        return self.items
