"""Local previews for staged image attachments.

A preview is a temporary file exposed as a ``file://`` URI; it must be
revoked when the item is removed or the widget closes.
"""

from __future__ import annotations

import tempfile
from pathlib import Path
from typing import Optional
from urllib.parse import unquote, urlparse

from campchat.log import get_logger

logger = get_logger(__name__)


class PreviewStore:
    def __init__(self) -> None:
        self._dir: tempfile.TemporaryDirectory[str] | None = None
        self._live: set[str] = set()

    @property
    def live(self) -> frozenset[str]:
        return frozenset(self._live)

    def create(self, item_id: str, filename: str, data: bytes) -> str:
        if self._dir is None:
            self._dir = tempfile.TemporaryDirectory(prefix="campchat-previews-")
        path = Path(self._dir.name) / f"{item_id}{Path(filename).suffix.lower()}"
        path.write_bytes(data)
        uri = path.as_uri()
        self._live.add(uri)
        return uri

    def revoke(self, uri: Optional[str]) -> None:
        if not uri or uri not in self._live:
            return
        self._live.discard(uri)
        Path(unquote(urlparse(uri).path)).unlink(missing_ok=True)

    def close(self) -> None:
        for uri in list(self._live):
            self.revoke(uri)
        if self._dir is not None:
            self._dir.cleanup()
            self._dir = None
        logger.debug("previews_released")
