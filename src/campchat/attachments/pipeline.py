"""Attachment pipeline: validate, sign, upload, and stage files for the next send."""

from __future__ import annotations

import asyncio
import mimetypes
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any, Callable, Optional

from campchat.attachments.preview import PreviewStore
from campchat.attachments.validation import validate_attachment
from campchat.config import AttachmentConfig
from campchat.core.errors import ApiError, AttachmentValidationError, UploadError
from campchat.core.session import new_local_id
from campchat.core.types import AttachmentStatus
from campchat.log import get_logger
from campchat.messages.models import AttachmentDescriptor
from campchat.transport.api import ChatApi

logger = get_logger(__name__)


@dataclass(frozen=True, slots=True)
class AttachmentItem:
    """A staged file; only ``ready`` items carry a descriptor."""

    id: str
    filename: str
    content_type: str
    size: int
    status: AttachmentStatus
    data: Optional[bytes] = None
    preview_url: Optional[str] = None
    descriptor: Optional[AttachmentDescriptor] = None
    error: Optional[str] = None


class AttachmentPipeline:
    """Owns staged attachment items until they are handed to a message.

    Items are only ever updated by id, so uploads finishing in any order
    cannot clobber one another.
    """

    def __init__(
        self,
        api: ChatApi,
        config: AttachmentConfig | None = None,
        previews: PreviewStore | None = None,
    ):
        self._api = api
        self._config = config or AttachmentConfig()
        self._previews = previews or PreviewStore()
        self._items: tuple[AttachmentItem, ...] = ()
        self._tasks: dict[str, asyncio.Task[None]] = {}
        self._listeners: list[Callable[[], None]] = []

    @property
    def enabled(self) -> bool:
        """Uploads need an authenticated session; without one the tray is hidden."""
        return self._api.scope.has_auth

    @property
    def items(self) -> tuple[AttachmentItem, ...]:
        return self._items

    @property
    def is_uploading(self) -> bool:
        return any(item.status == AttachmentStatus.UPLOADING for item in self._items)

    @property
    def ready_items(self) -> tuple[AttachmentItem, ...]:
        return tuple(item for item in self._items if item.status == AttachmentStatus.READY)

    def get(self, item_id: str) -> Optional[AttachmentItem]:
        return next((item for item in self._items if item.id == item_id), None)

    def subscribe(self, listener: Callable[[], None]) -> None:
        self._listeners.append(listener)

    def add_file(self, filename: str, data: bytes, content_type: str | None = None) -> AttachmentItem:
        """Stage one file. Invalid files land in ``error`` without touching the network."""
        if not self.enabled:
            raise AttachmentValidationError("Attachments require a signed-in session")

        item_id = new_local_id("att")
        try:
            resolved = validate_attachment(filename, len(data), content_type, self._config)
        except AttachmentValidationError as e:
            item = AttachmentItem(
                id=item_id,
                filename=filename,
                content_type=content_type or "",
                size=len(data),
                status=AttachmentStatus.ERROR,
                error=str(e),
            )
            logger.info("attachment_rejected", filename=filename, size=len(data), reason=str(e))
            self._items = self._items + (item,)
            self._notify()
            return item

        preview = None
        if resolved.startswith("image/"):
            preview = self._previews.create(item_id, filename, data)
        item = AttachmentItem(
            id=item_id,
            filename=filename,
            content_type=resolved,
            size=len(data),
            status=AttachmentStatus.UPLOADING,
            data=data,
            preview_url=preview,
        )
        self._items = self._items + (item,)
        self._tasks[item_id] = asyncio.create_task(self._upload(item_id), name=f"upload-{item_id}")
        self._notify()
        return item

    async def add_path(self, path: str | Path) -> AttachmentItem:
        path = Path(path)
        data = await asyncio.to_thread(path.read_bytes)
        declared, _ = mimetypes.guess_type(path.name)
        return self.add_file(path.name, data, declared)

    async def _upload(self, item_id: str) -> None:
        item = self.get(item_id)
        if item is None or item.data is None:
            return
        try:
            try:
                signed = await self._api.sign_attachment(item.filename, item.content_type, item.size)
            except ApiError as e:
                raise UploadError(f"Could not prepare upload: {e.detail or e}") from e
            try:
                await self._api.upload(signed.upload_url, item.data, item.content_type)
            except ApiError as e:
                raise UploadError(e.detail or "Upload failed") from e
        except UploadError as e:
            logger.warning("attachment_upload_failed", item_id=item_id, filename=item.filename, error=str(e))
            self._update(item_id, status=AttachmentStatus.ERROR, error=str(e), data=None)
        else:
            descriptor = AttachmentDescriptor(
                name=item.filename,
                content_type=item.content_type,
                size=item.size,
                storage_key=signed.storage_key,
                url=signed.public_url,
                download_url=signed.download_url,
            )
            self._update(item_id, status=AttachmentStatus.READY, descriptor=descriptor, data=None)
            logger.info("attachment_ready", item_id=item_id, storage_key=signed.storage_key)
        finally:
            self._tasks.pop(item_id, None)

    def remove(self, item_id: str) -> None:
        item = self.get(item_id)
        if item is None:
            return
        task = self._tasks.pop(item_id, None)
        if task is not None:
            task.cancel()
        self._previews.revoke(item.preview_url)
        self._items = tuple(i for i in self._items if i.id != item_id)
        self._notify()

    def take_ready(self) -> list[AttachmentDescriptor]:
        """Hand ready descriptors over to an outgoing message and drop them from the tray."""
        ready = self.ready_items
        for item in ready:
            self._previews.revoke(item.preview_url)
        ready_ids = {item.id for item in ready}
        self._items = tuple(i for i in self._items if i.id not in ready_ids)
        if ready:
            self._notify()
        return [item.descriptor for item in ready if item.descriptor is not None]

    def restore(self, descriptors: list[AttachmentDescriptor]) -> None:
        """Put descriptors back as ready items (a send that was never attempted)."""
        restored = tuple(
            AttachmentItem(
                id=new_local_id("att"),
                filename=d.name,
                content_type=d.content_type,
                size=d.size,
                status=AttachmentStatus.READY,
                descriptor=d,
            )
            for d in descriptors
        )
        self._items = restored + self._items
        self._notify()

    async def wait_idle(self) -> None:
        if self._tasks:
            await asyncio.gather(*list(self._tasks.values()), return_exceptions=True)

    async def close(self) -> None:
        for task in list(self._tasks.values()):
            task.cancel()
        await self.wait_idle()
        self._tasks.clear()
        self._items = ()
        self._previews.close()

    def _update(self, item_id: str, **changes: Any) -> None:
        self._items = tuple(replace(i, **changes) if i.id == item_id else i for i in self._items)
        self._notify()

    def _notify(self) -> None:
        for listener in list(self._listeners):
            try:
                listener()
            except Exception as e:
                logger.error("listener_error", error=str(e))
