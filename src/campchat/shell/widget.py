"""Widget view model: ties the manager, attachment tray, history and shell state together."""

from __future__ import annotations

from typing import Callable, Optional

from campchat.attachments.pipeline import AttachmentPipeline
from campchat.config import ShellConfig
from campchat.conversation.manager import ConversationManager
from campchat.core.types import ParticipantMode, Role
from campchat.history.browser import HistoryBrowser
from campchat.log import get_logger
from campchat.messages.models import Message
from campchat.shell import viewport as vp
from campchat.shell.artifacts import Artifact, message_artifacts, should_auto_open
from campchat.shell.composer import Composer, KeyAction, can_send

logger = get_logger(__name__)


class ChatWidget:
    """Everything a renderer needs, derived from state; no I/O of its own besides the manager's."""

    def __init__(
        self,
        manager: ConversationManager,
        pipeline: AttachmentPipeline | None = None,
        history: HistoryBrowser | None = None,
        config: ShellConfig | None = None,
        initial_message: str | None = None,
    ):
        self.manager = manager
        self.pipeline = pipeline
        self.history = history
        self._config = config or ShellConfig()
        self._initial_message = initial_message
        self._initial_sent = False
        self.is_open = False
        self.composer = Composer(mode=manager.scope.mode)
        self.viewport = vp.Viewport(threshold_px=self._config.scroll_threshold_px)
        self.scroll_requested = False
        self.artifact_panel_open = False
        self.active_artifact: Optional[Artifact] = None
        self._known_ids: list[str] = [m.id for m in manager.messages]
        self._checked_artifacts: set[str] = set(self._known_ids)
        self._listeners: list[Callable[[], None]] = []
        manager.subscribe(self._on_change)
        if pipeline is not None:
            pipeline.subscribe(self._emit)

    @property
    def mode(self) -> ParticipantMode:
        return self.manager.scope.mode

    @property
    def attachments_enabled(self) -> bool:
        return self.pipeline is not None and self.pipeline.enabled

    @property
    def history_enabled(self) -> bool:
        return self.history is not None and self.history.enabled

    @property
    def can_send(self) -> bool:
        return can_send(self.composer.text, self.manager.is_sending, self.pipeline)

    def subscribe(self, listener: Callable[[], None]) -> None:
        self._listeners.append(listener)

    async def open(self) -> None:
        """Show the widget; the configured initial message goes out on the first open only."""
        self.is_open = True
        self._emit()
        if self._initial_message and not self._initial_sent and not self.manager.messages:
            self._initial_sent = True
            await self.manager.send_message(self._initial_message)

    def close(self) -> None:
        """Hide the widget. In-flight sends keep going and land in the list."""
        self.is_open = False
        self._emit()

    async def submit(self) -> Optional[Message]:
        if not self.can_send:
            return None
        text, visibility = self.composer.take()
        descriptors = self.pipeline.take_ready() if self.pipeline is not None else []
        message = await self.manager.send_message(text, descriptors, visibility)
        if message is None:
            self.composer.restore(text)
            if self.pipeline is not None and descriptors:
                self.pipeline.restore(descriptors)
        return message

    def edit(self, message_id: str) -> bool:
        """Put one of the user's own messages back into the composer."""
        message = self.manager.get_message(message_id)
        if message is None or message.role != Role.USER or not message.content:
            return False
        self.composer.text = message.content
        self._emit()
        return True

    async def quick_reply(self, message_id: str, index: int) -> Optional[Message]:
        """Send clarifying question ``index`` of an assistant message as the user's answer."""
        message = self.manager.get_message(message_id)
        if message is None or not 0 <= index < len(message.clarifying_questions):
            raise IndexError(index)
        if self.manager.is_sending:
            return None
        return await self.manager.send_message(message.clarifying_questions[index])

    async def key(self, key: str, shift: bool = False) -> Optional[Message]:
        if self.composer.key(key, shift) == KeyAction.SEND:
            return await self.submit()
        return None

    async def resume(self, conversation_id: str) -> bool:
        if self.history is None:
            return False
        resumed = await self.history.resume(conversation_id)
        if resumed:
            self._checked_artifacts.update(m.id for m in self.manager.messages)
            self.viewport = vp.jump_to_latest(self.viewport)
            self.scroll_requested = True
        return resumed

    # -- viewport -------------------------------------------------------------------

    def on_scroll(self, metrics: vp.ScrollMetrics) -> None:
        self.viewport = vp.on_scroll(self.viewport, metrics)
        self._emit()

    def jump_to_latest(self) -> None:
        self.viewport = vp.jump_to_latest(self.viewport)
        self.scroll_requested = True
        self._emit()

    # -- artifact panel -------------------------------------------------------------

    def open_artifact(self, artifact: Artifact) -> None:
        self.active_artifact = artifact
        self.artifact_panel_open = True
        self._emit()

    def close_artifacts(self) -> None:
        self.artifact_panel_open = False
        self._emit()

    def _on_change(self) -> None:
        messages = self.manager.messages
        ids = [m.id for m in messages]
        new_ids = vp.appended_ids(self._known_ids, ids)
        self._known_ids = ids
        self.viewport, scroll = vp.on_messages_appended(self.viewport, new_ids)
        self.scroll_requested = self.scroll_requested or scroll

        for message in messages:
            if message.id in self._checked_artifacts or message.streaming:
                continue
            self._checked_artifacts.add(message.id)
            if should_auto_open(message, self.mode, self._config):
                artifact = message_artifacts(message)[-1]
                self.active_artifact = artifact
                self.artifact_panel_open = True
                logger.debug("artifact_auto_opened", message_id=message.id, kind=artifact.kind.value)
        self._emit()

    def _emit(self) -> None:
        for listener in list(self._listeners):
            try:
                listener()
            except Exception as e:
                logger.error("listener_error", error=str(e))
