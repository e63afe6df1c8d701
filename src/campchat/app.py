"""Application orchestrator - wires one chat widget and manages its lifecycle."""

from __future__ import annotations

import httpx

from campchat.attachments.pipeline import AttachmentPipeline
from campchat.config import AppConfig
from campchat.conversation.manager import ConversationManager
from campchat.core.session import SessionScope, new_session_id
from campchat.history.browser import HistoryBrowser
from campchat.log import bind_session, get_logger
from campchat.shell.widget import ChatWidget
from campchat.transport import create_transport
from campchat.transport.api import ChatApi
from campchat.transport.base import ChatTransport

logger = get_logger(__name__)


class CampChatApp:
    """Top-level orchestrator: one session scope, one transport, one widget."""

    def __init__(
        self,
        config: AppConfig,
        client: httpx.AsyncClient | None = None,
        transport: ChatTransport | None = None,
    ):
        if not config.widget.campground_id:
            raise ValueError("widget.campground_id is required")

        self.config = config
        widget_cfg = config.widget
        self.scope = SessionScope(
            campground_id=widget_cfg.campground_id,
            mode=widget_cfg.mode,
            session_id=new_session_id(),
            auth_token=widget_cfg.auth_token,
            guest_id=widget_cfg.guest_id,
        )
        self.api = ChatApi(config.api, self.scope, client=client)
        self.transport = transport or create_transport(config, self.api)
        self.manager = ConversationManager(self.transport, self.scope)
        self.pipeline = AttachmentPipeline(self.api, config.attachments)
        self.history = HistoryBrowser(self.api, self.manager, config.history)
        self.widget = ChatWidget(
            self.manager,
            pipeline=self.pipeline,
            history=self.history,
            config=config.shell,
            initial_message=widget_cfg.initial_message,
        )

    async def start(self) -> None:
        """Bind log context and connect the transport."""
        bind_session(self.scope.session_id, self.scope.campground_id, self.scope.mode.value)
        await self.manager.connect()
        logger.info(
            "campchat_started",
            transport=self.transport.kind.value,
            connected=self.transport.is_connected,
            authenticated=self.scope.has_auth,
        )

    async def stop(self) -> None:
        """Gracefully shut down all components."""
        try:
            await self.pipeline.close()
        except Exception as e:
            logger.error("pipeline_close_error", error=str(e))
        try:
            await self.manager.close()
        except Exception as e:
            logger.error("transport_close_error", error=str(e))
        await self.api.aclose()
        logger.info("campchat_stopped")
