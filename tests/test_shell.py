"""Tests for the presentation shell: viewport, composer, artifacts, rendering, widget."""

import asyncio
from dataclasses import replace
from datetime import datetime, timedelta, timezone

import httpx
import pytest

import campchat.shell.render as render
from campchat.attachments.pipeline import AttachmentPipeline
from campchat.config import ShellConfig
from campchat.conversation.manager import ConversationManager
from campchat.core.types import ArtifactKind, Delivery, ParticipantMode, Role, Visibility
from campchat.history.browser import HistoryBrowser
from campchat.messages.models import AttachmentDescriptor, Message, MessagePart, ToolResult
from campchat.shell import viewport as vp
from campchat.shell.artifacts import classify, message_artifacts, should_auto_open
from campchat.shell.composer import Composer, KeyAction, handle_key
from campchat.shell.render import format_file_size, relative_time, render_message, render_thread
from campchat.shell.widget import ChatWidget
from campchat.transport.polling import RequestResponseTransport

from conftest import GUEST_PREFIX, STAFF_PREFIX

NOW = datetime(2026, 6, 1, 12, 0, tzinfo=timezone.utc)


class TestViewport:
    """Follow mode vs. jump to latest"""

    def _at(self, distance):
        # 1000px of content in a 400px window; ``distance`` px above the bottom
        return vp.ScrollMetrics(scroll_top=600 - distance, scroll_height=1000, client_height=400)

    def test_following_auto_scrolls(self):
        view, scroll = vp.on_messages_appended(vp.Viewport(), ["m1"])
        assert scroll is True
        assert view.show_jump_to_latest is False

    def test_within_threshold_keeps_following(self):
        view = vp.on_scroll(vp.Viewport(threshold_px=80), self._at(79))
        assert view.mode == vp.FollowMode.FOLLOWING

    def test_scrolling_up_detaches_and_tracks_first_unseen(self):
        view = vp.on_scroll(vp.Viewport(threshold_px=80), self._at(300))
        assert view.mode == vp.FollowMode.DETACHED

        view, scroll = vp.on_messages_appended(view, ["m5"])
        view, scroll = vp.on_messages_appended(view, ["m6", "m7"])

        assert scroll is False
        assert view.first_unseen_id == "m5"
        assert view.unseen_count == 3
        assert view.show_jump_to_latest is True

    def test_jump_to_latest_clears_marker(self):
        view = vp.on_scroll(vp.Viewport(), self._at(500))
        view, _ = vp.on_messages_appended(view, ["m5"])

        view = vp.jump_to_latest(view)

        assert view.is_following
        assert view.first_unseen_id is None
        assert view.show_jump_to_latest is False

    def test_scrolling_back_to_bottom_reattaches(self):
        view = vp.on_scroll(vp.Viewport(), self._at(500))
        view, _ = vp.on_messages_appended(view, ["m5"])

        view = vp.on_scroll(view, self._at(0))

        assert view.is_following
        assert view.unseen_count == 0

    def test_appended_ids(self):
        assert vp.appended_ids(["a", "b"], ["a", "b", "c", "d"]) == ["c", "d"]


class TestComposer:
    """Keyboard handling and visibility toggle"""

    def test_enter_sends_shift_enter_newline(self):
        assert handle_key("Enter") == KeyAction.SEND
        assert handle_key("Enter", shift=True) == KeyAction.NEWLINE
        assert handle_key("a") == KeyAction.NONE

    def test_shift_enter_appends_newline(self):
        composer = Composer(mode=ParticipantMode.GUEST, text="line one")
        composer.key("Enter", shift=True)
        assert composer.text == "line one\n"

    def test_visibility_toggle_is_staff_only(self):
        guest = Composer(mode=ParticipantMode.GUEST)
        staff = Composer(mode=ParticipantMode.STAFF)

        assert guest.toggle_visibility() == Visibility.PUBLIC
        assert staff.toggle_visibility() == Visibility.INTERNAL
        assert staff.toggle_visibility() == Visibility.PUBLIC

    def test_take_clears_text_keeps_visibility(self):
        composer = Composer(mode=ParticipantMode.STAFF, text="note", visibility=Visibility.INTERNAL)
        assert composer.take() == ("note", Visibility.INTERNAL)
        assert composer.text == ""
        assert composer.visibility == Visibility.INTERNAL


def _assistant(result, message_id="a1", streaming=False):
    return Message(
        id=message_id,
        role=Role.ASSISTANT,
        content="Here you go",
        tool_results=(ToolResult(tool_call_id="c1", result=result),),
        streaming=streaming,
    )


class TestArtifacts:
    """Single classifier and auto-open policy"""

    @pytest.mark.parametrize(
        "payload,kind",
        [
            ({"availableSites": [{"id": "s1"}], "totalAvailable": 1}, ArtifactKind.AVAILABILITY),
            ({"quote": {"site": "4", "nights": 2}}, ArtifactKind.QUOTE),
            ({"occupancy": {"averagePercent": 71}, "jsonRender": {"title": "Occupancy"}}, ArtifactKind.OCCUPANCY),
            ({"revenue": {"total": 1200}}, ArtifactKind.REVENUE),
            ({"uiTree": {"root": "r"}}, ArtifactKind.RENDER_TREE),
            ({"message": "Done"}, None),
            ("text", None),
        ],
    )
    def test_classify(self, payload, kind):
        assert classify(payload) == kind

    def test_failed_tool_results_are_not_artifacts(self):
        message = Message(
            id="a1",
            role=Role.ASSISTANT,
            tool_results=(ToolResult(tool_call_id="c1", result={"quote": {}}, error="boom"),),
        )
        assert message_artifacts(message) == []

    def test_card_parts_are_artifacts(self):
        message = Message(
            id="a1", role=Role.ASSISTANT, parts=(MessagePart(type="card", title="Report", payload={"tree": {"root": "x"}}),)
        )
        assert [a.kind for a in message_artifacts(message)] == [ArtifactKind.RENDER_TREE]

    def test_auto_open_is_staff_only_by_default(self):
        message = _assistant({"quote": {"site": "4"}})
        config = ShellConfig()

        assert should_auto_open(message, ParticipantMode.STAFF, config) is True
        assert should_auto_open(message, ParticipantMode.GUEST, config) is False
        assert should_auto_open(message, ParticipantMode.GUEST, ShellConfig(auto_open_artifacts_guest=True)) is True

    def test_no_auto_open_while_streaming_or_for_users(self):
        config = ShellConfig()
        assert should_auto_open(_assistant({"quote": {}}, streaming=True), ParticipantMode.STAFF, config) is False
        user = Message(id="u1", role=Role.USER, tool_results=(ToolResult(tool_call_id="c", result={"quote": {}}),))
        assert should_auto_open(user, ParticipantMode.STAFF, config) is False


class TestRender:
    """Terminal rendering"""

    @pytest.mark.parametrize(
        "delta,expected",
        [
            (timedelta(seconds=20), "just now"),
            (timedelta(minutes=5), "5m ago"),
            (timedelta(hours=3), "3h ago"),
            (timedelta(days=2), "2d ago"),
        ],
    )
    def test_relative_time(self, delta, expected):
        assert relative_time(NOW - delta, NOW) == expected

    def test_file_sizes(self):
        assert format_file_size(512) == "512 B"
        assert format_file_size(2048) == "2.0 KB"
        assert format_file_size(3 * 1024 * 1024) == "3.0 MB"

    def test_internal_and_failed_markers(self):
        message = Message(
            id="u1",
            role=Role.USER,
            content="VIP guest",
            visibility=Visibility.INTERNAL,
            delivery=Delivery.FAILED,
            error="Network error",
            created_at=NOW,
            attachments=(AttachmentDescriptor(name="id.pdf", content_type="application/pdf", size=2048),),
        )
        text = render_message(message, NOW)

        assert "internal note" in text
        assert "Not delivered: Network error" in text
        assert "id.pdf (2.0 KB)" in text

    def test_render_errors_are_contained_per_message(self, monkeypatch):
        good = Message(id="ok", role=Role.ASSISTANT, content="fine", created_at=NOW)
        bad = Message(id="bad", role=Role.ASSISTANT, content="boom", created_at=NOW)
        original = render.render_message

        def flaky(message, *args, **kwargs):
            if message.id == "bad":
                raise KeyError("broken payload")
            return original(message, *args, **kwargs)

        monkeypatch.setattr(render, "render_message", flaky)
        text = render_thread([good, bad], NOW)

        assert "fine" in text
        assert "[message bad could not be displayed]" in text

    def test_clarifying_questions_are_listed_once_complete(self):
        message = Message(
            id="a1",
            role=Role.ASSISTANT,
            content="Which dates?",
            created_at=NOW,
            clarifying_questions=("This weekend", "Next month"),
        )

        text = render_message(message, NOW)
        assert "? 1. This weekend" in text
        assert "? 2. Next month" in text
        assert "/reply" in text
        assert "This weekend" not in render_message(replace(message, streaming=True), NOW)


def _reply(**extra):
    body = {"conversationId": "conv-1", "messageId": "r1", "content": "Hello!"}
    body.update(extra)
    return body


class TestWidget:
    """Widget lifecycle"""

    def _widget(self, api, initial_message=None):
        manager = ConversationManager(RequestResponseTransport(api), api.scope)
        return ChatWidget(manager, initial_message=initial_message)

    async def test_initial_message_sent_on_first_open_only(self, backend, make_api):
        backend.on("POST", f"{GUEST_PREFIX}/message", _reply())
        widget = self._widget(make_api(), initial_message="Hi there")

        await widget.open()
        widget.close()
        await widget.open()

        assert len(backend.calls("POST", f"{GUEST_PREFIX}/message")) == 1
        assert widget.manager.messages[0].content == "Hi there"

    async def test_closing_does_not_abort_send(self, backend, make_api):

        gate = asyncio.Event()

        async def slow_reply(request):
            await gate.wait()
            return _reply()

        backend.on("POST", f"{GUEST_PREFIX}/message", slow_reply)
        widget = self._widget(make_api())
        await widget.open()
        widget.composer.text = "still there?"

        task = asyncio.create_task(widget.key("Enter"))
        await asyncio.sleep(0.01)
        widget.close()
        gate.set()
        sent = await task

        assert widget.is_open is False
        assert sent.content == "still there?"
        assert widget.manager.messages[-1].content == "Hello!"

    async def test_empty_submit_restores_nothing(self, make_api):
        widget = self._widget(make_api())
        widget.composer.text = "   "

        assert await widget.submit() is None

    async def test_artifact_panel_auto_opens_for_staff(self, backend, make_api):
        result = {"toolCallId": "c1", "result": {"availableSites": [{"id": "s1"}]}}
        backend.on("POST", f"{STAFF_PREFIX}/message", _reply(toolResults=[result]))
        widget = self._widget(make_api(mode=ParticipantMode.STAFF))
        widget.composer.text = "What's open?"

        await widget.submit()

        assert widget.artifact_panel_open is True
        assert widget.active_artifact.kind == ArtifactKind.AVAILABILITY

    async def test_artifact_panel_stays_closed_for_guests(self, backend, make_api):
        result = {"toolCallId": "c1", "result": {"availableSites": [{"id": "s1"}]}}
        backend.on("POST", f"{GUEST_PREFIX}/message", _reply(toolResults=[result]))
        widget = self._widget(make_api())
        widget.composer.text = "What's open?"

        await widget.submit()

        assert widget.artifact_panel_open is False

    async def test_detached_viewport_counts_new_messages(self, backend, make_api):
        backend.on("POST", f"{GUEST_PREFIX}/message", _reply())
        widget = self._widget(make_api())
        widget.on_scroll(vp.ScrollMetrics(scroll_top=0, scroll_height=2000, client_height=400))
        widget.composer.text = "hello"

        await widget.submit()

        assert widget.viewport.show_jump_to_latest is True
        assert widget.viewport.unseen_count == 2
        widget.jump_to_latest()
        assert widget.scroll_requested is True
        assert widget.viewport.first_unseen_id is None

    def test_no_auth_hides_history_and_attachments(self, make_api):
        api = make_api(auth_token=None)
        manager = ConversationManager(RequestResponseTransport(api), api.scope)
        widget = ChatWidget(manager, AttachmentPipeline(api), HistoryBrowser(api, manager))

        assert widget.attachments_enabled is False
        assert widget.history_enabled is False


class TestWidgetErrors:
    """Failures render inline"""

    async def test_failed_send_is_visible_in_thread(self, backend, make_api):
        backend.on("POST", f"{GUEST_PREFIX}/message", httpx.Response(500, json={"message": "Server error"}))
        api = make_api()
        widget = ChatWidget(ConversationManager(RequestResponseTransport(api), api.scope))
        widget.composer.text = "hello"

        await widget.submit()

        assert "Not delivered: Server error" in render_thread(widget.manager.messages, NOW)


class TestWidgetShortcuts:
    """Quick replies and editing"""

    def _widget(self, api):
        return ChatWidget(ConversationManager(RequestResponseTransport(api), api.scope))

    async def test_quick_reply_sends_the_question(self, backend, make_api):
        replies = [_reply(content="Which dates?", clarifyingQuestions=["This weekend", "Next month"]), _reply(messageId="r2")]
        backend.on("POST", f"{GUEST_PREFIX}/message", lambda request: replies.pop(0))
        widget = self._widget(make_api())
        widget.composer.text = "Any sites open?"
        await widget.submit()

        assistant = widget.manager.messages[-1]
        assert assistant.clarifying_questions == ("This weekend", "Next month")

        sent = await widget.quick_reply(assistant.id, 1)
        assert sent.content == "Next month"
        assert backend.body("POST", f"{GUEST_PREFIX}/message")["message"] == "Next month"

    async def test_quick_reply_out_of_range(self, backend, make_api):
        backend.on("POST", f"{GUEST_PREFIX}/message", _reply())
        widget = self._widget(make_api())
        widget.composer.text = "hello"
        await widget.submit()

        with pytest.raises(IndexError):
            await widget.quick_reply(widget.manager.messages[-1].id, 0)

    async def test_edit_loads_own_message(self, backend, make_api):
        backend.on("POST", f"{GUEST_PREFIX}/message", _reply())
        widget = self._widget(make_api())
        widget.composer.text = "two nights at site 4"
        await widget.submit()
        user, assistant = widget.manager.messages

        assert widget.edit(assistant.id) is False
        assert widget.composer.text == ""
        assert widget.edit(user.id) is True
        assert widget.composer.text == "two nights at site 4"
