"""Tests for wire parsing of messages, attachments and actions."""

from campchat.core.types import ActionKind, Role, Visibility
from campchat.messages.codec import (
    attachment_to_wire,
    build_parts,
    parse_action_required,
    parse_attachment,
    parse_message,
    parse_stream_meta,
)
from campchat.messages.models import AttachmentDescriptor


class TestParseMessage:
    """History items and complete replies"""

    def test_full_history_item(self):
        message = parse_message(
            {
                "id": "m1",
                "role": "user",
                "content": "See photo",
                "createdAt": "2026-05-01T10:00:00Z",
                "visibility": "internal",
                "attachments": [
                    {
                        "name": "site.png",
                        "contentType": "image/png",
                        "size": 2048,
                        "storageKey": "k/site.png",
                        "publicUrl": "https://cdn.test/site.png",
                    }
                ],
            },
            conversation_id="conv-1",
        )

        assert message.id == "m1"
        assert message.role == Role.USER
        assert message.visibility == Visibility.INTERNAL
        assert message.conversation_id == "conv-1"
        assert message.created_at.year == 2026
        assert message.attachments[0].url == "https://cdn.test/site.png"
        assert message.attachments[0].is_image

    def test_message_id_alias_and_missing_content(self):
        assert parse_message({"messageId": "m2", "content": "hi"}).id == "m2"
        assert parse_message({"id": "m3"}) is None
        assert parse_message("nope") is None

    def test_unknown_role_falls_back(self):
        message = parse_message({"id": "m1", "role": "robot", "content": "x"})
        assert message.role == Role.ASSISTANT


class TestAttachments:
    """Attachment descriptors on the wire"""

    def test_invalid_descriptor_is_dropped(self):
        assert parse_attachment({"name": "a.pdf", "contentType": "application/pdf"}) is None
        assert parse_attachment({"name": "a.pdf", "contentType": "application/pdf", "size": True}) is None

    def test_wire_form_is_camel_case(self):
        descriptor = AttachmentDescriptor(
            name="a.pdf", content_type="application/pdf", size=10, storage_key="k", url="https://x"
        )
        assert attachment_to_wire(descriptor) == {
            "name": "a.pdf",
            "contentType": "application/pdf",
            "size": 10,
            "storageKey": "k",
            "url": "https://x",
        }


class TestActions:
    """Action-required cards"""

    def test_parse_confirmation(self):
        action = parse_action_required(
            {
                "type": "confirmation",
                "actionId": "a1",
                "title": "Confirm booking",
                "description": "Site 12, 2 nights",
                "options": [
                    {"id": "yes", "label": "Confirm"},
                    {"id": "no", "label": "Cancel", "variant": "destructive"},
                    {"label": "broken"},
                ],
            }
        )

        assert action.kind == ActionKind.CONFIRMATION
        assert [o.id for o in action.options] == ["yes", "no"]
        assert action.options[1].variant == "destructive"

    def test_unknown_type_is_rejected(self):
        assert parse_action_required({"type": "teleport", "actionId": "a", "title": "t", "description": "d"}) is None


class TestParts:
    """Derived message parts"""

    def test_card_extracted_from_render_tree_result(self):
        message = parse_message(
            {
                "id": "m1",
                "content": "Here is the report",
                "toolCalls": [{"id": "c1", "name": "get_occupancy", "args": {}}],
                "toolResults": [
                    {
                        "toolCallId": "c1",
                        "result": {"jsonRender": {"title": "Occupancy Report", "tree": {"root": "r"}}},
                    }
                ],
            }
        )
        parts = build_parts(message)

        assert [p.type for p in parts] == ["text", "tool", "card"]
        assert parts[-1].title == "Occupancy Report"

    def test_stream_meta_visibility_only_when_known(self):
        assert parse_stream_meta({"content": "x"}).visibility is None
        assert parse_stream_meta({"visibility": "internal"}).visibility == Visibility.INTERNAL
        assert parse_stream_meta(None) is None

    def test_clarifying_questions_drop_blanks_and_non_strings(self):
        raw = {"id": "m1", "content": "Which dates?", "clarifyingQuestions": [" This weekend ", "", 3, None, "Next month"]}

        assert parse_message(raw).clarifying_questions == ("This weekend", "Next month")
        assert parse_stream_meta(raw).clarifying_questions == ("This weekend", "Next month")
        assert parse_message({"id": "m2", "content": "", "clarifyingQuestions": "not a list"}).clarifying_questions == ()
