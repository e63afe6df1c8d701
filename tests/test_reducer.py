"""Tests for the shared fragment reducer."""

from campchat.core.types import Role, Visibility
from campchat.messages.models import Message, ToolCall, ToolResult
from campchat.messages.reducer import (
    MAX_CLOSED,
    Fragment,
    StreamMeta,
    ThreadState,
    apply_fragment,
    finalize_open,
)


def _fold(fragments, state=None):
    state = state or ThreadState()
    for fragment in fragments:
        state = apply_fragment(state, fragment, "conv-1")
    return state


class TestApplyFragment:
    """Folding fragments into the thread"""

    def test_deltas_accumulate_into_one_message(self):
        state = _fold([Fragment.delta("r1", "Hel"), Fragment.delta("r1", "lo")])

        assert len(state.messages) == 1
        message = state.messages[0]
        assert message.role == Role.ASSISTANT
        assert message.content == "Hello"
        assert message.streaming is True
        assert message.response_id == "r1"
        assert message.conversation_id == "conv-1"

    def test_duplicate_terminals_are_idempotent(self):
        once = _fold([Fragment.delta("r1", "Hi"), Fragment.done("r1")])
        twice = _fold([Fragment.done("r1"), Fragment.done("r1")], once)

        assert twice.messages == once.messages
        assert once.messages[0].streaming is False
        assert twice.is_typing is False

    def test_fragments_after_terminal_are_ignored(self):
        state = _fold([Fragment.delta("r1", "Hi"), Fragment.done("r1"), Fragment.delta("r1", " again")])

        assert len(state.messages) == 1
        assert state.messages[0].content == "Hi"

    def test_terminal_for_unknown_response_changes_nothing_but_closes_it(self):
        state = _fold([Fragment.done("ghost")])

        assert state.messages == ()
        assert "ghost" in state.closed

    def test_snapshot_content_replaces_streamed_text(self):
        meta = StreamMeta(conversation_id="conv-1", message_id="m1", content="Final answer")
        state = _fold([Fragment.delta("r1", "Fin"), Fragment.snapshot("r1", meta), Fragment.done("r1")])

        message = state.messages[0]
        assert message.content == "Final answer"
        # the id is fixed when the message is created
        assert message.id == "r1"

    def test_snapshot_first_uses_server_message_id(self):
        meta = StreamMeta(message_id="m1", content="Done", visibility=Visibility.PUBLIC)
        state = _fold([Fragment.snapshot("r1", meta)])

        assert state.messages[0].id == "m1"

    def test_tool_results_replace_by_call_id(self):
        call = ToolCall(id="c1", name="check_availability", args={"nights": 2})
        fragments = [
            Fragment.call("r1", call),
            Fragment.call("r1", call),
            Fragment.result("r1", ToolResult(tool_call_id="c1", result={"pending": True})),
            Fragment.result("r1", ToolResult(tool_call_id="c1", result={"availableSites": []})),
        ]
        message = _fold(fragments).messages[0]

        assert message.tool_calls == (call,)
        assert message.tool_results == (ToolResult(tool_call_id="c1", result={"availableSites": []}),)

    def test_new_response_appends_after_user_message(self):
        state = _fold([Fragment.delta("r1", "First"), Fragment.done("r1")])
        user = Message(id="u1", role=Role.USER, content="And?")
        state = ThreadState(messages=state.messages + (user,), closed=state.closed)
        state = _fold([Fragment.delta("r2", "Second")], state)

        assert [m.id for m in state.messages] == ["r1", "u1", "r2"]

    def test_continuation_after_interruption_gets_its_own_id(self):
        state = _fold([Fragment.delta("r1", "One")])
        user = Message(id="u1", role=Role.USER, content="interrupt")
        state = ThreadState(messages=state.messages + (user,), closed=state.closed)
        state = _fold([Fragment.delta("r1", " more")], state)

        assert state.messages[0].content == "One"
        assert state.messages[-1].content == " more"
        assert [m.id for m in state.messages] == ["r1", "u1", "r1-2"]

    def test_terminal_finalizes_reply_that_is_no_longer_the_tail(self):
        state = _fold([Fragment.delta("r1", "partial")])
        note = Message(id="e1", role=Role.SYSTEM, content="Model overloaded")
        state = ThreadState(messages=state.messages + (note,), closed=state.closed, is_typing=True)

        state = _fold([Fragment.done("r1")], state)

        assert [m.streaming for m in state.messages] == [False, False]
        assert state.messages[0].content == "partial"
        assert state.is_typing is False

    def test_terminal_finalizes_every_piece_of_a_split_reply(self):
        state = _fold([Fragment.delta("r1", "One")])
        note = Message(id="e1", role=Role.SYSTEM, content="hiccup")
        state = ThreadState(messages=state.messages + (note,), closed=state.closed)
        state = _fold([Fragment.delta("r1", "Two"), Fragment.done("r1")], state)

        assert all(not m.streaming for m in state.messages)
        assert len({m.id for m in state.messages}) == len(state.messages)

    def test_server_message_id_is_not_reused(self):
        first = _fold([Fragment.snapshot("r1", StreamMeta(message_id="m1", content="a")), Fragment.done("r1")])
        state = _fold([Fragment.snapshot("r2", StreamMeta(message_id="m1", content="b"))], first)

        assert [m.id for m in state.messages] == ["m1", "m1-2"]

    def test_closed_ids_are_bounded(self):
        state = ThreadState()
        for n in range(MAX_CLOSED + 10):
            state = apply_fragment(state, Fragment.done(f"r{n}"))

        assert len(state.closed) == MAX_CLOSED
        assert "r0" not in state.closed
        assert f"r{MAX_CLOSED + 9}" in state.closed

    def test_clarifying_questions_come_from_the_snapshot(self):
        meta = StreamMeta(content="Which dates?", clarifying_questions=("This weekend", "Next month"))
        state = _fold([Fragment.delta("r1", "Which"), Fragment.snapshot("r1", meta), Fragment.done("r1")])

        assert state.messages[0].clarifying_questions == ("This weekend", "Next month")


class TestFinalizeOpen:
    """Closing streams that broke off"""

    def test_open_messages_stop_streaming_and_are_closed(self):
        state = _fold([Fragment.delta("r1", "partial")])
        state = finalize_open(state)

        assert state.messages[0].streaming is False
        assert "r1" in state.closed
        assert apply_fragment(state, Fragment.delta("r1", "late")) == state

    def test_noop_without_open_messages(self):
        state = ThreadState(is_typing=True)
        assert finalize_open(state).is_typing is False
