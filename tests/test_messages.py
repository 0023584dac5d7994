"""Tests for messages.py: content blocks and transcript invariants."""

import dataclasses

import pytest

from system3 import messages
from system3.errors import TranscriptError
from system3.messages import (
    Message,
    Role,
    TextBlock,
    ToolResultBlock,
    ToolUseBlock,
    Transcript,
    estimate_tokens,
    human_message,
    tool_result_message,
)


def _model(*blocks):
    return Message(Role.MODEL, blocks)


def _transcript_with_pending(*ids):
    t = Transcript()
    t.append(human_message("go"))
    t.append(_model(*(ToolUseBlock(i, "echo", "{}") for i in ids)))
    return t


class TestMessage:
    def test_content_stored_as_tuple(self):
        msg = Message(Role.HUMAN, [TextBlock("hi")])
        assert msg.content == (TextBlock("hi"),)

    def test_message_is_immutable(self):
        msg = human_message("hi")
        with pytest.raises(dataclasses.FrozenInstanceError):
            msg.role = Role.MODEL

    def test_text_joins_text_blocks_only(self):
        msg = _model(TextBlock("a"), ToolUseBlock("1", "t", "{}"), TextBlock("b"))
        assert msg.text() == "a\nb"
        assert [u.id for u in msg.tool_uses()] == ["1"]

    def test_is_tool_result(self):
        assert tool_result_message([ToolResultBlock("1", "ok")]).is_tool_result
        assert not human_message("hi").is_tool_result


class TestTranscript:
    def test_starts_empty(self):
        t = Transcript()
        assert len(t) == 0
        assert t.last is None
        assert t.pending_tool_uses() == []

    def test_append_preserves_order(self):
        t = Transcript()
        t.append(human_message("one"))
        t.append(_model(TextBlock("two")))
        t.append(human_message("three"))
        assert [m.text() for m in t] == ["one", "two", "three"]
        assert t.messages == tuple(t)

    def test_matching_results_accepted(self):
        t = _transcript_with_pending("a", "b")
        assert [u.id for u in t.pending_tool_uses()] == ["a", "b"]
        t.append(tool_result_message([ToolResultBlock("a", "1"), ToolResultBlock("b", "2")]))
        assert t.pending_tool_uses() == []

    def test_human_message_with_tool_use_rejected(self):
        t = Transcript()
        with pytest.raises(TranscriptError, match="human message"):
            t.append(Message(Role.HUMAN, (ToolUseBlock("1", "x", "{}"),)))

    def test_results_out_of_order_rejected(self):
        t = _transcript_with_pending("a", "b")
        with pytest.raises(TranscriptError, match="do not match"):
            t.append(
                tool_result_message(
                    [ToolResultBlock("b", "2"), ToolResultBlock("a", "1")]
                )
            )

    def test_missing_result_rejected(self):
        t = _transcript_with_pending("a", "b")
        with pytest.raises(TranscriptError):
            t.append(tool_result_message([ToolResultBlock("a", "1")]))

    def test_results_mixed_with_text_rejected(self):
        t = _transcript_with_pending("a")
        with pytest.raises(TranscriptError, match="mix"):
            t.append(Message(Role.HUMAN, (TextBlock("hi"), ToolResultBlock("a", "1"))))

    def test_results_without_invocation_rejected(self):
        t = Transcript()
        t.append(human_message("hi"))
        t.append(_model(TextBlock("hello")))
        with pytest.raises(TranscriptError, match="without a preceding"):
            t.append(tool_result_message([ToolResultBlock("a", "1")]))

    def test_text_while_results_pending_rejected(self):
        t = _transcript_with_pending("a")
        with pytest.raises(TranscriptError, match="awaiting results"):
            t.append(human_message("hello?"))
        with pytest.raises(TranscriptError, match="awaiting results"):
            t.append(_model(TextBlock("again")))

    def test_model_message_with_results_rejected(self):
        t = Transcript()
        with pytest.raises(TranscriptError):
            t.append(_model(ToolResultBlock("a", "1")))

    def test_non_message_rejected(self):
        with pytest.raises(TranscriptError):
            Transcript().append({"role": "user", "content": "hi"})

    def test_rejected_append_leaves_transcript_unchanged(self):
        t = _transcript_with_pending("a")
        with pytest.raises(TranscriptError):
            t.append(human_message("nope"))
        assert len(t) == 2


class TestEstimateTokens:
    def test_empty(self):
        assert estimate_tokens(Transcript()) == 0

    def test_grows_with_content(self):
        t = Transcript()
        t.append(human_message("hello world"))
        small = estimate_tokens(t)
        t.append(_model(TextBlock("a much longer reply " * 20)))
        assert estimate_tokens(t) > small > 0

    def test_catalog_counted(self):
        t = Transcript()
        t.append(human_message("hi"))
        catalog = [{"name": "read_file", "description": "Read a file", "input_schema": {}}]
        assert estimate_tokens(t, catalog) > estimate_tokens(t)


@pytest.fixture
def offline_encoder(monkeypatch):
    """Make the tiktoken encoding unavailable, as on a machine without network."""

    def fail(name):
        raise ConnectionError("cannot download " + name)

    messages._encoder.cache_clear()
    monkeypatch.setattr(messages.tiktoken, "get_encoding", fail)
    yield
    messages._encoder.cache_clear()


class TestEstimateTokensOffline:
    def test_falls_back_to_character_estimate(self, offline_encoder):
        t = Transcript()
        t.append(human_message("x" * 40))
        assert estimate_tokens(t) == 10 + 4

    def test_failure_is_cached(self, offline_encoder, monkeypatch):
        t = Transcript()
        t.append(human_message("hello"))
        estimate_tokens(t)
        calls = []
        monkeypatch.setattr(messages.tiktoken, "get_encoding", lambda name: calls.append(name))
        estimate_tokens(t)
        assert calls == []
