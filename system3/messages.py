"""Conversation state: content blocks, messages and the append-only transcript."""

import enum
import functools
import json
from dataclasses import dataclass

import tiktoken

from .errors import TranscriptError


@functools.cache
def _encoder():
    """The cl100k_base encoder, or None when it cannot be loaded (e.g. offline)."""
    try:
        return tiktoken.get_encoding("cl100k_base")
    except Exception:
        return None


def _count_tokens(text: str) -> int:
    enc = _encoder()
    if enc is None:
        # ~4 characters per token
        return (len(text) + 3) // 4
    return len(enc.encode(text))


class Role(enum.Enum):
    HUMAN = "human"
    MODEL = "model"


@dataclass(frozen=True)
class TextBlock:
    text: str


@dataclass(frozen=True)
class ToolUseBlock:
    """A model request to run one tool. `input` is the raw payload, undecoded."""

    id: str
    name: str
    input: str


@dataclass(frozen=True)
class ToolResultBlock:
    tool_use_id: str
    content: str
    is_error: bool = False


@dataclass(frozen=True)
class Message:
    role: Role
    content: tuple

    def __post_init__(self):
        # Accept any iterable of blocks but store a tuple so the message stays immutable.
        object.__setattr__(self, "content", tuple(self.content))

    def tool_uses(self) -> list[ToolUseBlock]:
        return [b for b in self.content if isinstance(b, ToolUseBlock)]

    def tool_results(self) -> list[ToolResultBlock]:
        return [b for b in self.content if isinstance(b, ToolResultBlock)]

    def text(self) -> str:
        return "\n".join(b.text for b in self.content if isinstance(b, TextBlock))

    @property
    def is_tool_result(self) -> bool:
        return self.role is Role.HUMAN and bool(self.tool_results())


def human_message(text: str) -> Message:
    return Message(Role.HUMAN, (TextBlock(text),))


def tool_result_message(results) -> Message:
    """Wrap one round of tool results in the human-role carrier message."""
    return Message(Role.HUMAN, tuple(results))


class Transcript:
    """Ordered, append-only history of one session.

    `append` checks the protocol invariants: a human turn never carries tool
    invocations, and a model turn that invoked tools is followed by exactly one
    message holding one result per invocation, in invocation order.
    """

    def __init__(self):
        self._messages: list[Message] = []

    def __len__(self) -> int:
        return len(self._messages)

    def __iter__(self):
        return iter(self._messages)

    def __getitem__(self, index):
        return self._messages[index]

    @property
    def messages(self) -> tuple:
        return tuple(self._messages)

    @property
    def last(self) -> Message | None:
        return self._messages[-1] if self._messages else None

    def pending_tool_uses(self) -> list[ToolUseBlock]:
        """Invocations of the last model turn that still await their results."""
        last = self.last
        if last is None or last.role is not Role.MODEL:
            return []
        return last.tool_uses()

    def append(self, message: Message) -> None:
        if not isinstance(message, Message):
            raise TranscriptError(f"expected Message, got {type(message).__name__}")
        pending = self.pending_tool_uses()

        if message.role is Role.MODEL:
            if message.tool_results():
                raise TranscriptError("model message cannot carry tool results")
            if pending:
                raise TranscriptError(
                    f"{len(pending)} tool invocation(s) still awaiting results"
                )
        else:
            if message.tool_uses():
                raise TranscriptError("human message cannot carry tool invocations")
            results = message.tool_results()
            if results:
                _check_results(pending, results, message)
            elif pending:
                raise TranscriptError(
                    f"{len(pending)} tool invocation(s) still awaiting results"
                )

        self._messages.append(message)


def _check_results(pending, results, message) -> None:
    if len(results) != len(message.content):
        raise TranscriptError("tool-result message cannot mix text and tool results")
    if not pending:
        raise TranscriptError("tool results without a preceding tool invocation")
    expected = [u.id for u in pending]
    got = [r.tool_use_id for r in results]
    if expected != got:
        raise TranscriptError(
            f"tool result ids {got} do not match invocation ids {expected}"
        )


def estimate_tokens(transcript, catalog: list | None = None) -> int:
    """Rough token count of the transcript and tool catalog using tiktoken."""
    total = 0
    for msg in transcript:
        for block in msg.content:
            if isinstance(block, TextBlock):
                total += _count_tokens(block.text)
            elif isinstance(block, ToolUseBlock):
                total += _count_tokens(block.name + block.input)
            elif isinstance(block, ToolResultBlock):
                total += _count_tokens(block.content)
    if catalog:
        total += _count_tokens(json.dumps(catalog))
    # Per-message overhead (role, separators), ~4 tokens each
    total += 4 * len(transcript)
    return total
