"""Model transport: one request carrying the transcript and tool catalog, one reply.

LiteLLM speaks the chat-completions wire format, so the transcript is mapped
to user/assistant/tool messages on the way out and the reply is mapped back to
a model-role Message of text and tool-invocation blocks.
"""

import threading
from typing import Protocol

from . import fmt
from .errors import AgentCancelled, TransportError
from .messages import (
    Message,
    Role,
    TextBlock,
    ToolResultBlock,
    ToolUseBlock,
)

DEFAULT_MODEL = "anthropic/claude-3-7-sonnet-latest"
DEFAULT_MAX_TOKENS = 1024
CANCEL_POLL_INTERVAL = 0.05  # seconds


class CancelToken:
    """Caller-owned flag that aborts a pending model call."""

    def __init__(self):
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


class Transport(Protocol):
    def send(
        self, transcript, catalog: list[dict], *, cancel: CancelToken | None = None
    ) -> Message: ...


def _get(obj, key, default=None):
    if isinstance(obj, dict):
        return obj.get(key, default)
    return getattr(obj, key, default)


def to_wire_tools(catalog: list[dict]) -> list[dict]:
    return [
        {
            "type": "function",
            "function": {
                "name": entry["name"],
                "description": entry["description"],
                "parameters": entry["input_schema"],
            },
        }
        for entry in catalog
    ]


def _tool_result_content(block: ToolResultBlock) -> str:
    # The wire format has no error flag; failures are marked in the text.
    if block.is_error and not block.content.startswith("error:"):
        return f"error: {block.content}"
    return block.content


def to_wire_messages(transcript) -> list[dict]:
    wire: list[dict] = []
    for msg in transcript:
        if msg.role is Role.MODEL:
            text = msg.text()
            entry: dict = {"role": "assistant", "content": text or None}
            tool_uses = msg.tool_uses()
            if tool_uses:
                entry["tool_calls"] = [
                    {
                        "id": use.id,
                        "type": "function",
                        "function": {"name": use.name, "arguments": use.input},
                    }
                    for use in tool_uses
                ]
            elif entry["content"] is None:
                entry["content"] = ""
            wire.append(entry)
        elif msg.is_tool_result:
            for result in msg.tool_results():
                wire.append(
                    {
                        "role": "tool",
                        "tool_call_id": result.tool_use_id,
                        "content": _tool_result_content(result),
                    }
                )
        else:
            wire.append({"role": "user", "content": msg.text()})
    return wire


def from_wire_message(wire_msg) -> Message:
    """Convert a chat-completions assistant message into a model-role Message."""
    blocks: list = []
    content = _get(wire_msg, "content")
    if content:
        blocks.append(TextBlock(content))
    for tc in _get(wire_msg, "tool_calls") or []:
        fn = _get(tc, "function")
        blocks.append(
            ToolUseBlock(
                id=_get(tc, "id"),
                name=_get(fn, "name"),
                input=_get(fn, "arguments") or "{}",
            )
        )
    return Message(Role.MODEL, blocks)


def call_cancellable(fn, cancel: CancelToken | None):
    """Run fn(), abandoning the wait if `cancel` fires first.

    Without a token fn() runs inline. With one, it runs on a daemon thread
    while this thread polls the token; Ctrl-C during the wait also cancels.
    """
    if cancel is None:
        return fn()
    if cancel.cancelled:
        raise AgentCancelled("model call cancelled")

    outcome: dict = {}
    done = threading.Event()

    def _worker():
        try:
            outcome["value"] = fn()
        except BaseException as e:
            outcome["error"] = e
        finally:
            done.set()

    worker = threading.Thread(target=_worker, daemon=True)
    worker.start()
    try:
        while not done.wait(CANCEL_POLL_INTERVAL):
            if cancel.cancelled:
                raise AgentCancelled("model call cancelled")
    except KeyboardInterrupt:
        cancel.cancel()
        raise AgentCancelled("model call cancelled") from None

    if "error" in outcome:
        raise outcome["error"]
    return outcome["value"]


class LiteLLMTransport:
    """Sends the conversation to a chat-completions model through LiteLLM."""

    def __init__(
        self,
        model: str = DEFAULT_MODEL,
        max_tokens: int = DEFAULT_MAX_TOKENS,
        *,
        api_key: str | None = None,
        base_url: str | None = None,
        verbose: bool = False,
    ):
        self.model = model
        self.max_tokens = max_tokens
        self.api_key = api_key
        self.base_url = base_url
        self.verbose = verbose

    def _completion_kwargs(self, transcript, catalog: list[dict]) -> dict:
        kwargs = dict(
            model=self.model,
            messages=to_wire_messages(transcript),
            max_tokens=self.max_tokens,
        )
        if catalog:
            kwargs["tools"] = to_wire_tools(catalog)
            kwargs["tool_choice"] = "auto"
        if self.api_key:
            kwargs["api_key"] = self.api_key
        if self.base_url:
            kwargs["api_base"] = self.base_url
        return kwargs

    def send(
        self, transcript, catalog: list[dict], *, cancel: CancelToken | None = None
    ) -> Message:
        import litellm

        litellm.suppress_debug_info = True

        kwargs = self._completion_kwargs(transcript, catalog)
        if self.verbose:
            fmt.info(f"Calling model {self.model} with max_tokens={self.max_tokens}")

        def _call():
            try:
                return litellm.completion(**kwargs)
            except Exception as e:
                raise TransportError(f"LLM call failed: {e}") from e

        response = call_cancellable(_call, cancel)

        try:
            choice = response.choices[0]
        except (AttributeError, IndexError, TypeError) as e:
            raise TransportError(f"malformed LLM response: {e}") from e

        if _get(choice, "finish_reason") == "length":
            fmt.warning("model reply was cut off at max_tokens")
        return from_wire_message(choice.message)
