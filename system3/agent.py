import argparse
import enum
import io
import os
import sys
import time
from importlib import metadata
from pathlib import Path

from . import fmt
from .config import _UNSET, apply_config_to_args, generate_config, load_config
from .errors import AgentCancelled, AgentError, ConfigError, TransportError
from .messages import (
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
from .tools import ToolRegistry, default_tools
from .transport import CancelToken, LiteLLMTransport

TOOL_NOT_FOUND = "tool not found"
MAX_RESULT_PREVIEW = 500


class AgentState(enum.Enum):
    AWAITING_HUMAN_INPUT = "awaiting_human_input"
    AWAITING_MODEL_REPLY = "awaiting_model_reply"
    DISPATCHING_TOOLS = "dispatching_tools"
    TERMINATED = "terminated"


class Agent:
    """Turn-taking state machine between a human, a model and local tools.

    The agent owns its transcript. Each state has one handler that performs
    the state's single suspension point (if any) and returns the next state:

    - AWAITING_HUMAN_INPUT reads one line; end of input terminates.
    - AWAITING_MODEL_REPLY sends the whole transcript plus the tool catalog,
      shows any text and collects tool invocations.
    - DISPATCHING_TOOLS runs the invocations in order and appends one message
      holding all results, then goes straight back to the model.
    """

    def __init__(
        self,
        transport,
        registry: ToolRegistry,
        read_input,
        *,
        verbose: bool = False,
        cancel: CancelToken | None = None,
    ):
        self.transport = transport
        self.registry = registry
        self.read_input = read_input
        self.verbose = verbose
        self.cancel = cancel
        self.transcript = Transcript()
        self.state = AgentState.AWAITING_HUMAN_INPUT
        self._catalog = registry.catalog()
        self._pending: list[ToolUseBlock] = []
        self._handlers = {
            AgentState.AWAITING_HUMAN_INPUT: self._await_human_input,
            AgentState.AWAITING_MODEL_REPLY: self._await_model_reply,
            AgentState.DISPATCHING_TOOLS: self._dispatch_tools,
        }

    def run(self) -> None:
        """Drive the state machine until input is exhausted.

        Returns normally on end of input. Transport failures and cancellation
        propagate to the caller; the agent is left TERMINATED either way.
        """
        while self.state is not AgentState.TERMINATED:
            self.step()

    def step(self) -> AgentState:
        """Run the handler for the current state once and return the new state."""
        if self.state is AgentState.TERMINATED:
            return self.state
        handler = self._handlers[self.state]
        try:
            self.state = handler()
        except BaseException:
            self.state = AgentState.TERMINATED
            raise
        return self.state

    # -- State handlers --------------------------------------------------------

    def _await_human_input(self) -> AgentState:
        line = self.read_input()
        if line is None:
            return AgentState.TERMINATED
        self.transcript.append(human_message(line))
        return AgentState.AWAITING_MODEL_REPLY

    def _await_model_reply(self) -> AgentState:
        if self.verbose:
            fmt.model_call(
                len(self.transcript), estimate_tokens(self.transcript, self._catalog)
            )

        t0 = time.monotonic()
        reply = self.transport.send(self.transcript, self._catalog, cancel=self.cancel)
        elapsed = time.monotonic() - t0

        if not isinstance(reply, Message) or reply.role is not Role.MODEL:
            raise TransportError("transport returned something other than a model message")
        self.transcript.append(reply)

        invocations: list[ToolUseBlock] = []
        for block in reply.content:
            if isinstance(block, TextBlock):
                fmt.model_text(block.text)
            elif isinstance(block, ToolUseBlock):
                invocations.append(block)

        if self.verbose:
            fmt.model_timing(elapsed, len(invocations))

        if not invocations:
            return AgentState.AWAITING_HUMAN_INPUT
        self._pending = invocations
        return AgentState.DISPATCHING_TOOLS

    def _dispatch_tools(self) -> AgentState:
        results = [self.execute_tool(invocation) for invocation in self._pending]
        self._pending = []
        self.transcript.append(tool_result_message(results))
        return AgentState.AWAITING_MODEL_REPLY

    # -- Tool dispatch ---------------------------------------------------------

    def execute_tool(self, invocation: ToolUseBlock) -> ToolResultBlock:
        """Run one invocation. Failures come back as error results, never raise."""
        tool = self.registry.lookup(invocation.name)
        if tool is None:
            if self.verbose:
                fmt.tool_error(invocation.name, TOOL_NOT_FOUND)
            return ToolResultBlock(invocation.id, TOOL_NOT_FOUND, is_error=True)

        fmt.tool_call(invocation.name, invocation.input)

        t0 = time.monotonic()
        try:
            output = tool.execute(invocation.input)
        except Exception as e:
            message = str(e) or type(e).__name__
            if self.verbose:
                fmt.tool_error(invocation.name, message)
            return ToolResultBlock(invocation.id, message, is_error=True)
        elapsed = time.monotonic() - t0

        if not isinstance(output, str):
            output = str(output)
        if self.verbose:
            fmt.tool_result(invocation.name, elapsed, output[:MAX_RESULT_PREVIEW])
        return ToolResultBlock(invocation.id, output, is_error=False)


# ---------------------------------------------------------------------------
# Human input sources
# ---------------------------------------------------------------------------


def line_reader(stream=None, prompt: bool = False):
    """Read input lines from a text stream. Returns None at end of stream.

    Blank lines are skipped.
    """

    def read() -> str | None:
        src = stream if stream is not None else sys.stdin
        while True:
            if prompt:
                fmt.user_prompt()
            line = src.readline()
            if not line:
                return None
            line = line.rstrip("\r\n")
            if line.strip():
                return line

    return read


def prompt_reader(base_dir: str):
    """Interactive reader with line editing and persistent history.

    Ctrl-D and Ctrl-C at the prompt both end the session.
    """
    from prompt_toolkit import PromptSession
    from prompt_toolkit.formatted_text import FormattedText
    from prompt_toolkit.history import FileHistory

    history_path = os.path.join(base_dir, ".system3", "history")
    os.makedirs(os.path.dirname(history_path), exist_ok=True)
    session = PromptSession(
        history=FileHistory(history_path),
        enable_history_search=True,
    )
    prompt_text = FormattedText([("bold fg:ansiblue", "You"), ("", ": ")])

    def read() -> str | None:
        while True:
            try:
                line = session.prompt(prompt_text)
            except (EOFError, KeyboardInterrupt):
                print(file=sys.stderr)  # newline after ^D / ^C
                return None
            if line.strip():
                return line

    return read


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------


def get_version() -> str:
    try:
        return metadata.version("system3")
    except metadata.PackageNotFoundError:
        return "dev"


def build_parser():
    """Build and return the argument parser."""
    parser = argparse.ArgumentParser(
        prog="system3",
        description="Chat with an LLM that can read, list and edit files and run git operations.",
    )
    parser.add_argument(
        "--version",
        action="store_true",
        help="Print the version and exit.",
    )
    parser.add_argument(
        "--model",
        type=str,
        default=_UNSET,
        help="LiteLLM model identifier (default: anthropic/claude-3-7-sonnet-latest).",
    )
    parser.add_argument(
        "--api-key",
        type=str,
        default=_UNSET,
        help="API key for the provider (overrides env var).",
    )
    parser.add_argument(
        "--base-url",
        default=_UNSET,
        help="Override the provider's API base URL.",
    )
    parser.add_argument(
        "--max-tokens",
        type=int,
        default=_UNSET,
        help="Maximum output tokens per model reply (default: 1024).",
    )
    parser.add_argument(
        "--base-dir",
        type=str,
        default=".",
        help="Base directory for file and git tools (default: current directory).",
    )
    parser.add_argument(
        "-q",
        "--quiet",
        action="store_true",
        default=_UNSET,
        help="Suppress diagnostics; only show the conversation and tool lines.",
    )
    parser.add_argument(
        "--init-config",
        action="store_true",
        help="Print a template config file and exit.",
    )

    color_group = parser.add_mutually_exclusive_group()
    color_group.add_argument(
        "--color",
        action="store_true",
        default=_UNSET,
        help="Force ANSI color even when output is not a TTY.",
    )
    color_group.add_argument(
        "--no-color",
        action="store_true",
        default=_UNSET,
        help="Disable ANSI color even when output is a TTY.",
    )

    return parser


def main():
    parser = build_parser()
    args = parser.parse_args()

    if args.version:
        print(get_version())
        sys.exit(0)
    if args.init_config:
        print(generate_config())
        sys.exit(0)

    try:
        config = load_config(Path(args.base_dir))
    except ConfigError as e:
        fmt.error(str(e))
        sys.exit(1)
    apply_config_to_args(args, config)

    fmt.init(color=args.color, no_color=args.no_color)
    args.verbose = not args.quiet

    if args.max_tokens < 1:
        parser.error("--max-tokens must be at least 1")

    try:
        _run_main(args)
    except (AgentCancelled, KeyboardInterrupt):
        fmt.warning("interrupted, session ended.")
        sys.exit(130)
    except AgentError as e:
        fmt.error(str(e))
        sys.exit(1)


def _run_main(args):
    base_dir = Path(args.base_dir).expanduser()
    if not base_dir.is_dir():
        raise ConfigError(f"--base-dir is not a directory: {args.base_dir}")
    base_dir = str(base_dir.resolve())

    registry = ToolRegistry(default_tools(base_dir))
    transport = LiteLLMTransport(
        args.model,
        args.max_tokens,
        api_key=args.api_key,
        base_url=args.base_url,
        verbose=args.verbose,
    )

    if sys.stdin.isatty():
        read_input = prompt_reader(base_dir)
    else:
        if isinstance(sys.stdin, io.TextIOWrapper):
            # Undecodable bytes become U+FFFD instead of ending the session
            sys.stdin.reconfigure(errors="replace")
        read_input = line_reader(prompt=True)

    fmt.banner(get_version())
    if args.verbose:
        fmt.info(f"Tools: {', '.join(registry.names())}")

    agent = Agent(
        transport,
        registry,
        read_input,
        verbose=args.verbose,
        cancel=CancelToken(),
    )
    agent.run()


if __name__ == "__main__":
    main()
