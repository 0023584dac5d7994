"""ANSI-formatted terminal output using Rich.

Conversation text (the human prompt label and model replies) goes to stdout;
tool activity and diagnostics go to stderr.
"""

from rich.console import Console
from rich.text import Text

_out = Console()
_console = Console(stderr=True)


def init(*, color: bool = False, no_color: bool = False) -> None:
    """Reconfigure the module-level consoles from CLI flags.

    Call once at startup, before any output.
    """
    global _out, _console
    kwargs: dict = {}
    if color:
        kwargs["force_terminal"] = True
        kwargs["no_color"] = False
    if no_color:
        kwargs["no_color"] = True
    _out = Console(**kwargs)
    _console = Console(stderr=True, **kwargs)


# -- Session -----------------------------------------------------------------


def banner(version: str) -> None:
    _out.print(Text(f"System 3 version {version}"))
    _out.print(Text("Chat with Claude (press Ctrl+C to exit)"))


def user_prompt() -> None:
    """Print the human prompt label without a trailing newline."""
    text = Text()
    text.append("You", style="bold blue")
    text.append(": ")
    _out.print(text, end="")


# -- Model output ------------------------------------------------------------


def model_text(text: str) -> None:
    line = Text()
    line.append("Claude", style="bold green")
    line.append(": ")
    line.append(text)
    _out.print(line, soft_wrap=True)


def model_call(messages: int, token_est: int) -> None:
    _console.print(
        Text(f"  Calling model ({messages} messages, ~{token_est} tokens)", style="dim")
    )


def model_timing(elapsed: float, tool_calls: int) -> None:
    style = "green" if tool_calls == 0 else "cyan"
    text = Text()
    text.append(f"  Model responded in {elapsed:.1f}s", style=style)
    text.append(f"  tool_calls={tool_calls}", style=style)
    _console.print(text)


# -- Tool calls --------------------------------------------------------------


def tool_call(name: str, raw_input: str) -> None:
    line = Text()
    line.append("tool", style="bold green")
    line.append(f": {name}({raw_input})")
    _console.print(line, soft_wrap=True)


def tool_result(name: str, elapsed: float, preview: str) -> None:
    header = Text()
    header.append(f"  ✓ {name}", style="green")
    header.append(f"  {elapsed:.1f}s", style="green")
    _console.print(header)
    if preview:
        _console.print(Text(f"    {preview}", style="dim"))


def tool_error(name: str, msg: str) -> None:
    header = Text()
    header.append(f"  ✗ {name}", style="bold red")
    header.append(f"  {msg}", style="red")
    _console.print(header)


# -- Diagnostics -------------------------------------------------------------


def info(msg: str) -> None:
    _console.print(Text(f"  {msg}", style="dim"))


def warning(msg: str) -> None:
    line = Text()
    line.append("  ⚠ Warning: ", style="yellow")
    line.append(msg, style="yellow")
    _console.print(line)


def error(msg: str) -> None:
    line = Text()
    line.append("Error: ", style="bold red")
    line.append(msg, style="red")
    _console.print(line)
