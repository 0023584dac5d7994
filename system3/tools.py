"""Tool contract, registry and the built-in file tools."""

import json
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Callable

from pydantic import Field

from .errors import ConfigError, ToolError
from .schema import ToolInput, generate_schema, parse_input

MAX_OUTPUT_BYTES = 50 * 1024  # 50 KB
BINARY_CHECK_BYTES = 8 * 1024  # 8 KB


@dataclass(frozen=True)
class ToolDefinition:
    """One capability the model may invoke.

    `execute` receives the raw payload from the model and returns the result
    text. It signals failure by raising; the message becomes the error result.
    """

    name: str
    description: str
    input_schema: dict
    execute: Callable[[str], str]

    def to_catalog_entry(self) -> dict:
        return {
            "name": self.name,
            "description": self.description,
            "input_schema": self.input_schema,
        }


class ToolRegistry:
    """Ordered set of tool definitions known to one agent.

    Built once before the loop starts. Lookup is an in-order scan, so the first
    registered definition with a matching name wins; registering a duplicate
    name is rejected outright.
    """

    def __init__(self, tools=()):
        self._tools: list[ToolDefinition] = []
        for tool in tools:
            self.register(tool)

    def register(self, tool: ToolDefinition) -> None:
        if self.lookup(tool.name) is not None:
            raise ConfigError(f"duplicate tool name {tool.name!r}")
        self._tools.append(tool)

    def lookup(self, name: str) -> ToolDefinition | None:
        for tool in self._tools:
            if tool.name == name:
                return tool
        return None

    def names(self) -> list[str]:
        return [t.name for t in self._tools]

    def catalog(self) -> list[dict]:
        """Name, description and schema of every tool, in registration order."""
        return [t.to_catalog_entry() for t in self._tools]

    def __len__(self) -> int:
        return len(self._tools)

    def __iter__(self):
        return iter(self._tools)


def define_tool(name: str, description: str, shape: type[ToolInput], fn) -> ToolDefinition:
    """Build a ToolDefinition whose execute decodes the raw payload into `shape`.

    `fn` receives the validated input model and returns the result text.
    """

    def execute(raw) -> str:
        return fn(parse_input(shape, raw))

    return ToolDefinition(
        name=name,
        description=description,
        input_schema=generate_schema(shape),
        execute=execute,
    )


def safe_resolve(file_path: str, base_dir: str) -> Path:
    """Resolve a path against base_dir, ensuring it stays inside it.

    Resolves symlinks for both the base directory and the target path.

    Raises:
        ToolError: If the resolved path escapes base_dir.
    """
    base = Path(base_dir).resolve()

    if Path(file_path).is_absolute():
        resolved = Path(file_path).resolve()
    else:
        resolved = (base / file_path).resolve()

    if not resolved.is_relative_to(base):
        raise ToolError(
            f"path {file_path!r} resolves to {resolved}, "
            f"which is outside base directory {base}"
        )
    return resolved


# -- read_file ---------------------------------------------------------------


class ReadFileInput(ToolInput):
    path: str = Field(
        description="The relative path of a file in the working directory."
    )


def _read_file(path: str, base_dir: str) -> str:
    """Return a text file's contents."""
    resolved = safe_resolve(path, base_dir)

    if not resolved.exists():
        raise ToolError(f"path does not exist: {path}")
    if resolved.is_dir():
        raise ToolError(f"path is a directory, use list_files instead: {path}")

    try:
        with open(resolved, "rb") as f:
            chunk = f.read(BINARY_CHECK_BYTES)
    except OSError as exc:
        raise ToolError(str(exc)) from exc
    if b"\x00" in chunk:
        raise ToolError(f"binary file detected: {path}")

    try:
        data = resolved.read_bytes()
    except OSError as exc:
        raise ToolError(str(exc)) from exc

    truncated = len(data) > MAX_OUTPUT_BYTES
    text = data[:MAX_OUTPUT_BYTES].decode("utf-8", errors="replace")
    if truncated:
        text += "\n[truncated at 50KB]"
    return text


# -- list_files --------------------------------------------------------------


class ListFilesInput(ToolInput):
    path: str = Field(
        default="",
        description="Optional relative path to list files from. Defaults to current directory if not provided.",
    )


def _list_files(path: str, base_dir: str) -> str:
    """Recursively list files and directories, returned as a JSON array."""
    root = safe_resolve(path or ".", base_dir)

    if not root.exists():
        raise ToolError(f"path does not exist: {path}")
    if not root.is_dir():
        raise ToolError(f"path is not a directory: {path}")

    entries: list[str] = []
    for dirpath, dirs, files in os.walk(root):
        # Prune .git and walk in lexical order
        dirs[:] = sorted(d for d in dirs if d != ".git")
        rel_dir = Path(dirpath).relative_to(root)
        for d in dirs:
            entries.append((rel_dir / d).as_posix() + "/")
        for filename in sorted(files):
            entries.append((rel_dir / filename).as_posix())

    entries.sort()
    return json.dumps(entries)


# -- edit_file ---------------------------------------------------------------


class EditFileInput(ToolInput):
    path: str = Field(description="The path to the file")
    old_str: str = Field(
        description="Text to search for - must match exactly and must only have one match exactly"
    )
    new_str: str = Field(description="Text to replace old_str with")


def _create_file(resolved: Path, path: str, content: str) -> str:
    try:
        resolved.parent.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        raise ToolError(f"failed to create directory: {exc}") from exc
    try:
        with open(resolved, "w", encoding="utf-8", newline="") as f:
            f.write(content)
    except OSError as exc:
        raise ToolError(f"failed to create file: {exc}") from exc
    return f"Successfully created file {path}"


def _edit_file(path: str, old_str: str, new_str: str, base_dir: str) -> str:
    """Replace every occurrence of old_str with new_str, creating the file if needed."""
    if not path or old_str == new_str:
        raise ToolError("invalid input parameters")

    resolved = safe_resolve(path, base_dir)

    if not resolved.exists():
        if old_str == "":
            return _create_file(resolved, path, new_str)
        raise ToolError(f"file does not exist: {path}")
    if resolved.is_dir():
        raise ToolError(f"path is a directory: {path}")
    if old_str == "":
        raise ToolError("old_str must not be empty when editing an existing file")

    # newline="" keeps CRLF line endings intact in both directions
    try:
        with open(resolved, encoding="utf-8", newline="") as f:
            content = f.read()
    except (UnicodeDecodeError, OSError) as exc:
        raise ToolError(str(exc)) from exc

    if old_str not in content:
        raise ToolError("old_str not found in file")

    try:
        with open(resolved, "w", encoding="utf-8", newline="") as f:
            f.write(content.replace(old_str, new_str))
    except OSError as exc:
        raise ToolError(str(exc)) from exc
    return "OK"


def file_tools(base_dir: str = ".") -> list[ToolDefinition]:
    """The read/list/edit tools, bound to base_dir."""
    return [
        define_tool(
            "read_file",
            "Reads a file's contents, given a relative path. Useful for inspecting "
            "a file but does not work with directory names.",
            ReadFileInput,
            lambda args: _read_file(args.path, base_dir),
        ),
        define_tool(
            "list_files",
            "List files and directories at a given path. If no path is provided, "
            "lists files in the current directory.",
            ListFilesInput,
            lambda args: _list_files(args.path, base_dir),
        ),
        define_tool(
            "edit_file",
            "Make edits to a text file.\n\n"
            "Replaces 'old_str' with 'new_str' in the given file. 'old_str' and "
            "'new_str' MUST be different from each other.\n\n"
            "If the file specified with path doesn't exist, it will be created.\n",
            EditFileInput,
            lambda args: _edit_file(args.path, args.old_str, args.new_str, base_dir),
        ),
    ]


def default_tools(base_dir: str = ".") -> list[ToolDefinition]:
    """Every built-in tool, in the order they are advertised to the model."""
    from .git import git_tool

    return file_tools(base_dir) + [git_tool(base_dir)]
