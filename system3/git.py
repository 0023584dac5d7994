"""The `git` tool: a small set of version-control operations via the git executable."""

import os
import subprocess

from pydantic import Field

from .errors import ToolError
from .schema import ToolInput
from .tools import ToolDefinition, define_tool, safe_resolve

GIT_TIMEOUT = 120
MAX_LOG_ENTRIES = 10


class GitInput(ToolInput):
    command: str = Field(
        description="Git command to execute. Supported commands: init, clone, add, commit, status, log, branch, diff, reset"
    )
    path: str = Field(
        default="",
        description="Path where the repository is located or should be created",
    )
    url: str = Field(default="", description="URL of the repository to clone")
    files: str = Field(
        default="", description="Files to add, comma-separated or glob pattern"
    )
    message: str = Field(default="", description="Commit message")
    branch_name: str = Field(
        default="", description="Branch name for branch operations"
    )


def _split_files(files: str) -> list[str]:
    return [f.strip() for f in files.split(",") if f.strip()]


def _git(args: list[str], cwd, check: bool = True) -> subprocess.CompletedProcess:
    """Run git with `args` in `cwd`. Raises ToolError on failure when check is set."""
    env = os.environ.copy()
    env["GIT_TERMINAL_PROMPT"] = "0"
    try:
        proc = subprocess.run(
            ["git", *args],
            cwd=cwd,
            capture_output=True,
            text=True,
            timeout=GIT_TIMEOUT,
            env=env,
        )
    except FileNotFoundError as exc:
        raise ToolError("git executable not found on PATH") from exc
    except subprocess.TimeoutExpired as exc:
        raise ToolError(f"git {args[0]} timed out after {GIT_TIMEOUT}s") from exc
    if check and proc.returncode != 0:
        detail = (proc.stderr or proc.stdout).strip()
        raise ToolError(f"git {args[0]} failed: {detail}")
    return proc


def _has_head(repo) -> bool:
    return _git(["rev-parse", "--verify", "--quiet", "HEAD"], repo, check=False).returncode == 0


def _require_repo(repo) -> None:
    if not repo.is_dir():
        raise ToolError(f"failed to open repository: {repo} is not a directory")
    if _git(["rev-parse", "--git-dir"], repo, check=False).returncode != 0:
        raise ToolError(f"failed to open repository: {repo} is not a git repository")


def git_init(repo, path: str) -> str:
    repo.mkdir(parents=True, exist_ok=True)
    _git(["init"], repo)
    return f"Initialized empty Git repository in {path}"


def git_clone(repo, path: str, url: str) -> str:
    if not url:
        raise ToolError("URL is required for clone operation")
    repo.parent.mkdir(parents=True, exist_ok=True)
    _git(["clone", "--", url, str(repo)], repo.parent)
    return f"Cloned repository {url} to {path}"


def git_add(repo, files: str) -> str:
    names = _split_files(files)
    if not names:
        raise ToolError("files parameter is required for add operation")
    _require_repo(repo)
    for name in names:
        proc = _git(["add", "--", name], repo, check=False)
        if proc.returncode != 0:
            raise ToolError(f"failed to add file {name}: {proc.stderr.strip()}")
    return f"Added files: {files}"


def git_commit(repo, message: str) -> str:
    if not message:
        raise ToolError("commit message is required")
    _require_repo(repo)
    name = _git(["config", "user.name"], repo, check=False).stdout.strip()
    email = _git(["config", "user.email"], repo, check=False).stdout.strip()
    if not name or not email:
        raise ToolError("git config user.name or user.email not set")
    _git(["commit", "-m", message], repo)
    commit_hash = _git(["rev-parse", "HEAD"], repo).stdout.strip()
    return f"Created commit: {commit_hash} with message: {message}"


def git_status(repo) -> str:
    _require_repo(repo)
    out = _git(["status", "--short"], repo).stdout
    return out if out.strip() else "Working tree clean"


def git_log(repo) -> str:
    _require_repo(repo)
    if not _has_head(repo):
        return "No commits found"
    out = _git(["log", f"-n{MAX_LOG_ENTRIES}"], repo).stdout
    return out if out.strip() else "No commits found"


def git_branch(repo, branch_name: str) -> str:
    _require_repo(repo)
    if not branch_name:
        out = _git(["branch", "--list"], repo).stdout
        return out if out.strip() else "No branches found"
    if not _has_head(repo):
        raise ToolError("failed to get HEAD: repository has no commits")
    _git(["branch", "--", branch_name], repo)
    return f"Created branch: {branch_name}"


def git_diff(repo, files: str) -> str:
    _require_repo(repo)
    names = _split_files(files)
    args = ["diff"]
    if _has_head(repo):
        args.append("HEAD")
    args.append("--")
    args.extend(names)
    out = _git(args, repo).stdout
    if out.strip():
        return out
    return "No changes detected in specified files" if names else "No changes detected"


def git_reset(repo) -> str:
    _require_repo(repo)
    _git(["reset", "--hard", "HEAD"], repo)
    return "Reset to HEAD"


def git_operation(args: GitInput, base_dir: str) -> str:
    path = args.path or "."
    repo = safe_resolve(path, base_dir)
    command = args.command

    if command == "init":
        return git_init(repo, path)
    elif command == "clone":
        return git_clone(repo, path, args.url)
    elif command == "add":
        return git_add(repo, args.files)
    elif command == "commit":
        return git_commit(repo, args.message)
    elif command == "status":
        return git_status(repo)
    elif command == "log":
        return git_log(repo)
    elif command == "branch":
        return git_branch(repo, args.branch_name)
    elif command == "diff":
        return git_diff(repo, args.files)
    elif command == "reset":
        return git_reset(repo)
    raise ToolError(f"unsupported git command: {command}")


def git_tool(base_dir: str = ".") -> ToolDefinition:
    return define_tool(
        "git",
        "Perform Git operations like init, clone, add, commit, and status on repositories",
        GitInput,
        lambda args: git_operation(args, base_dir),
    )
