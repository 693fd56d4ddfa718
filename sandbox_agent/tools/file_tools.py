from __future__ import annotations

import json
import logging
import subprocess
from datetime import datetime, timezone
from pathlib import Path
from typing import Protocol

from sandbox_agent.context import ToolContext
from sandbox_agent.errors import ToolResult, blocked, failure, ok
from sandbox_agent.observability.redaction import redact_secrets
from sandbox_agent.security.content_guard import classify_content, is_secret_search, is_sensitive_file, is_sensitive_send
from sandbox_agent.security.path_guard import check_listable, check_path, is_inside, resolve_candidate
from sandbox_agent.security.patterns import SEARCH_EXCLUDE_DIRS, SEARCH_EXCLUDE_GLOBS
from sandbox_agent.security.symlink_guard import check_symlink_escape

logger = logging.getLogger("sandbox_agent.security")

MAX_READ_CHARS = 100_000
MAX_EDIT_PREVIEW_CHARS = 2000
MAX_LIST_ENTRIES = 500
MAX_SEARCH_RESULTS = 200
MAX_SEARCH_CONTEXT = 10
MAX_SEND_BYTES = 50 * 1024 * 1024
SEARCH_TIMEOUT_SECONDS = 30

NO_MATCHES = "(no matches)"
GLOB_IGNORE_DIRS = frozenset({"node_modules", ".git"})


class FileSender(Protocol):
    async def send_file(self, chat_id: str, path: Path, caption: str | None = None) -> None: ...


def _contained(ctx: ToolContext, raw_path: str) -> Path | ToolResult:
    decision = check_path(raw_path, ctx.workspace_root, ctx.cwd, shared_dir=ctx.shared_dir)
    if not decision.allowed:
        logger.warning("path_denied", extra={"path": raw_path, "reason": decision.reason, "session_id": ctx.session_id})
        return blocked(decision.reason or "path is outside the workspace")
    return resolve_candidate(raw_path, ctx.cwd)


def _symlink_denied(ctx: ToolContext, target: Path) -> ToolResult | None:
    check = check_symlink_escape(target, ctx.workspace_root)
    if check.escape:
        return blocked(check.reason or "symlink escapes the workspace")
    return None


def _guard_file(ctx: ToolContext, raw_path: str, verb: str) -> Path | ToolResult:
    target = _contained(ctx, raw_path)
    if isinstance(target, ToolResult):
        return target
    if is_sensitive_file(target):
        logger.warning("sensitive_file_denied", extra={"path": str(target), "session_id": ctx.session_id})
        return blocked(f"cannot {verb} sensitive file ({target.name}); it may contain secrets")
    return _symlink_denied(ctx, target) or target


def read_file(ctx: ToolContext, path: str, offset: int | None = None, limit: int | None = None) -> ToolResult:
    target = _guard_file(ctx, path, "read")
    if isinstance(target, ToolResult):
        return target
    if not target.exists():
        return failure(f"File not found: {path}")
    if target.is_dir():
        return failure(f"Not a file: {path}")

    try:
        content = target.read_text(encoding="utf-8", errors="replace")
    except OSError as exc:
        return failure(str(exc))

    if offset is not None or limit is not None:
        lines = content.split("\n")
        start = max((offset or 1) - 1, 0)
        end = start + limit if limit else len(lines)
        content = "\n".join(f"{start + index + 1}|{line}" for index, line in enumerate(lines[start:end]))

    if len(content) > MAX_READ_CHARS:
        content = content[:MAX_READ_CHARS] + "\n...(truncated)"
    return ok(content or "(empty file)")


def write_file(ctx: ToolContext, path: str, content: str) -> ToolResult:
    target = _guard_file(ctx, path, "write")
    if isinstance(target, ToolResult):
        return target

    verdict = classify_content(content)
    if verdict.dangerous:
        logger.warning("dangerous_content_denied", extra={"path": str(target), "reason": verdict.reason})
        return blocked(f"file contains dangerous code ({verdict.reason}); files that could leak secrets cannot be written")

    try:
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(content, encoding="utf-8")
    except OSError as exc:
        return failure(str(exc))
    return ok(f"Wrote {len(content)} bytes to {path}")


def edit_file(ctx: ToolContext, path: str, old_text: str, new_text: str) -> ToolResult:
    target = _guard_file(ctx, path, "edit")
    if isinstance(target, ToolResult):
        return target
    if not target.is_file():
        return failure(f"File not found: {path}")

    verdict = classify_content(new_text)
    if verdict.dangerous:
        logger.warning("dangerous_content_denied", extra={"path": str(target), "reason": verdict.reason})
        return blocked(f"edit contains dangerous code ({verdict.reason})")

    try:
        content = target.read_text(encoding="utf-8")
        if old_text not in content:
            return failure(f"old_text not found.\n\nFile preview:\n{content[:MAX_EDIT_PREVIEW_CHARS]}")
        target.write_text(content.replace(old_text, new_text, 1), encoding="utf-8")
    except (OSError, UnicodeDecodeError) as exc:
        return failure(str(exc))
    return ok(f"Edited: {path}")


def delete_file(ctx: ToolContext, path: str) -> ToolResult:
    target = _contained(ctx, path)
    if isinstance(target, ToolResult):
        return target
    if not target.is_symlink() and not target.exists():
        return failure(f"File not found: {path}")
    if target.is_dir() and not target.is_symlink():
        return failure(f"Not a file: {path}")

    try:
        target.unlink()
    except OSError as exc:
        return failure(str(exc))
    return ok(f"Deleted: {path}")


def list_directory(ctx: ToolContext, path: str | None = None) -> ToolResult:
    target = _contained(ctx, path or ".")
    if isinstance(target, ToolResult):
        return target
    listable = check_listable(target)
    if not listable.allowed:
        return blocked(listable.reason or "listing this directory is not allowed")
    denied = _symlink_denied(ctx, target)
    if denied:
        return denied
    if not target.is_dir():
        return failure(f"Not a directory: {path or '.'}")

    entries = []
    try:
        children = sorted(target.iterdir(), key=lambda child: child.name)[:MAX_LIST_ENTRIES]
        for child in children:
            stats = child.lstat()
            if child.is_symlink():
                kind = "symlink"
            elif child.is_dir():
                kind = "dir"
            elif child.is_file():
                kind = "file"
            else:
                kind = "other"
            entries.append(
                {
                    "name": child.name,
                    "type": kind,
                    "size": stats.st_size,
                    "mtime": datetime.fromtimestamp(stats.st_mtime, tz=timezone.utc).isoformat(),
                }
            )
    except OSError as exc:
        return failure(str(exc))
    return ok(json.dumps({"path": str(target), "entries": entries}, indent=2, ensure_ascii=False))


def search_files(ctx: ToolContext, pattern: str) -> ToolResult:
    if pattern.strip() == "":
        return failure("pattern is required")
    if pattern.startswith("/") or ".." in Path(pattern).parts:
        return blocked("glob patterns must stay inside the workspace")

    matches: list[str] = []
    try:
        for candidate in sorted(ctx.cwd.glob(pattern)):
            relative = candidate.relative_to(ctx.cwd)
            if any(part in GLOB_IGNORE_DIRS for part in relative.parts):
                continue
            if not candidate.is_file() or is_sensitive_file(candidate):
                continue
            if not is_inside(candidate, ctx.workspace_root):
                continue
            # Linked directories are walked too; their real contents may live elsewhere.
            if check_symlink_escape(candidate, ctx.workspace_root).escape:
                continue
            matches.append(relative.as_posix())
            if len(matches) >= MAX_SEARCH_RESULTS:
                break
    except (OSError, ValueError) as exc:
        return failure(str(exc))
    return ok("\n".join(matches) or NO_MATCHES)


def _clamp_context(value: int | None) -> int:
    return min(max(int(value or 0), 0), MAX_SEARCH_CONTEXT)


def search_text(
    ctx: ToolContext,
    pattern: str,
    path: str | None = None,
    context_before: int | None = None,
    context_after: int | None = None,
    files_only: bool = False,
    ignore_case: bool = False,
) -> ToolResult:
    if is_secret_search(pattern):
        logger.warning("secret_search_denied", extra={"session_id": ctx.session_id})
        return blocked("searching for secret or credential patterns is not allowed")

    target = _contained(ctx, path or ".")
    if isinstance(target, ToolResult):
        return target
    if is_sensitive_file(target):
        logger.warning("sensitive_file_denied", extra={"path": str(target), "session_id": ctx.session_id})
        return blocked(f"cannot search sensitive file ({target.name}); it may contain secrets")
    denied = _symlink_denied(ctx, target)
    if denied:
        return denied

    before = _clamp_context(context_before)
    after = _clamp_context(context_after)

    rg_args = ["rg", "--line-number", "--no-heading", "--with-filename", "--null"]
    rg_args += ["--max-count", str(MAX_SEARCH_RESULTS)]
    for directory in SEARCH_EXCLUDE_DIRS:
        rg_args += ["--glob", f"!{directory}/**"]
    for glob in SEARCH_EXCLUDE_GLOBS:
        rg_args += ["--glob", f"!{glob}"]
    rg_args += _search_flags(before, after, files_only, ignore_case)
    rg_args += ["--", pattern, str(target)]

    try:
        return _search_result(_run_search(rg_args, ctx.cwd), files_only)
    except FileNotFoundError:
        pass
    except subprocess.TimeoutExpired:
        return failure(f"Search timed out after {SEARCH_TIMEOUT_SECONDS}s")

    grep_args = ["grep", "-rnHZ"] + _search_flags(before, after, files_only, ignore_case, grep=True)
    grep_args += [f"--exclude-dir={directory}" for directory in SEARCH_EXCLUDE_DIRS]
    grep_args += [f"--exclude={glob}" for glob in SEARCH_EXCLUDE_GLOBS]
    grep_args += ["--", pattern, str(target)]
    try:
        return _search_result(_run_search(grep_args, ctx.cwd), files_only)
    except FileNotFoundError:
        return failure("Neither rg nor grep is available")
    except subprocess.TimeoutExpired:
        return failure(f"Search timed out after {SEARCH_TIMEOUT_SECONDS}s")


def _search_flags(before: int, after: int, files_only: bool, ignore_case: bool, *, grep: bool = False) -> list[str]:
    flags = []
    if ignore_case:
        flags.append("-i" if grep else "--ignore-case")
    if files_only:
        flags.append("-l" if grep else "--files-with-matches")
    if before:
        flags.append(f"-B{before}")
    if after:
        flags.append(f"-A{after}")
    return flags


def _run_search(args: list[str], cwd: Path) -> subprocess.CompletedProcess:
    return subprocess.run(
        args,
        cwd=cwd,
        capture_output=True,
        text=True,
        errors="replace",
        timeout=SEARCH_TIMEOUT_SECONDS,
    )


def _visible_lines(stdout: str, files_only: bool) -> list[str]:
    # Both tools are run with NUL after every file name, so names are exact
    # even when they contain ":" or "-".
    if files_only:
        names = [name.strip("\n") for name in stdout.split("\0")]
        return [name for name in names if name and not is_sensitive_file(name)]

    lines = []
    for line in stdout.split("\n"):
        name, separator, rest = line.partition("\0")
        if not separator:
            if line == "--":
                lines.append(line)
            continue
        if is_sensitive_file(name):
            continue
        lines.append(f"{name}:{rest}")
    return lines


def _search_result(proc: subprocess.CompletedProcess, files_only: bool) -> ToolResult:
    if proc.returncode == 1:
        return ok(NO_MATCHES)
    if proc.returncode != 0:
        return failure((proc.stderr or "").strip() or "Search failed")
    lines = _visible_lines(proc.stdout or "", files_only)[:MAX_SEARCH_RESULTS]
    while lines and lines[-1] == "--":
        lines.pop()
    return ok(redact_secrets("\n".join(lines)) or NO_MATCHES)


def _format_size(size: int) -> str:
    if size < 1024:
        return f"{size} B"
    if size < 1024 * 1024:
        return f"{size / 1024:.1f} KB"
    return f"{size / 1024 / 1024:.1f} MB"


async def send_file(ctx: ToolContext, path: str, caption: str | None = None, *, sender: FileSender | None = None) -> ToolResult:
    if sender is None:
        return failure("File sending is not configured")

    target = _contained(ctx, path)
    if isinstance(target, ToolResult):
        return blocked("only files from your workspace can be sent")
    if is_sensitive_send(target):
        logger.warning("sensitive_send_denied", extra={"path": str(target), "session_id": ctx.session_id})
        return blocked("sensitive files (keys, tokens and the like) cannot be sent")
    denied = _symlink_denied(ctx, target)
    if denied:
        return denied
    if not target.is_file():
        return failure(f"File not found: {path}")

    size = target.stat().st_size
    if size > MAX_SEND_BYTES:
        return failure(f"File is too large ({round(size / 1024 / 1024)}MB). Maximum: 50MB")
    if size == 0:
        return failure("File is empty")

    try:
        await sender.send_file(ctx.chat_id, target, caption)
    except Exception as exc:  # noqa: BLE001
        message = str(exc)
        if "not enough rights" in message or "CHAT_SEND_MEDIA_FORBIDDEN" in message:
            return failure("Sending files is not permitted in this chat; read the file and paste its content instead")
        return failure(f"Failed to send file: {message}")
    return ok(f"File sent: {target.name} ({_format_size(size)})")
