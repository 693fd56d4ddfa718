from __future__ import annotations

import logging
import os
import re
import shlex
from dataclasses import dataclass
from pathlib import Path

from sandbox_agent.security.content_guard import classify_content, is_sensitive_file
from sandbox_agent.security.path_guard import (
    DEFAULT_SHARED_DIR,
    check_path,
    collection_root,
    is_inside,
    normalize_path,
    resolve_candidate,
)
from sandbox_agent.security.patterns import (
    APPROVAL_CHAT_TYPES,
    BLOCKED_COMMAND_PATTERNS,
    CD_PARENT_RE,
    CD_RE,
    COMMAND_TRAVERSAL_RE,
    DANGEROUS_COMMAND_PATTERNS,
    INLINE_CODE_RE,
    INTERPRETER_SUBCOMMANDS,
    PARENT_TRAVERSAL_RE,
    PATH_TOKEN_RE,
    PYTHON_INTERPRETER_RE,
    SCRIPT_INTERPRETERS,
    SECRETS_MOUNT_PATHS,
    SECRETS_MOUNT_RE,
    SERVER_COMMAND_PATTERNS,
    SERVER_IDIOM_RE,
)
from sandbox_agent.security.symlink_guard import check_symlink_escape

logger = logging.getLogger("sandbox_agent.security")

MAX_SCRIPT_SCAN_BYTES = 1024 * 1024

_SEGMENT_SPLIT_RE = re.compile(r"&&|\|\||[;|&\n]")
_ENV_ASSIGNMENT_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*=")
_COMMAND_WRAPPERS = frozenset({"exec", "time", "nice", "env", "command"})
_INLINE_FLAGS = frozenset({"-e", "-c", "--eval", "-p", "--print", "-r"})
_REDIRECTION_PREFIX_RE = re.compile(r"^\d*[<>]+&?")


@dataclass(slots=True, frozen=True)
class CommandVerdict:
    blocked: bool = False
    dangerous: bool = False
    reason: str | None = None

    @property
    def allowed(self) -> bool:
        return not self.blocked and not self.dangerous

    @property
    def status(self) -> str:
        if self.blocked:
            return "blocked"
        if self.dangerous:
            return "dangerous"
        return "allowed"


def _blocked(reason: str) -> CommandVerdict:
    return CommandVerdict(blocked=True, reason=reason)


def classify_command(
    command: str,
    chat_type: str = "private",
    *,
    cwd: str | Path,
    workspace_root: str | Path | None = None,
    shared_dir: str = DEFAULT_SHARED_DIR,
) -> CommandVerdict:
    """Classify a raw shell command as allowed, dangerous or blocked.

    Passes run in order: workspace isolation, server execution (including
    the content of any script the command runs), then the denylist. In chats
    without a reliable approval channel a dangerous command is blocked.
    """
    root = normalize_path(workspace_root if workspace_root is not None else cwd)
    text = command.strip()
    if text == "":
        return _blocked("command is required")

    verdict = (
        _check_workspace_isolation(text, cwd, root, shared_dir)
        or _check_server_execution(text, cwd, root, shared_dir)
        or _check_denylist(text, chat_type)
        or CommandVerdict()
    )
    if not verdict.allowed:
        logger.warning(
            "command_classified",
            extra={"outcome": verdict.status, "reason": verdict.reason, "chat_type": chat_type},
        )
    return verdict


# --- pass 1: workspace isolation -------------------------------------------


def path_references(text: str) -> list[Path]:
    """Normalized absolute paths mentioned anywhere in ``text``.

    Tokens are taken from the raw text and again from its shell words, so
    quoting and escaping cannot split a path into pieces the scan misses.
    """
    candidates = [match.group(0) for match in PATH_TOKEN_RE.finditer(text)]
    try:
        words = shlex.split(text)
    except ValueError:
        words = []
    for word in words:
        candidates.extend(match.group(0) for match in PATH_TOKEN_RE.finditer(word))

    seen: dict[Path, None] = {}
    for candidate in candidates:
        seen.setdefault(normalize_path(candidate), None)
    return list(seen)


def references_secrets_mount(text: str) -> bool:
    if SECRETS_MOUNT_RE.search(text):
        return True
    return any(is_inside(path, mount) for path in path_references(text) for mount in SECRETS_MOUNT_PATHS)


def _check_workspace_isolation(text: str, cwd: str | Path, root: Path, shared_dir: str) -> CommandVerdict | None:
    if references_secrets_mount(text):
        return _blocked("access to Docker secrets is not allowed")

    for match in CD_RE.finditer(text):
        reason = _unsafe_cd_target(match.group(1), cwd, root, shared_dir)
        if reason:
            return _blocked(reason)

    if CD_PARENT_RE.search(text) or COMMAND_TRAVERSAL_RE.search(text):
        return _blocked("parent directory traversal (..) is not allowed")

    reason = _workspace_reference_violation(text, root, shared_dir)
    if reason:
        return _blocked(reason)
    return None


def _unsafe_cd_target(raw_target: str, cwd: str | Path, root: Path, shared_dir: str) -> str | None:
    target = raw_target.strip()
    if target == "":
        return "cd without a target leaves the workspace"
    if "$" in target or "`" in target:
        return "cd to a dynamically computed directory is not allowed"

    try:
        tokens = shlex.split(target)
    except ValueError:
        # Quoted script text, e.g. sh -c "cd /etc". Judge what precedes the quote.
        tokens = re.split(r"[\"']", target, maxsplit=1)[0].split()
    tokens = [token for token in tokens if token not in {"-P", "-L", "-e", "-@", "--"}]
    if not tokens:
        return "cd without a target leaves the workspace"

    destination = tokens[0]
    if destination == "-" or destination.startswith("~"):
        return "cd to the previous or home directory is not allowed"

    decision = check_path(destination, root, cwd, shared_dir=shared_dir)
    if not decision.allowed:
        return f"cd target is not allowed: {decision.reason}"
    return None


def _workspace_reference_violation(text: str, root: Path, shared_dir: str) -> str | None:
    collection = collection_root(root)
    if collection == Path(collection.anchor):
        return None

    shared = collection / shared_dir
    for referenced in path_references(text):
        if not is_inside(referenced, collection):
            continue
        if referenced == collection:
            return f"referencing the workspace root {collection} is not allowed"
        if is_inside(referenced, shared):
            return "referencing shared workspace data is not allowed"
        if not is_inside(referenced, root):
            return "referencing another user's workspace is not allowed"
    return None


# --- pass 2: server execution ----------------------------------------------


def _check_server_execution(text: str, cwd: str | Path, root: Path, shared_dir: str) -> CommandVerdict | None:
    for pattern, reason in SERVER_COMMAND_PATTERNS:
        if pattern.search(text):
            return _blocked(f"starting network servers is not allowed ({reason})")

    if INLINE_CODE_RE.search(text):
        if SERVER_IDIOM_RE.search(text):
            return _blocked("inline code that starts a network server is not allowed")
        inline = classify_content(text)
        if inline.dangerous:
            return _blocked(f"inline code contains dangerous code ({inline.reason})")

    for segment in _SEGMENT_SPLIT_RE.split(text):
        for script in _script_targets(segment.strip(), root):
            reason = _scan_script(script, cwd, root, shared_dir)
            if reason:
                return _blocked(reason)
    return None


def _script_targets(segment: str, root: Path) -> list[str]:
    if segment == "":
        return []
    try:
        tokens = shlex.split(segment)
    except ValueError:
        return []

    while tokens and (_ENV_ASSIGNMENT_RE.match(tokens[0]) or tokens[0] in _COMMAND_WRAPPERS):
        tokens.pop(0)
    if not tokens:
        return []

    head = os.path.basename(tokens[0])
    if head in SCRIPT_INTERPRETERS or PYTHON_INTERPRETER_RE.match(head):
        for index, arg in enumerate(tokens[1:]):
            if index == 0 and arg in INTERPRETER_SUBCOMMANDS:
                continue
            if arg == "-m" or arg in _INLINE_FLAGS:
                return []
            if arg.startswith("-"):
                continue
            return [arg]
        return []

    executable = tokens[0]
    if "/" in executable and (not executable.startswith("/") or is_inside(executable, root)):
        return [executable]
    return []


def _scan_script(script: str, cwd: str | Path, root: Path, shared_dir: str) -> str | None:
    script_path = resolve_candidate(script, cwd)
    if not script_path.is_file():
        return None
    if not is_inside(script_path, root):
        # Scripts elsewhere on the host are covered by the reference checks.
        return None

    symlink = check_symlink_escape(script_path, root)
    if symlink.escape:
        return f"script is a link outside the workspace: {symlink.reason}"

    with script_path.open("rb") as handle:
        content = handle.read(MAX_SCRIPT_SCAN_BYTES).decode("utf-8", errors="replace")

    name = script_path.name
    if references_secrets_mount(content):
        return f"script {name} reads Docker secrets"
    if PARENT_TRAVERSAL_RE.search(content):
        return f"script {name} uses parent directory traversal"
    reason = _workspace_reference_violation(content, root, shared_dir)
    if reason:
        return f"script {name}: {reason}"
    if SERVER_IDIOM_RE.search(content):
        return f"script {name} starts a network server"
    verdict = classify_content(content)
    if verdict.dangerous:
        return f"script {name} contains dangerous code ({verdict.reason})"
    return None


# --- pass 3: denylist and approval -----------------------------------------


def _check_denylist(text: str, chat_type: str) -> CommandVerdict | None:
    for token in _command_tokens(text):
        if is_sensitive_file(token):
            return _blocked(f"reading sensitive files is not allowed ({os.path.basename(token)})")

    for pattern, reason in BLOCKED_COMMAND_PATTERNS:
        if pattern.search(text):
            return _blocked(f"command is never allowed ({reason})")

    for pattern, reason in DANGEROUS_COMMAND_PATTERNS:
        if pattern.search(text):
            if chat_type not in APPROVAL_CHAT_TYPES:
                return _blocked(f"{reason} requires approval, which is unavailable in {chat_type} chats")
            return CommandVerdict(dangerous=True, reason=reason)
    return None


def _command_tokens(text: str) -> list[str]:
    try:
        tokens = shlex.split(text)
    except ValueError:
        tokens = text.split()
    cleaned = []
    for token in tokens:
        token = _REDIRECTION_PREFIX_RE.sub("", token)
        if token and not token.startswith("-"):
            cleaned.append(token)
    return cleaned
