from __future__ import annotations

import os
import re
from dataclasses import dataclass
from pathlib import Path

DEFAULT_SHARED_DIR = "_shared"

_SEPARATOR_RUN_RE = re.compile(r"/{2,}")

# Directories that are never listed even if a caller manages to address them.
BLOCKED_LIST_DIRECTORIES = (
    "/etc",
    "/root",
    "/.ssh",
    "/proc",
    "/sys",
    "/dev",
    "/boot",
    "/var/log",
    "/var/run",
)


class PathGuardError(ValueError):
    pass


@dataclass(slots=True, frozen=True)
class PathDecision:
    allowed: bool
    reason: str | None = None


def normalize_path(path: str | Path) -> Path:
    """Absolute, lexically normalized path. Symlinks are not followed."""
    raw = _SEPARATOR_RUN_RE.sub("/", str(path).replace("\\", "/"))
    return Path(os.path.normpath(os.path.abspath(raw)))


def resolve_candidate(path: str | Path, cwd: str | Path) -> Path:
    raw = str(path).replace("\\", "/")
    if raw.startswith("/"):
        return normalize_path(raw)
    return normalize_path(os.path.join(str(cwd), raw))


def is_inside(candidate: str | Path, root: str | Path) -> bool:
    rel = os.path.relpath(normalize_path(candidate), normalize_path(root))
    if rel == ".":
        return True
    if os.path.isabs(rel):
        return False
    first_segment = rel.split(os.sep, 1)[0]
    return first_segment != ".."


def collection_root(workspace_root: str | Path) -> Path:
    return normalize_path(workspace_root).parent


def check_path(
    path: str | Path,
    workspace_root: str | Path,
    cwd: str | Path | None = None,
    *,
    shared_dir: str = DEFAULT_SHARED_DIR,
) -> PathDecision:
    root = normalize_path(workspace_root)
    resolved = resolve_candidate(path, cwd if cwd is not None else root)
    collection = collection_root(root)
    shared = collection / shared_dir

    if resolved == collection:
        return PathDecision(False, f"access to the workspace root {collection} is not allowed")
    if is_inside(resolved, shared):
        return PathDecision(False, "access to shared workspace data is not allowed")
    if is_inside(resolved, collection) and not is_inside(resolved, root):
        return PathDecision(False, "access to another user's workspace is not allowed")
    if not is_inside(resolved, root):
        return PathDecision(False, "access to files outside your workspace is not allowed")
    return PathDecision(True)


def resolve_guarded_path(
    workspace_root: str | Path,
    raw_path: str,
    cwd: str | Path | None = None,
    *,
    shared_dir: str = DEFAULT_SHARED_DIR,
) -> Path:
    decision = check_path(raw_path, workspace_root, cwd, shared_dir=shared_dir)
    if not decision.allowed:
        raise PathGuardError(decision.reason or f"path escapes workspace: {raw_path}")
    return resolve_candidate(raw_path, cwd if cwd is not None else normalize_path(workspace_root))


def check_listable(directory: str | Path) -> PathDecision:
    lowered = str(normalize_path(directory)).lower()
    for blocked in BLOCKED_LIST_DIRECTORIES:
        if lowered == blocked or lowered.startswith(blocked + "/"):
            return PathDecision(False, f"listing {blocked} is not allowed")
    if "/.ssh" in lowered:
        return PathDecision(False, "listing .ssh directories is not allowed")
    return PathDecision(True)
