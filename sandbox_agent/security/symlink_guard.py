from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path

from sandbox_agent.security.path_guard import is_inside

logger = logging.getLogger("sandbox_agent.security")

SENSITIVE_LINK_TARGETS = ("/etc", "/root", "/home", "/proc", "/sys", "/dev", "/var")


@dataclass(slots=True, frozen=True)
class SymlinkCheck:
    escape: bool
    reason: str | None = None


def check_symlink_escape(path: str | Path, workspace_root: str | Path) -> SymlinkCheck:
    """Detect in-bounds paths whose real target lies outside the workspace.

    A path that does not exist yet cannot escape; creating it is covered by
    containment alone. Links pointing at system locations are refused even
    when those locations are reachable.
    """
    candidate = Path(path)
    if not os.path.lexists(candidate):
        return SymlinkCheck(False)

    try:
        real_path = os.path.realpath(candidate, strict=True)
        real_root = os.path.realpath(workspace_root)
    except OSError as exc:
        # Dangling links and loops cannot be read through either.
        logger.warning("symlink_unresolvable", extra={"path": str(candidate), "reason": str(exc)})
        return SymlinkCheck(False)

    if not is_inside(real_path, real_root):
        logger.warning("symlink_escape", extra={"path": str(candidate), "reason": real_path})
        return SymlinkCheck(True, f"symlink points outside the workspace ({real_path})")

    if candidate.is_symlink():
        for sensitive in SENSITIVE_LINK_TARGETS:
            if real_path == sensitive or real_path.startswith(sensitive + "/"):
                return SymlinkCheck(True, f"symlink points to a sensitive location ({sensitive})")

    return SymlinkCheck(False)
