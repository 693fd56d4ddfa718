from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from sandbox_agent.security.path_guard import DEFAULT_SHARED_DIR, PathGuardError, check_path, normalize_path


@dataclass(slots=True, frozen=True)
class ToolContext:
    """Who is calling and where; supplied by the dispatcher with every invocation."""

    workspace_root: Path
    session_id: str
    chat_id: str = ""
    chat_type: str = "private"
    cwd: Path | None = None
    shared_dir: str = DEFAULT_SHARED_DIR

    def __post_init__(self) -> None:
        root = normalize_path(self.workspace_root)
        object.__setattr__(self, "workspace_root", root)
        cwd = root if self.cwd is None else normalize_path(self.cwd)
        decision = check_path(cwd, root, shared_dir=self.shared_dir)
        if not decision.allowed:
            raise PathGuardError(f"working directory is outside the workspace: {decision.reason}")
        object.__setattr__(self, "cwd", cwd)

    def ensure_workspace(self) -> None:
        self.workspace_root.mkdir(parents=True, exist_ok=True)
