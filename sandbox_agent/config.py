from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path


@dataclass(slots=True)
class Settings:
    db_path: Path
    runtime_host: str
    runtime_port: int
    runtime_token: str
    workspace_base: Path
    shared_dir_name: str
    command_timeout_seconds: int
    max_output_bytes: int
    max_output_chars: int
    max_blocked_commands: int
    pending_ttl_seconds: int
    sweep_interval_seconds: int
    background_check_seconds: float
    approval_webhook_url: str

    @property
    def shared_dir(self) -> Path:
        return self.workspace_base / self.shared_dir_name

    def workspace_for(self, user_id: str) -> Path:
        normalized = str(user_id).strip()
        if normalized == "" or "/" in normalized or normalized in {".", ".."} or normalized == self.shared_dir_name:
            raise ValueError(f"invalid user id for workspace: {user_id!r}")
        return self.workspace_base / normalized


def _parse_int(value: str | None, default: int) -> int:
    if value is None or value.strip() == "":
        return default
    try:
        return int(value)
    except ValueError:
        return default


def _parse_float(value: str | None, default: float) -> float:
    if value is None or value.strip() == "":
        return default
    try:
        return float(value)
    except ValueError:
        return default


def load_settings() -> Settings:
    db_path = Path(os.getenv("SANDBOX_AGENT_DB_PATH", ".sandbox-agent/runtime.db"))
    db_path.parent.mkdir(parents=True, exist_ok=True)
    workspace_base = Path(os.getenv("SANDBOX_AGENT_WORKSPACE_BASE", "/workspace")).absolute()
    shared_dir_name = os.getenv("SANDBOX_AGENT_SHARED_DIR", "_shared").strip() or "_shared"

    if "/" in shared_dir_name:
        raise RuntimeError("SANDBOX_AGENT_SHARED_DIR must be a single directory name")

    return Settings(
        db_path=db_path,
        runtime_host=os.getenv("SANDBOX_AGENT_HOST", "127.0.0.1"),
        runtime_port=_parse_int(os.getenv("SANDBOX_AGENT_PORT"), 8040),
        runtime_token=os.getenv("SANDBOX_AGENT_RUNTIME_TOKEN", "").strip(),
        workspace_base=workspace_base,
        shared_dir_name=shared_dir_name,
        command_timeout_seconds=_parse_int(os.getenv("SANDBOX_AGENT_COMMAND_TIMEOUT"), 180),
        max_output_bytes=_parse_int(os.getenv("SANDBOX_AGENT_MAX_OUTPUT_BYTES"), 10 * 1024 * 1024),
        max_output_chars=_parse_int(os.getenv("SANDBOX_AGENT_MAX_OUTPUT_CHARS"), 10000),
        max_blocked_commands=_parse_int(os.getenv("SANDBOX_AGENT_MAX_BLOCKED_COMMANDS"), 3),
        pending_ttl_seconds=_parse_int(os.getenv("SANDBOX_AGENT_PENDING_TTL_SECONDS"), 3600),
        sweep_interval_seconds=_parse_int(os.getenv("SANDBOX_AGENT_SWEEP_INTERVAL_SECONDS"), 300),
        background_check_seconds=_parse_float(os.getenv("SANDBOX_AGENT_BACKGROUND_CHECK_SECONDS"), 1.0),
        approval_webhook_url=os.getenv("SANDBOX_AGENT_APPROVAL_WEBHOOK_URL", "").strip(),
    )
