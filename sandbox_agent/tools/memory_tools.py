from __future__ import annotations

import logging
from datetime import datetime, timezone

from sandbox_agent.context import ToolContext
from sandbox_agent.errors import ToolResult, blocked, failure, ok
from sandbox_agent.security.content_guard import classify_content
from sandbox_agent.security.symlink_guard import check_symlink_escape

logger = logging.getLogger("sandbox_agent.security")

MEMORY_FILE = "MEMORY.md"
MEMORY_HEADER = "# Assistant memory\n\nImportant context and notes from earlier sessions.\n"
MEMORY_ACTIONS = ("read", "append", "clear")
EMPTY_MEMORY = "(memory is empty)"


def manage_memory(ctx: ToolContext, action: str, content: str | None = None) -> ToolResult:
    """Long-lived notes kept in MEMORY.md at the workspace root."""
    if action not in MEMORY_ACTIONS:
        return failure(f"Unknown action: {action}")

    target = ctx.workspace_root / MEMORY_FILE
    link = check_symlink_escape(target, ctx.workspace_root)
    if link.escape:
        return blocked(link.reason or "memory file links outside the workspace")

    try:
        if action == "read":
            if not target.is_file():
                return ok(EMPTY_MEMORY)
            return ok(target.read_text(encoding="utf-8", errors="replace") or EMPTY_MEMORY)

        if action == "clear":
            target.write_text(MEMORY_HEADER, encoding="utf-8")
            return ok("Memory cleared")

        if not content:
            return failure("content is required for append")
        verdict = classify_content(content)
        if verdict.dangerous:
            logger.warning("dangerous_content_denied", extra={"path": str(target), "reason": verdict.reason})
            return blocked(f"memory entry contains dangerous code ({verdict.reason})")

        existing = target.read_text(encoding="utf-8") if target.is_file() else MEMORY_HEADER
        stamp = datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M")
        target.write_text(f"{existing}\n## {stamp}\n{content}\n", encoding="utf-8")
    except (OSError, UnicodeDecodeError) as exc:
        return failure(str(exc))
    return ok(f"Added to memory ({len(content)} characters)")
