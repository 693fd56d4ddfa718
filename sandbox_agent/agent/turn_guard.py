from __future__ import annotations

import logging
import threading
from typing import Iterable

from sandbox_agent.errors import ToolResult

logger = logging.getLogger("sandbox_agent.security")

BLOCKED_RETRY_HINT = (
    "\n\n⛔ This action is permanently blocked. Do not retry it; look for a safe "
    "alternative or tell the user the action is not permitted."
)
STOPPED_MESSAGE = "🚫 Stopped: too many blocked actions. The requested actions are forbidden for security reasons."


class BlockedAttemptTracker:
    """Stops a tool-calling loop that keeps running into the policy engine.

    Blocked results accumulate across consecutive turns; a turn without any
    blocked result starts the count over.
    """

    def __init__(self, max_blocked: int = 3) -> None:
        self.max_blocked = max_blocked
        self.blocked_count = 0

    @property
    def should_stop(self) -> bool:
        return self.blocked_count >= self.max_blocked

    def record_turn(self, results: Iterable[ToolResult]) -> bool:
        blocked_in_turn = sum(1 for result in results if result.is_blocked)
        if blocked_in_turn == 0:
            self.blocked_count = 0
            return False

        self.blocked_count += blocked_in_turn
        logger.warning(
            "blocked_attempts",
            extra={"outcome": f"{self.blocked_count}/{self.max_blocked}"},
        )
        return self.should_stop

    def reset(self) -> None:
        self.blocked_count = 0


class SessionTurnGuards:
    """One BlockedAttemptTracker per session, created on first use."""

    def __init__(self, max_blocked: int = 3) -> None:
        self.max_blocked = max_blocked
        self._trackers: dict[str, BlockedAttemptTracker] = {}
        self._lock = threading.Lock()

    def for_session(self, session_id: str) -> BlockedAttemptTracker:
        with self._lock:
            tracker = self._trackers.get(session_id)
            if tracker is None:
                tracker = BlockedAttemptTracker(self.max_blocked)
                self._trackers[session_id] = tracker
            return tracker

    def reset(self, session_id: str) -> None:
        with self._lock:
            self._trackers.pop(session_id, None)


def render_tool_message(result: ToolResult) -> str:
    """Text fed back to the model for one tool result."""
    if result.success:
        return result.output or "Done"
    message = f"Error: {result.error}"
    if result.is_blocked:
        message += BLOCKED_RETRY_HINT
    return message
