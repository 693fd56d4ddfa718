from __future__ import annotations

import threading
import time
from dataclasses import asdict, dataclass
from typing import Any, Callable, Iterable

TASK_STATUSES = ("pending", "in_progress", "completed", "cancelled")
FINISHED_STATUSES = frozenset({"completed", "cancelled"})

_STATUS_ICONS = {
    "pending": "⬜",
    "in_progress": "🔄",
    "completed": "✅",
    "cancelled": "❌",
}


@dataclass(slots=True)
class SessionTask:
    id: str
    content: str
    status: str
    created_at: float

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def format_tasks(tasks: Iterable[SessionTask]) -> str:
    lines = [f"{_STATUS_ICONS[task.status]} [{task.id}] {task.content}" for task in tasks]
    return "\n".join(lines) or "(no tasks)"


def _validate_status(status: str | None) -> None:
    if status is not None and status not in TASK_STATUSES:
        raise ValueError(f"invalid task status: {status}")


class SessionTaskStore:
    """Per-session task lists kept in memory and dropped once stale."""

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self._tasks: dict[str, list[SessionTask]] = {}
        self._lock = threading.Lock()
        self._clock = clock

    def upsert(self, session_id: str, task_id: str, content: str, status: str | None = None) -> SessionTask:
        _validate_status(status)
        with self._lock:
            tasks = self._tasks.setdefault(session_id, [])
            for task in tasks:
                if task.id == task_id:
                    task.content = content
                    if status is not None:
                        task.status = status
                    return task
            task = SessionTask(id=task_id, content=content, status=status or "pending", created_at=self._clock())
            tasks.append(task)
            return task

    def update(self, session_id: str, task_id: str, *, status: str | None = None, content: str | None = None) -> SessionTask | None:
        _validate_status(status)
        with self._lock:
            for task in self._tasks.get(session_id, []):
                if task.id == task_id:
                    if status is not None:
                        task.status = status
                    if content:
                        task.content = content
                    return task
        return None

    def list(self, session_id: str) -> list[SessionTask]:
        with self._lock:
            return list(self._tasks.get(session_id, []))

    def clear_finished(self, session_id: str) -> int:
        """Drop completed and cancelled tasks; returns how many remain."""
        with self._lock:
            remaining = [task for task in self._tasks.get(session_id, []) if task.status not in FINISHED_STATUSES]
            self._tasks[session_id] = remaining
            return len(remaining)

    def sweep(self, max_age_seconds: float) -> int:
        cutoff = self._clock() - max_age_seconds
        with self._lock:
            stale = [
                session_id
                for session_id, tasks in self._tasks.items()
                if max((task.created_at for task in tasks), default=0.0) < cutoff
            ]
            for session_id in stale:
                del self._tasks[session_id]
        return len(stale)
