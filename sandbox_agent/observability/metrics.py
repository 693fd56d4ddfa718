from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import Dict


@dataclass(slots=True)
class RuntimeMetrics:
    tool_calls_total: Dict[str, int] = field(default_factory=dict)
    blocked_total: int = 0
    approval_required_total: int = 0
    sanitization_blocks_total: int = 0
    commands_executed_total: int = 0
    commands_failed_total: int = 0
    audit_failures_total: int = 0
    notify_failures_total: int = 0
    pending_commands: int = 0
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def increment(self, counter: str, amount: int = 1) -> None:
        with self._lock:
            setattr(self, counter, getattr(self, counter) + amount)

    def increment_tool_call(self, tool_name: str) -> None:
        with self._lock:
            self.tool_calls_total[tool_name] = self.tool_calls_total.get(tool_name, 0) + 1

    def set_pending(self, count: int) -> None:
        with self._lock:
            self.pending_commands = count

    def snapshot(self) -> dict:
        with self._lock:
            return {
                "tool_calls_total": dict(self.tool_calls_total),
                "blocked_total": self.blocked_total,
                "approval_required_total": self.approval_required_total,
                "sanitization_blocks_total": self.sanitization_blocks_total,
                "commands_executed_total": self.commands_executed_total,
                "commands_failed_total": self.commands_failed_total,
                "audit_failures_total": self.audit_failures_total,
                "notify_failures_total": self.notify_failures_total,
                "pending_commands": self.pending_commands,
            }


_runtime_metrics = RuntimeMetrics()


def get_runtime_metrics() -> RuntimeMetrics:
    return _runtime_metrics
