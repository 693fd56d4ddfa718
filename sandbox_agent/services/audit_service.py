from __future__ import annotations

import logging
import sqlite3
import uuid
from typing import Any

from sandbox_agent.db.repositories import Repository
from sandbox_agent.observability.metrics import RuntimeMetrics, get_runtime_metrics
from sandbox_agent.observability.redaction import redact

logger = logging.getLogger("sandbox_agent.runtime")


class AuditService:
    def __init__(self, repo: Repository, metrics: RuntimeMetrics | None = None):
        self.repo = repo
        self.metrics = metrics or get_runtime_metrics()

    async def record(
        self,
        *,
        trace_id: str,
        session_id: str | None,
        chat_id: str | None,
        action: str,
        tool_name: str | None,
        args: dict[str, Any] | None,
        result: Any,
        requires_approval: bool,
        decision: str,
        outcome: str,
    ) -> None:
        """Persist one decision. A storage failure is counted, never raised."""
        try:
            await self.repo.insert_audit(
                audit_id=str(uuid.uuid4()),
                trace_id=trace_id,
                session_id=session_id,
                chat_id=chat_id,
                action=action,
                tool_name=tool_name,
                args=redact(args or {}),
                result=redact(result),
                requires_approval=requires_approval,
                decision=decision,
                outcome=outcome,
            )
        except (sqlite3.Error, ValueError) as exc:
            self.metrics.increment("audit_failures_total")
            logger.warning(
                "audit_write_failed",
                extra={"trace_id": trace_id, "tool_name": tool_name, "reason": str(exc)},
            )
