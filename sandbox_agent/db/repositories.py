from __future__ import annotations

import json
from typing import Any

import aiosqlite


class Repository:
    def __init__(self, conn: aiosqlite.Connection):
        self.conn = conn

    async def insert_audit(
        self,
        *,
        audit_id: str,
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
        await self.conn.execute(
            """
            INSERT INTO audit_logs(
              audit_id, trace_id, session_id, chat_id, action, tool_name, args_json, result_json,
              requires_approval, decision, outcome, created_at
            ) VALUES(?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, strftime('%Y-%m-%dT%H:%M:%fZ','now'))
            """,
            (
                audit_id,
                trace_id,
                session_id,
                chat_id,
                action,
                tool_name,
                json.dumps(args or {}, ensure_ascii=False, default=str),
                json.dumps(result, ensure_ascii=False, default=str),
                1 if requires_approval else 0,
                decision,
                outcome,
            ),
        )
        await self.conn.commit()

    async def list_audit_logs(self, session_id: str | None = None, limit: int = 200) -> list[dict[str, Any]]:
        if session_id is None:
            cursor = await self.conn.execute(
                """
                SELECT audit_id, trace_id, session_id, chat_id, action, tool_name, args_json, result_json,
                       requires_approval, decision, outcome, created_at
                FROM audit_logs
                ORDER BY created_at DESC
                LIMIT ?
                """,
                (limit,),
            )
        else:
            cursor = await self.conn.execute(
                """
                SELECT audit_id, trace_id, session_id, chat_id, action, tool_name, args_json, result_json,
                       requires_approval, decision, outcome, created_at
                FROM audit_logs
                WHERE session_id=?
                ORDER BY created_at DESC
                LIMIT ?
                """,
                (session_id, limit),
            )
        rows = await cursor.fetchall()
        result: list[dict[str, Any]] = []
        for row in rows:
            item = dict(row)
            item["args"] = json.loads(item.pop("args_json") or "{}")
            item["result"] = json.loads(item.pop("result_json") or "null")
            item["requires_approval"] = bool(item["requires_approval"])
            result.append(item)
        return result
