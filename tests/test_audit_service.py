import asyncio
import sqlite3

from sandbox_agent.db.connection import open_connection
from sandbox_agent.db.migrations import apply_migrations
from sandbox_agent.db.repositories import Repository
from sandbox_agent.observability.metrics import RuntimeMetrics
from sandbox_agent.services.audit_service import AuditService


class BrokenRepository:
    async def insert_audit(self, **kwargs):
        raise sqlite3.OperationalError("database is locked")


def test_migrations_are_idempotent(tmp_path):
    db_path = tmp_path / "runtime.db"

    async def scenario():
        await apply_migrations(db_path)
        await apply_migrations(db_path)
        conn = await open_connection(db_path)
        try:
            cursor = await conn.execute("SELECT version FROM schema_migrations")
            return [row["version"] for row in await cursor.fetchall()]
        finally:
            await conn.close()

    assert asyncio.run(scenario()) == ["0001_audit_logs"]


def test_record_persists_redacted_entry(tmp_path):
    db_path = tmp_path / "runtime.db"

    async def scenario():
        await apply_migrations(db_path)
        conn = await open_connection(db_path)
        try:
            service = AuditService(Repository(conn), RuntimeMetrics())
            await service.record(
                trace_id="tr_1",
                session_id="s1",
                chat_id="42",
                action="tool_invocation",
                tool_name="run_command",
                args={"command": "export API_KEY=abcdef123456", "token": "raw-token"},
                result={"success": False, "error": "BLOCKED: nope"},
                requires_approval=False,
                decision="n/a",
                outcome="blocked",
            )
            await service.record(
                trace_id="tr_2",
                session_id="s2",
                chat_id="7",
                action="pending_command_resolved",
                tool_name="run_command",
                args={"command": "rm -r old"},
                result=None,
                requires_approval=True,
                decision="deny",
                outcome="denied",
            )
            repo = Repository(conn)
            return await repo.list_audit_logs("s1"), await repo.list_audit_logs()
        finally:
            await conn.close()

    session_rows, all_rows = asyncio.run(scenario())
    assert len(session_rows) == 1
    assert len(all_rows) == 2

    row = session_rows[0]
    assert row["trace_id"] == "tr_1"
    assert row["outcome"] == "blocked"
    assert row["requires_approval"] is False
    assert row["args"]["token"] == "<redacted>"
    assert "abcdef123456" not in row["args"]["command"]
    assert row["result"] == {"success": False, "error": "BLOCKED: nope"}

    denied = next(item for item in all_rows if item["session_id"] == "s2")
    assert denied["requires_approval"] is True
    assert denied["decision"] == "deny"
    assert denied["result"] is None


def test_storage_failure_is_counted_not_raised():
    metrics = RuntimeMetrics()
    service = AuditService(BrokenRepository(), metrics)
    asyncio.run(
        service.record(
            trace_id="tr_1",
            session_id="s1",
            chat_id="42",
            action="tool_invocation",
            tool_name="read_file",
            args={"path": "a.txt"},
            result={"success": True, "output": "x"},
            requires_approval=False,
            decision="n/a",
            outcome="ok",
        )
    )
    assert metrics.audit_failures_total == 1
