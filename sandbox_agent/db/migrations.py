from __future__ import annotations

import asyncio
from pathlib import Path

from sandbox_agent.config import load_settings
from sandbox_agent.db.connection import open_connection

MIGRATIONS: tuple[tuple[str, str], ...] = (
    (
        "0001_audit_logs",
        """
        CREATE TABLE IF NOT EXISTS audit_logs (
          audit_id TEXT PRIMARY KEY,
          trace_id TEXT NOT NULL,
          session_id TEXT,
          chat_id TEXT,
          action TEXT NOT NULL,
          tool_name TEXT,
          args_json TEXT,
          result_json TEXT,
          requires_approval INTEGER NOT NULL DEFAULT 0,
          decision TEXT NOT NULL,
          outcome TEXT NOT NULL,
          created_at TEXT NOT NULL
        );
        CREATE INDEX IF NOT EXISTS idx_audit_logs_session ON audit_logs(session_id, created_at);
        """,
    ),
)


async def apply_migrations(db_path: Path | str | None = None) -> None:
    if db_path is None:
        db_path = load_settings().db_path

    conn = await open_connection(db_path)
    try:
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS schema_migrations (
              version TEXT PRIMARY KEY,
              applied_at TEXT NOT NULL
            )
            """
        )
        await conn.commit()

        for version, sql in MIGRATIONS:
            cursor = await conn.execute("SELECT 1 FROM schema_migrations WHERE version = ?", (version,))
            if await cursor.fetchone():
                continue

            await conn.executescript(sql)
            await conn.execute(
                "INSERT INTO schema_migrations(version, applied_at) VALUES(?, strftime('%Y-%m-%dT%H:%M:%fZ','now'))",
                (version,),
            )
            await conn.commit()
    finally:
        await conn.close()


if __name__ == "__main__":
    asyncio.run(apply_migrations())
