from __future__ import annotations

from pathlib import Path

import aiosqlite


async def open_connection(db_path: Path | str) -> aiosqlite.Connection:
    conn = await aiosqlite.connect(str(db_path))
    conn.row_factory = aiosqlite.Row
    await conn.execute("PRAGMA journal_mode=WAL;")
    await conn.commit()
    return conn
