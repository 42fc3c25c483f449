from __future__ import annotations

from pathlib import Path
from typing import Iterable, Mapping

import aiosqlite


# Rows are scoped by target (endpoint, bucket and prefix) so one workspace
# can publish to several destinations without sharing ETags between them.
SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS remote_etags (
    target TEXT NOT NULL,
    key TEXT NOT NULL,
    etag TEXT NOT NULL,
    updated_at INTEGER NOT NULL,
    PRIMARY KEY (target, key)
);
"""


async def ensure_db(db_path: Path) -> None:
    db_path.parent.mkdir(parents=True, exist_ok=True)
    async with aiosqlite.connect(db_path) as db:
        await db.execute(SCHEMA_SQL)
        await db.commit()


async def load_etags(db_path: Path, target: str) -> dict[str, str]:
    await ensure_db(db_path)
    async with aiosqlite.connect(db_path) as db:
        db.row_factory = aiosqlite.Row
        cursor = await db.execute(
            "SELECT key, etag FROM remote_etags WHERE target = ? ORDER BY key",
            (target,),
        )
        rows = await cursor.fetchall()
        await cursor.close()

    return {str(row["key"]): str(row["etag"]) for row in rows}


async def store_etags(db_path: Path, target: str, etags: Mapping[str, str]) -> None:
    if not etags:
        return
    await ensure_db(db_path)
    async with aiosqlite.connect(db_path) as db:
        await db.executemany(
            """
            INSERT OR REPLACE INTO remote_etags (target, key, etag, updated_at)
            VALUES (?, ?, ?, strftime('%s','now'))
            """,
            [(target, key, etag) for key, etag in etags.items()],
        )
        await db.commit()


async def forget_keys(db_path: Path, target: str, keys: Iterable[str]) -> None:
    keys = list(keys)
    if not keys:
        return
    await ensure_db(db_path)
    async with aiosqlite.connect(db_path) as db:
        await db.executemany(
            "DELETE FROM remote_etags WHERE target = ? AND key = ?",
            [(target, key) for key in keys],
        )
        await db.commit()
