"""Document store: async access to the game_documents table.

Table: game_documents
  name (text, primary key)  one of: player, quests, bosses, activity
  body (text)               JSON document
  updated_at (timestamptz)

Each document is read and written independently so that one corrupt row
never blocks the others.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Iterable, Mapping

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

SCHEMA_SQL = (
    "CREATE TABLE IF NOT EXISTS game_documents ("
    "name TEXT PRIMARY KEY, "
    "body TEXT NOT NULL, "
    "updated_at TIMESTAMPTZ NOT NULL)"
)

UPSERT_SQL = (
    "INSERT INTO game_documents (name, body, updated_at) "
    "VALUES (:name, :body, :updated_at) "
    "ON CONFLICT (name) DO UPDATE SET body = EXCLUDED.body, updated_at = EXCLUDED.updated_at"
)


async def ensure_schema(session: AsyncSession) -> None:
    await session.execute(text(SCHEMA_SQL))
    await session.commit()


async def fetch_documents(session: AsyncSession, names: Iterable[str]) -> dict[str, str | None]:
    """Fetch bodies for `names`. Missing rows map to None."""
    wanted = list(names)
    documents: dict[str, str | None] = {name: None for name in wanted}
    if not wanted:
        return documents

    placeholders = ", ".join(f":n{i}" for i in range(len(wanted)))
    params: dict[str, Any] = {f"n{i}": name for i, name in enumerate(wanted)}
    result = await session.execute(
        text(f"SELECT name, body FROM game_documents WHERE name IN ({placeholders})"),
        params,
    )
    columns = list(result.keys())
    for row in result.fetchall():
        record = dict(zip(columns, row))
        if record.get("name") in documents:
            documents[record["name"]] = record.get("body")
    return documents


async def upsert_documents(
    session: AsyncSession,
    documents: Mapping[str, str],
    updated_at: datetime | None = None,
) -> int:
    """Write every document in one transaction. Returns the number written."""
    stamp = updated_at or datetime.now(timezone.utc)
    for name, body in documents.items():
        await session.execute(text(UPSERT_SQL), {"name": name, "body": body, "updated_at": stamp})
    await session.commit()
    return len(documents)
