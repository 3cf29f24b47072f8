import os
import aiosqlite
from typing import Optional

from ..errors import PersistenceError


CREATE_SQL = """
CREATE TABLE IF NOT EXISTS kv (
  key TEXT PRIMARY KEY,
  value TEXT NOT NULL,
  updated_at INTEGER NOT NULL DEFAULT (strftime('%s','now'))
);
"""


class SQLiteStore:
  """Key-value persistence for JSON documents. Errors surface as PersistenceError."""

  def __init__(self, path: str):
    self.path = path

  async def init(self) -> None:
    try:
      directory = os.path.dirname(self.path)
      if directory:
        os.makedirs(directory, exist_ok=True)
      async with aiosqlite.connect(self.path) as db:
        await db.execute(CREATE_SQL)
        await db.commit()
    except (aiosqlite.Error, OSError) as e:
      raise PersistenceError(f"Cannot initialize {self.path}: {e}") from e

  async def get(self, key: str) -> Optional[str]:
    try:
      async with aiosqlite.connect(self.path) as db:
        cur = await db.execute("SELECT value FROM kv WHERE key=?", (key,))
        row = await cur.fetchone()
        return row[0] if row else None
    except (aiosqlite.Error, OSError) as e:
      raise PersistenceError(f"Cannot read {key}: {e}") from e

  async def set(self, key: str, value: str) -> None:
    try:
      async with aiosqlite.connect(self.path) as db:
        await db.execute(
          """
          INSERT INTO kv (key, value, updated_at)
          VALUES (?, ?, strftime('%s','now'))
          ON CONFLICT(key) DO UPDATE SET
            value=excluded.value,
            updated_at=excluded.updated_at;
          """,
          (key, value),
        )
        await db.commit()
    except (aiosqlite.Error, OSError) as e:
      raise PersistenceError(f"Cannot write {key}: {e}") from e

  async def delete(self, key: str) -> None:
    try:
      async with aiosqlite.connect(self.path) as db:
        await db.execute("DELETE FROM kv WHERE key=?", (key,))
        await db.commit()
    except (aiosqlite.Error, OSError) as e:
      raise PersistenceError(f"Cannot delete {key}: {e}") from e

  async def keys(self) -> list[str]:
    """
    List stored keys.

    Returns:
        Keys in alphabetical order
    """
    try:
      async with aiosqlite.connect(self.path) as db:
        cur = await db.execute("SELECT key FROM kv ORDER BY key")
        rows = await cur.fetchall()
        return [row[0] for row in rows]
    except (aiosqlite.Error, OSError) as e:
      raise PersistenceError(f"Cannot list keys: {e}") from e


class MemoryStore:
  """In-process store with the same interface, for callers without a database file."""

  def __init__(self):
    self.data: dict[str, str] = {}

  async def init(self) -> None:
    return None

  async def get(self, key: str) -> Optional[str]:
    return self.data.get(key)

  async def set(self, key: str, value: str) -> None:
    self.data[key] = value

  async def delete(self, key: str) -> None:
    self.data.pop(key, None)

  async def keys(self) -> list[str]:
    return sorted(self.data)
