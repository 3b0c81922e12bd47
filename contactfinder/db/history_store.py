from __future__ import annotations

import json
import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

DDL_STATEMENTS = [
    "PRAGMA journal_mode=WAL",
    "PRAGMA synchronous=NORMAL",
    """
    CREATE TABLE IF NOT EXISTS search_history (
      id INTEGER PRIMARY KEY AUTOINCREMENT,
      query TEXT NOT NULL,
      created_at TEXT NOT NULL,
      results TEXT NOT NULL,
      logs TEXT NOT NULL
    )
    """.strip(),
    """
    CREATE INDEX IF NOT EXISTS idx_search_history_created ON search_history (created_at DESC)
    """.strip(),
]

INSERT_SQL = "INSERT INTO search_history (query, created_at, results, logs) VALUES (:query, :created_at, :results, :logs)"

# Keep only the newest N rows
PRUNE_SQL = (
    """
    DELETE FROM search_history
    WHERE id NOT IN (SELECT id FROM search_history ORDER BY id DESC LIMIT :keep)
    """
).strip()


def ensure_schema(conn: sqlite3.Connection) -> None:
    for stmt in DDL_STATEMENTS:
        conn.execute(stmt)


class HistoryStore:
    """Append-only search history with capped retention.

    Args:
        db_path: SQLite file (created if absent, parent dirs included)
        max_entries: most-recent entries kept after each save
    """

    def __init__(self, db_path: str | Path, max_entries: int = 200) -> None:
        self.db_path = Path(db_path)
        self.max_entries = int(max_entries)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        conn = self._connect()
        try:
            ensure_schema(conn)
        finally:
            conn.close()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self.db_path))
        conn.row_factory = sqlite3.Row
        return conn

    def save(self, query: str, payload: Dict[str, Any]) -> int:
        """Store ``{"results": [...], "logs": [...]}`` for ``query``; returns the new id."""
        row = {
            "query": query,
            "created_at": datetime.now(timezone.utc).isoformat(),
            "results": json.dumps(payload.get("results", []), ensure_ascii=False),
            "logs": json.dumps(payload.get("logs", []), ensure_ascii=False),
        }
        conn = self._connect()
        try:
            with conn:  # transactional insert + prune
                cur = conn.execute(INSERT_SQL, row)
                new_id = int(cur.lastrowid)
                conn.execute(PRUNE_SQL, {"keep": self.max_entries})
            return new_id
        finally:
            conn.close()

    def list_recent(self, limit: int = 30) -> List[Dict[str, Any]]:
        conn = self._connect()
        try:
            rows = conn.execute(
                "SELECT id, query, created_at FROM search_history ORDER BY id DESC LIMIT ?", (int(limit),)
            ).fetchall()
            return [{"id": r["id"], "query": r["query"], "createdAt": r["created_at"]} for r in rows]
        finally:
            conn.close()

    def get(self, entry_id: int) -> Optional[Dict[str, Any]]:
        conn = self._connect()
        try:
            r = conn.execute("SELECT * FROM search_history WHERE id = ?", (int(entry_id),)).fetchone()
        finally:
            conn.close()
        if r is None:
            return None
        return {
            "id": r["id"],
            "query": r["query"],
            "createdAt": r["created_at"],
            "results": json.loads(r["results"]),
            "logs": json.loads(r["logs"]),
        }
