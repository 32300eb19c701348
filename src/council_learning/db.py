from __future__ import annotations

import json
import re
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator

from .settings import settings


SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS documents (
    collection TEXT NOT NULL,
    id TEXT NOT NULL,
    body TEXT NOT NULL,
    PRIMARY KEY (collection, id)
);

CREATE INDEX IF NOT EXISTS idx_documents_collection ON documents (collection);
"""

# Collection names shared by the knowledge components.
PATTERNS = "knowledge_patterns"
PATTERN_RELATIONSHIPS = "pattern_relationships"
LESSONS = "knowledge_lessons"
RULES = "trading_rules"
METRICS = "performance_metrics"
MESSAGES = "collaboration_messages"
DISCUSSIONS = "collaboration_topics"
TRADES = "trade_outcomes"

_FIELD_NAME = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def get_connection(db_path: Path | None = None) -> sqlite3.Connection:
    path = Path(db_path or settings.db_path)
    path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(path, timeout=30)
    conn.row_factory = sqlite3.Row
    return conn


def initialize_database(db_path: Path | None = None) -> None:
    try:
        conn = get_connection(db_path)
        try:
            conn.executescript(SCHEMA_SQL)
            conn.commit()
        finally:
            conn.close()
    except (sqlite3.Error, OSError) as exc:
        raise RuntimeError(f"Knowledge database unavailable at {db_path or settings.db_path}: {exc}") from exc


def _json_path(field_name: str) -> str:
    if not _FIELD_NAME.match(field_name):
        raise ValueError(f"Invalid field name: {field_name!r}")
    return f"$.{field_name}"


def _bind(value: Any) -> Any:
    if isinstance(value, bool):
        return int(value)
    return value


class KnowledgeRepository:
    """Document store over SQLite: one JSON body per (collection, id).

    Writes are keyed upserts (``put``) or insert-if-absent (``insert``), so
    concurrent cycles can share one repository without extra locking.
    """

    def __init__(self, db_path: Path | None = None) -> None:
        self.db_path = Path(db_path or settings.db_path)

    def initialize(self) -> None:
        initialize_database(self.db_path)

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        conn = get_connection(self.db_path)
        try:
            with conn:
                yield conn
        finally:
            conn.close()

    def put(self, collection: str, doc_id: str, record: dict) -> None:
        body = json.dumps(record, default=str)
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO documents (collection, id, body) VALUES (?, ?, ?)
                ON CONFLICT(collection, id) DO UPDATE SET body = excluded.body
                """,
                (collection, doc_id, body),
            )

    def insert(self, collection: str, doc_id: str, record: dict) -> bool:
        """Write ``record`` unless the id already exists. Returns True when written."""
        body = json.dumps(record, default=str)
        with self._connect() as conn:
            cursor = conn.execute(
                "INSERT OR IGNORE INTO documents (collection, id, body) VALUES (?, ?, ?)",
                (collection, doc_id, body),
            )
            return cursor.rowcount > 0

    def get(self, collection: str, doc_id: str) -> dict | None:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT body FROM documents WHERE collection = ? AND id = ?",
                (collection, doc_id),
            ).fetchone()
        if row is None:
            return None
        return json.loads(row["body"])

    def query(
        self,
        collection: str,
        order_by: str = "timestamp",
        direction: str = "desc",
        limit: int | None = None,
        filters: dict[str, Any] | None = None,
        since: float | None = None,
    ) -> list[dict]:
        """Documents in ``collection`` sorted by ``order_by``.

        ``since`` keeps only documents whose ``order_by`` value is strictly
        greater, so callers can page forward from a cursor.
        """
        direction_sql = direction.upper()
        if direction_sql not in ("ASC", "DESC"):
            raise ValueError(f"Invalid sort direction: {direction!r}")

        clauses = ["collection = ?"]
        params: list[Any] = [collection]
        for field_name, value in (filters or {}).items():
            if value is None:
                clauses.append("json_extract(body, ?) IS NULL")
                params.append(_json_path(field_name))
            else:
                clauses.append("json_extract(body, ?) = ?")
                params.extend([_json_path(field_name), _bind(value)])
        if since is not None:
            clauses.append("json_extract(body, ?) > ?")
            params.extend([_json_path(order_by), since])

        sql = (
            f"SELECT body FROM documents WHERE {' AND '.join(clauses)} "
            f"ORDER BY json_extract(body, ?) {direction_sql}, rowid {direction_sql}"
        )
        params.append(_json_path(order_by))
        if limit is not None:
            sql += " LIMIT ?"
            params.append(int(limit))

        with self._connect() as conn:
            rows = conn.execute(sql, params).fetchall()
        return [json.loads(row["body"]) for row in rows]

    def count(self, collection: str) -> int:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT COUNT(1) AS cnt FROM documents WHERE collection = ?",
                (collection,),
            ).fetchone()
        return int(row["cnt"]) if row else 0
