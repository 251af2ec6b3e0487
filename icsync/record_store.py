from __future__ import annotations

import json
import sqlite3
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from icsync.models import DestinationRecord

MAX_TITLE_LENGTH = 255


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _merge_unique(existing: list[str], extra: list[str]) -> list[str]:
    merged: list[str] = []
    seen: set[str] = set()
    for tag in [*existing, *extra]:
        if not tag or tag in seen:
            continue
        seen.add(tag)
        merged.append(tag)
    return merged


@dataclass
class CreateResult:
    record: DestinationRecord | None = None
    errors: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.record is not None and not self.errors


class RecordStore:
    """Destination records (title, first-post body, category, tags) in SQLite.

    Records are linked back to calendar events through custom fields;
    ``ics_uid`` is indexed so lookups by UID stay cheap.
    """

    def __init__(self, db_path: str) -> None:
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.RLock()
        self._init_schema()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        return conn

    def _init_schema(self) -> None:
        schema_sql = """
        CREATE TABLE IF NOT EXISTS records (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            title TEXT NOT NULL,
            body TEXT NOT NULL,
            category_id INTEGER,
            tags_json TEXT NOT NULL,
            created_by TEXT NOT NULL,
            version INTEGER NOT NULL,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL
        );

        CREATE TABLE IF NOT EXISTS record_revisions (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            record_id INTEGER NOT NULL,
            version INTEGER NOT NULL,
            body TEXT NOT NULL,
            revised_by TEXT NOT NULL,
            created_at TEXT NOT NULL
        );

        CREATE TABLE IF NOT EXISTS record_custom_fields (
            record_id INTEGER NOT NULL,
            name TEXT NOT NULL,
            value TEXT NOT NULL,
            PRIMARY KEY (record_id, name)
        );

        CREATE INDEX IF NOT EXISTS idx_record_custom_fields_lookup
            ON record_custom_fields(name, value);
        """
        with self._lock:
            with self._connect() as conn:
                conn.executescript(schema_sql)

    @staticmethod
    def validate(title: str, body: str) -> list[str]:
        errors: list[str] = []
        title_text = str(title or "").strip()
        if not title_text:
            errors.append("Title can't be blank")
        elif len(title_text) > MAX_TITLE_LENGTH:
            errors.append(f"Title is too long (maximum is {MAX_TITLE_LENGTH} characters)")
        if not str(body or "").strip():
            errors.append("Body can't be blank")
        return errors

    def create(
        self,
        title: str,
        body: str,
        category_id: int | None,
        tags: list[str],
        *,
        actor: str = "system",
        custom_fields: dict[str, str] | None = None,
    ) -> CreateResult:
        errors = self.validate(title, body)
        if errors:
            return CreateResult(errors=errors)
        now = _utc_now()
        with self._lock:
            with self._connect() as conn:
                cursor = conn.execute(
                    """
                    INSERT INTO records(title, body, category_id, tags_json, created_by, version, created_at, updated_at)
                    VALUES (?, ?, ?, ?, ?, 1, ?, ?)
                    """,
                    (
                        str(title).strip(),
                        body,
                        category_id,
                        json.dumps(_merge_unique([], list(tags or [])), ensure_ascii=False),
                        actor,
                        now,
                        now,
                    ),
                )
                record_id = int(cursor.lastrowid)
                conn.execute(
                    """
                    INSERT INTO record_revisions(record_id, version, body, revised_by, created_at)
                    VALUES (?, 1, ?, ?, ?)
                    """,
                    (record_id, body, actor, now),
                )
                # Same transaction as the insert: a record never exists without its link fields.
                self._write_custom_fields(conn, record_id, custom_fields or {})
                conn.commit()
        return CreateResult(record=self.get_record(record_id))

    @staticmethod
    def _write_custom_fields(conn: sqlite3.Connection, record_id: int, fields: dict[str, str]) -> None:
        for name, value in fields.items():
            conn.execute(
                """
                INSERT INTO record_custom_fields(record_id, name, value)
                VALUES (?, ?, ?)
                ON CONFLICT(record_id, name) DO UPDATE SET value = excluded.value
                """,
                (int(record_id), str(name), str(value)),
            )

    def attach_custom_fields(self, record_id: int, fields: dict[str, str]) -> None:
        with self._lock:
            with self._connect() as conn:
                self._write_custom_fields(conn, record_id, fields)
                conn.commit()

    def find_record_id(self, name: str, value: str) -> int | None:
        with self._lock:
            with self._connect() as conn:
                row = conn.execute(
                    """
                    SELECT record_id
                    FROM record_custom_fields
                    WHERE name = ? AND value = ?
                    ORDER BY record_id
                    LIMIT 1
                    """,
                    (str(name), str(value)),
                ).fetchone()
        if row is None:
            return None
        return int(row["record_id"])

    def get_record(self, record_id: int) -> DestinationRecord | None:
        with self._lock:
            with self._connect() as conn:
                row = conn.execute(
                    """
                    SELECT id, title, body, category_id, tags_json, created_by, version, created_at, updated_at
                    FROM records
                    WHERE id = ?
                    """,
                    (int(record_id),),
                ).fetchone()
                if row is None:
                    return None
                field_rows = conn.execute(
                    "SELECT name, value FROM record_custom_fields WHERE record_id = ? ORDER BY name",
                    (int(record_id),),
                ).fetchall()
        return self._row_to_record(row, {str(item["name"]): str(item["value"]) for item in field_rows})

    @staticmethod
    def _row_to_record(row: sqlite3.Row, custom_fields: dict[str, str]) -> DestinationRecord:
        return DestinationRecord(
            record_id=int(row["id"]),
            title=str(row["title"]),
            body=str(row["body"]),
            category_id=row["category_id"],
            tags=list(json.loads(row["tags_json"] or "[]")),
            custom_fields=custom_fields,
            created_by=str(row["created_by"]),
            version=int(row["version"]),
            created_at=str(row["created_at"]),
            updated_at=str(row["updated_at"]),
        )

    def update_first_content(self, record_id: int, body: str, actor: str = "system") -> bool:
        now = _utc_now()
        with self._lock:
            with self._connect() as conn:
                row = conn.execute("SELECT version FROM records WHERE id = ?", (int(record_id),)).fetchone()
                if row is None:
                    return False
                version = int(row["version"]) + 1
                conn.execute(
                    "UPDATE records SET body = ?, version = ?, updated_at = ? WHERE id = ?",
                    (body, version, now, int(record_id)),
                )
                conn.execute(
                    """
                    INSERT INTO record_revisions(record_id, version, body, revised_by, created_at)
                    VALUES (?, ?, ?, ?, ?)
                    """,
                    (int(record_id), version, body, actor, now),
                )
                conn.commit()
        return True

    def merge_tags(self, record_id: int, tags: list[str]) -> list[str]:
        with self._lock:
            with self._connect() as conn:
                row = conn.execute("SELECT tags_json FROM records WHERE id = ?", (int(record_id),)).fetchone()
                if row is None:
                    return []
                merged = _merge_unique(list(json.loads(row["tags_json"] or "[]")), list(tags or []))
                conn.execute(
                    "UPDATE records SET tags_json = ?, updated_at = ? WHERE id = ?",
                    (json.dumps(merged, ensure_ascii=False), _utc_now(), int(record_id)),
                )
                conn.commit()
        return merged

    def list_records(self, limit: int = 50) -> list[dict[str, Any]]:
        with self._lock:
            with self._connect() as conn:
                rows = conn.execute(
                    """
                    SELECT r.id, r.title, r.category_id, r.tags_json, r.version, r.updated_at,
                           f.value AS ics_uid
                    FROM records r
                    LEFT JOIN record_custom_fields f
                        ON f.record_id = r.id AND f.name = 'ics_uid'
                    ORDER BY r.id DESC
                    LIMIT ?
                    """,
                    (max(1, limit),),
                ).fetchall()
        output: list[dict[str, Any]] = []
        for row in rows:
            item = dict(row)
            item["tags"] = json.loads(item.pop("tags_json") or "[]")
            output.append(item)
        return output

    def revision_count(self, record_id: int) -> int:
        with self._lock:
            with self._connect() as conn:
                row = conn.execute(
                    "SELECT COUNT(*) AS total FROM record_revisions WHERE record_id = ?",
                    (int(record_id),),
                ).fetchone()
        return int(row["total"])
