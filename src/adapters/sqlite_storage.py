"""SQLite storage adapter.

Implements the core RecordStorePort and MappingStorePort, plus the mapping
lookup used behind the reference mapping cache, on a simple SQLite database.
"""

from __future__ import annotations

import asyncio
import json
import sqlite3
from datetime import datetime
from typing import Optional

from core.models import MappingEntry, MarkResult, ReminderRecord, coerce_utc


def _to_db(value: Optional[datetime]) -> Optional[str]:
    # Fixed-width UTC ISO strings sort lexicographically in time order.
    if value is None:
        return None
    return coerce_utc(value).isoformat(timespec="microseconds")


def _from_db(value: Optional[str]) -> Optional[datetime]:
    if value is None:
        return None
    return coerce_utc(datetime.fromisoformat(value))


class SQLiteStorage:
    """Thin SQLite wrapper that satisfies the storage port contracts."""

    def __init__(self, db_path: str) -> None:
        self._db_path = db_path

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path)
        conn.row_factory = sqlite3.Row
        return conn

    def init_db(self) -> None:
        """Create tables if they do not exist.

        Tables:
        - mapping_entries: valid (category, subcategory) pairs
        - reminder_records: tracked expiring artifacts
        """

        with self._connect() as conn:
            # mapping_entries is the authoritative reference table. The
            # composite primary key enforces "no duplicate pairs".
            # Fields:
            # - category: e.g. line of business
            # - subcategory: e.g. application code
            # - description: optional free text
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS mapping_entries (
                    category TEXT NOT NULL,
                    subcategory TEXT NOT NULL,
                    description TEXT,
                    PRIMARY KEY (category, subcategory)
                )
                """
            )
            # reminder_records holds one row per tracked artifact.
            # Fields:
            # - id: auto-increment primary key
            # - category/subcategory: reference into mapping_entries
            # - title: human label used in notifications
            # - expiry_at: UTC expiry instant
            # - lead_days: whole days before expiry to remind
            # - reminder_at: derived at creation, never recomputed
            # - recipients: JSON array of addresses, in order
            # - created_at: UTC creation instant
            # - notified_at: set once after a successful delivery
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS reminder_records (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    category TEXT NOT NULL,
                    subcategory TEXT NOT NULL,
                    title TEXT NOT NULL DEFAULT '',
                    expiry_at TEXT NOT NULL,
                    lead_days INTEGER NOT NULL,
                    reminder_at TEXT NOT NULL,
                    recipients TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    notified_at TEXT
                )
                """
            )
            conn.execute(
                """
                CREATE INDEX IF NOT EXISTS idx_reminder_due
                ON reminder_records (notified_at, reminder_at)
                """
            )

    # Mapping table

    def mapping_exists(self, category: str, subcategory: Optional[str] = None) -> bool:
        """Return whether the pair, or any pair for the category, exists."""

        with self._connect() as conn:
            if subcategory is None:
                row = conn.execute(
                    "SELECT 1 FROM mapping_entries WHERE category = ? LIMIT 1",
                    (category,),
                ).fetchone()
            else:
                row = conn.execute(
                    "SELECT 1 FROM mapping_entries WHERE category = ? AND subcategory = ?",
                    (category, subcategory),
                ).fetchone()
        return row is not None

    def add_mapping(self, entry: MappingEntry) -> bool:
        with self._connect() as conn:
            cur = conn.execute(
                """
                INSERT OR IGNORE INTO mapping_entries (category, subcategory, description)
                VALUES (?, ?, ?)
                """,
                (entry.category, entry.subcategory, entry.description),
            )
            return cur.rowcount == 1

    def remove_mapping(self, category: str, subcategory: str) -> bool:
        with self._connect() as conn:
            cur = conn.execute(
                "DELETE FROM mapping_entries WHERE category = ? AND subcategory = ?",
                (category, subcategory),
            )
            return cur.rowcount > 0

    def list_mappings(self) -> list[MappingEntry]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT category, subcategory, description FROM mapping_entries "
                "ORDER BY category, subcategory"
            ).fetchall()
        return [
            MappingEntry(row["category"], row["subcategory"], row["description"])
            for row in rows
        ]

    # Reminder records

    def append(self, record: ReminderRecord) -> int:
        """Insert a new record and return its id."""

        with self._connect() as conn:
            cur = conn.execute(
                """
                INSERT INTO reminder_records (
                    category,
                    subcategory,
                    title,
                    expiry_at,
                    lead_days,
                    reminder_at,
                    recipients,
                    created_at,
                    notified_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    record.category,
                    record.subcategory,
                    record.title,
                    _to_db(record.expiry_at),
                    record.lead_days,
                    _to_db(record.reminder_at),
                    json.dumps(list(record.recipients)),
                    _to_db(record.created_at),
                    _to_db(record.notified_at),
                ),
            )
            return int(cur.lastrowid)

    def get_record(self, record_id: int) -> Optional[ReminderRecord]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM reminder_records WHERE id = ?",
                (record_id,),
            ).fetchone()
        return self._row_to_record(row) if row else None

    def load_candidate_records(self, as_of: datetime) -> list[ReminderRecord]:
        """Return unnotified records whose reminder instant is at or before ``as_of``."""

        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT * FROM reminder_records
                WHERE notified_at IS NULL AND reminder_at <= ?
                ORDER BY reminder_at, id
                """,
                (_to_db(as_of),),
            ).fetchall()
        return [self._row_to_record(row) for row in rows]

    def mark_notified(self, record_id: int, at: datetime) -> MarkResult:
        """Set notified_at only if it is still empty (atomic conditional write)."""

        with self._connect() as conn:
            cur = conn.execute(
                "UPDATE reminder_records SET notified_at = ? WHERE id = ? AND notified_at IS NULL",
                (_to_db(at), record_id),
            )
            return MarkResult.SUCCESS if cur.rowcount == 1 else MarkResult.CONFLICT

    def list_records(self) -> list[ReminderRecord]:
        with self._connect() as conn:
            rows = conn.execute("SELECT * FROM reminder_records ORDER BY id").fetchall()
        return [self._row_to_record(row) for row in rows]

    @staticmethod
    def _row_to_record(row: sqlite3.Row) -> ReminderRecord:
        return ReminderRecord(
            id=int(row["id"]),
            category=row["category"],
            subcategory=row["subcategory"],
            title=row["title"],
            expiry_at=_from_db(row["expiry_at"]),
            lead_days=int(row["lead_days"]),
            reminder_at=_from_db(row["reminder_at"]),
            recipients=tuple(json.loads(row["recipients"])),
            created_at=_from_db(row["created_at"]),
            notified_at=_from_db(row["notified_at"]),
        )


class SQLiteMappingLookup:
    """Authoritative mapping lookup over SQLiteStorage.

    The blocking query runs in a worker thread so the cache can bound it with
    a timeout. sqlite3 errors propagate as "unavailable", never as "absent".
    """

    def __init__(self, storage: SQLiteStorage) -> None:
        self._storage = storage

    async def lookup(self, category: str, subcategory: Optional[str] = None) -> bool:
        return await asyncio.to_thread(self._storage.mapping_exists, category, subcategory)
