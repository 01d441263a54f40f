"""
Persistence for business records and their field history.

Two interchangeable backends implement the BusinessStore and HistoryStore
protocols: plain in-memory dictionaries for tests and dry runs, and SQLite for
the CLI. Records are dictionaries carrying ``id``, ``is_async`` and the schema
fields; history rows are append-only.
"""

from __future__ import annotations

import copy
import json
import logging
import sqlite3
import uuid
from contextlib import contextmanager
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any, Iterable, Iterator, Mapping, Protocol

from listing_intake.errors import PersistenceError, RecordNotFoundError

logger = logging.getLogger(__name__)

RESERVED_KEYS = ("id", "is_async")


@dataclass(frozen=True)
class HistoryEntry:
    business_id: str
    field_name: str
    old_value: str | None
    new_value: str | None
    changed_by: str
    change_source: str
    changed_at: str
    id: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class BusinessStore(Protocol):
    def get(self, business_id: str) -> dict[str, Any]: ...

    def find(self, store_code: str) -> dict[str, Any] | None: ...

    def all(self) -> list[dict[str, Any]]: ...

    def insert_many(self, records: Iterable[Mapping[str, Any]]) -> list[dict[str, Any]]: ...

    def update(self, business_id: str, patch: Mapping[str, Any]) -> dict[str, Any]: ...

    def delete(self, business_id: str) -> None: ...


class HistoryStore(Protocol):
    def append(self, entries: Iterable[HistoryEntry]) -> list[HistoryEntry]: ...

    def list_for_business(self, business_id: str) -> list[HistoryEntry]: ...

    def list_for_field(self, business_id: str, field_name: str, limit: int | None = None) -> list[HistoryEntry]: ...

    def delete_for_business(self, business_id: str) -> int: ...


def new_business_id() -> str:
    return uuid.uuid4().hex


def _prepare_insert(record: Mapping[str, Any]) -> dict[str, Any]:
    stored = copy.deepcopy(dict(record))
    stored["id"] = str(stored.get("id") or new_business_id())
    stored["is_async"] = bool(stored.get("is_async", False))
    return stored


def _newest_first(entries: Iterable[HistoryEntry]) -> list[HistoryEntry]:
    return sorted(entries, key=lambda entry: (entry.changed_at, entry.id or 0), reverse=True)


class InMemoryBusinessStore:
    def __init__(self, records: Iterable[Mapping[str, Any]] = ()) -> None:
        self._records: dict[str, dict[str, Any]] = {}
        if records:
            self.insert_many(records)

    def get(self, business_id: str) -> dict[str, Any]:
        try:
            return copy.deepcopy(self._records[business_id])
        except KeyError:
            raise RecordNotFoundError(business_id) from None

    def find(self, store_code: str) -> dict[str, Any] | None:
        for record in self._records.values():
            if record.get("storeCode") == store_code:
                return copy.deepcopy(record)
        return None

    def all(self) -> list[dict[str, Any]]:
        return [copy.deepcopy(record) for record in self._records.values()]

    def insert_many(self, records: Iterable[Mapping[str, Any]]) -> list[dict[str, Any]]:
        prepared = [_prepare_insert(record) for record in records]
        clashes = [record["id"] for record in prepared if record["id"] in self._records]
        if clashes:
            raise PersistenceError(f"Duplicate business id: {clashes[0]}")
        for record in prepared:
            self._records[record["id"]] = record
        return [copy.deepcopy(record) for record in prepared]

    def update(self, business_id: str, patch: Mapping[str, Any]) -> dict[str, Any]:
        if business_id not in self._records:
            raise RecordNotFoundError(business_id)
        changes = {key: copy.deepcopy(value) for key, value in patch.items() if key != "id"}
        self._records[business_id].update(changes)
        return copy.deepcopy(self._records[business_id])

    def delete(self, business_id: str) -> None:
        if self._records.pop(business_id, None) is None:
            raise RecordNotFoundError(business_id)


class InMemoryHistoryStore:
    def __init__(self) -> None:
        self._entries: list[HistoryEntry] = []
        self._next_id = 1

    def append(self, entries: Iterable[HistoryEntry]) -> list[HistoryEntry]:
        stored: list[HistoryEntry] = []
        for entry in entries:
            saved = HistoryEntry(**{**entry.to_dict(), "id": self._next_id})
            self._next_id += 1
            stored.append(saved)
        self._entries.extend(stored)
        return stored

    def list_for_business(self, business_id: str) -> list[HistoryEntry]:
        return _newest_first(entry for entry in self._entries if entry.business_id == business_id)

    def list_for_field(self, business_id: str, field_name: str, limit: int | None = None) -> list[HistoryEntry]:
        entries = [entry for entry in self.list_for_business(business_id) if entry.field_name == field_name]
        return entries if limit is None else entries[:limit]

    def delete_for_business(self, business_id: str) -> int:
        before = len(self._entries)
        self._entries = [entry for entry in self._entries if entry.business_id != business_id]
        return before - len(self._entries)


SCHEMA_SQL = (
    """
    CREATE TABLE IF NOT EXISTS businesses (
        id TEXT PRIMARY KEY,
        store_code TEXT,
        is_async INTEGER NOT NULL DEFAULT 0,
        data TEXT NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_businesses_store_code ON businesses(store_code)",
    """
    CREATE TABLE IF NOT EXISTS business_field_history (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        business_id TEXT NOT NULL,
        field_name TEXT NOT NULL,
        old_value TEXT,
        new_value TEXT,
        changed_by TEXT NOT NULL,
        change_source TEXT NOT NULL,
        changed_at TEXT NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_history_business_field ON business_field_history(business_id, field_name)",
)


class SQLiteDatabase:
    """Owns the database path; every operation opens and closes its own connection."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)

    @contextmanager
    def connect(self) -> Iterator[sqlite3.Connection]:
        try:
            if self.path.parent and not self.path.parent.exists():
                self.path.parent.mkdir(parents=True, exist_ok=True)
            conn = sqlite3.connect(self.path)
        except (OSError, sqlite3.Error) as exc:
            raise PersistenceError(f"Cannot open database {self.path}: {exc}") from exc
        conn.row_factory = sqlite3.Row
        try:
            with conn:
                yield conn
        except sqlite3.Error as exc:
            raise PersistenceError(str(exc)) from exc
        finally:
            conn.close()

    def init_schema(self) -> None:
        with self.connect() as conn:
            for statement in SCHEMA_SQL:
                conn.execute(statement)
        logger.debug("Initialised schema at %s", self.path)


def _row_to_record(row: sqlite3.Row) -> dict[str, Any]:
    record = json.loads(row["data"])
    record["id"] = row["id"]
    record["is_async"] = bool(row["is_async"])
    return record


def _record_payload(record: Mapping[str, Any]) -> str:
    return json.dumps({key: value for key, value in record.items() if key not in RESERVED_KEYS}, ensure_ascii=False)


class SQLiteBusinessStore:
    def __init__(self, database: SQLiteDatabase) -> None:
        self.database = database

    def get(self, business_id: str) -> dict[str, Any]:
        with self.database.connect() as conn:
            row = conn.execute("SELECT * FROM businesses WHERE id = ?", (business_id,)).fetchone()
        if row is None:
            raise RecordNotFoundError(business_id)
        return _row_to_record(row)

    def find(self, store_code: str) -> dict[str, Any] | None:
        with self.database.connect() as conn:
            row = conn.execute(
                "SELECT * FROM businesses WHERE store_code = ? ORDER BY rowid LIMIT 1", (store_code,)
            ).fetchone()
        return None if row is None else _row_to_record(row)

    def all(self) -> list[dict[str, Any]]:
        with self.database.connect() as conn:
            rows = conn.execute("SELECT * FROM businesses ORDER BY rowid").fetchall()
        return [_row_to_record(row) for row in rows]

    def insert_many(self, records: Iterable[Mapping[str, Any]]) -> list[dict[str, Any]]:
        prepared = [_prepare_insert(record) for record in records]
        with self.database.connect() as conn:
            conn.executemany(
                "INSERT INTO businesses (id, store_code, is_async, data) VALUES (?, ?, ?, ?)",
                [
                    (record["id"], record.get("storeCode"), int(record["is_async"]), _record_payload(record))
                    for record in prepared
                ],
            )
        return prepared

    def update(self, business_id: str, patch: Mapping[str, Any]) -> dict[str, Any]:
        with self.database.connect() as conn:
            row = conn.execute("SELECT * FROM businesses WHERE id = ?", (business_id,)).fetchone()
            if row is None:
                raise RecordNotFoundError(business_id)
            record = _row_to_record(row)
            record.update({key: value for key, value in patch.items() if key != "id"})
            conn.execute(
                "UPDATE businesses SET store_code = ?, is_async = ?, data = ? WHERE id = ?",
                (record.get("storeCode"), int(bool(record.get("is_async"))), _record_payload(record), business_id),
            )
        return record

    def delete(self, business_id: str) -> None:
        with self.database.connect() as conn:
            cursor = conn.execute("DELETE FROM businesses WHERE id = ?", (business_id,))
        if cursor.rowcount == 0:
            raise RecordNotFoundError(business_id)


def _row_to_entry(row: sqlite3.Row) -> HistoryEntry:
    return HistoryEntry(
        id=row["id"],
        business_id=row["business_id"],
        field_name=row["field_name"],
        old_value=row["old_value"],
        new_value=row["new_value"],
        changed_by=row["changed_by"],
        change_source=row["change_source"],
        changed_at=row["changed_at"],
    )


class SQLiteHistoryStore:
    def __init__(self, database: SQLiteDatabase) -> None:
        self.database = database

    def append(self, entries: Iterable[HistoryEntry]) -> list[HistoryEntry]:
        stored: list[HistoryEntry] = []
        with self.database.connect() as conn:
            for entry in entries:
                cursor = conn.execute(
                    """
                    INSERT INTO business_field_history
                        (business_id, field_name, old_value, new_value, changed_by, change_source, changed_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        entry.business_id,
                        entry.field_name,
                        entry.old_value,
                        entry.new_value,
                        entry.changed_by,
                        entry.change_source,
                        entry.changed_at,
                    ),
                )
                stored.append(HistoryEntry(**{**entry.to_dict(), "id": cursor.lastrowid}))
        return stored

    def list_for_business(self, business_id: str) -> list[HistoryEntry]:
        with self.database.connect() as conn:
            rows = conn.execute(
                "SELECT * FROM business_field_history WHERE business_id = ? ORDER BY changed_at DESC, id DESC",
                (business_id,),
            ).fetchall()
        return [_row_to_entry(row) for row in rows]

    def list_for_field(self, business_id: str, field_name: str, limit: int | None = None) -> list[HistoryEntry]:
        query = (
            "SELECT * FROM business_field_history WHERE business_id = ? AND field_name = ? "
            "ORDER BY changed_at DESC, id DESC"
        )
        params: tuple[Any, ...] = (business_id, field_name)
        if limit is not None:
            query += " LIMIT ?"
            params += (limit,)
        with self.database.connect() as conn:
            rows = conn.execute(query, params).fetchall()
        return [_row_to_entry(row) for row in rows]

    def delete_for_business(self, business_id: str) -> int:
        with self.database.connect() as conn:
            cursor = conn.execute("DELETE FROM business_field_history WHERE business_id = ?", (business_id,))
        return cursor.rowcount


def open_sqlite_stores(path: str | Path) -> tuple[SQLiteBusinessStore, SQLiteHistoryStore]:
    database = SQLiteDatabase(path)
    database.init_schema()
    return SQLiteBusinessStore(database), SQLiteHistoryStore(database)
