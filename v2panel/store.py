"""SQLite storage: the panel's tables and generic record access by key."""

from __future__ import annotations

import dataclasses
import os
import sqlite3
import threading
from collections.abc import Iterable, Iterator, Sequence
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Generic, TypeVar

from .entities import (
    TIME_FORMAT,
    Coupon,
    CouponUse,
    InvitationRecord,
    Knowledge,
    Payment,
    Plan,
    ProxyService,
    RechargeRecord,
    Record,
    ServerRoute,
    Setting,
    Ticket,
    TicketMessage,
    User,
)

R = TypeVar("R", bound=Record)

_TABLES: dict[type, str] = {
    Coupon: "v2_coupon",
    CouponUse: "v2_coupon_use",
    InvitationRecord: "v2_invitation_records",
    Knowledge: "v2_knowledge",
    Payment: "v2_payment",
    Plan: "v2_plan",
    ProxyService: "v2_proxy_service",
    RechargeRecord: "v2_recharge_records",
    ServerRoute: "v2_server_route",
    Setting: "v2_setting",
    Ticket: "v2_ticket",
    TicketMessage: "v2_ticket_message",
    User: "v2_user",
}

# Tables that exist in the schema without a record type of their own.
_EXTRA_TABLES: dict[str, list[tuple[str, str]]] = {
    "v2_service": [
        ("id", "INTEGER PRIMARY KEY AUTOINCREMENT"),
        ("agreement", "TEXT NOT NULL DEFAULT ''"),
        ("service_json", "TEXT NOT NULL DEFAULT ''"),
        ("name", "TEXT NOT NULL DEFAULT ''"),
        ("plan_id", "TEXT NOT NULL DEFAULT ''"),
        ("show", "INTEGER NOT NULL DEFAULT 0"),
        ("order_id", "INTEGER NOT NULL DEFAULT 0"),
        ("created_at", "TEXT"),
        ("updated_at", "TEXT"),
    ],
}


class ServiceError(Exception):
    """A request the panel refuses for a business reason."""


def table_name(record_type: type) -> str:
    """The database table that holds records of the given type."""
    try:
        return _TABLES[record_type]
    except (KeyError, TypeError):
        raise ValueError(f"no table stores {getattr(record_type, '__name__', record_type)!r}") from None


def _quote(name: str) -> str:
    return '"' + name.replace('"', '""') + '"'


def _key_column(record_type: type) -> str:
    names = {f.name for f in dataclasses.fields(record_type)}
    return "id" if "id" in names else "code"


def _column_type(name: str, hint: Any, key: str) -> str:
    if name == key:
        return "INTEGER PRIMARY KEY AUTOINCREMENT" if hint is int else "TEXT PRIMARY KEY NOT NULL"
    if hint is int:
        return "INTEGER NOT NULL DEFAULT 0"
    if hint is float:
        return "REAL NOT NULL DEFAULT 0"
    if hint is str:
        return "TEXT NOT NULL DEFAULT ''"
    return "TEXT"


def _columns_of(record_type: type) -> list[tuple[str, str]]:
    key = _key_column(record_type)
    return [(f.name, _column_type(f.name, f.type, key)) for f in dataclasses.fields(record_type)]


def _now_text() -> str:
    return datetime.now().strftime(TIME_FORMAT)


class Database:
    """A SQLite connection with explicit, nestable transactions."""

    def __init__(self, path: str | os.PathLike[str] = ":memory:") -> None:
        self._conn = sqlite3.connect(os.fspath(path), isolation_level=None, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._lock = threading.RLock()
        self._depth = 0

    def __enter__(self) -> Database:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    @contextmanager
    def transaction(self) -> Iterator[Database]:
        """Run the block atomically; an exception rolls back only this level."""
        with self._lock:
            savepoint = f"sp_{self._depth}"
            if self._depth == 0:
                self._conn.execute("BEGIN")
            else:
                self._conn.execute(f"SAVEPOINT {savepoint}")
            self._depth += 1
            try:
                yield self
            except BaseException:
                self._depth -= 1
                if self._depth == 0:
                    self._conn.execute("ROLLBACK")
                else:
                    self._conn.execute(f"ROLLBACK TO {savepoint}")
                    self._conn.execute(f"RELEASE {savepoint}")
                raise
            self._depth -= 1
            if self._depth == 0:
                self._conn.execute("COMMIT")
            else:
                self._conn.execute(f"RELEASE {savepoint}")

    def execute(self, sql: str, params: Sequence[Any] = ()) -> sqlite3.Cursor:
        """Run a statement and return its cursor (rowcount, lastrowid)."""
        with self._lock:
            return self._conn.execute(sql, tuple(params))

    def query(self, sql: str, params: Sequence[Any] = ()) -> list[dict[str, Any]]:
        """Run a query and return its rows as dictionaries."""
        with self._lock:
            return [dict(row) for row in self._conn.execute(sql, tuple(params)).fetchall()]

    def close(self) -> None:
        """Close the connection."""
        with self._lock:
            self._conn.close()


def create_schema(db: Database) -> None:
    """Create every panel table that does not exist yet."""
    tables = [(name, _columns_of(record_type)) for record_type, name in _TABLES.items()]
    tables.extend(_EXTRA_TABLES.items())
    with db.transaction():
        for name, columns in tables:
            body = ", ".join(f"{_quote(column)} {kind}" for column, kind in columns)
            db.execute(f"CREATE TABLE IF NOT EXISTS {_quote(name)} ({body})")


class Table(Generic[R]):
    """Common create, read, update and delete operations on one table."""

    def __init__(self, db: Database, record_type: type[R]) -> None:
        self.db = db
        self.record_type = record_type
        self.name = table_name(record_type)
        self.key = _key_column(record_type)
        self._columns = {f.name for f in dataclasses.fields(record_type)}

    def _check(self, record: Record) -> None:
        if not isinstance(record, self.record_type):
            raise TypeError(f"{self.name} stores {self.record_type.__name__}, not {type(record).__name__}")

    def select(
        self,
        where: str = "",
        params: Sequence[Any] = (),
        order_by: str = "",
        limit: int | None = None,
        offset: int = 0,
    ) -> list[R]:
        """Records matching a raw SQL condition, in the given order."""
        sql = f"SELECT * FROM {_quote(self.name)}"
        args = list(params)
        if where:
            sql += f" WHERE {where}"
        if order_by:
            sql += f" ORDER BY {order_by}"
        if limit is not None:
            sql += " LIMIT ? OFFSET ?"
            args += [limit, offset]
        return [self.record_type.from_dict(row) for row in self.db.query(sql, args)]

    def count(self, where: str = "", params: Sequence[Any] = ()) -> int:
        """Number of rows matching a raw SQL condition."""
        sql = f"SELECT COUNT(*) AS n FROM {_quote(self.name)}"
        if where:
            sql += f" WHERE {where}"
        return int(self.db.query(sql, params)[0]["n"])

    def get_one_by_id(self, record_id: Any) -> R | None:
        """The record with the given key, or None."""
        found = self.select(f"{_quote(self.key)} = ?", (record_id,), limit=1)
        return found[0] if found else None

    def delete_by_ids(self, ids: Iterable[Any]) -> int:
        """Delete the records with the given keys; returns how many went."""
        keys = list(ids)
        if not keys:
            return 0
        marks = ", ".join("?" for _ in keys)
        cursor = self.db.execute(f"DELETE FROM {_quote(self.name)} WHERE {_quote(self.key)} IN ({marks})", keys)
        return cursor.rowcount

    def save(self, record: R) -> Any:
        """Insert a record and return the key of the new row."""
        self._check(record)
        values = record.to_dict()
        if self.key == "id" and not values.get("id"):
            values.pop("id", None)
        now = _now_text()
        for stamp in ("created_at", "updated_at"):
            if stamp in self._columns and values.get(stamp) is None:
                values[stamp] = now
        columns = ", ".join(_quote(column) for column in values)
        marks = ", ".join("?" for _ in values)
        cursor = self.db.execute(
            f"INSERT INTO {_quote(self.name)} ({columns}) VALUES ({marks})", list(values.values())
        )
        return cursor.lastrowid if self.key == "id" else values[self.key]

    def update_by_id(self, record_id: Any, record: R) -> int:
        """Overwrite every column but the key and created_at; returns rows changed."""
        self._check(record)
        values = record.to_dict()
        values.pop(self.key, None)
        values.pop("created_at", None)
        if "updated_at" in self._columns:
            values["updated_at"] = _now_text()
        assignments = ", ".join(f"{_quote(column)} = ?" for column in values)
        cursor = self.db.execute(
            f"UPDATE {_quote(self.name)} SET {assignments} WHERE {_quote(self.key)} = ?",
            [*values.values(), record_id],
        )
        return cursor.rowcount