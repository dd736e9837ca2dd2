"""Top-ups and purchases on user balances, and the income they add up to."""

from __future__ import annotations

import dataclasses
from collections.abc import Iterable
from datetime import datetime

from .entities import RechargeRecord, RechargeRecordsInfo, User
from .store import Database, Table

OPERATE_RECHARGE = 1
OPERATE_CONSUME = 2

_SOURCE = 'FROM "v2_recharge_records" AS r LEFT JOIN "v2_user" AS u ON r."user_id" = u."id"'


def _order_clause(order_by: str, direction: str, alias: str = "") -> str:
    columns = {f.name for f in dataclasses.fields(RechargeRecord)}
    if order_by not in columns:
        raise ValueError(f"cannot order by {order_by!r}")
    word = direction.strip().upper()
    if word not in ("", "ASC", "DESC"):
        raise ValueError(f"invalid order direction {direction!r}")
    prefix = f"{alias}." if alias else ""
    return f'{prefix}"{order_by}" {word}'.rstrip()


def _users_by_id(users: Table[User], ids: Iterable[int]) -> dict[int, User]:
    keys = list(dict.fromkeys(ids))
    if not keys:
        return {}
    marks = ", ".join("?" for _ in keys)
    return {user.id: user for user in users.select(f'"id" IN ({marks})', keys)}


class RechargeRecordService:
    """Reads and annotates the balance ledger."""

    def __init__(self, db: Database) -> None:
        self.db = db
        self.table = Table(db, RechargeRecord)
        self.users = Table(db, User)

    def list(
        self,
        query: RechargeRecord,
        user_name: str = "",
        order_by: str = "id",
        order_direction: str = "desc",
        offset: int = 0,
        limit: int = 10,
    ) -> tuple[list[RechargeRecordsInfo], int]:
        """One page of ledger entries with their users, and the number of matches."""
        conditions = [
            'r."recharge_name" LIKE ?',
            'r."consumption_name" LIKE ?',
            'r."transaction_id" LIKE ?',
            'u."user_name" LIKE ?',
        ]
        params: list[object] = [
            f"%{query.recharge_name}%",
            f"%{query.consumption_name}%",
            f"%{query.transaction_id}%",
            f"%{user_name}%",
        ]
        for column in ("id", "user_id", "operate_type"):
            value = getattr(query, column)
            if value:
                conditions.append(f'r."{column}" = ?')
                params.append(value)
        where = " AND ".join(conditions)
        order = _order_clause(order_by, order_direction, "r")
        rows = self.db.query(
            f"SELECT r.* {_SOURCE} WHERE {where} ORDER BY {order} LIMIT ? OFFSET ?",
            [*params, limit, offset],
        )
        total = int(self.db.query(f"SELECT COUNT(*) AS n {_SOURCE} WHERE {where}", params)[0]["n"])
        records = [RechargeRecord.from_dict(row) for row in rows]
        users = _users_by_id(self.users, (r.user_id for r in records)) if total > 0 else {}
        return [RechargeRecordsInfo(users.get(r.user_id), r) for r in records], total

    def list_by_user(
        self,
        user_id: int,
        order_by: str = "id",
        order_direction: str = "desc",
        offset: int = 0,
        limit: int = 10,
    ) -> tuple[list[RechargeRecord], int]:
        """One page of a user's ledger entries, and how many there are."""
        where = '"user_id" = ?'
        order = _order_clause(order_by, order_direction)
        items = self.table.select(where, (user_id,), order_by=order, limit=limit, offset=offset)
        return items, self.table.count(where, (user_id,))

    def update_remarks(self, record_id: int, remarks: str) -> int:
        """Set the remarks of one entry."""
        cursor = self.db.execute(
            'UPDATE "v2_recharge_records" SET "remarks" = ? WHERE "id" = ?', [remarks, record_id]
        )
        return cursor.rowcount

    def _month_recharges(self, now: datetime) -> list[RechargeRecord]:
        found = self.table.select('"operate_type" = ?', (OPERATE_RECHARGE,), order_by='"id"')
        return [
            record
            for record in found
            if record.created_at is not None
            and record.created_at.year == now.year
            and record.created_at.month == now.month
        ]

    def month_income(self, now: datetime | None = None) -> float:
        """Total of the top-ups made in the month of ``now``."""
        moment = now if now is not None else datetime.now()
        return float(sum(record.amount for record in self._month_recharges(moment)))

    def month_daily_income(self, now: datetime | None = None) -> list[int]:
        """Top-up totals, truncated to whole units, for each day of the month up to ``now``."""
        moment = now if now is not None else datetime.now()
        sums: dict[int, float] = {}
        for record in self._month_recharges(moment):
            day = record.created_at.day
            if day <= moment.day:
                sums[day] = sums.get(day, 0.0) + record.amount
        return [int(sums.get(day, 0.0)) for day in range(1, moment.day + 1)]