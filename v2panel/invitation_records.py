"""Commission earned by inviting users, and its review by administrators."""

from __future__ import annotations

import dataclasses
from collections.abc import Iterable

from .entities import InvitationRecord, InvitationRecordsInfo, User
from .store import Database, ServiceError, Table
from .utils import mask_string

OPERATE_INVITE = 1
OPERATE_WITHDRAW = 2
STATE_PENDING = -1
STATE_APPROVED = 1
STATE_REJECTED = 2

_SOURCE = (
    'FROM "v2_invitation_records" AS i '
    'LEFT JOIN "v2_user" AS u ON i."user_id" = u."id" '
    'LEFT JOIN "v2_user" AS f ON i."from_user_id" = f."id"'
)


def _order_clause(order_by: str, direction: str, alias: str = "") -> str:
    columns = {f.name for f in dataclasses.fields(InvitationRecord)}
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


class InvitationRecordService:
    """Manages invitation commission records."""

    def __init__(self, db: Database) -> None:
        self.db = db
        self.table = Table(db, InvitationRecord)
        self.users = Table(db, User)

    def list(
        self,
        query: InvitationRecord,
        user_name: str = "",
        from_user_name: str = "",
        order_by: str = "id",
        order_direction: str = "desc",
        offset: int = 0,
        limit: int = 10,
    ) -> tuple[list[InvitationRecordsInfo], int]:
        """One page of records with inviter and invitee, and the number of matches."""
        conditions = ['u."user_name" LIKE ?', 'f."user_name" LIKE ?']
        params: list[object] = [f"%{user_name}%", f"%{from_user_name}%"]
        for column in ("id", "user_id", "from_user_id", "operate_type", "state", "recharge_records_id"):
            value = getattr(query, column)
            if value:
                conditions.append(f'i."{column}" = ?')
                params.append(value)
        where = " AND ".join(conditions)
        order = _order_clause(order_by, order_direction, "i")
        rows = self.db.query(
            f"SELECT i.* {_SOURCE} WHERE {where} ORDER BY {order} LIMIT ? OFFSET ?",
            [*params, limit, offset],
        )
        total = int(self.db.query(f"SELECT COUNT(*) AS n {_SOURCE} WHERE {where}", params)[0]["n"])
        records = [InvitationRecord.from_dict(row) for row in rows]
        if total > 0:
            users = _users_by_id(self.users, (r.user_id for r in records))
            from_users = _users_by_id(self.users, (r.from_user_id for r in records))
        else:
            users, from_users = {}, {}
        items = [
            InvitationRecordsInfo(users.get(r.user_id), from_users.get(r.from_user_id), r)
            for r in records
        ]
        return items, total

    def list_by_user(
        self,
        user_id: int,
        order_by: str = "id",
        order_direction: str = "desc",
        offset: int = 0,
        limit: int = 10,
    ) -> tuple[list[InvitationRecordsInfo], int]:
        """One page of a user's records; invitees show only id and a masked name."""
        where = '"user_id" = ?'
        order = _order_clause(order_by, order_direction)
        records = self.table.select(where, (user_id,), order_by=order, limit=limit, offset=offset)
        total = self.table.count(where, (user_id,))
        from_users: dict[int, User] = {}
        if total > 0:
            from_users = {
                uid: User(id=user.id, user_name=mask_string(user.user_name))
                for uid, user in _users_by_id(self.users, (r.from_user_id for r in records)).items()
            }
        return [InvitationRecordsInfo(None, from_users.get(r.from_user_id), r) for r in records], total

    def get_by_id(self, record_id: int) -> InvitationRecord | None:
        """One record, or None."""
        return self.table.get_one_by_id(record_id)

    def get_by_from_user_id(self, from_user_id: int) -> InvitationRecord | None:
        """The first record earned from the given invitee, or None."""
        found = self.table.select('"from_user_id" = ?', (from_user_id,), order_by='"id"', limit=1)
        return found[0] if found else None

    def insert(self, record: InvitationRecord) -> int:
        """Store a new record; returns its id."""
        return self.table.save(record)

    def update_state(self, record_id: int, state: int) -> int:
        """Set a record's state without touching any balance."""
        cursor = self.db.execute(
            'UPDATE "v2_invitation_records" SET "state" = ? WHERE "id" = ?', [state, record_id]
        )
        return cursor.rowcount

    def review(self, record_id: int, state: int) -> None:
        """Approve or reject a record, crediting or taking back the inviter's commission."""
        record = self.get_by_id(record_id)
        if record is None:
            raise ServiceError("invitation record does not exist")
        if record.state == state:
            raise ServiceError("record already has this state")

        with self.db.transaction():
            later_withdrawals = self.table.count(
                '"id" > ? AND "operate_type" = ?', (record_id, OPERATE_WITHDRAW)
            )
            if later_withdrawals > 0:
                raise ServiceError("commission already withdrawn, cannot review")

            if record.operate_type == OPERATE_INVITE:
                change = 0.0
                if state == STATE_APPROVED:
                    change = record.amount
                elif state == STATE_REJECTED and record.state == STATE_APPROVED:
                    change = -record.amount
                if change:
                    self.db.execute(
                        'UPDATE "v2_user" SET "commission_balance" = "commission_balance" + ? WHERE "id" = ?',
                        [change, record.user_id],
                    )

            self.update_state(record_id, state)