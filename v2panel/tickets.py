"""Support tickets and the messages exchanged on them."""

from __future__ import annotations

import dataclasses
from collections.abc import Iterable

from .entities import Ticket, TicketInfo, TicketMessage, TicketMessageInfo, User
from .store import Database, ServiceError, Table

STATUS_OPEN = -1
STATUS_CLOSED = 1
REPLY_PENDING = -1
REPLY_ANSWERED = 1


def _order_clause(record_type: type, order_by: str, direction: str, alias: str) -> str:
    columns = {f.name for f in dataclasses.fields(record_type)}
    if order_by not in columns:
        raise ValueError(f"cannot order by {order_by!r}")
    word = direction.strip().upper()
    if word not in ("", "ASC", "DESC"):
        raise ValueError(f"invalid order direction {direction!r}")
    return f'{alias}."{order_by}" {word}'.rstrip()


def _marks(values: list[object]) -> str:
    return ", ".join("?" for _ in values)


def _users_by_id(users: Table[User], ids: Iterable[int]) -> dict[int, User]:
    keys = list(dict.fromkeys(ids))
    if not keys:
        return {}
    return {user.id: user for user in users.select(f'"id" IN ({_marks(keys)})', keys)}


class TicketService:
    """Manages support tickets."""

    def __init__(self, db: Database) -> None:
        self.db = db
        self.table = Table(db, Ticket)
        self.users = Table(db, User)

    def get_user_list(
        self,
        query: Ticket,
        user_name: str = "",
        order_by: str = "id",
        order_direction: str = "desc",
        offset: int = 0,
        limit: int = 10,
    ) -> tuple[list[TicketInfo], int]:
        """Same as :meth:`list`."""
        return self.list(query, user_name, order_by, order_direction, offset, limit)

    def save(self, ticket: Ticket) -> int:
        """Update the ticket when it has an id, insert it otherwise; returns its id."""
        if ticket.id:
            self.table.update_by_id(ticket.id, ticket)
            return ticket.id
        return self.table.save(ticket)

    def delete(self, ids: Iterable[int]) -> int:
        """Delete tickets by id."""
        return self.table.delete_by_ids(ids)

    def close(self, ids: Iterable[int]) -> int:
        """Close the given tickets; returns how many changed."""
        keys = list(ids)
        if not keys:
            return 0
        cursor = self.db.execute(
            f'UPDATE "v2_ticket" SET "status" = ? WHERE "id" IN ({_marks(keys)})',
            [STATUS_CLOSED, *keys],
        )
        return cursor.rowcount

    def close_for_user(self, ids: Iterable[int], user_id: int) -> int:
        """Close those of the given tickets that belong to the user."""
        keys = list(ids)
        if not keys:
            return 0
        cursor = self.db.execute(
            f'UPDATE "v2_ticket" SET "status" = ? WHERE "id" IN ({_marks(keys)}) AND "user_id" = ?',
            [STATUS_CLOSED, *keys, user_id],
        )
        return cursor.rowcount

    def get_by_id_and_user_id(self, ticket_id: int, user_id: int) -> Ticket | None:
        """The ticket with this id, or None."""
        return self.table.get_one_by_id(ticket_id)

    def update_status(self, ticket_id: int, status: int, reply_status: int) -> int:
        """Set a ticket's status and reply status."""
        cursor = self.db.execute(
            'UPDATE "v2_ticket" SET "status" = ?, "reply_status" = ? WHERE "id" = ?',
            [status, reply_status, ticket_id],
        )
        return cursor.rowcount

    def open_count(self) -> int:
        """Number of open tickets."""
        return self.table.count('"status" = ?', (STATUS_OPEN,))

    def list(
        self,
        query: Ticket,
        user_name: str = "",
        order_by: str = "id",
        order_direction: str = "desc",
        offset: int = 0,
        limit: int = 10,
    ) -> tuple[list[TicketInfo], int]:
        """One page of tickets with their owners, and the number of matches."""
        conditions = ['t."subject" LIKE ?', 'u."user_name" LIKE ?']
        params: list[object] = [f"%{query.subject}%", f"%{user_name}%"]
        for column in ("id", "user_id", "level", "status", "reply_status"):
            value = getattr(query, column)
            if value:
                conditions.append(f't."{column}" = ?')
                params.append(value)
        source = 'FROM "v2_ticket" AS t LEFT JOIN "v2_user" AS u ON t."user_id" = u."id"'
        where = " AND ".join(conditions)
        order = _order_clause(Ticket, order_by, order_direction, "t")
        rows = self.db.query(
            f"SELECT t.* {source} WHERE {where} ORDER BY {order} LIMIT ? OFFSET ?",
            [*params, limit, offset],
        )
        total = int(self.db.query(f"SELECT COUNT(*) AS n {source} WHERE {where}", params)[0]["n"])
        tickets = [Ticket.from_dict(row) for row in rows]
        users = _users_by_id(self.users, (t.user_id for t in tickets)) if total > 0 else {}
        return [TicketInfo(ticket=t, user=users.get(t.user_id)) for t in tickets], total


class TicketMessageService:
    """Messages on tickets, from users and from administrators."""

    def __init__(self, db: Database, tickets: TicketService | None = None) -> None:
        self.table = Table(db, TicketMessage)
        self.users = Table(db, User)
        self.tickets = tickets if tickets is not None else TicketService(db)

    def messages_for_ticket(self, ticket_id: int) -> list[TicketMessageInfo]:
        """Every message on the ticket, with its author."""
        messages = self.table.select('"ticket_id" = ?', (ticket_id,), order_by='"id"')
        users = _users_by_id(self.users, (m.user_id for m in messages))
        return [TicketMessageInfo(message=m, user=users.get(m.user_id)) for m in messages]

    def messages_for_user_ticket(self, ticket_id: int, user_id: int) -> list[TicketMessageInfo]:
        """Messages on a ticket seen by a user; ServiceError if the ticket is missing."""
        if self.tickets.get_by_id_and_user_id(ticket_id, user_id) is None:
            raise ServiceError("ticket not found")
        return self.messages_for_ticket(ticket_id)

    def reply_as_admin(self, message: TicketMessage) -> int:
        """Store an administrator's reply and mark the ticket answered."""
        message_id = self.table.save(message)
        self.tickets.update_status(message.ticket_id, STATUS_OPEN, REPLY_ANSWERED)
        return message_id

    def reply_as_user(self, message: TicketMessage) -> int:
        """Store a user's reply and mark the ticket awaiting an answer."""
        if self.tickets.get_by_id_and_user_id(message.ticket_id, message.user_id) is None:
            raise ServiceError("ticket not found")
        message_id = self.table.save(message)
        self.tickets.update_status(message.ticket_id, STATUS_OPEN, REPLY_PENDING)
        return message_id