"""Routing rules that proxy nodes apply to traffic."""

from __future__ import annotations

import dataclasses
from collections.abc import Callable, Iterable

from .entities import ProxyService, ServerRoute
from .store import Database, ServiceError, Table

RouteUsage = Callable[[list[int]], int]


def _order_clause(record_type: type, order_by: str, direction: str) -> str:
    columns = {f.name for f in dataclasses.fields(record_type)}
    if order_by not in columns:
        raise ValueError(f"cannot order by {order_by!r}")
    word = direction.strip().upper()
    if word not in ("", "ASC", "DESC"):
        raise ValueError(f"invalid order direction {direction!r}")
    return f'"{order_by}" {word}'.rstrip()


def _services_using_routes(db: Database) -> RouteUsage:
    services = Table(db, ProxyService)

    def count(route_ids: list[int]) -> int:
        where = " OR ".join('"route_id" LIKE ?' for _ in route_ids)
        return services.count(where, [f'%"{route_id}"%' for route_id in route_ids])

    return count


class ServerRouteService:
    """Manages routing rules."""

    def __init__(self, db: Database, route_usage: RouteUsage | None = None) -> None:
        self.table = Table(db, ServerRoute)
        self.route_usage = route_usage if route_usage is not None else _services_using_routes(db)

    def list(
        self,
        query: ServerRoute,
        order_by: str = "id",
        order_direction: str = "desc",
        offset: int = 0,
        limit: int = 10,
    ) -> tuple[list[ServerRoute], int]:
        """One page of routes matching the query, and the number of matches."""
        conditions = ['"remarks" LIKE ?']
        params: list[object] = [f"%{query.remarks}%"]
        if query.id:
            conditions.append('"id" = ?')
            params.append(query.id)
        if query.enable:
            conditions.append('"enable" = ?')
            params.append(query.enable)
        if query.action:
            conditions.append('"action" = ?')
            params.append(query.action)
        where = " AND ".join(conditions)
        order = _order_clause(ServerRoute, order_by, order_direction)
        items = self.table.select(where, params, order_by=order, limit=limit, offset=offset)
        return items, self.table.count(where, params)

    def all(self) -> list[ServerRoute]:
        """Every route, newest first."""
        return self.table.select(order_by='"id" DESC')

    def save(self, route: ServerRoute) -> int:
        """Update the route when it has an id, insert it otherwise; returns its id."""
        if route.id:
            self.table.update_by_id(route.id, route)
            return route.id
        return self.table.save(route)

    def delete(self, ids: Iterable[int]) -> int:
        """Delete routes by id; refused while any node still uses one of them."""
        keys = list(ids)
        if self.route_usage(keys) > 0:
            raise ServiceError("route is in use by a node and cannot be deleted")
        return self.table.delete_by_ids(keys)