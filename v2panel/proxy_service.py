"""Proxy nodes: their plans and routes, and the live figures nodes report."""

from __future__ import annotations

import dataclasses
import json
import threading
import time
from collections.abc import Callable, Iterable, Sequence
from typing import Any

from .entities import Plan, ProxyService, ProxyServiceInfo, ServerRoute, UserTraffic
from .plans import PlanService
from .server_route import ServerRouteService
from .store import Database, ServiceError, Table
from .utils import get_date_now_str

SHOWN = 1
ONLINE_USERS = 1
LAST_PUSH_AT = 2
ONLINE_USER_TTL = 3600
FLOW_TTL = 49 * 3600

_PREFIX = "SERVER_"
_ONLINE_SUFFIX = "_ONLINE_USER"
_PUSH_SUFFIX = "_LAST_PUSH_AT"


class TTLCache:
    """A thread-safe in-memory key/value store whose entries may expire."""

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._items: dict[str, tuple[Any, float | None]] = {}
        self._lock = threading.Lock()

    def set(self, key: str, value: Any, ttl: float = 0) -> None:
        """Store a value for ``ttl`` seconds; 0 keeps it forever, a negative ttl removes it."""
        with self._lock:
            if ttl < 0:
                self._items.pop(key, None)
                return
            expires = None if ttl == 0 else self._clock() + ttl
            self._items[key] = (value, expires)

    def _alive(self, expires: float | None, now: float) -> bool:
        return expires is None or expires > now

    def get(self, key: str, default: Any = None) -> Any:
        """The stored value, or ``default`` when it is missing or expired."""
        with self._lock:
            item = self._items.get(key)
            if item is None:
                return default
            value, expires = item
            if not self._alive(expires, self._clock()):
                del self._items[key]
                return default
            return value

    def keys(self) -> list[str]:
        """Keys of every entry still alive."""
        with self._lock:
            now = self._clock()
            expired = [k for k, (_, exp) in self._items.items() if not self._alive(exp, now)]
            for key in expired:
                del self._items[key]
            return list(self._items)


def _to_int(value: Any) -> int:
    """Lenient integer conversion: anything unreadable becomes 0."""
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, int):
        return value
    try:
        return int(str(value).strip())
    except ValueError:
        pass
    try:
        return int(float(str(value).strip()))
    except (ValueError, OverflowError):
        return 0


def _id_strings(text: str) -> list[str]:
    """The JSON list of id strings, or an empty list when it cannot be read."""
    try:
        data = json.loads(text)
    except ValueError:
        return []
    if isinstance(data, list) and all(isinstance(item, str) for item in data):
        return data
    return []


def _strict_id_strings(text: str) -> list[str]:
    try:
        data = json.loads(text)
    except ValueError as exc:
        raise ServiceError(f"invalid id list {text!r}") from exc
    if data is None:
        return []
    if not isinstance(data, list) or not all(isinstance(item, str) for item in data):
        raise ServiceError(f"invalid id list {text!r}")
    return data


def _numeric_ids(strings: Iterable[str]) -> list[int]:
    result = []
    for text in strings:
        try:
            result.append(int(text))
        except ValueError:
            continue
    return result


def _marks(values: Sequence[Any]) -> str:
    return ", ".join("?" for _ in values)


def _order_clause(order_by: str, direction: str) -> str:
    columns = {f.name for f in dataclasses.fields(ProxyService)}
    if order_by not in columns:
        raise ValueError(f"cannot order by {order_by!r}")
    word = direction.strip().upper()
    if word not in ("", "ASC", "DESC"):
        raise ValueError(f"invalid order direction {direction!r}")
    return f'"{order_by}" {word}'.rstrip()


def _contains_id(column: str, ids: Iterable[int]) -> tuple[str, list[str]]:
    keys = list(ids)
    where = " OR ".join(f'"{column}" LIKE ?' for _ in keys)
    return where, [f'%"{key}"%' for key in keys]


def _pick(ids: Iterable[str], records: Sequence[Any]) -> list[Any]:
    by_id = {str(record.id): record for record in records}
    return [by_id[i] for i in ids if i in by_id]


class ProxyServiceService:
    """Manages proxy nodes and the traffic figures they push."""

    def __init__(
        self,
        db: Database,
        plans: PlanService | None = None,
        routes: ServerRouteService | None = None,
        cache: TTLCache | None = None,
    ) -> None:
        self.db = db
        self.table = Table(db, ProxyService)
        self.plan_table = Table(db, Plan)
        self.route_table = Table(db, ServerRoute)
        self.plans = plans if plans is not None else PlanService(db)
        self.routes = routes if routes is not None else ServerRouteService(db)
        self.cache = cache if cache is not None else TTLCache()

    def list(
        self,
        query: ProxyService,
        plan_id: Any = "",
        order_by: str = "id",
        order_direction: str = "desc",
        offset: int = 0,
        limit: int = 10,
    ) -> tuple[list[ProxyServiceInfo], int]:
        """One page of nodes with their replacing plans and routes, and the number of matches."""
        conditions = [f'"{column}" LIKE ?' for column in ("agreement", "service_json", "name", "host", "port")]
        params: list[object] = [
            f"%{query.agreement}%",
            f"%{query.service_json}%",
            f"%{query.name}%",
            f"%{query.host}%",
            f"%{query.port}%",
        ]
        if query.id:
            conditions.append('"id" = ?')
            params.append(query.id)
        if query.show:
            conditions.append('"show" = ?')
            params.append(query.show)
        if _to_int(plan_id) != 0:
            conditions.append('"plan_id" LIKE ?')
            params.append(f'%"{plan_id}"%')
        where = " AND ".join(conditions)
        order = _order_clause(order_by, order_direction)
        services = self.table.select(where, params, order_by=order, limit=limit, offset=offset)
        total = self.table.count(where, params)
        if total == 0:
            return [ProxyServiceInfo(service=s) for s in services], total

        plan_list = self.plans.list_overriding()
        route_list = self.routes.all()
        items = [
            ProxyServiceInfo(
                plans=_pick(_id_strings(s.plan_id), plan_list),
                routes=_pick(_id_strings(s.route_id), route_list),
                service=s,
            )
            for s in services
        ]
        return items, total

    def all(self) -> list[ProxyService]:
        """Every node."""
        return self.table.select(order_by='"id"')

    def save(self, service: ProxyService) -> int:
        """Update the node when it has an id, insert it otherwise; returns its id."""
        if service.id:
            self.table.update_by_id(service.id, service)
            return service.id
        return self.table.save(service)

    def update_host(self, service_id: int, host: str) -> int:
        """Change a node's address."""
        cursor = self.db.execute('UPDATE "v2_proxy_service" SET "host" = ? WHERE "id" = ?', [host, service_id])
        return cursor.rowcount

    def delete(self, ids: Iterable[int]) -> int:
        """Delete nodes by id."""
        return self.table.delete_by_ids(ids)

    def count_by_route_ids(self, route_ids: Iterable[int]) -> int:
        """Number of nodes that use any of the routes."""
        where, params = _contains_id("route_id", route_ids)
        return self.table.count(where, params)

    def count_by_plan_ids(self, plan_ids: Iterable[int]) -> int:
        """Number of nodes that serve any of the plans."""
        where, params = _contains_id("plan_id", plan_ids)
        return self.table.count(where, params)

    def _get(self, service_id: int) -> ProxyService:
        service = self.table.get_one_by_id(service_id)
        if service is None:
            raise ServiceError("node does not exist")
        return service

    def get_with_routes(self, service_id: int) -> tuple[ProxyService, list[ServerRoute]]:
        """A node and the routes it uses."""
        service = self._get(service_id)
        ids = _numeric_ids(_id_strings(service.route_id))
        if not ids:
            return service, []
        routes = self.route_table.select(f'"id" IN ({_marks(ids)})', ids, order_by='"id"')
        return service, routes

    def get_with_plan_ids(self, service_id: int) -> tuple[ProxyService, list[int]]:
        """A node and the ids of its plans; unreadable ids come out as 0."""
        service = self._get(service_id)
        return service, [_to_int_strict(text) for text in _strict_id_strings(service.plan_id)]

    def get_with_plans(self, service_id: int) -> tuple[ProxyService, list[Plan]]:
        """A node and the plans it serves."""
        service = self._get(service_id)
        ids = _numeric_ids(_strict_id_strings(service.plan_id))
        if not ids:
            return service, []
        plans = self.plan_table.select(f'"id" IN ({_marks(ids)})', ids, order_by='"id"')
        return service, plans

    def list_shown_by_plan(self, plan_id: int) -> list[ProxyService]:
        """Visible nodes serving the plan, by order_id, highest first."""
        return self.table.select(
            '"plan_id" LIKE ? AND "show" = ?',
            (f'%"{plan_id}"%', SHOWN),
            order_by='"order_id" DESC, "id"',
        )

    def count(self) -> int:
        """Number of nodes."""
        return self.table.count()

    def cache_service_flow(self, node_id: int, user_traffic: Sequence[UserTraffic]) -> None:
        """Record a node's report: online users, time of report and today's traffic."""
        now = int(time.time())
        self.cache.set(f"{_PREFIX}{node_id}{_ONLINE_SUFFIX}", len(user_traffic), ONLINE_USER_TTL)
        self.cache.set(f"{_PREFIX}{node_id}{_PUSH_SUFFIX}", now, 0)
        used = sum(t.upload + t.download for t in user_traffic)
        flow_key = f"{_PREFIX}{node_id}_{get_date_now_str()}_FLOW"
        previous = _to_int(self.cache.get(flow_key, 0))
        self.cache.set(flow_key, previous + used, FLOW_TTL)

    def online_users_and_last_push(self) -> dict[int, dict[int, int]]:
        """Per node id: {1: online users, 2: unix time of the last report}."""
        data: dict[int, dict[int, int]] = {}
        for key in self.cache.keys():
            if not key.startswith(_PREFIX):
                continue
            if key.endswith(_ONLINE_SUFFIX):
                suffix, kind = _ONLINE_SUFFIX, ONLINE_USERS
            elif key.endswith(_PUSH_SUFFIX):
                suffix, kind = _PUSH_SUFFIX, LAST_PUSH_AT
            else:
                continue
            node_id = _to_int(key.replace(_PREFIX, "").replace(suffix, ""))
            value = self.cache.get(key)
            if value is None:
                continue
            data.setdefault(node_id, {})[kind] = _to_int(value)
        return data

    def _update_batch(self, column: str, ids: Iterable[int], value: str) -> int:
        keys = list(ids)
        if not keys:
            return 0
        cursor = self.db.execute(
            f'UPDATE "v2_proxy_service" SET "{column}" = ? WHERE "id" IN ({_marks(keys)})',
            [value, *keys],
        )
        return cursor.rowcount

    def update_batch_plans(self, ids: Iterable[int], plan_ids: str) -> int:
        """Give every listed node the same plan list."""
        return self._update_batch("plan_id", ids, plan_ids)

    def update_batch_routes(self, ids: Iterable[int], route_ids: str) -> int:
        """Give every listed node the same route list."""
        return self._update_batch("route_id", ids, route_ids)


def _to_int_strict(text: str) -> int:
    try:
        return int(text)
    except ValueError:
        return 0