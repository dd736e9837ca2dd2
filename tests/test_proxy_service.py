import json
import time

import pytest

from v2panel.entities import Plan, ProxyService, ServerRoute, UserTraffic
from v2panel.proxy_service import ProxyServiceService, TTLCache
from v2panel.store import Database, ServiceError, create_schema
from v2panel.utils import get_date_now_str


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


@pytest.fixture
def db():
    database = Database()
    create_schema(database)
    yield database
    database.close()


@pytest.fixture
def svc(db):
    return ProxyServiceService(db)


def ids_json(*ids):
    return json.dumps([str(i) for i in ids])


def test_cache_entry_expires():
    clock = FakeClock()
    cache = TTLCache(clock)
    cache.set("a", 5, 10)
    assert cache.get("a") == 5
    clock.now += 11
    assert cache.get("a", "gone") == "gone"
    assert cache.keys() == []


def test_cache_zero_ttl_never_expires():
    clock = FakeClock()
    cache = TTLCache(clock)
    cache.set("k", "v", 0)
    clock.now += 10**9
    assert cache.get("k") == "v"
    assert cache.keys() == ["k"]


def test_cache_negative_ttl_removes():
    cache = TTLCache(FakeClock())
    cache.set("k", 1)
    cache.set("k", 2, -1)
    assert cache.get("k") is None


def test_save_update_and_update_host(svc):
    node_id = svc.save(ProxyService(name="node", host="10.0.0.1"))
    svc.save(ProxyService(id=node_id, name="renamed", host="10.0.0.1"))
    assert svc.update_host(node_id, "10.0.0.2") == 1
    (node,) = svc.all()
    assert (node.name, node.host) == ("renamed", "10.0.0.2")
    assert svc.count() == 1


def test_list_attaches_replacing_plans_and_routes(db, svc):
    replacing = svc.plans.save(Plan(name="replace", reset_traffic_method=1))
    adding = svc.plans.save(Plan(name="add", reset_traffic_method=2))
    route = svc.routes.save(ServerRoute(remarks="block ads", action="block"))
    svc.save(ProxyService(name="n1", plan_id=ids_json(adding, replacing), route_id=ids_json(route)))
    items, total = svc.list(ProxyService())
    assert total == 1
    assert [p.name for p in items[0].plans] == ["replace"]
    assert [r.id for r in items[0].routes] == [route]
    assert items[0].service.name == "n1"


def test_list_filters_by_plan_id(svc):
    svc.save(ProxyService(name="a", plan_id=ids_json(1, 2)))
    svc.save(ProxyService(name="b", plan_id=ids_json(3)))
    items, total = svc.list(ProxyService(), plan_id="3")
    assert total == 1
    assert [i.service.name for i in items] == ["b"]
    _, everything = svc.list(ProxyService(), plan_id="not a number")
    assert everything == 2


def test_list_pages_and_rejects_bad_order(svc):
    for name in ("a", "b", "c"):
        svc.save(ProxyService(name=name))
    items, total = svc.list(ProxyService(), order_by="name", order_direction="asc", offset=1, limit=1)
    assert total == 3
    assert [i.service.name for i in items] == ["b"]
    with pytest.raises(ValueError):
        svc.list(ProxyService(), order_by="name; drop")


def test_count_by_plan_and_route_ids(svc):
    svc.save(ProxyService(plan_id=ids_json(1, 2), route_id=ids_json(5)))
    svc.save(ProxyService(plan_id=ids_json(2), route_id=ids_json(6)))
    assert svc.count_by_plan_ids([2]) == 2
    assert svc.count_by_plan_ids([1, 9]) == 1
    assert svc.count_by_plan_ids([9]) == 0
    assert svc.count_by_route_ids([5, 6]) == 2
    assert svc.count_by_route_ids([7]) == 0


def test_get_with_plan_ids_keeps_unreadable_as_zero(svc):
    node_id = svc.save(ProxyService(plan_id='["3","x","7"]'))
    node, plan_ids = svc.get_with_plan_ids(node_id)
    assert node.id == node_id
    assert plan_ids == [3, 0, 7]


def test_get_with_plan_ids_rejects_invalid_json(svc):
    node_id = svc.save(ProxyService(plan_id=""))
    with pytest.raises(ServiceError):
        svc.get_with_plan_ids(node_id)


def test_missing_node_raises(svc):
    with pytest.raises(ServiceError):
        svc.get_with_routes(404)


def test_get_with_routes_and_plans(svc):
    r1 = svc.routes.save(ServerRoute(remarks="r1"))
    svc.routes.save(ServerRoute(remarks="r2"))
    p1 = svc.plans.save(Plan(name="p1"))
    node_id = svc.save(ProxyService(route_id=ids_json(r1), plan_id=ids_json(p1)))
    _, routes = svc.get_with_routes(node_id)
    assert [r.remarks for r in routes] == ["r1"]
    _, plans = svc.get_with_plans(node_id)
    assert [p.name for p in plans] == ["p1"]
    empty_id = svc.save(ProxyService(route_id="[]", plan_id="[]"))
    assert svc.get_with_routes(empty_id)[1] == []
    assert svc.get_with_plans(empty_id)[1] == []


def test_list_shown_by_plan(svc):
    svc.save(ProxyService(name="low", plan_id=ids_json(4), show=1, order_id=1))
    svc.save(ProxyService(name="high", plan_id=ids_json(4), show=1, order_id=9))
    svc.save(ProxyService(name="hidden", plan_id=ids_json(4), show=0))
    svc.save(ProxyService(name="other", plan_id=ids_json(5), show=1))
    assert [s.name for s in svc.list_shown_by_plan(4)] == ["high", "low"]


def test_cache_service_flow_accumulates(db):
    cache = TTLCache(FakeClock())
    svc = ProxyServiceService(db, cache=cache)
    first = [UserTraffic(uid=1, upload=100, download=50), UserTraffic(uid=2, upload=7, download=3)]
    second = [UserTraffic(uid=1, upload=1, download=2)]
    before = int(time.time())
    svc.cache_service_flow(8, first)
    svc.cache_service_flow(8, second)
    after = int(time.time())
    expected = sum(t.upload + t.download for t in first + second)
    assert cache.get(f"SERVER_8_{get_date_now_str()}_FLOW") == expected
    report = svc.online_users_and_last_push()
    assert set(report) == {8}
    assert report[8][1] == len(second)
    assert before <= report[8][2] <= after


def test_online_users_expire_but_last_push_stays(db):
    clock = FakeClock()
    svc = ProxyServiceService(db, cache=TTLCache(clock))
    svc.cache_service_flow(3, [UserTraffic(uid=1)])
    clock.now += 3601
    report = svc.online_users_and_last_push()
    assert 1 not in report[3]
    assert 2 in report[3]


def test_update_batch_plans_and_routes(svc):
    a = svc.save(ProxyService(name="a"))
    b = svc.save(ProxyService(name="b"))
    c = svc.save(ProxyService(name="c"))
    assert svc.update_batch_plans([a, b], ids_json(1)) == 2
    assert svc.update_batch_routes([c], ids_json(2)) == 1
    assert svc.update_batch_plans([], ids_json(1)) == 0
    nodes = {n.id: n for n in svc.all()}
    assert nodes[a].plan_id == ids_json(1)
    assert nodes[b].plan_id == ids_json(1)
    assert nodes[c].plan_id == ""
    assert nodes[c].route_id == ids_json(2)


def test_delete(svc):
    a = svc.save(ProxyService(name="a"))
    svc.save(ProxyService(name="b"))
    assert svc.delete([a]) == 1
    assert [n.name for n in svc.all()] == ["b"]