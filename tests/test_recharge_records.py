import dataclasses
from datetime import datetime

import pytest

from v2panel.entities import RechargeRecord, User
from v2panel.recharge_records import OPERATE_CONSUME, OPERATE_RECHARGE, RechargeRecordService
from v2panel.store import Database, Table, create_schema


def _parts(info):
    return tuple(getattr(info, f.name) for f in dataclasses.fields(info))


@pytest.fixture
def db():
    database = Database(":memory:")
    create_schema(database)
    yield database
    database.close()


@pytest.fixture
def users(db):
    table = Table(db, User)
    alice = table.save(User(user_name="alice"))
    bob = table.save(User(user_name="bob"))
    return alice, bob


def _add(db, **fields):
    return Table(db, RechargeRecord).save(RechargeRecord(**fields))


def test_list_filters_by_user_name_and_attaches_user(db, users):
    alice, bob = users
    _add(db, amount=5.0, user_id=alice, operate_type=OPERATE_RECHARGE, transaction_id="a1")
    _add(db, amount=7.0, user_id=bob, operate_type=OPERATE_RECHARGE, transaction_id="b1")
    service = RechargeRecordService(db)

    items, total = service.list(RechargeRecord(), user_name="ali")

    assert total == 1
    user, record = _parts(items[0])
    assert user.user_name == "alice"
    assert record.transaction_id == "a1"


def test_list_filters_by_operate_type_and_orders(db, users):
    alice, _ = users
    first = _add(db, amount=1.0, user_id=alice, operate_type=OPERATE_RECHARGE, transaction_id="x1")
    second = _add(db, amount=2.0, user_id=alice, operate_type=OPERATE_RECHARGE, transaction_id="x2")
    _add(db, amount=3.0, user_id=alice, operate_type=OPERATE_CONSUME, transaction_id="x3")
    service = RechargeRecordService(db)

    items, total = service.list(RechargeRecord(operate_type=OPERATE_RECHARGE), order_direction="asc")

    assert total == 2
    assert [_parts(i)[1].id for i in items] == [first, second]


def test_list_pages_but_counts_all(db, users):
    alice, _ = users
    for n in range(5):
        _add(db, amount=1.0, user_id=alice, operate_type=OPERATE_RECHARGE, transaction_id=f"t{n}")
    items, total = RechargeRecordService(db).list(RechargeRecord(), offset=0, limit=2)
    assert len(items) == 2
    assert total == 5


def test_list_rejects_unknown_order_column(db):
    with pytest.raises(ValueError):
        RechargeRecordService(db).list(RechargeRecord(), order_by="nope")


def test_list_by_user_returns_only_that_user(db, users):
    alice, bob = users
    _add(db, amount=1.0, user_id=alice, operate_type=OPERATE_RECHARGE, transaction_id="a")
    _add(db, amount=2.0, user_id=bob, operate_type=OPERATE_RECHARGE, transaction_id="b")
    items, total = RechargeRecordService(db).list_by_user(bob)
    assert total == 1
    assert items[0].user_id == bob


def test_update_remarks(db, users):
    alice, _ = users
    record_id = _add(db, amount=1.0, user_id=alice, operate_type=OPERATE_RECHARGE, transaction_id="r")
    service = RechargeRecordService(db)
    assert service.update_remarks(record_id, "checked") == 1
    assert Table(db, RechargeRecord).get_one_by_id(record_id).remarks == "checked"


def test_month_income_counts_only_recharges_of_the_month(db, users):
    alice, _ = users
    _add(db, amount=10.5, user_id=alice, operate_type=OPERATE_RECHARGE,
         transaction_id="m1", created_at=datetime(2023, 9, 2, 10, 0, 0))
    _add(db, amount=20.0, user_id=alice, operate_type=OPERATE_RECHARGE,
         transaction_id="m2", created_at=datetime(2023, 9, 20, 10, 0, 0))
    _add(db, amount=99.0, user_id=alice, operate_type=OPERATE_CONSUME,
         transaction_id="m3", created_at=datetime(2023, 9, 3, 10, 0, 0))
    _add(db, amount=50.0, user_id=alice, operate_type=OPERATE_RECHARGE,
         transaction_id="m4", created_at=datetime(2023, 8, 3, 10, 0, 0))
    income = RechargeRecordService(db).month_income(datetime(2023, 9, 25))
    assert income == pytest.approx(10.5 + 20.0)


def test_month_income_empty_is_zero(db):
    assert RechargeRecordService(db).month_income(datetime(2023, 9, 25)) == 0


def test_month_daily_income_has_one_entry_per_day(db, users):
    alice, _ = users
    _add(db, amount=3.7, user_id=alice, operate_type=OPERATE_RECHARGE,
         transaction_id="d1", created_at=datetime(2023, 9, 1, 8, 0, 0))
    _add(db, amount=2.5, user_id=alice, operate_type=OPERATE_RECHARGE,
         transaction_id="d2", created_at=datetime(2023, 9, 3, 8, 0, 0))
    _add(db, amount=1.0, user_id=alice, operate_type=OPERATE_RECHARGE,
         transaction_id="d3", created_at=datetime(2023, 9, 3, 9, 0, 0))
    days = RechargeRecordService(db).month_daily_income(datetime(2023, 9, 5, 12, 0, 0))
    assert len(days) == 5
    assert days == [3, 0, 3, 0, 0]