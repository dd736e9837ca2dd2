# v2panel

The service layer of a proxy subscription panel, kept in SQLite through the
standard library's `sqlite3`. It is a library: an application creates a
`Database`, builds the services it needs on it and calls them.

## Installing

```
pip install .
```

The only dependency is `bcrypt`.

## Modules

- `v2panel.store`: `Database` (a SQLite connection, usable as a context
  manager, with nestable `transaction()` blocks, `execute`, `query`, `close`),
  `create_schema(db)` to create every table, `Table` for generic
  get/save/update/delete by key, `table_name(record_type)`, and
  `ServiceError`, raised whenever the panel refuses an action.
- `v2panel.entities`: dataclass records (`Plan`, `Coupon`, `CouponUse`,
  `Payment`, `ProxyService`, `ServerRoute`, `Knowledge`, `Ticket`,
  `TicketMessage`, `RechargeRecord`, `InvitationRecord`, `Setting`, `User`,
  `UserTraffic`, …) and composite views (`TicketInfo`, `ProxyServiceInfo`,
  `KnowledgeInfo`, …). Every record has `to_dict()` and `from_dict()`;
  `user_to_user_traffic(user)` gives a user's traffic view.
- `v2panel.plans`: `PlanService` (save, list, list shown or replacing plans,
  get by id) and `final_price(plan, user_discount, coupon)`, which applies a
  percentage discount and a fixed or percentage coupon and never goes below 0.
- `v2panel.coupons`: `CouponService` (save, delete, list, get by code,
  `check_can_use(code, plan_id, user_id)`) and `CouponUseService`, which reads
  the redemption log. `check_can_use` returns the coupon or raises
  `ServiceError` when it is unknown, not active, limited to another plan, or
  used up per user or overall.
- `v2panel.payment`: `PaymentService` keeps payment channels and builds the
  pay URL for `epay` and `alpha` channels with percentage and fixed handling
  fees. For `alpha` it posts to the gateway; pass your own
  `http_post(url, body, headers)` callable or it uses `urllib`.
- `v2panel.proxy_service`: `ProxyServiceService` manages nodes, their plan and
  route lists, counts by plan or route, batch updates, and the figures nodes
  push (online users, time of last report, today's traffic), held in the
  in-memory `TTLCache`.
- `v2panel.server_route`: `ServerRouteService`; a route still used by a node
  cannot be deleted.
- `v2panel.knowledge`: `KnowledgeService`; `list_shown` groups visible
  articles by category.
- `v2panel.tickets`: `TicketService` and `TicketMessageService`, with replies
  from users and administrators that update the ticket's reply status.
- `v2panel.recharge_records`: `RechargeRecordService` lists the balance
  ledger, sets remarks and sums a month's top-ups, in total and per day.
- `v2panel.invitation_records`: `InvitationRecordService` lists commission
  records (invitee names masked for the inviter's own view) and `review`s
  them, crediting or taking back the inviter's commission balance.
- `v2panel.utils`: order numbers, byte/GB conversion, two-decimal rounding,
  masking, MD5 signing, bcrypt hashing and checking, a check for unsafe
  characters.

## A short example

```python
from v2panel.store import Database, ServiceError, create_schema
from v2panel.entities import Plan
from v2panel.plans import PlanService, final_price
from v2panel.coupons import CouponService

with Database(":memory:") as db:
    create_schema(db)

    plans = PlanService(db)
    plan_id = plans.save(Plan(name="Monthly", price=10.0, show=1, expired=30, transfer_enable=100))
    plan = plans.get_by_id(plan_id)
    print(final_price(plan, user_discount=10))  # 9.0

    coupons = CouponService(db)
    try:
        coupons.check_can_use("NOSUCHCODE", plan_id, user_id=1)
    except ServiceError as exc:
        print(exc)  # coupon does not exist
```

## What it does not do

There is no web server, HTTP API or command-line tool. There is no user
account service (registration, login, tokens), no settings service, and no
flow that buys or renews a plan, credits a top-up to a balance, or turns
commission into balance or a withdrawal. Per-user traffic is not tracked in
memory; only the per-node figures in `TTLCache` are. Applications build these
on the records and tables the package provides.

## Running the tests

```
pip install .[test]
pytest
```