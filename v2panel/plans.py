"""Subscription plans and what a user pays for one."""

from __future__ import annotations

from .entities import Coupon, Plan
from .store import Database, Table

SHOWN = 1
RESET_REPLACE = 1
RESET_ADD = 2
COUPON_AMOUNT = 1
COUPON_PERCENT = 2

_ORDER = '"order_id" DESC, "id"'


def final_price(plan: Plan, user_discount: float = 0.0, coupon: Coupon | None = None) -> float:
    """The plan's price after the user's own discount and an optional coupon, never below zero."""
    price = plan.price
    if user_discount > 0:
        price -= price * user_discount / 100
    if coupon is not None:
        if coupon.type == COUPON_AMOUNT:
            price -= coupon.value
        elif coupon.type == COUPON_PERCENT:
            price -= price * coupon.value / 100
    return max(price, 0.0)


class PlanService:
    """Manages subscription plans."""

    def __init__(self, db: Database) -> None:
        self.table = Table(db, Plan)

    def save(self, plan: Plan) -> int:
        """Update the plan when it has an id, insert it otherwise; returns its id."""
        if plan.id:
            self.table.update_by_id(plan.id, plan)
            return plan.id
        return self.table.save(plan)

    def list_all(self, query: Plan) -> list[Plan]:
        """Plans matching the query's id (when set) and name fragment, by order_id, highest first."""
        conditions = ['"name" LIKE ?']
        params: list[object] = [f"%{query.name}%"]
        if query.id:
            conditions.insert(0, '"id" = ?')
            params.insert(0, query.id)
        return self.table.select(" AND ".join(conditions), params, order_by=_ORDER)

    def list_shown(self) -> list[Plan]:
        """Plans offered to users."""
        return self.table.select('"show" = ?', (SHOWN,), order_by=_ORDER)

    def list_shown_overriding(self) -> list[Plan]:
        """Offered plans whose purchase replaces the user's current plan."""
        return self.table.select(
            '"show" = ? AND "reset_traffic_method" = ?', (SHOWN, RESET_REPLACE), order_by=_ORDER
        )

    def list_overriding(self) -> list[Plan]:
        """All plans whose purchase replaces the user's current plan."""
        return self.table.select('"reset_traffic_method" = ?', (RESET_REPLACE,), order_by=_ORDER)

    def get_by_id(self, plan_id: int) -> Plan | None:
        """One plan, or None."""
        return self.table.get_one_by_id(plan_id)