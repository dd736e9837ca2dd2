"""Coupons and the record of their use."""

from __future__ import annotations

import time
from collections.abc import Iterable
from datetime import datetime

from .entities import Coupon, CouponUse
from .store import Database, ServiceError, Table

UNLIMITED = -1


def _timestamp(moment: datetime | None) -> int:
    return int(moment.timestamp()) if moment is not None else 0


class CouponUseService:
    """Reads the log of coupon redemptions."""

    def __init__(self, db: Database) -> None:
        self.table = Table(db, CouponUse)

    def get_by_id(self, use_id: int) -> CouponUse | None:
        """One redemption, or None."""
        return self.table.get_one_by_id(use_id)

    def get_by_user_and_coupon(self, user_id: int, coupon_id: int) -> list[CouponUse]:
        """Redemptions of one coupon by one user."""
        return self.table.select('"user_id" = ? AND "coupon_id" = ?', (user_id, coupon_id), order_by='"id"')

    def get_by_coupon(self, coupon_id: int) -> list[CouponUse]:
        """All redemptions of one coupon."""
        return self.table.select('"coupon_id" = ?', (coupon_id,), order_by='"id"')


class CouponService:
    """Manages coupons and decides whether one may be redeemed."""

    def __init__(self, db: Database, coupon_uses: CouponUseService | None = None) -> None:
        self.table = Table(db, Coupon)
        self.coupon_uses = coupon_uses if coupon_uses is not None else CouponUseService(db)

    def save(self, coupon: Coupon) -> int:
        """Update the coupon when it has an id, insert it otherwise; returns its id."""
        if coupon.id:
            self.table.update_by_id(coupon.id, coupon)
            return coupon.id
        return self.table.save(coupon)

    def delete(self, ids: Iterable[int]) -> int:
        """Delete coupons by id."""
        return self.table.delete_by_ids(ids)

    def list_all(self, query: Coupon) -> list[Coupon]:
        """Coupons matching the query's id (when set) and name and code fragments."""
        conditions = ['"name" LIKE ?', '"code" LIKE ?']
        params: list[object] = [f"%{query.name}%", f"%{query.code}%"]
        if query.id:
            conditions.insert(0, '"id" = ?')
            params.insert(0, query.id)
        return self.table.select(" AND ".join(conditions), params, order_by='"id"')

    def get_by_code(self, code: str) -> Coupon | None:
        """The coupon with this code, or None."""
        found = self.table.select('"code" = ?', (code,), order_by='"id"', limit=1)
        return found[0] if found else None

    def check_can_use(self, code: str, plan_id: int, user_id: int) -> Coupon:
        """The coupon if the user may apply it to the plan now; ServiceError otherwise."""
        coupon = self.get_by_code(code)
        if coupon is None:
            raise ServiceError("coupon does not exist")

        now = int(time.time())
        active = (
            _timestamp(coupon.started_at) <= now
            and _timestamp(coupon.ended_at) >= now
            and coupon.enable == 1
        )
        if not active:
            raise ServiceError("coupon has not started or has expired")

        if coupon.limit_plan_id != 0 and coupon.limit_plan_id != plan_id:
            raise ServiceError("coupon cannot be applied to this plan")

        if coupon.limit_use != UNLIMITED:
            used = self.coupon_uses.get_by_user_and_coupon(user_id, coupon.id)
            if len(used) >= coupon.limit_use:
                raise ServiceError("you have already used this coupon")

        if coupon.limit_use_with_user != UNLIMITED:
            used = self.coupon_uses.get_by_coupon(coupon.id)
            if len(used) >= coupon.limit_use_with_user:
                raise ServiceError("this coupon has been used up")

        return coupon