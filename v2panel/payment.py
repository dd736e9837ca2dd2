"""Payment channels and the redirect URLs that start a top-up."""

from __future__ import annotations

import dataclasses
import json
import time
import urllib.request
from collections.abc import Callable, Iterable, Mapping
from typing import Any
from urllib.parse import quote_plus

from .entities import AlphaConfig, EpayConfig, Payment
from .store import Database, ServiceError, Table
from .utils import decimal, md5v, recharge_order_no

ENABLED = 1
NOTIFY_PATH = "/pay/e_pay_notify"
WALLET_PATH = "/user/wallet"

HttpPost = Callable[[str, str, "dict[str, str]"], str]


def _urllib_post(url: str, body: str, headers: dict[str, str]) -> str:
    request = urllib.request.Request(url, data=body.encode("utf-8"), headers=headers, method="POST")
    with urllib.request.urlopen(request, timeout=30) as response:
        return response.read().decode("utf-8", "replace")


def _var_str(value: Any) -> str:
    """Text of a loosely typed configuration value."""
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "true" if value else "false"
    return json.dumps(value, ensure_ascii=False)


def _load_config(payment: Payment) -> Mapping[str, Any]:
    try:
        data = json.loads(payment.config)
    except ValueError as exc:
        raise ServiceError(f"invalid configuration for payment {payment.id}") from exc
    if data is None:
        return {}
    if not isinstance(data, Mapping):
        raise ServiceError(f"invalid configuration for payment {payment.id}")
    return data


def _json_url(text: str) -> str:
    try:
        data = json.loads(text)
    except ValueError:
        return ""
    if not isinstance(data, Mapping):
        return ""
    return _var_str(data.get("url"))


class PaymentService:
    """Manages payment channels and builds payment requests."""

    def __init__(self, db: Database, http_post: HttpPost | None = None) -> None:
        self.table = Table(db, Payment)
        self.http_post = http_post if http_post is not None else _urllib_post

    def save(self, payment: Payment) -> int:
        """Update the channel when it has an id, insert it otherwise; returns its id."""
        if payment.id:
            self.table.update_by_id(payment.id, payment)
            return payment.id
        return self.table.save(payment)

    def delete(self, ids: Iterable[int]) -> int:
        """Delete channels by id."""
        return self.table.delete_by_ids(ids)

    def get_by_id(self, payment_id: int) -> Payment | None:
        """One channel, or None."""
        return self.table.get_one_by_id(payment_id)

    def admin_list_all(self, query: Payment) -> list[Payment]:
        """Channels matching the query's id (when set) and name fragment, by order_id, highest first."""
        conditions = ['"name" LIKE ?']
        params: list[object] = [f"%{query.name}%"]
        if query.id:
            conditions.insert(0, '"id" = ?')
            params.insert(0, query.id)
        return self.table.select(" AND ".join(conditions), params, order_by='"order_id" DESC, "id"')

    def list_shown(self) -> list[Payment]:
        """Enabled channels without their configuration and remarks."""
        found = self.table.select('"enable" = ?', (ENABLED,), order_by='"order_id" DESC, "id"')
        return [dataclasses.replace(payment, config="", remarks="") for payment in found]

    def get_pay_url(self, payment_id: int, amount: float, user_id: int, redirect: str = "") -> str:
        """The URL that sends the user to the channel to pay ``amount`` plus fees."""
        payment = self.get_by_id(payment_id)
        if payment is None:
            raise ServiceError("payment does not exist")
        if amount < 0:
            raise ServiceError("amount must not be negative")
        amount = decimal(amount)

        fee = 0.0
        if payment.handling_fee_percent > 0:
            fee = amount * payment.handling_fee_percent / 100
        if payment.handling_fee_fixed > 0:
            fee += payment.handling_fee_fixed

        total = amount + fee
        price_str = f"{amount:.2f}"
        transaction_id = recharge_order_no(total, payment.id, user_id)
        out_trade_no = str(time.time_ns() // 1_000_000)

        if payment.payment == "epay":
            config = EpayConfig.from_dict(_load_config(payment))
            address = f"{_var_str(config.url)}/submit.php?"
            query = (
                f"money={total:.2f}"
                f"&name={transaction_id}"
                f"&notify_url={payment.notify_domain}{NOTIFY_PATH}"
                f"&out_trade_no={out_trade_no}"
                f"&param={price_str}|{payment.id}|{user_id}|{transaction_id}"
                f"&pid={_var_str(config.pid)}"
                f"&return_url={redirect}{WALLET_PATH}"
            )
            sign = md5v(query, _var_str(config.key))
            return f"{address}{query}&sign={sign}&sign_type=MD5"

        if payment.payment == "alpha":
            config = AlphaConfig.from_dict(_load_config(payment))
            address = f"{_var_str(config.api_url)}/api/v1/tron"
            body = (
                f"app_id={_var_str(config.app_id)}"
                f"&notify_url={quote_plus(payment.notify_domain + NOTIFY_PATH, safe='')}"
                f"&out_trade_no={out_trade_no}"
                f"&return_url={quote_plus(payment.notify_domain + WALLET_PATH, safe='')}"
                f"&total_amount={total * 100:.2f}"
            )
            body += f"&sign={md5v(body, _var_str(config.app_secret))}"
            headers = {
                "User-Agent": "Alpha",
                "Content-Type": "application/x-www-form-urlencoded",
            }
            try:
                reply = self.http_post(address, body, headers)
            except OSError as exc:
                raise ServiceError(f"payment request failed: {exc}") from exc
            return _json_url(reply)

        raise ServiceError("payment type is not implemented")