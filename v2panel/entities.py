"""Table records and the composite views built from them."""

import dataclasses
import types
import typing
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, TypeVar, Union

TIME_FORMAT = "%Y-%m-%d %H:%M:%S"

R = TypeVar("R", bound="Record")


def _key(f: dataclasses.Field) -> str:
    return f.metadata.get("key", f.name)


def _is_optional(tp: Any) -> bool:
    return typing.get_origin(tp) in (Union, types.UnionType) and type(None) in typing.get_args(tp)


def _dump(value: Any) -> Any:
    if isinstance(value, Record):
        return value.to_dict()
    if isinstance(value, datetime):
        return value.strftime(TIME_FORMAT)
    if isinstance(value, list):
        return [_dump(item) for item in value]
    return value


def _parse_time(value: Any) -> "datetime | None":
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return datetime.fromtimestamp(value)
    if isinstance(value, str):
        return datetime.fromisoformat(value)
    raise TypeError(f"cannot read a time from {value!r}")


def _load(tp: Any, value: Any) -> Any:
    origin = typing.get_origin(tp)
    if origin in (Union, types.UnionType):
        if value is None:
            return None
        inner = [arg for arg in typing.get_args(tp) if arg is not type(None)]
        return _load(inner[0], value)
    if origin is list:
        (item_type,) = typing.get_args(tp)
        return [_load(item_type, item) for item in value or []]
    if tp is Any:
        return value
    if isinstance(tp, type) and issubclass(tp, Record):
        return value if isinstance(value, tp) else tp.from_dict(value)
    if tp is datetime:
        return _parse_time(value)
    if tp in (int, float, str):
        return tp(value)
    return value


class Record:
    """Base of every record: conversion to and from plain dictionaries."""

    def to_dict(self) -> "dict[str, Any]":
        """The record as a dictionary keyed by its JSON names."""
        return {_key(f): _dump(getattr(self, f.name)) for f in dataclasses.fields(self)}

    @classmethod
    def from_dict(cls, data):
        """Build a record from a mapping; unknown keys are ignored, key case is not significant."""
        if not isinstance(data, Mapping):
            raise TypeError(f"{cls.__name__} needs a mapping, got {type(data).__name__}")
        folded = {k.lower(): v for k, v in data.items() if isinstance(k, str)}
        values: dict = {}
        for f in dataclasses.fields(cls):
            key = _key(f)
            if key in data:
                raw = data[key]
            elif key.lower() in folded:
                raw = folded[key.lower()]
            else:
                continue
            hint = f.type
            if raw is None and not _is_optional(hint):
                continue
            try:
                values[f.name] = _load(hint, raw)
            except (TypeError, ValueError) as exc:
                raise ValueError(f"{cls.__name__}.{f.name}: invalid value {raw!r}") from exc
        return cls(**values)


@dataclass
class Coupon(Record):
    id: int = 0
    code: str = ""
    name: str = ""
    type: int = 0  # 1 fixed amount, 2 percentage
    value: float = 0.0
    enable: int = 0
    limit_use: int = 0
    limit_use_with_user: int = 0
    limit_plan_id: int = 0
    started_at: datetime | None = None
    ended_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    remarks: str = ""


@dataclass
class CouponUse(Record):
    id: int = 0
    coupon_id: int = 0
    user_id: int = 0
    created_at: datetime | None = None
    updated_at: datetime | None = None
    plan_id: int = 0


@dataclass
class InvitationRecord(Record):
    id: int = 0
    amount: float = 0.0
    user_id: int = 0
    from_user_id: int = 0
    commission_rate: int = 0
    recharge_records_id: int = 0
    created_at: datetime | None = None
    updated_at: datetime | None = None
    operate_type: int = 0  # 1 invitation, 2 withdrawal
    state: int = 0  # -1 pending, 1 approved, 2 rejected


@dataclass
class Knowledge(Record):
    id: int = 0
    category: str = ""
    title: str = ""
    body: str = ""
    order_id: int = 0
    show: int = 0
    created_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass
class Payment(Record):
    id: int = 0
    uuid: str = ""
    payment: str = ""
    name: str = ""
    icon: str = ""
    config: str = ""
    notify_domain: str = ""
    handling_fee_fixed: float = 0.0
    handling_fee_percent: int = 0
    enable: int = 0
    order_id: int = 0
    created_at: datetime | None = None
    updated_at: datetime | None = None
    remarks: str = ""


@dataclass
class Plan(Record):
    id: int = 0
    transfer_enable: float = 0.0  # gigabytes
    speed_limit: int = 0
    name: str = ""
    show: int = 0
    order_id: int = 0
    renew: int = 0
    content: str = ""
    expired: int = 0  # days
    price: float = 0.0
    reset_traffic_method: int = 0  # 1 replace, 2 add up
    capacity_limit: int = 0
    created_at: datetime | None = None
    updated_at: datetime | None = None
    remarks: str = ""


@dataclass
class ProxyService(Record):
    id: int = 0
    agreement: str = ""
    service_json: str = ""
    name: str = ""
    plan_id: str = ""  # JSON list of plan ids as strings
    show: int = 0
    host: str = ""
    port: str = ""
    rate: int = 0
    order_id: int = 0
    created_at: datetime | None = None
    updated_at: datetime | None = None
    route_id: str = ""  # JSON list of route ids as strings


@dataclass
class RechargeRecord(Record):
    id: int = 0
    amount: float = 0.0
    user_id: int = 0
    operate_type: int = 0  # 1 recharge, 2 purchase
    recharge_name: str = ""
    consumption_name: str = ""
    remarks: str = ""
    transaction_id: str = ""
    created_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass
class ServerRoute(Record):
    id: int = 0
    remarks: str = ""
    match: str = ""
    action: str = ""  # block | dns
    action_value: str = ""
    created_at: datetime | None = None
    updated_at: datetime | None = None
    enable: int = 0


@dataclass
class Setting(Record):
    code: str = ""
    value: str = ""
    order_id: int = 0
    remarks: str = ""
    created_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass
class Ticket(Record):
    id: int = 0
    user_id: int = 0
    subject: str = ""
    level: int = 0  # 1 low, 2 medium, 3 high
    status: int = 0  # -1 open, 1 closed
    reply_status: int = 0  # -1 awaiting reply, 1 replied
    created_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass
class TicketMessage(Record):
    id: int = 0
    user_id: int = 0
    ticket_id: int = 0
    message: str = ""
    created_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass
class User(Record):
    id: int = 0
    invite_user_id: int = 0
    telegram_id: int = 0
    user_name: str = ""
    password: str = ""
    password_algo: str = ""
    password_salt: str = ""
    balance: float = 0.0
    discount: float = 0.0
    commission_type: int = 0  # 3 system, 1 period, 2 one-time
    commission_rate: int = 0
    commission_balance: float = 0.0
    commission_code: str = ""
    t: int = 0
    u: int = 0
    d: int = 0
    transfer_enable: int = 0
    banned: int = 0
    is_admin: int = 0
    is_staff: int = 0
    last_login_at: int = 0
    last_login_ip: str = ""
    uuid: str = ""
    group_id: int = 0
    token: str = ""
    remarks: str = ""
    expired_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass
class UserTraffic(Record):
    """Traffic a node reports for one user, plus what decides whether the user may go on."""

    uid: int = field(default=0, metadata={"key": "UID"})
    email: str = field(default="", metadata={"key": "Email"})
    upload: int = field(default=0, metadata={"key": "Upload"})
    download: int = field(default=0, metadata={"key": "Download"})
    transfer_enable: int = 0
    expired_at: datetime | None = None
    group_id: int = 0
    banned: int = 0
    uuid: str = ""


def user_to_user_traffic(user: User | None) -> UserTraffic | None:
    """The traffic view of a user, or None for a missing or unsaved user."""
    if user is None or user.id == 0:
        return None
    return UserTraffic(
        uid=user.id,
        email=user.user_name,
        upload=user.u,
        download=user.d,
        transfer_enable=user.transfer_enable,
        expired_at=user.expired_at,
        group_id=user.group_id,
        banned=user.banned,
        uuid=user.uuid,
    )


@dataclass
class InvitationRecordsInfo(Record):
    user: User | None = None
    from_user: User | None = None
    invitation_records: InvitationRecord | None = None


@dataclass
class KnowledgeInfo(Record):
    category: str = ""
    data: list[Knowledge] = field(default_factory=list)


@dataclass
class EpayNotice(Record):
    pid: int = 0
    trade_no: str = ""
    out_trade_no: str = ""
    pay_type: str = field(default="", metadata={"key": "type"})
    name: str = ""
    money: str = ""
    trade_status: str = ""
    param: str = ""
    sign: str = ""
    sign_type: str = ""


@dataclass
class EpayConfig(Record):
    url: Any = field(default=None, metadata={"key": "Url"})
    pid: Any = field(default=None, metadata={"key": "Pid"})
    key: Any = field(default=None, metadata={"key": "Key"})


@dataclass
class AlphaNotice(Record):
    app_id: int = 0
    trade_no: str = ""
    out_trade_no: str = ""
    pay_type: str = field(default="", metadata={"key": "type"})
    name: str = ""
    money: str = ""
    trade_status: str = ""
    param: str = ""
    sign: str = ""
    sign_type: str = ""


@dataclass
class AlphaConfig(Record):
    api_url: Any = None
    app_id: Any = None
    app_secret: Any = None


@dataclass
class ProxyServiceInfo(Record):
    plans: list[Plan] = field(default_factory=list, metadata={"key": "plan"})
    routes: list[ServerRoute] = field(default_factory=list, metadata={"key": "route"})
    service: ProxyService | None = None


@dataclass
class ProxyServiceFlow(Record):
    id: int = 0
    name: str = ""
    flow: int = 0


@dataclass
class RechargeRecordsInfo(Record):
    user: User | None = None
    recharge_records: RechargeRecord | None = None


@dataclass
class Route(Record):
    id: int = 0
    match: list[str] = field(default_factory=list)
    action: str = ""
    action_value: str = ""


@dataclass
class TicketInfo(Record):
    ticket: Ticket | None = None
    user: User | None = None


@dataclass
class TicketMessageInfo(Record):
    message: TicketMessage | None = field(default=None, metadata={"key": "ticket"})
    user: User | None = None


@dataclass
class UserInfo(Record):
    user: User | None = None
    plan: Plan | None = None