"""String, money, traffic and password helpers shared by the services."""

from __future__ import annotations

import hashlib
import math
import time
from datetime import datetime, timedelta
from decimal import Decimal

import bcrypt

BYTES_PER_GB = 1073741824
BCRYPT_DEFAULT_COST = 10
BCRYPT_MAX_PASSWORD_BYTES = 72
_SPECIAL_CHARACTERS = "'\"$%<>/\\#&"


def _format_float(value: float) -> str:
    """Render a float the way order numbers expect: shortest digits, no trailing '.0'."""
    value = float(value)
    if math.isnan(value):
        return "NaN"
    if math.isinf(value):
        return "+Inf" if value > 0 else "-Inf"
    if value == 0:
        return "-0" if math.copysign(1.0, value) < 0 else "0"

    sign, digits, exponent = Decimal(repr(value)).normalize().as_tuple()
    text = "".join(str(digit) for digit in digits)
    point = len(text) + exponent
    prefix = "-" if sign else ""
    exp10 = point - 1

    if exp10 < -4 or exp10 >= 6:
        mantissa = text[0] + (f".{text[1:]}" if len(text) > 1 else "")
        exp_sign = "-" if exp10 < 0 else "+"
        return f"{prefix}{mantissa}e{exp_sign}{abs(exp10):02d}"
    if point <= 0:
        return f"{prefix}0.{'0' * -point}{text}"
    if point >= len(text):
        return f"{prefix}{text}{'0' * (point - len(text))}"
    return f"{prefix}{text[:point]}.{text[point:]}"


def md5v(password: str, salt: str) -> str:
    """Hex MD5 digest of the password followed by the salt."""
    return hashlib.md5((password + salt).encode("utf-8")).hexdigest()


def use_order_no(plan_id: int, price: float, code: str, user_id: int) -> str:
    """Purchase order number: timestamp-plan id-list price-coupon code-user id."""
    return f"{int(time.time())}-{plan_id}-{_format_float(price)}-{code}-{user_id}"


def recharge_order_no(price: float, pay_id: int, user_id: int) -> str:
    """Recharge order number: timestamp-amount paid-payment id-user id."""
    return f"{int(time.time())}-{_format_float(price)}-{pay_id}-{user_id}"


def bytes_to_gb(size: int) -> float:
    """Convert a byte count to gigabytes, kept to two decimals."""
    return decimal(size / BYTES_PER_GB)


def gb_to_bytes(gigabytes: float) -> int:
    """Convert gigabytes to a whole number of bytes, truncating toward zero."""
    return int(gigabytes * BYTES_PER_GB)


def mask_string(text: str) -> str:
    """Keep the first two characters and replace the rest with '*'."""
    if len(text) <= 2:
        return text
    return text[:2] + "*" * (len(text) - 2)


def decimal(value: float) -> float:
    """Round a float to two decimal places."""
    return float(f"{value:.2f}")


def _date_str(moment: datetime) -> str:
    return f"{moment.year}{moment.month}{moment.day}"


def get_date_now_str() -> str:
    """Today's date as year, month and day joined without padding, e.g. 2023922."""
    return _date_str(datetime.now())


def get_date_now_minus_day_str(day: int) -> str:
    """The date ``day`` days ago, in the same form as :func:`get_date_now_str`."""
    return _date_str(datetime.now() - timedelta(days=day))


def bcrypt_generate_password(password: str) -> str:
    """Hash a password with bcrypt at the default cost.

    Raises ValueError when the password is longer than bcrypt accepts.
    """
    raw = password.encode("utf-8")
    if len(raw) > BCRYPT_MAX_PASSWORD_BYTES:
        raise ValueError("password length exceeds 72 bytes")
    return bcrypt.hashpw(raw, bcrypt.gensalt(rounds=BCRYPT_DEFAULT_COST)).decode("ascii")


def bcrypt_check_password(password: str, hashed: str) -> bool:
    """Whether the password matches the bcrypt hash."""
    try:
        return bcrypt.checkpw(password.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        return False


def check_str(text: str) -> bool:
    """Whether the text holds any character unsafe for names and codes."""
    return any(char in text for char in _SPECIAL_CHARACTERS)