from datetime import datetime

import pytest

from v2panel import utils


def _fixed_datetime(moment):
    class _Fixed(datetime):
        @classmethod
        def now(cls, tz=None):
            return cls(moment.year, moment.month, moment.day, moment.hour, moment.minute)

    return _Fixed


def test_md5v_of_empty_input():
    assert utils.md5v("", "") == "d41d8cd98f00b204e9800998ecf8427e"


def test_md5v_concatenates_password_and_salt():
    assert utils.md5v("abc", "def") == utils.md5v("abcd", "ef")
    assert utils.md5v("abc", "def") != utils.md5v("abc", "xyz")
    digest = utils.md5v("abc", "def")
    assert len(digest) == 32
    assert all(c in "0123456789abcdef" for c in digest)


def test_use_order_no_layout():
    order = utils.use_order_no(3, 9.99, "ABC", 7)
    stamp, rest = order.split("-", 1)
    assert stamp.isdigit()
    assert rest == "3-9.99-ABC-7"


def test_recharge_order_no_drops_trailing_zero_fraction():
    order = utils.recharge_order_no(10.0, 2, 5)
    stamp, rest = order.split("-", 1)
    assert stamp.isdigit()
    assert rest == "10-2-5"


def test_recharge_order_no_keeps_fraction():
    assert utils.recharge_order_no(12.5, 1, 4).endswith("-12.5-1-4")


def test_gb_to_bytes_of_one():
    assert utils.gb_to_bytes(1) == 1073741824


def test_gb_round_trip():
    assert utils.bytes_to_gb(utils.gb_to_bytes(2.5)) == 2.5
    assert utils.bytes_to_gb(utils.gb_to_bytes(100)) == 100


def test_gb_to_bytes_truncates():
    assert utils.gb_to_bytes(0.5) * 2 == utils.gb_to_bytes(1)
    assert isinstance(utils.gb_to_bytes(1.3), int)


@pytest.mark.parametrize("text", ["", "a", "ab"])
def test_mask_string_short_unchanged(text):
    assert utils.mask_string(text) == text


def test_mask_string_masks_tail():
    result = utils.mask_string("someone")
    assert len(result) == len("someone")
    assert result[:2] == "so"
    assert set(result[2:]) == {"*"}


def test_decimal_rounds_to_two_places():
    assert utils.decimal(1 / 3) == 0.33
    assert utils.decimal(2.5) == 2.5


def test_date_now_str_matches_source_example(monkeypatch):
    monkeypatch.setattr(utils, "datetime", _fixed_datetime(datetime(2023, 9, 22, 12, 0)))
    assert utils.get_date_now_str() == "2023922"


def test_date_now_minus_zero_days_is_today(monkeypatch):
    monkeypatch.setattr(utils, "datetime", _fixed_datetime(datetime(2023, 9, 22, 12, 0)))
    assert utils.get_date_now_minus_day_str(0) == utils.get_date_now_str()


def test_date_now_minus_day_crosses_month(monkeypatch):
    monkeypatch.setattr(utils, "datetime", _fixed_datetime(datetime(2023, 9, 30, 12, 0)))
    expected = utils.get_date_now_str()
    monkeypatch.setattr(utils, "datetime", _fixed_datetime(datetime(2023, 10, 1, 12, 0)))
    assert utils.get_date_now_minus_day_str(1) == expected


def test_bcrypt_round_trip():
    password = "password"
    hashed = utils.bcrypt_generate_password(password)
    assert utils.bcrypt_check_password(password, hashed) is True
    assert utils.bcrypt_check_password("secret", hashed) is False


def test_bcrypt_uses_default_cost():
    password = "password"
    hashed = utils.bcrypt_generate_password(password)
    assert hashed.split("$")[2] == "10"


def test_bcrypt_hashes_are_salted():
    password = "password"
    first = utils.bcrypt_generate_password(password)
    second = utils.bcrypt_generate_password(password)
    assert len(first) == len(second) == 60
    assert first[29:] != second[29:] or first[7:29] != second[7:29]
    assert utils.bcrypt_check_password(password, first) is True
    assert utils.bcrypt_check_password(password, second) is True


def test_bcrypt_check_rejects_malformed_hash():
    assert utils.bcrypt_check_password("password", "not-a-hash") is False


def test_bcrypt_rejects_overlong_password():
    with pytest.raises(ValueError):
        utils.bcrypt_generate_password("x" * 73)


@pytest.mark.parametrize("char", list("'\"$%<>/\\#&"))
def test_check_str_flags_special_characters(char):
    assert utils.check_str(f"abc{char}def") is True


def test_check_str_accepts_plain_text():
    assert utils.check_str("plain_name-123.x") is False