"""Тесты нормализации телефонов."""
import pytest

from app.core.phone import (
    detect_country,
    dial_code_for,
    international_phone,
    normalize_phone,
    split_phone,
)


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("+971 50 607 1405", "506071405"),
        ("00971506071405", "506071405"),
        ("0506071405", "506071405"),
        ("506071405", "506071405"),
        ("(050) 607-1405", "506071405"),
        ("971506071405", "506071405"),
        ("+965 9876 5432", "98765432"),
        ("+1 (415) 555-0100", "4155550100"),
        ("+20 10 1234 5678", "1012345678"),
        ("+212 612345678", "612345678"),
        ("+966.50.123.4567", "501234567"),
    ],
)
def test_normalize_phone(raw, expected):
    assert normalize_phone(raw) == expected


@pytest.mark.parametrize("raw", ["", None, "   ", "+"])
def test_empty_input_gives_empty_string(raw):
    assert normalize_phone(raw) == ""


def test_result_truncated_to_eleven_digits():
    assert normalize_phone("+44 1234 5678 9012 34") == "12345678901"


def test_trunk_zero_after_country_code_stripped():
    assert normalize_phone("+971 0506071405") == "506071405"


def test_local_number_not_mistaken_for_country_code():
    # 55 - код Бразилии, но остаток слишком короткий для бразильского номера
    assert normalize_phone("55551234") == "55551234"


def test_split_phone():
    assert split_phone("+966 50 123 4567") == ("966", "501234567")
    assert split_phone("0506071405") == ("", "0506071405")


def test_detect_country():
    assert detect_country("+974 5555 1234") == "QA"
    assert detect_country("+971506071405") == "AE"
    assert detect_country("0506071405") is None


def test_international_phone():
    assert international_phone("0506071405") == "+971506071405"
    assert international_phone("+966501234567") == "+966501234567"
    assert international_phone("55551234", default_dial_code="974") == "+97455551234"
    assert international_phone("") == ""


def test_dial_code_for():
    assert dial_code_for("sa") == "966"
    assert dial_code_for("XX") is None
