import pytest

from leadbot.domain.phone import normalize_phone


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("9876543210", "919876543210"),
        ("919876543210", "919876543210"),
        ("09876543210", "919876543210"),
        ("+91 98765-43210", "919876543210"),
        ("(987) 654-3210", "919876543210"),
        ("9.876543210E9", "919876543210"),
        ("9.18765432E+11", "918765432000"),
        (9876543210, "919876543210"),
        (9876543210.0, "919876543210"),
        ("9876543210.0", "919876543210"),
        ("  9876543210  ", "919876543210"),
    ],
)
def test_normalize_phone_canonical_forms(raw, expected):
    assert normalize_phone(raw) == expected


@pytest.mark.parametrize("raw", [None, "", "   ", "abc", float("nan"), True])
def test_normalize_phone_never_raises_on_garbage(raw):
    assert normalize_phone(raw) == ""


def test_normalize_phone_keeps_unrecognised_digit_strings():
    assert normalize_phone("12345") == "12345"
    assert normalize_phone("+1 415 555 0100 99") == "1415555010099"


def test_normalize_phone_is_idempotent():
    for raw in ["9876543210", "09876543210", "+91 98765 43210", "12345", "447911123456"]:
        once = normalize_phone(raw)
        assert normalize_phone(once) == once


def test_normalize_phone_custom_country_code():
    assert normalize_phone("7911123456", country_code="44") == "447911123456"
    assert normalize_phone("447911123456", country_code="44") == "447911123456"
