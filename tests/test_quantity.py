from decimal import Decimal

import pytest

from configpolicy.quantity import (
    QuantityError,
    QuantityFormat,
    parse_quantity,
)


@pytest.mark.parametrize(
    "left, right",
    [
        ("1Gi", "1024Mi"),
        ("1Mi", "1024Ki"),
        ("1k", "1000"),
        ("1e3", "1k"),
        ("1E3", "1000"),
        ("500m", "0.5"),
        ("1000m", "1"),
        ("1M", "1000k"),
        ("+5", "5"),
        (".5", "0.5"),
        ("5.", "5"),
        ("1u", "1000n"),
        ("1e-3", "1m"),
    ],
)
def test_equivalent_notations_are_equal(left, right):
    assert parse_quantity(left) == parse_quantity(right)


@pytest.mark.parametrize(
    "left, right",
    [("1Gi", "1G"), ("1", "2"), ("1m", "1"), ("-1", "1"), ("10E", "20E")],
)
def test_different_amounts_are_not_equal(left, right):
    assert not parse_quantity(left) == parse_quantity(right)


def test_binary_suffix_amount():
    assert parse_quantity("1Ki").amount == Decimal(1024)


@pytest.mark.parametrize(
    "text, fmt",
    [
        ("1Ki", QuantityFormat.BINARY_SI),
        ("1k", QuantityFormat.DECIMAL_SI),
        ("12", QuantityFormat.DECIMAL_SI),
        ("1e3", QuantityFormat.DECIMAL_EXPONENT),
        ("0.0001Ki", QuantityFormat.DECIMAL_SI),
    ],
)
def test_format_detection(text, fmt):
    assert parse_quantity(text).format is fmt


def test_sub_nano_values_round_up():
    assert parse_quantity("0.0000000001") == parse_quantity("1n")
    assert parse_quantity("-0.0000000001") == parse_quantity("-1n")
    assert parse_quantity("1.0000000001") == parse_quantity("1000000001n")


def test_zero_is_not_rounded_up():
    assert parse_quantity("0.0000000000") == parse_quantity("0")
    assert parse_quantity("-0") == parse_quantity("0")


def test_binary_amounts_are_capped():
    assert parse_quantity("8Ei") == parse_quantity("16Ei")
    assert parse_quantity("-8Ei") == parse_quantity("-16Ei")
    assert parse_quantity("8Ei") > parse_quantity("7Ei")


def test_ordering():
    assert parse_quantity("500m") < parse_quantity("1")
    assert parse_quantity("2Gi") > parse_quantity("2G")
    assert sorted([parse_quantity("1k"), parse_quantity("1"), parse_quantity("1m")]) == [
        parse_quantity("1m"),
        parse_quantity("1"),
        parse_quantity("1k"),
    ]


def test_equal_quantities_hash_equally():
    assert hash(parse_quantity("1Gi")) == hash(parse_quantity("1024Mi"))
    assert len({parse_quantity("1k"), parse_quantity("1000"), parse_quantity("1e3")}) == 1


def test_not_equal_to_other_types():
    quantity = parse_quantity("1")
    assert quantity.amount == Decimal(1)
    assert (quantity == "1") is False
    assert (quantity == 1.5) is False


@pytest.mark.parametrize(
    "text",
    ["", "abc", "1.2.3", "1Ki5", "e3", " 1", "1 ", ".", "1e", "1KiB", "--1", "1x", "Gi"],
)
def test_invalid_quantities(text):
    with pytest.raises(QuantityError):
        parse_quantity(text)


def test_non_string_rejected():
    with pytest.raises(QuantityError):
        parse_quantity(5)