import pytest

from core.enums import ColumnType
from core.exceptions import MalformedInputError
from core.models import ColumnDefinition
from trackers.validation import (
    COERCERS,
    coerce_boolean,
    coerce_date,
    coerce_number,
    coerce_select,
    coerce_text,
    generate_slug,
    primary_key_string,
    validate_columns,
    validate_row_data,
)

from conftest import inventory_columns


NUMBER = ColumnDefinition(id="n", key="n", name="Amount", type=ColumnType.NUMBER)
DATE = ColumnDefinition(id="d", key="d", name="When", type=ColumnType.DATE)
SELECT = ColumnDefinition(id="s", key="s", name="Size", type=ColumnType.SELECT, options=["S", "M", "L"])
TEXT = ColumnDefinition(id="t", key="t", name="Label", type=ColumnType.TEXT)


def test_every_column_type_has_a_coercer():
    assert set(COERCERS) == set(ColumnType)


@pytest.mark.parametrize("raw,expected", [
    ("50", 50),
    (" 12.5 ", 12.5),
    (7, 7),
    (3.0, 3),
    ("-4", -4),
    ("1e3", 1000),
])
def test_coerce_number(raw, expected):
    value = coerce_number(NUMBER, raw)
    assert value == expected
    assert type(value) is type(expected)


@pytest.mark.parametrize("raw", ["abc", "NaN", "inf", "1_000", "   ", float("nan"), [1]])
def test_coerce_number_rejects(raw):
    with pytest.raises(MalformedInputError, match="Amount must be a number"):
        coerce_number(NUMBER, raw)


def test_coerce_date_midnight_is_date_only():
    assert coerce_date(DATE, "2024-09-15") == "2024-09-15"
    assert coerce_date(DATE, "2024-09-15T00:00:00") == "2024-09-15"


def test_coerce_date_keeps_time_and_normalizes_to_utc():
    assert coerce_date(DATE, "2024-09-15 10:30") == "2024-09-15T10:30:00"
    assert coerce_date(DATE, "2024-09-15T12:30:00+02:00") == "2024-09-15T10:30:00Z"


def test_coerce_date_numbers_are_epoch_milliseconds():
    assert coerce_date(DATE, 0) == "1970-01-01"
    assert coerce_date(DATE, 86_400_000) == "1970-01-02"


@pytest.mark.parametrize("raw", ["not a date", True, float("inf"), {"y": 2024}])
def test_coerce_date_rejects(raw):
    with pytest.raises(MalformedInputError, match="When must be a valid date"):
        coerce_date(DATE, raw)


@pytest.mark.parametrize("raw,expected", [
    (True, True),
    ("true", True),
    (1, True),
    ("1", True),
    ("yes", True),
    (False, False),
    ("no", False),
    ("TRUE", False),
    (0, False),
    ("anything", False),
])
def test_coerce_boolean_truthy_set(raw, expected):
    assert coerce_boolean(ColumnDefinition(id="b", key="b", name="B", type=ColumnType.BOOLEAN), raw) is expected


def test_coerce_select():
    assert coerce_select(SELECT, "M") == "M"
    with pytest.raises(MalformedInputError, match="Size must be one of: S, M, L"):
        coerce_select(SELECT, "XL")


def test_coerce_text_stringifies_and_limits_length():
    assert coerce_text(TEXT, True) == "true"
    assert coerce_text(TEXT, 12.0) == "12"
    assert coerce_text(TEXT, 12.5) == "12.5"
    assert coerce_text(TEXT, "abc", max_length=3) == "abc"
    with pytest.raises(MalformedInputError, match="3 characters or less"):
        coerce_text(TEXT, "abcd", max_length=3)


def test_validate_row_data_coerces_every_type():
    result = validate_row_data(inventory_columns(), {
        "sku": 12,
        "qty": "50",
        "price": "9.99",
        "delivery_date": "2024-09-10",
        "status": "active",
        "in_stock": "yes",
        "notes": "first batch",
    })

    assert result.is_valid
    assert result.data == {
        "sku": "12",
        "qty": 50,
        "price": 9.99,
        "delivery_date": "2024-09-10",
        "status": "active",
        "in_stock": True,
        "notes": "first batch",
    }


def test_validate_row_data_collects_all_errors():
    result = validate_row_data(inventory_columns(), {
        "qty": "many",
        "delivery_date": "someday",
        "status": "unknown",
    })

    assert not result.is_valid
    assert {e.field for e in result.errors} == {"sku", "qty", "delivery_date", "status"}
    messages = {e.field: e.message for e in result.errors}
    assert messages["sku"] == "SKU is required"


@pytest.mark.parametrize("blank", [None, ""])
def test_required_column_rejects_blank(blank):
    result = validate_row_data(inventory_columns(), {"sku": blank})
    assert not result.is_valid
    assert result.errors[0].field == "sku"


def test_null_is_kept_and_absent_is_omitted():
    result = validate_row_data(inventory_columns(), {"sku": "1", "notes": None, "qty": ""})

    assert result.is_valid
    assert "notes" in result.data and result.data["notes"] is None
    assert "qty" not in result.data
    assert "price" not in result.data


def test_unknown_keys_are_dropped():
    result = validate_row_data(inventory_columns(), {"sku": "1", "color": "red"})
    assert result.data == {"sku": "1"}


def test_validation_is_idempotent():
    columns = inventory_columns()
    raw = {
        "sku": 7.0,
        "qty": "3",
        "price": 2.5,
        "delivery_date": "2024-09-15T12:30:00+02:00",
        "status": "discontinued",
        "in_stock": 1,
        "notes": None,
    }

    once = validate_row_data(columns, raw).data
    twice = validate_row_data(columns, once).data

    assert once == twice


def test_max_text_length_override():
    result = validate_row_data(inventory_columns(), {"sku": "1", "notes": "x" * 11}, max_text_length=10)
    assert not result.is_valid
    assert result.errors[0].field == "notes"


def test_primary_key_string():
    assert primary_key_string(12) == "12"
    assert primary_key_string(12.0) == "12"
    assert primary_key_string(0) == "0"
    assert primary_key_string(False) == "false"
    assert primary_key_string("") is None
    assert primary_key_string(None) is None


def test_validate_columns_reports_structural_problems():
    columns = [
        ColumnDefinition(id="a", key="sku", name="SKU", type=ColumnType.TEXT),
        ColumnDefinition(id="a", key="sku", name="Again", type=ColumnType.TEXT),
        ColumnDefinition(id="b", key="bad key", name="Bad", type=ColumnType.TEXT),
        ColumnDefinition(id="c", key="size", name="Size", type=ColumnType.SELECT),
        ColumnDefinition(id="d", key="blank", name="  ", type=ColumnType.TEXT),
    ]

    result = validate_columns(columns)
    messages = [e.message for e in result.errors]

    assert not result.is_valid
    assert "Duplicate column ID: a" in messages
    assert "Duplicate column key: sku" in messages
    assert any("bad key" in m for m in messages)
    assert 'Select column "Size" must have options' in messages
    assert "Column name cannot be empty" in messages


def test_validate_columns_accepts_inventory():
    assert validate_columns(inventory_columns()).is_valid


@pytest.mark.parametrize("name,expected", [
    ("My Inventory", "my-inventory"),
    ("  Q3 -- Shipments!! ", "q3-shipments"),
    ("***", "tracker"),
    ("a" * 80, "a" * 50),
])
def test_generate_slug(name, expected):
    assert generate_slug(name) == expected
