import math

import pytest

from segment_builder.schemas.filter import FieldKey, Operator, ValueType
from segment_builder.services import field_registry


def test_catalog_covers_every_field_once():
    keys = [d.key for d in field_registry.catalog()]
    assert len(keys) == len(set(keys))
    assert set(keys) == set(FieldKey)


def test_every_field_has_operators():
    for definition in field_registry.catalog():
        assert definition.allowed_operators
        if definition.value_type == ValueType.ENUM:
            assert definition.enum_values


def test_default_field_is_first_catalog_entry():
    assert field_registry.default_field() == FieldKey.TOTAL_SPENT
    assert field_registry.default_operator_for(FieldKey.TOTAL_SPENT) == Operator.EQUALS


def test_default_values():
    assert field_registry.default_value_for(FieldKey.IS_HIGH_VALUE) is True
    assert field_registry.default_value_for(FieldKey.TOTAL_SPENT) == ""
    assert field_registry.default_value_for("email") == ""


def test_unknown_field_raises():
    with pytest.raises(field_registry.UnknownFieldError):
        field_registry.definition_of("lifetimeValue")


def test_lookup_definition_falls_back_to_default_field():
    assert field_registry.lookup_definition("lifetimeValue").key == FieldKey.TOTAL_SPENT
    assert field_registry.lookup_definition(None).key == FieldKey.TOTAL_SPENT


def test_operator_legality():
    assert field_registry.is_operator_allowed(FieldKey.TOTAL_SPENT, "gte")
    assert not field_registry.is_operator_allowed(FieldKey.TOTAL_SPENT, "contains")
    assert field_registry.is_operator_allowed("email", Operator.IS_NULL)
    assert not field_registry.is_operator_allowed(FieldKey.IS_CHURN_RISK, Operator.NOT_EQUALS)
    assert not field_registry.is_operator_allowed(FieldKey.TOTAL_SPENT, "between")
    assert not field_registry.is_operator_allowed("lifetimeValue", "eq")


def test_operator_kinds_accept_plain_strings():
    assert field_registry.is_nullary("isNull")
    assert field_registry.is_nullary(Operator.IS_NOT_NULL)
    assert not field_registry.is_nullary("eq")
    assert field_registry.is_list_operator("notIn")
    assert not field_registry.is_list_operator("bogus")


@pytest.mark.parametrize("raw, expected", [
    (100, 100),
    ("100", 100),
    (" 42 ", 42),
    ("12.5", 12.5),
    (99.99, 99.99),
])
def test_coerce_number(raw, expected):
    assert field_registry.coerce_value(FieldKey.TOTAL_SPENT, Operator.GREATER_THAN, raw) == (True, expected)


@pytest.mark.parametrize("raw", ["abc", True, math.nan, math.inf, {"a": 1}, [1, 2]])
def test_coerce_number_rejects(raw):
    ok, _ = field_registry.coerce_value(FieldKey.TOTAL_SPENT, Operator.GREATER_THAN, raw)
    assert not ok


def test_coerce_keeps_empty_values():
    for raw in (None, "", []):
        assert field_registry.coerce_value(FieldKey.ORDERS_COUNT, Operator.EQUALS, raw) == (True, raw)


def test_coerce_boolean():
    assert field_registry.coerce_value(FieldKey.IS_HIGH_VALUE, Operator.EQUALS, "false") == (True, False)
    assert field_registry.coerce_value(FieldKey.IS_HIGH_VALUE, Operator.EQUALS, True) == (True, True)
    assert not field_registry.coerce_value(FieldKey.IS_HIGH_VALUE, Operator.EQUALS, "maybe")[0]


def test_coerce_enum_values():
    assert field_registry.coerce_value(FieldKey.RFM_SEGMENT, Operator.EQUALS, "CHAMPIONS") == (True, "CHAMPIONS")
    assert not field_registry.coerce_value(FieldKey.RFM_SEGMENT, Operator.EQUALS, "VIP")[0]


def test_coerce_list_operators():
    assert field_registry.coerce_value(FieldKey.RFM_SEGMENT, Operator.IN, "CHAMPIONS, LOYAL") == (
        True, ["CHAMPIONS", "LOYAL"]
    )
    assert field_registry.coerce_value(FieldKey.RFM_SEGMENT, Operator.NOT_IN, ["LOST"]) == (True, ["LOST"])
    assert not field_registry.coerce_value(FieldKey.RFM_SEGMENT, Operator.IN, ["LOST", "VIP"])[0]


def test_coerce_string():
    assert field_registry.coerce_value(FieldKey.EMAIL, Operator.CONTAINS, "@gmail.com") == (True, "@gmail.com")
    assert not field_registry.coerce_value(FieldKey.EMAIL, Operator.CONTAINS, 5)[0]


def test_operator_labels_cover_every_operator():
    for operator in Operator:
        assert field_registry.operator_label(operator)
