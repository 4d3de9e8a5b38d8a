"""Static catalog of filterable customer fields.

The catalog is a fixed contract with the backend query engine: a field added
here must be added to the backend evaluator at the same time.
"""
import math
from datetime import date, datetime
from typing import Any, Dict, List, Optional, Tuple, Union

from ..schemas.filter import (
    EnumOption,
    FieldDefinition,
    FieldKey,
    LIST_OPERATORS,
    NULLARY_OPERATORS,
    Operator,
    ValueType,
)


class UnknownFieldError(KeyError):
    def __init__(self, key: Any):
        self.key = key
        super().__init__(f"Unknown filter field: {key}")


NUMERIC_OPERATORS = [
    Operator.EQUALS,
    Operator.NOT_EQUALS,
    Operator.GREATER_THAN,
    Operator.LESS_THAN,
    Operator.GREATER_EQUAL,
    Operator.LESS_EQUAL,
]

RFM_SEGMENTS = [
    EnumOption(value="CHAMPIONS", label="Champions"),
    EnumOption(value="LOYAL", label="Loyal Customers"),
    EnumOption(value="POTENTIAL_LOYALIST", label="Potential Loyalists"),
    EnumOption(value="NEW_CUSTOMERS", label="New Customers"),
    EnumOption(value="PROMISING", label="Promising"),
    EnumOption(value="NEED_ATTENTION", label="Need Attention"),
    EnumOption(value="ABOUT_TO_SLEEP", label="About to Sleep"),
    EnumOption(value="AT_RISK", label="At Risk"),
    EnumOption(value="CANNOT_LOSE", label="Can't Lose"),
    EnumOption(value="HIBERNATING", label="Hibernating"),
    EnumOption(value="LOST", label="Lost"),
]


def _score_field(key: FieldKey, label: str) -> FieldDefinition:
    return FieldDefinition(
        key=key,
        label=label,
        value_type=ValueType.NUMBER,
        allowed_operators=NUMERIC_OPERATORS,
        placeholder="1-5",
        min_value=1,
        max_value=5,
    )


# Insertion order is display order; the first entry is the default field
FIELD_DEFINITIONS: Dict[FieldKey, FieldDefinition] = {
    FieldKey.TOTAL_SPENT: FieldDefinition(
        key=FieldKey.TOTAL_SPENT,
        label="Total Spent ($)",
        value_type=ValueType.NUMBER,
        allowed_operators=NUMERIC_OPERATORS,
        placeholder="e.g., 100",
    ),
    FieldKey.ORDERS_COUNT: FieldDefinition(
        key=FieldKey.ORDERS_COUNT,
        label="Number of Orders",
        value_type=ValueType.NUMBER,
        allowed_operators=NUMERIC_OPERATORS,
        placeholder="e.g., 5",
    ),
    FieldKey.AVG_ORDER_VALUE: FieldDefinition(
        key=FieldKey.AVG_ORDER_VALUE,
        label="Avg Order Value ($)",
        value_type=ValueType.NUMBER,
        allowed_operators=NUMERIC_OPERATORS,
        placeholder="e.g., 50",
    ),
    FieldKey.DAYS_SINCE_LAST_ORDER: FieldDefinition(
        key=FieldKey.DAYS_SINCE_LAST_ORDER,
        label="Days Since Last Order",
        value_type=ValueType.NUMBER,
        allowed_operators=NUMERIC_OPERATORS,
        placeholder="e.g., 30",
    ),
    FieldKey.RFM_SEGMENT: FieldDefinition(
        key=FieldKey.RFM_SEGMENT,
        label="RFM Segment",
        value_type=ValueType.ENUM,
        allowed_operators=[Operator.EQUALS, Operator.NOT_EQUALS, Operator.IN, Operator.NOT_IN],
        enum_values=RFM_SEGMENTS,
    ),
    FieldKey.RECENCY_SCORE: _score_field(FieldKey.RECENCY_SCORE, "Recency Score (1-5)"),
    FieldKey.FREQUENCY_SCORE: _score_field(FieldKey.FREQUENCY_SCORE, "Frequency Score (1-5)"),
    FieldKey.MONETARY_SCORE: _score_field(FieldKey.MONETARY_SCORE, "Monetary Score (1-5)"),
    FieldKey.IS_HIGH_VALUE: FieldDefinition(
        key=FieldKey.IS_HIGH_VALUE,
        label="High Value Customer",
        value_type=ValueType.BOOLEAN,
        allowed_operators=[Operator.EQUALS],
    ),
    FieldKey.IS_CHURN_RISK: FieldDefinition(
        key=FieldKey.IS_CHURN_RISK,
        label="Churn Risk",
        value_type=ValueType.BOOLEAN,
        allowed_operators=[Operator.EQUALS],
    ),
    FieldKey.EMAIL: FieldDefinition(
        key=FieldKey.EMAIL,
        label="Email",
        value_type=ValueType.STRING,
        allowed_operators=[
            Operator.CONTAINS,
            Operator.STARTS_WITH,
            Operator.ENDS_WITH,
            Operator.EQUALS,
            Operator.NOT_EQUALS,
            Operator.IS_NULL,
            Operator.IS_NOT_NULL,
        ],
        placeholder="e.g., @gmail.com",
    ),
}

OPERATOR_LABELS: Dict[Operator, str] = {
    Operator.EQUALS: "equals",
    Operator.NOT_EQUALS: "not equals",
    Operator.GREATER_THAN: "greater than",
    Operator.LESS_THAN: "less than",
    Operator.GREATER_EQUAL: "at least",
    Operator.LESS_EQUAL: "at most",
    Operator.IN: "is any of",
    Operator.NOT_IN: "is not any of",
    Operator.CONTAINS: "contains",
    Operator.STARTS_WITH: "starts with",
    Operator.ENDS_WITH: "ends with",
    Operator.IS_NULL: "is empty",
    Operator.IS_NOT_NULL: "is not empty",
}

_TRUE_STRINGS = {"true", "1", "yes", "y"}
_FALSE_STRINGS = {"false", "0", "no", "n"}


def _to_field_key(key: Union[FieldKey, str]) -> FieldKey:
    try:
        return FieldKey(key)
    except ValueError:
        raise UnknownFieldError(key) from None


def definition_of(key: Union[FieldKey, str]) -> FieldDefinition:
    """Return the definition for a field key, raising UnknownFieldError otherwise"""
    return FIELD_DEFINITIONS[_to_field_key(key)]


def lookup_definition(key: Any) -> FieldDefinition:
    """Like definition_of, but unknown keys fall back to the default field"""
    try:
        return definition_of(key)
    except UnknownFieldError:
        return FIELD_DEFINITIONS[default_field()]


def catalog() -> List[FieldDefinition]:
    return list(FIELD_DEFINITIONS.values())


def default_field() -> FieldKey:
    return next(iter(FIELD_DEFINITIONS))


def default_operator_for(key: Union[FieldKey, str]) -> Operator:
    return definition_of(key).allowed_operators[0]


def default_value_for(key: Union[FieldKey, str]) -> Any:
    if definition_of(key).value_type == ValueType.BOOLEAN:
        return True
    return ""


def is_operator_allowed(key: Union[FieldKey, str], operator: Union[Operator, str]) -> bool:
    try:
        return Operator(operator) in definition_of(key).allowed_operators
    except (ValueError, UnknownFieldError):
        return False


def _to_operator(operator: Union[Operator, str]) -> Optional[Operator]:
    try:
        return Operator(operator)
    except ValueError:
        return None


def is_nullary(operator: Union[Operator, str]) -> bool:
    return _to_operator(operator) in NULLARY_OPERATORS


def is_list_operator(operator: Union[Operator, str]) -> bool:
    return _to_operator(operator) in LIST_OPERATORS


def operator_label(operator: Union[Operator, str]) -> str:
    return OPERATOR_LABELS[Operator(operator)]


def _coerce_number(raw: Any) -> Tuple[bool, Any]:
    if isinstance(raw, bool):
        return False, None
    if isinstance(raw, (int, float)):
        number = raw
    elif isinstance(raw, str):
        text = raw.strip()
        if not text:
            return False, None
        try:
            number = int(text)
        except ValueError:
            try:
                number = float(text)
            except ValueError:
                return False, None
    else:
        return False, None

    if isinstance(number, float):
        if not math.isfinite(number):
            return False, None
        if number.is_integer() and not isinstance(raw, float):
            number = int(number)
    return True, number


def _coerce_boolean(raw: Any) -> Tuple[bool, Any]:
    if isinstance(raw, bool):
        return True, raw
    if isinstance(raw, str):
        text = raw.strip().lower()
        if text in _TRUE_STRINGS:
            return True, True
        if text in _FALSE_STRINGS:
            return True, False
    return False, None


def _coerce_scalar(definition: FieldDefinition, raw: Any) -> Tuple[bool, Any]:
    value_type = definition.value_type
    if value_type == ValueType.NUMBER:
        return _coerce_number(raw)
    if value_type == ValueType.BOOLEAN:
        return _coerce_boolean(raw)
    if value_type == ValueType.ENUM:
        allowed = {option.value for option in definition.enum_values or []}
        if isinstance(raw, str) and raw in allowed:
            return True, raw
        return False, None
    if value_type == ValueType.DATE:
        if isinstance(raw, (date, datetime)):
            return True, raw.isoformat()
        if isinstance(raw, str):
            return True, raw
        return False, None
    if isinstance(raw, str):
        return True, raw
    return False, None


def coerce_value(key: Union[FieldKey, str], operator: Union[Operator, str], raw: Any) -> Tuple[bool, Any]:
    """Type-check a value against a field's value type.

    Returns ``(ok, value)``. Empty values ("", None, []) are accepted as-is:
    they mark a condition as incomplete rather than invalid.
    """
    definition = definition_of(key)

    if raw is None or raw == "" or raw == []:
        return True, raw

    if is_list_operator(operator):
        if isinstance(raw, str):
            items = [item.strip() for item in raw.split(",") if item.strip()]
        elif isinstance(raw, (list, tuple)):
            items = list(raw)
        else:
            items = [raw]

        coerced = []
        for item in items:
            ok, value = _coerce_scalar(definition, item)
            if not ok:
                return False, None
            coerced.append(value)
        return True, coerced

    if isinstance(raw, (list, tuple)):
        return False, None
    return _coerce_scalar(definition, raw)
