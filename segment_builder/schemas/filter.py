from pydantic import BaseModel, ConfigDict, Field, model_validator
from typing import List, Any, Optional
from enum import Enum
import uuid


def generate_id() -> str:
    return uuid.uuid4().hex[:8]


class ValueType(str, Enum):
    NUMBER = "number"
    STRING = "string"
    BOOLEAN = "boolean"
    ENUM = "enum"
    DATE = "date"


class Operator(str, Enum):
    EQUALS = "eq"
    NOT_EQUALS = "ne"
    GREATER_THAN = "gt"
    LESS_THAN = "lt"
    GREATER_EQUAL = "gte"
    LESS_EQUAL = "lte"
    IN = "in"
    NOT_IN = "notIn"
    CONTAINS = "contains"
    STARTS_WITH = "startsWith"
    ENDS_WITH = "endsWith"
    IS_NULL = "isNull"
    IS_NOT_NULL = "isNotNull"


NULLARY_OPERATORS = frozenset({Operator.IS_NULL, Operator.IS_NOT_NULL})
LIST_OPERATORS = frozenset({Operator.IN, Operator.NOT_IN})


class Logic(str, Enum):
    AND = "AND"
    OR = "OR"


class FieldKey(str, Enum):
    TOTAL_SPENT = "totalSpent"
    ORDERS_COUNT = "ordersCount"
    AVG_ORDER_VALUE = "avgOrderValue"
    DAYS_SINCE_LAST_ORDER = "daysSinceLastOrder"
    RFM_SEGMENT = "rfmSegment"
    RECENCY_SCORE = "recencyScore"
    FREQUENCY_SCORE = "frequencyScore"
    MONETARY_SCORE = "monetaryScore"
    IS_HIGH_VALUE = "isHighValue"
    IS_CHURN_RISK = "isChurnRisk"
    EMAIL = "email"


class EnumOption(BaseModel):
    model_config = ConfigDict(frozen=True)

    value: str
    label: str


class FieldDefinition(BaseModel):
    model_config = ConfigDict(frozen=True)

    key: FieldKey
    label: str
    value_type: ValueType
    allowed_operators: List[Operator] = Field(..., min_length=1)
    enum_values: Optional[List[EnumOption]] = None
    placeholder: Optional[str] = None
    min_value: Optional[float] = None
    max_value: Optional[float] = None


class Condition(BaseModel):
    """A single `field operator value` predicate"""
    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=generate_id)
    field: FieldKey
    operator: Operator
    value: Optional[Any] = None

    @model_validator(mode="after")
    def _check_operator(self):
        # Local import: the registry builds its catalog from this module
        from ..services.field_registry import is_operator_allowed

        if not is_operator_allowed(self.field, self.operator):
            raise ValueError(
                f"Operator {self.operator.value} is not allowed for field {self.field.value}"
            )
        return self


class Group(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=generate_id)
    logic: Logic = Logic.AND
    conditions: List[Condition] = Field(..., min_length=1)


class FilterTree(BaseModel):
    """Segment definition: top-level logic over one or more groups"""
    model_config = ConfigDict(frozen=True)

    logic: Logic = Logic.AND
    groups: List[Group] = Field(..., min_length=1)


class WireCondition(BaseModel):
    model_config = ConfigDict(use_enum_values=True)

    field: FieldKey
    operator: Operator
    value: Optional[Any] = None


class WireQuery(BaseModel):
    """Flattened `{logic, conditions}` form exchanged with the backend"""
    model_config = ConfigDict(use_enum_values=True)

    logic: Logic = Logic.AND
    conditions: List[WireCondition] = Field(default_factory=list)
