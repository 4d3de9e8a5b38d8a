"""Conversion between the in-memory FilterTree and the backend WireQuery.

encode() flattens every group into one condition list under the top-level
logic. Per-group logic and group boundaries do not survive the trip, so
decode(encode(tree)) only reproduces trees with a single group (or groups
that all share the top-level logic). The backend query engine only accepts
the flat form.

decode() accepts the three shapes persisted segments have used over time and
never raises; anything it cannot recognise becomes the canonical empty tree.
"""
import json
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Union

from ..schemas.filter import (
    Condition,
    FilterTree,
    Group,
    Logic,
    Operator,
    WireCondition,
    WireQuery,
    generate_id,
)
from ..utils.logger import setup_logger
from ..config import settings
from . import field_registry
from .filter_tree import create_condition, create_empty_tree, has_operator_shape, is_complete

logger = setup_logger("wire_codec", settings.get_log_file("wire_codec"))


def encode(tree: FilterTree) -> WireQuery:
    """Flatten a filter tree into the backend query format"""
    conditions = []
    for group in tree.groups:
        for condition in group.conditions:
            if not is_complete(condition):
                continue
            if not has_operator_shape(condition):
                logger.warning(f"Skipping condition {condition.id}: value does not fit operator {condition.operator.value}")
                continue
            value = None if field_registry.is_nullary(condition.operator) else condition.value
            conditions.append(WireCondition(
                field=condition.field,
                operator=condition.operator,
                value=value,
            ))
    return WireQuery(logic=tree.logic, conditions=conditions)


def encode_to_dict(tree: FilterTree) -> Dict[str, Any]:
    return encode(tree).model_dump(mode="json")


# Legacy shapes, narrowed once at the decode boundary

@dataclass
class GroupedShape:
    logic: Any
    groups: List[Any]


@dataclass
class FlatShape:
    logic: Any
    conditions: List[Any]


@dataclass
class BareListShape:
    conditions: List[Any]


LegacyShape = Union[GroupedShape, FlatShape, BareListShape]


def classify(raw: Any) -> Optional[LegacyShape]:
    """Narrow untrusted input into one of the known shapes, or None"""
    if isinstance(raw, (str, bytes)):
        try:
            raw = json.loads(raw)
        except ValueError:
            return None

    if isinstance(raw, WireQuery):
        raw = raw.model_dump(mode="json")
    elif isinstance(raw, FilterTree):
        raw = raw.model_dump(mode="json")

    if isinstance(raw, list):
        return BareListShape(conditions=raw)
    if isinstance(raw, dict):
        if isinstance(raw.get("groups"), list):
            return GroupedShape(logic=raw.get("logic"), groups=raw["groups"])
        if isinstance(raw.get("conditions"), list):
            return FlatShape(logic=raw.get("logic"), conditions=raw["conditions"])
    return None


def _decode_logic(raw: Any) -> Logic:
    if isinstance(raw, Logic):
        return raw
    if isinstance(raw, str) and raw.strip().upper() in (Logic.AND.value, Logic.OR.value):
        return Logic(raw.strip().upper())
    return Logic.AND


def _decode_id(raw: Any) -> str:
    if isinstance(raw, str) and raw:
        return raw
    if isinstance(raw, int) and not isinstance(raw, bool):
        return str(raw)
    return generate_id()


def _decode_condition(raw: Any) -> Optional[Condition]:
    if not isinstance(raw, dict):
        logger.warning(f"Skipping non-object condition: {raw!r}")
        return None

    definition = field_registry.lookup_definition(raw.get("field"))
    field = definition.key
    if raw.get("field") != field.value:
        logger.warning(f"Unknown field {raw.get('field')!r}, using {field.value}")

    operator = raw.get("operator")
    if not field_registry.is_operator_allowed(field, operator):
        operator = field_registry.default_operator_for(field)
    operator = Operator(operator)

    ok, value = field_registry.coerce_value(field, operator, raw.get("value"))
    if not ok or value is None:
        value = field_registry.default_value_for(field)

    return Condition(id=_decode_id(raw.get("id")), field=field, operator=operator, value=value)


def _decode_conditions(items: List[Any]) -> List[Condition]:
    conditions = [c for c in (_decode_condition(item) for item in items) if c is not None]
    return conditions or [create_condition()]


def _decode_group(raw: Any) -> Group:
    if not isinstance(raw, dict):
        return Group(conditions=[create_condition()])

    items = raw.get("conditions")
    if not isinstance(items, list):
        # Older segment builder versions stored a group's conditions under "filters"
        items = raw.get("filters")
    if not isinstance(items, list):
        items = []

    return Group(
        id=_decode_id(raw.get("id")),
        logic=_decode_logic(raw.get("logic")),
        conditions=_decode_conditions(items),
    )


def decode(raw: Any) -> FilterTree:
    """Rebuild a filter tree from any known persisted form; never raises"""
    try:
        shape = classify(raw)

        if isinstance(shape, GroupedShape):
            if not shape.groups:
                return create_empty_tree()
            return FilterTree(
                logic=_decode_logic(shape.logic),
                groups=[_decode_group(g) for g in shape.groups],
            )

        if isinstance(shape, FlatShape):
            return FilterTree(
                logic=_decode_logic(shape.logic),
                groups=[Group(logic=Logic.AND, conditions=_decode_conditions(shape.conditions))],
            )

        if isinstance(shape, BareListShape):
            return FilterTree(
                logic=Logic.AND,
                groups=[Group(logic=Logic.AND, conditions=_decode_conditions(shape.conditions))],
            )

        if raw:
            logger.warning(f"Unrecognised filter shape ({type(raw).__name__}), using empty filters")
        return create_empty_tree()

    except Exception as e:
        logger.error(f"Error decoding filters: {str(e)}", exc_info=True)
        return create_empty_tree()
