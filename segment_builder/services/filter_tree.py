"""Filter tree helpers and editing operations.

Every editing operation is a pure function: it returns a new FilterTree and
never mutates its input. Calls that would break a tree invariant (empty group,
empty tree, illegal operator, ill-typed value, unknown id) return the input
unchanged so callers can invoke them unconditionally.
"""
from typing import Any, Callable, List, Optional, Union

from ..schemas.filter import Condition, FieldKey, FilterTree, Group, Logic, Operator, ValueType
from . import field_registry


EMPTY_VALUES = (None, "", [])


def is_complete(condition: Condition) -> bool:
    """A condition takes part in evaluation once it has a value or a nullary operator"""
    if field_registry.is_nullary(condition.operator):
        return True
    return condition.value not in EMPTY_VALUES


def complete_conditions(tree: FilterTree) -> List[Condition]:
    return [c for group in tree.groups for c in group.conditions if is_complete(c)]


def is_empty_tree(tree: FilterTree) -> bool:
    return not complete_conditions(tree)


def create_condition(field: Optional[Union[FieldKey, str]] = None) -> Condition:
    field = FieldKey(field) if field is not None else field_registry.default_field()
    return Condition(
        field=field,
        operator=field_registry.default_operator_for(field),
        value=field_registry.default_value_for(field),
    )


def create_group(logic: Logic = Logic.AND) -> Group:
    return Group(logic=logic, conditions=[create_condition()])


def create_empty_tree() -> FilterTree:
    return FilterTree(logic=Logic.AND, groups=[create_group()])


def find_condition(tree: FilterTree, condition_id: str) -> Optional[Condition]:
    for group in tree.groups:
        for condition in group.conditions:
            if condition.id == condition_id:
                return condition
    return None


def can_remove_condition(tree: FilterTree, group_id: str) -> bool:
    return any(g.id == group_id and len(g.conditions) > 1 for g in tree.groups)


def can_remove_group(tree: FilterTree) -> bool:
    return len(tree.groups) > 1


def _replace_condition(
    tree: FilterTree,
    condition_id: str,
    update: Callable[[Condition], Optional[Condition]],
) -> FilterTree:
    groups = []
    changed = False
    for group in tree.groups:
        conditions = []
        for condition in group.conditions:
            if condition.id == condition_id and not changed:
                replacement = update(condition)
                if replacement is not None and replacement != condition:
                    condition = replacement
                    changed = True
            conditions.append(condition)
        groups.append(group.model_copy(update={"conditions": conditions}))

    if not changed:
        return tree
    return tree.model_copy(update={"groups": groups})


def _replace_group(
    tree: FilterTree,
    group_id: str,
    update: Callable[[Group], Optional[Group]],
) -> FilterTree:
    for index, group in enumerate(tree.groups):
        if group.id != group_id:
            continue
        replacement = update(group)
        if replacement is None or replacement == group:
            return tree
        groups = list(tree.groups)
        groups[index] = replacement
        return tree.model_copy(update={"groups": groups})
    return tree


def set_field(tree: FilterTree, condition_id: str, field: Union[FieldKey, str]) -> FilterTree:
    """Change a condition's field, resetting operator and value to the field defaults.

    Picking the field the condition already has resets it as well.
    """
    try:
        definition = field_registry.definition_of(field)
    except field_registry.UnknownFieldError:
        return tree

    def update(condition: Condition) -> Condition:
        return Condition(
            id=condition.id,
            field=definition.key,
            operator=field_registry.default_operator_for(definition.key),
            value=field_registry.default_value_for(definition.key),
        )

    return _replace_condition(tree, condition_id, update)


def reshape_value(value: Any, operator: Union[Operator, str]) -> Any:
    """Fit a value to the shape an operator takes: a list for in/notIn, a scalar otherwise.

    Nullary operators ignore the value, so it is kept as is for a later switch back.
    """
    if field_registry.is_nullary(operator) or value in EMPTY_VALUES:
        return value
    if field_registry.is_list_operator(operator):
        return value if isinstance(value, list) else [value]
    if isinstance(value, list):
        return value[0]
    return value


def has_operator_shape(condition: Condition) -> bool:
    if field_registry.is_nullary(condition.operator):
        return True
    return isinstance(condition.value, list) == field_registry.is_list_operator(condition.operator)


def set_operator(tree: FilterTree, condition_id: str, operator: Union[Operator, str]) -> FilterTree:
    """Change a condition's operator.

    The value is kept, converted between scalar and list when the operator
    takes the other shape, so eq -> ne keeps it and in -> eq keeps the first item.
    """

    def update(condition: Condition) -> Optional[Condition]:
        if not field_registry.is_operator_allowed(condition.field, operator):
            return None
        return condition.model_copy(update={
            "operator": Operator(operator),
            "value": reshape_value(condition.value, operator),
        })

    return _replace_condition(tree, condition_id, update)


def set_value(tree: FilterTree, condition_id: str, value: Any) -> FilterTree:
    """Set a condition's value after type-checking it against the field type"""

    def update(condition: Condition) -> Optional[Condition]:
        ok, coerced = field_registry.coerce_value(condition.field, condition.operator, value)
        if not ok:
            definition = field_registry.definition_of(condition.field)
            if definition.value_type != ValueType.NUMBER:
                return None
            # Unparseable numbers store the empty sentinel, never NaN
            coerced = None
        return condition.model_copy(update={"value": coerced})

    return _replace_condition(tree, condition_id, update)


def add_condition(tree: FilterTree, group_id: str) -> FilterTree:
    return _replace_group(
        tree,
        group_id,
        lambda g: g.model_copy(update={"conditions": [*g.conditions, create_condition()]}),
    )


def remove_condition(tree: FilterTree, group_id: str, condition_id: str) -> FilterTree:
    def update(group: Group) -> Optional[Group]:
        remaining = [c for c in group.conditions if c.id != condition_id]
        if not remaining or len(remaining) == len(group.conditions):
            return None
        return group.model_copy(update={"conditions": remaining})

    return _replace_group(tree, group_id, update)


def add_group(tree: FilterTree) -> FilterTree:
    return tree.model_copy(update={"groups": [*tree.groups, create_group()]})


def remove_group(tree: FilterTree, group_id: str) -> FilterTree:
    remaining = [g for g in tree.groups if g.id != group_id]
    if not remaining or len(remaining) == len(tree.groups):
        return tree
    return tree.model_copy(update={"groups": remaining})


def set_group_logic(tree: FilterTree, group_id: str, logic: Union[Logic, str]) -> FilterTree:
    try:
        logic = Logic(logic)
    except ValueError:
        return tree
    return _replace_group(tree, group_id, lambda g: g.model_copy(update={"logic": logic}))


def set_tree_logic(tree: FilterTree, logic: Union[Logic, str]) -> FilterTree:
    try:
        logic = Logic(logic)
    except ValueError:
        return tree
    if tree.logic == logic:
        return tree
    return tree.model_copy(update={"logic": logic})
