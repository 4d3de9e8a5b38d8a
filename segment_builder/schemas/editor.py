from pydantic import BaseModel, Field
from typing import Annotated, Any, List, Literal, Optional, Union

from .filter import FieldKey, FilterTree, Logic, Operator, WireQuery
from .segment import CamelModel, PreviewState


class SetFieldEdit(CamelModel):
    op: Literal["set_field"]
    condition_id: str
    field: FieldKey


class SetOperatorEdit(CamelModel):
    op: Literal["set_operator"]
    condition_id: str
    operator: Operator


class SetValueEdit(CamelModel):
    op: Literal["set_value"]
    condition_id: str
    value: Optional[Any] = None


class AddConditionEdit(CamelModel):
    op: Literal["add_condition"]
    group_id: str


class RemoveConditionEdit(CamelModel):
    op: Literal["remove_condition"]
    group_id: str
    condition_id: str


class AddGroupEdit(CamelModel):
    op: Literal["add_group"]


class RemoveGroupEdit(CamelModel):
    op: Literal["remove_group"]
    group_id: str


class SetGroupLogicEdit(CamelModel):
    op: Literal["set_group_logic"]
    group_id: str
    logic: Logic


class SetTreeLogicEdit(CamelModel):
    op: Literal["set_tree_logic"]
    logic: Logic


TreeEdit = Annotated[
    Union[
        SetFieldEdit,
        SetOperatorEdit,
        SetValueEdit,
        AddConditionEdit,
        RemoveConditionEdit,
        AddGroupEdit,
        RemoveGroupEdit,
        SetGroupLogicEdit,
        SetTreeLogicEdit,
    ],
    Field(discriminator="op"),
]


class EditRequest(BaseModel):
    """One or more edits applied in order"""
    edits: List[TreeEdit] = Field(..., min_length=1)


class OpenSessionRequest(CamelModel):
    template_id: Optional[str] = None
    segment_id: Optional[str] = None
    filters: Any = None


class SessionDetailsUpdate(CamelModel):
    name: Optional[str] = Field(default=None, max_length=255)
    description: Optional[str] = None
    is_active: Optional[bool] = None


class SessionView(CamelModel):
    id: str
    segment_id: Optional[str] = None
    name: str = ""
    description: Optional[str] = None
    is_active: bool = True
    tree: FilterTree
    is_empty: bool
    can_remove_group: bool
    removable_condition_groups: List[str] = Field(default_factory=list)
    preview: PreviewState
    last_error: Optional[str] = None


class ValidateResponse(CamelModel):
    tree: FilterTree
    query: WireQuery
    is_empty: bool
