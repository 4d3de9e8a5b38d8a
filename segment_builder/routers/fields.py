from fastapi import APIRouter
from typing import Any, Dict, List

from ..services import field_registry
from ..services.templates import SegmentTemplate, list_templates

router = APIRouter()


@router.get("/fields")
async def get_fields() -> List[Dict[str, Any]]:
    """Filterable customer fields with their operators"""
    fields = []
    for definition in field_registry.catalog():
        data = definition.model_dump(mode="json", exclude_none=True)
        data["operators"] = [
            {"name": op.value, "description": field_registry.operator_label(op)}
            for op in definition.allowed_operators
        ]
        data["default_operator"] = field_registry.default_operator_for(definition.key).value
        data["default_value"] = field_registry.default_value_for(definition.key)
        fields.append(data)
    return fields


@router.get("/templates", response_model=List[SegmentTemplate])
async def get_templates() -> List[SegmentTemplate]:
    return list_templates()
