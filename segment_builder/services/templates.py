"""Built-in starting points for new segments"""
from typing import Dict, List, Optional

from pydantic import BaseModel

from ..schemas.filter import FilterTree
from .wire_codec import decode


class SegmentTemplate(BaseModel):
    id: str
    name: str
    description: str
    filters: dict


SEGMENT_TEMPLATES: Dict[str, SegmentTemplate] = {
    t.id: t for t in [
        SegmentTemplate(
            id="high-value",
            name="High Value Customers",
            description="Customers who have spent more than $500 total",
            filters={"logic": "AND", "conditions": [
                {"field": "totalSpent", "operator": "gte", "value": 500},
            ]},
        ),
        SegmentTemplate(
            id="recent-purchasers",
            name="Recent Purchasers",
            description="Customers who ordered in the last 30 days",
            filters={"logic": "AND", "conditions": [
                {"field": "daysSinceLastOrder", "operator": "lte", "value": 30},
            ]},
        ),
        SegmentTemplate(
            id="at-risk",
            name="At Risk Customers",
            description="Customers who haven't ordered in 90+ days",
            filters={"logic": "AND", "conditions": [
                {"field": "daysSinceLastOrder", "operator": "gte", "value": 90},
            ]},
        ),
        SegmentTemplate(
            id="repeat-buyers",
            name="Repeat Buyers",
            description="Customers with 3 or more orders",
            filters={"logic": "AND", "conditions": [
                {"field": "ordersCount", "operator": "gte", "value": 3},
            ]},
        ),
        SegmentTemplate(
            id="champions",
            name="Champions",
            description="Best customers by RFM analysis",
            filters={"logic": "AND", "conditions": [
                {"field": "rfmSegment", "operator": "eq", "value": "CHAMPIONS"},
            ]},
        ),
        SegmentTemplate(
            id="new-customers",
            name="New Customers",
            description="First-time buyers in the last 30 days",
            filters={"logic": "AND", "conditions": [
                {"field": "ordersCount", "operator": "eq", "value": 1},
                {"field": "daysSinceLastOrder", "operator": "lte", "value": 30},
            ]},
        ),
    ]
}


def list_templates() -> List[SegmentTemplate]:
    return list(SEGMENT_TEMPLATES.values())


def get_template(template_id: str) -> Optional[SegmentTemplate]:
    return SEGMENT_TEMPLATES.get(template_id)


def template_tree(template: SegmentTemplate) -> FilterTree:
    """Fresh tree (new ids) for a template"""
    return decode(template.filters)
