from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from typing import List, Any, Optional
from enum import Enum
from datetime import datetime


class CamelModel(BaseModel):
    """Base for payloads exchanged with the dashboard and the backend (camelCase on the wire)"""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, coerce_numbers_to_str=True)


class Segment(CamelModel):
    id: str
    name: str
    description: Optional[str] = None
    filters: Any = None
    is_active: bool = True
    member_count: int = 0
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class SegmentCreate(CamelModel):
    name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    filters: Any
    is_active: bool = True


class SegmentUpdate(CamelModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    description: Optional[str] = None
    filters: Any = None
    is_active: Optional[bool] = None


class SegmentListResponse(CamelModel):
    segments: List[Segment]
    total: int
    limit: int = 50
    offset: int = 0


class CustomerSummary(CamelModel):
    """Matching customer as shown in the preview sample"""
    model_config = ConfigDict(extra="allow")

    id: str
    email: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    total_spent: Optional[float] = 0.0
    orders_count: Optional[int] = 0
    rfm_segment: Optional[str] = None

    @property
    def display_name(self) -> str:
        name = f"{self.first_name or ''} {self.last_name or ''}".strip()
        return name or "No name"


class MemberSort(str, Enum):
    ADDED_AT = "addedAt"
    TOTAL_SPENT = "totalSpentSnapshot"


class SortOrder(str, Enum):
    ASC = "asc"
    DESC = "desc"


class SegmentMember(CamelModel):
    """Customer in a segment, with the values captured when it joined"""
    id: str
    added_at: Optional[datetime] = None
    total_spent_snapshot: Optional[float] = None
    rfm_segment_snapshot: Optional[str] = None
    customer: CustomerSummary


class SegmentMembersResponse(CamelModel):
    members: List[SegmentMember]
    total: int
    limit: int = 50
    offset: int = 0


class PreviewResult(CamelModel):
    count: int = Field(..., ge=0)
    sample: List[CustomerSummary] = Field(default_factory=list)


class PreviewStatus(str, Enum):
    IDLE = "idle"
    PENDING = "pending"
    LOADING = "loading"
    READY = "ready"
    ERROR = "error"


class PreviewState(CamelModel):
    status: PreviewStatus = PreviewStatus.IDLE
    result: Optional[PreviewResult] = None
    error: Optional[str] = None
    sequence: int = 0


class SegmentServiceError(Exception):
    def __init__(self, message: str, error_code: str = None, status_code: Optional[int] = None):
        self.message = message
        self.error_code = error_code
        self.status_code = status_code
        super().__init__(self.message)


class MatchingServiceError(SegmentServiceError):
    pass


class SegmentStorageError(SegmentServiceError):
    pass


class SegmentNotFoundError(SegmentStorageError):
    def __init__(self, segment_id: str):
        self.segment_id = segment_id
        super().__init__(f"Segment not found: {segment_id}", error_code="not_found", status_code=404)
