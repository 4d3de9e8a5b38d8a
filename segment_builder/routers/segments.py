from fastapi import APIRouter, Body, Depends, HTTPException, Query
from typing import Any, Optional
from pydantic import BaseModel, Field

from ..config import settings
from ..dependencies import get_matching_service, get_shop, get_storage
from ..schemas.editor import ValidateResponse
from ..schemas.segment import (
    MemberSort,
    PreviewResult,
    Segment,
    SegmentCreate,
    SegmentListResponse,
    SegmentMembersResponse,
    SegmentNotFoundError,
    SegmentServiceError,
    SegmentUpdate,
    SortOrder,
)
from ..services.filter_tree import is_empty_tree
from ..services.matching_client import MatchingService
from ..services.segment_store import SegmentStorageClient
from ..services.wire_codec import decode, encode, encode_to_dict
from ..utils.logger import setup_logger

logger = setup_logger("segments_router", settings.get_log_file("segments_router"))

router = APIRouter(prefix="/segments")


class PreviewRequest(BaseModel):
    filters: Any = None
    limit: int = Field(default=settings.preview.SAMPLE_SIZE, ge=1, le=100)


class FiltersRequest(BaseModel):
    filters: Any = None


def raise_for_service_error(e: SegmentServiceError):
    if isinstance(e, SegmentNotFoundError):
        raise HTTPException(status_code=404, detail="Segment not found")
    raise HTTPException(status_code=502, detail=e.message)


def canonical_filters(raw: Any) -> dict:
    """Decode any stored filter shape and re-encode it as a WireQuery"""
    tree = decode(raw)
    if is_empty_tree(tree):
        raise HTTPException(status_code=400, detail="Please add at least one filter condition")
    return encode_to_dict(tree)


@router.get("", response_model=SegmentListResponse)
async def list_segments(
    is_active: Optional[bool] = Query(None, alias="isActive"),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    shop: str = Depends(get_shop),
    storage: SegmentStorageClient = Depends(get_storage),
) -> SegmentListResponse:
    try:
        return await storage.list_segments(shop, is_active=is_active, limit=limit, offset=offset)
    except SegmentServiceError as e:
        raise_for_service_error(e)


@router.post("/preview", response_model=PreviewResult)
async def preview_segment(
    request: PreviewRequest = Body(...),
    shop: str = Depends(get_shop),
    matching_service: MatchingService = Depends(get_matching_service),
) -> PreviewResult:
    """One-off preview of a filter definition in any known shape"""
    tree = decode(request.filters)
    if is_empty_tree(tree):
        return PreviewResult(count=0, sample=[])
    try:
        return await matching_service.evaluate(encode(tree), shop, request.limit)
    except SegmentServiceError as e:
        raise_for_service_error(e)


@router.post("/validate", response_model=ValidateResponse)
async def validate_filters(request: FiltersRequest = Body(...)) -> ValidateResponse:
    tree = decode(request.filters)
    return ValidateResponse(tree=tree, query=encode(tree), is_empty=is_empty_tree(tree))


@router.get("/{segment_id}", response_model=Segment)
async def get_segment(
    segment_id: str,
    shop: str = Depends(get_shop),
    storage: SegmentStorageClient = Depends(get_storage),
) -> Segment:
    try:
        return await storage.get_segment(shop, segment_id)
    except SegmentServiceError as e:
        raise_for_service_error(e)


@router.get("/{segment_id}/members", response_model=SegmentMembersResponse)
async def get_segment_members(
    segment_id: str,
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    sort_by: MemberSort = Query(MemberSort.ADDED_AT, alias="sortBy"),
    sort_order: SortOrder = Query(SortOrder.DESC, alias="sortOrder"),
    shop: str = Depends(get_shop),
    storage: SegmentStorageClient = Depends(get_storage),
) -> SegmentMembersResponse:
    try:
        return await storage.get_segment_members(
            shop, segment_id, limit=limit, offset=offset, sort_by=sort_by, sort_order=sort_order
        )
    except SegmentServiceError as e:
        raise_for_service_error(e)


@router.post("/{segment_id}/recompute")
async def recompute_segment(
    segment_id: str,
    shop: str = Depends(get_shop),
    storage: SegmentStorageClient = Depends(get_storage),
):
    try:
        message = await storage.recompute_segment(shop, segment_id)
    except SegmentServiceError as e:
        raise_for_service_error(e)
    return {"message": message}


@router.post("", response_model=Segment, status_code=201)
async def create_segment(
    request: SegmentCreate = Body(...),
    shop: str = Depends(get_shop),
    storage: SegmentStorageClient = Depends(get_storage),
) -> Segment:
    data = request.model_copy(update={"filters": canonical_filters(request.filters)})
    try:
        return await storage.create_segment(shop, data)
    except SegmentServiceError as e:
        raise_for_service_error(e)


@router.put("/{segment_id}", response_model=Segment)
async def update_segment(
    segment_id: str,
    request: SegmentUpdate = Body(...),
    shop: str = Depends(get_shop),
    storage: SegmentStorageClient = Depends(get_storage),
) -> Segment:
    data = request
    if "filters" in request.model_fields_set:
        data = request.model_copy(update={"filters": canonical_filters(request.filters)})
    try:
        return await storage.update_segment(shop, segment_id, data)
    except SegmentServiceError as e:
        raise_for_service_error(e)


@router.delete("/{segment_id}")
async def delete_segment(
    segment_id: str,
    shop: str = Depends(get_shop),
    storage: SegmentStorageClient = Depends(get_storage),
):
    try:
        await storage.delete_segment(shop, segment_id)
    except SegmentServiceError as e:
        raise_for_service_error(e)
    return {"message": "Segment deleted"}
