from typing import Any, Dict, Optional

from pydantic import ValidationError

from ..config import settings
from ..schemas.segment import (
    MemberSort,
    Segment,
    SegmentCreate,
    SegmentListResponse,
    SegmentMember,
    SegmentMembersResponse,
    SegmentNotFoundError,
    SegmentStorageError,
    SegmentUpdate,
    SortOrder,
)
from ..utils.logger import setup_logger
from .backend_client import BackendClient

logger = setup_logger("segment_store", settings.get_log_file("segment_store"))


def _parse_segment(payload: Any) -> Segment:
    """Segments arrive either bare or wrapped as `{segment: {...}}`"""
    if isinstance(payload, dict) and isinstance(payload.get("segment"), dict):
        payload = payload["segment"]
    if not isinstance(payload, dict):
        raise SegmentStorageError("Unexpected segment response", error_code="invalid_response")

    data = dict(payload)
    if "memberCount" not in data and "customerCount" in data:
        data["memberCount"] = data["customerCount"]
    try:
        return Segment.model_validate(data)
    except ValidationError as e:
        raise SegmentStorageError(f"Unexpected segment response: {str(e)}", error_code="invalid_response") from e


class SegmentStorageClient(BackendClient):
    """CRUD over persisted segments, scoped to the shop passed with every call"""

    error_class = SegmentStorageError

    async def _segment_request(self, method: str, segment_id: str, shop: str, action: str = "", **kwargs) -> Any:
        path = f"/segments/{segment_id}"
        if action:
            path = f"{path}/{action}"
        try:
            return await self._request(method, path, shop, **kwargs)
        except SegmentStorageError as e:
            if e.status_code == 404:
                raise SegmentNotFoundError(segment_id) from e
            raise

    async def list_segments(
        self,
        shop: str,
        is_active: Optional[bool] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> SegmentListResponse:
        params: Dict[str, Any] = {"limit": limit, "offset": offset}
        if is_active is not None:
            params["isActive"] = "true" if is_active else "false"

        payload = await self._request("GET", "/segments", shop, params=params)
        if isinstance(payload, list):
            payload = {"segments": payload, "total": len(payload)}
        if not isinstance(payload, dict):
            raise SegmentStorageError("Unexpected segment list response", error_code="invalid_response")

        segments = [_parse_segment(s) for s in payload.get("segments") or []]
        return SegmentListResponse(
            segments=segments,
            total=payload.get("total", len(segments)),
            limit=payload.get("limit", limit),
            offset=payload.get("offset", offset),
        )

    async def get_segment(self, shop: str, segment_id: str) -> Segment:
        payload = await self._segment_request("GET", segment_id, shop)
        return _parse_segment(payload)

    async def create_segment(self, shop: str, data: SegmentCreate) -> Segment:
        payload = await self._request(
            "POST", "/segments", shop, json=data.model_dump(mode="json", by_alias=True)
        )
        segment = _parse_segment(payload)
        logger.info(f"Created segment {segment.id} ({segment.name}) for {shop}")
        return segment

    async def update_segment(self, shop: str, segment_id: str, data: SegmentUpdate) -> Segment:
        body = data.model_dump(mode="json", by_alias=True, exclude_unset=True)
        payload = await self._segment_request("PUT", segment_id, shop, json=body)
        logger.info(f"Updated segment {segment_id} for {shop}")
        return _parse_segment(payload)

    async def delete_segment(self, shop: str, segment_id: str) -> None:
        await self._segment_request("DELETE", segment_id, shop)
        logger.info(f"Deleted segment {segment_id} for {shop}")

    async def get_segment_members(
        self,
        shop: str,
        segment_id: str,
        limit: int = 50,
        offset: int = 0,
        sort_by: MemberSort = MemberSort.ADDED_AT,
        sort_order: SortOrder = SortOrder.DESC,
    ) -> SegmentMembersResponse:
        params = {
            "limit": limit,
            "offset": offset,
            "sortBy": MemberSort(sort_by).value,
            "sortOrder": SortOrder(sort_order).value,
        }
        payload = await self._segment_request("GET", segment_id, shop, action="members", params=params)
        if isinstance(payload, list):
            payload = {"members": payload, "total": len(payload)}
        if not isinstance(payload, dict):
            raise SegmentStorageError("Unexpected segment members response", error_code="invalid_response")

        try:
            members = [SegmentMember.model_validate(m) for m in payload.get("members") or []]
        except ValidationError as e:
            raise SegmentStorageError(
                f"Unexpected segment members response: {str(e)}", error_code="invalid_response"
            ) from e
        return SegmentMembersResponse(
            members=members,
            total=payload.get("total", len(members)),
            limit=payload.get("limit", limit),
            offset=payload.get("offset", offset),
        )

    async def recompute_segment(self, shop: str, segment_id: str) -> str:
        """Ask the backend to rebuild the segment's membership; returns its acknowledgement"""
        payload = await self._segment_request("POST", segment_id, shop, action="recompute")
        logger.info(f"Queued recomputation of segment {segment_id} for {shop}")
        if isinstance(payload, dict) and payload.get("message"):
            return str(payload["message"])
        return "Segment recomputation queued"
