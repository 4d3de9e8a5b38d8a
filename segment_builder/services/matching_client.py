from typing import Any, Dict, List, Protocol, runtime_checkable

from pydantic import ValidationError

from ..config import settings
from ..schemas.filter import WireQuery
from ..schemas.segment import CustomerSummary, MatchingServiceError, PreviewResult
from ..utils.logger import setup_logger
from .backend_client import BackendClient

logger = setup_logger("matching_client", settings.get_log_file("matching_client"))


@runtime_checkable
class MatchingService(Protocol):
    """Evaluates an encoded query against a shop's customers"""

    async def evaluate(self, query: WireQuery, shop: str, limit: int) -> PreviewResult:
        ...


def parse_preview_payload(payload: Any, limit: int) -> PreviewResult:
    """Accept both `{count, sample}` and the older `{totalCount, customers}` shapes"""
    if not isinstance(payload, dict):
        raise MatchingServiceError("Unexpected preview response", error_code="invalid_response")

    count = payload.get("count", payload.get("totalCount"))
    sample: List[Dict[str, Any]] = payload.get("sample", payload.get("customers")) or []
    try:
        return PreviewResult(
            count=int(count or 0),
            sample=[CustomerSummary.model_validate(c) for c in sample[:limit]],
        )
    except (TypeError, ValueError, ValidationError) as e:
        raise MatchingServiceError(f"Unexpected preview response: {str(e)}", error_code="invalid_response") from e


class HttpMatchingService(BackendClient):
    """Matching service reached at POST /segments/preview"""

    error_class = MatchingServiceError

    async def evaluate(self, query: WireQuery, shop: str, limit: int) -> PreviewResult:
        logger.info(f"Evaluating {len(query.conditions)} conditions ({query.logic}) for {shop}")
        payload = await self._request(
            "POST",
            "/segments/preview",
            shop,
            json={"filters": query.model_dump(mode="json"), "limit": limit},
        )
        result = parse_preview_payload(payload, limit)
        logger.info(f"Preview for {shop}: {result.count} matching customers")
        return result
