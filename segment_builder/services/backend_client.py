from typing import Any, Dict, Optional, Type

import httpx

from ..config import settings
from ..schemas.segment import SegmentServiceError
from ..utils.logger import setup_logger

logger = setup_logger("backend_client", settings.get_log_file("backend_client"))

SHOP_HEADER = "X-Shopify-Shop-Domain"


def create_http_client() -> httpx.AsyncClient:
    """Shared connection pool for calls to the analytics backend"""
    headers = {"Content-Type": "application/json"}
    if settings.backend.API_TOKEN:
        headers["Authorization"] = f"Bearer {settings.backend.API_TOKEN}"
    return httpx.AsyncClient(
        base_url=settings.backend.API_URL,
        headers=headers,
        timeout=settings.backend.TIMEOUT_SECONDS,
    )


def extract_error(response: httpx.Response) -> str:
    """Pull the `{error: ...}` message out of a failed backend response"""
    try:
        payload = response.json()
    except ValueError:
        return f"API error: {response.status_code}"
    if isinstance(payload, dict):
        message = payload.get("error") or payload.get("message") or payload.get("detail")
        if isinstance(message, str) and message:
            return message
    return f"API error: {response.status_code}"


class BackendClient:
    """Base for collaborators reached over the backend's REST API"""

    error_class: Type[SegmentServiceError] = SegmentServiceError

    def __init__(self, client: httpx.AsyncClient):
        self.client = client

    async def _request(
        self,
        method: str,
        path: str,
        shop: str,
        json: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> Any:
        headers = {SHOP_HEADER: shop}
        try:
            response = await self.client.request(method, path, json=json, params=params, headers=headers)
        except httpx.HTTPError as e:
            logger.error(f"{method} {path} failed for {shop}: {str(e)}")
            raise self.error_class(f"Backend unavailable: {str(e)}", error_code="transport") from e

        if response.is_error:
            message = extract_error(response)
            logger.warning(f"{method} {path} returned {response.status_code} for {shop}: {message}")
            raise self.error_class(message, error_code="upstream", status_code=response.status_code)

        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as e:
            raise self.error_class("Backend returned invalid JSON", error_code="invalid_response") from e
