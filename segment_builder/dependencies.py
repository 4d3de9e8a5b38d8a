from fastapi import Header, HTTPException, Request

from .services.editor_service import EditorService
from .services.matching_client import MatchingService
from .services.segment_store import SegmentStorageClient


async def get_shop(
    x_shopify_shop_domain: str = Header(None, alias="X-Shopify-Shop-Domain")
) -> str:
    """Tenant of the request, as forwarded by the dashboard"""
    if not x_shopify_shop_domain:
        raise HTTPException(status_code=400, detail="Missing X-Shopify-Shop-Domain header")
    return x_shopify_shop_domain


def get_matching_service(request: Request) -> MatchingService:
    return request.app.state.matching_service


def get_storage(request: Request) -> SegmentStorageClient:
    return request.app.state.storage


def get_editor(request: Request) -> EditorService:
    return request.app.state.editor
