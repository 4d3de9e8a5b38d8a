import asyncio
import logging
from typing import Any, Dict, List, Optional

import pytest
from fastapi.testclient import TestClient

from segment_builder.dependencies import get_editor, get_matching_service, get_storage
from segment_builder.main import app
from segment_builder.schemas.filter import WireQuery
from segment_builder.schemas.segment import (
    CustomerSummary,
    MatchingServiceError,
    PreviewResult,
    Segment,
    SegmentCreate,
    SegmentListResponse,
    SegmentMember,
    SegmentMembersResponse,
    SegmentNotFoundError,
    SegmentStorageError,
    SegmentUpdate,
)
from segment_builder.services.editor_service import EditorService
from segment_builder.services.preview_service import PreviewEvaluator

SHOP = "test-shop.myshopify.com"
SHOP_HEADERS = {"X-Shopify-Shop-Domain": SHOP}
SESSION_TTL = 60


class FakeMatchingService:
    """Records every evaluated query; can be told to fail or to hold responses"""

    def __init__(self, count: int = 3):
        self.count = count
        self.calls: List[WireQuery] = []
        self.error: Optional[str] = None
        self.gates: Dict[int, asyncio.Event] = {}
        self.results: Dict[int, PreviewResult] = {}

    def hold(self, call_index: int) -> asyncio.Event:
        """Block the n-th call until the returned event is set"""
        gate = asyncio.Event()
        self.gates[call_index] = gate
        return gate

    async def evaluate(self, query: WireQuery, shop: str, limit: int) -> PreviewResult:
        index = len(self.calls)
        self.calls.append(query)

        gate = self.gates.get(index)
        if gate is not None:
            await gate.wait()

        if self.error:
            raise MatchingServiceError(self.error, error_code="upstream", status_code=500)
        if index in self.results:
            return self.results[index]
        sample = [CustomerSummary(id=str(i), email=f"c{i}@example.com") for i in range(min(self.count, limit))]
        return PreviewResult(count=self.count, sample=sample)


class FakeStorage:
    """In-memory stand-in for the segment storage backend"""

    def __init__(self):
        self.segments: Dict[str, Segment] = {}
        self.error: Optional[str] = None
        self._next_id = 1
        self.members: Dict[str, List[SegmentMember]] = {}
        self.recomputed: List[str] = []
        self.member_sorts: List[Dict[str, Any]] = []

    def _check(self):
        if self.error:
            raise SegmentStorageError(self.error, error_code="upstream", status_code=500)

    async def list_segments(self, shop: str, is_active=None, limit: int = 50, offset: int = 0) -> SegmentListResponse:
        self._check()
        segments = [s for s in self.segments.values() if is_active is None or s.is_active == is_active]
        return SegmentListResponse(
            segments=segments[offset:offset + limit], total=len(segments), limit=limit, offset=offset
        )

    async def get_segment(self, shop: str, segment_id: str) -> Segment:
        self._check()
        if segment_id not in self.segments:
            raise SegmentNotFoundError(segment_id)
        return self.segments[segment_id]

    async def create_segment(self, shop: str, data: SegmentCreate) -> Segment:
        self._check()
        segment = Segment(id=f"seg-{self._next_id}", **data.model_dump())
        self._next_id += 1
        self.segments[segment.id] = segment
        return segment

    async def update_segment(self, shop: str, segment_id: str, data: SegmentUpdate) -> Segment:
        self._check()
        if segment_id not in self.segments:
            raise SegmentNotFoundError(segment_id)
        segment = self.segments[segment_id].model_copy(update=data.model_dump(exclude_unset=True))
        self.segments[segment_id] = segment
        return segment

    async def delete_segment(self, shop: str, segment_id: str) -> None:
        self._check()
        if self.segments.pop(segment_id, None) is None:
            raise SegmentNotFoundError(segment_id)

    async def get_segment_members(self, shop: str, segment_id: str, limit: int = 50, offset: int = 0, **sort) -> SegmentMembersResponse:
        await self.get_segment(shop, segment_id)
        self.member_sorts.append(sort)
        members = self.members.get(segment_id, [])
        return SegmentMembersResponse(
            members=members[offset:offset + limit], total=len(members), limit=limit, offset=offset
        )

    async def recompute_segment(self, shop: str, segment_id: str) -> str:
        await self.get_segment(shop, segment_id)
        self.recomputed.append(segment_id)
        return "Segment recomputation queued"


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def stored_segment(storage: FakeStorage, filters: Any, name: str = "Stored") -> Segment:
    segment = Segment(id=f"seg-{storage._next_id}", name=name, filters=filters)
    storage._next_id += 1
    storage.segments[segment.id] = segment
    return segment


@pytest.fixture(autouse=True)
def setup_logging():
    # Configure logging for tests
    logging.basicConfig(
        level=logging.DEBUG,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )


@pytest.fixture
def matching_service():
    return FakeMatchingService()


@pytest.fixture
def storage():
    return FakeStorage()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def editor(matching_service, storage, clock):
    return EditorService(
        PreviewEvaluator(matching_service, sample_size=5, debounce_seconds=0.01),
        storage,
        session_ttl=SESSION_TTL,
        clock=clock,
    )


@pytest.fixture
def client(matching_service, storage, editor):
    app.dependency_overrides[get_matching_service] = lambda: matching_service
    app.dependency_overrides[get_storage] = lambda: storage
    app.dependency_overrides[get_editor] = lambda: editor
    with TestClient(app, headers=SHOP_HEADERS) as test_client:
        yield test_client
    app.dependency_overrides.clear()
