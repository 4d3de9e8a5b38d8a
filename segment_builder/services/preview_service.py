"""Live preview of the customers matching an in-progress filter tree.

Edits are debounced per editing session: only the last edit inside the quiet
window triggers a call to the matching service. Every submitted tree gets a
new sequence number, and a response is applied only while its sequence is
still the latest, so a slow response can never overwrite the result of a
newer tree.
"""
import asyncio
from typing import Awaitable, Callable, Optional, Set

from ..config import settings
from ..schemas.filter import FilterTree
from ..schemas.segment import MatchingServiceError, PreviewState, PreviewStatus
from ..utils.logger import setup_logger
from .filter_tree import is_empty_tree
from .matching_client import MatchingService
from .wire_codec import encode

logger = setup_logger("preview_service", settings.get_log_file("preview_service"))


class DebouncedTask:
    """Scheduled call that a newer schedule() supersedes while it is still waiting.

    Once the delay has elapsed the call runs to completion: it can be
    superseded (its result ignored by the caller) but not cancelled.
    """

    def __init__(self, delay: float):
        self.delay = delay
        self._timer: Optional[asyncio.Task] = None
        self._running: Set[asyncio.Task] = set()
        self.closed = False

    @property
    def pending(self) -> bool:
        return self._timer is not None and not self._timer.done()

    @property
    def running(self) -> bool:
        return bool(self._running)

    def schedule(self, callback: Callable[[], Awaitable[None]]) -> None:
        self.cancel()
        self._timer = asyncio.get_running_loop().create_task(self._fire(callback))

    def cancel(self) -> bool:
        if not self.pending:
            return False
        self._timer.cancel()
        self._timer = None
        return True

    async def _fire(self, callback: Callable[[], Awaitable[None]]) -> None:
        await asyncio.sleep(self.delay)

        task = asyncio.current_task()
        if self._timer is task:
            self._timer = None
        self._running.add(task)
        try:
            await callback()
        finally:
            self._running.discard(task)

    async def join(self) -> None:
        """Wait until no call is waiting or running"""
        while self.pending or self._running:
            tasks = [t for t in (self._timer, *self._running) if t is not None]
            await asyncio.gather(*tasks, return_exceptions=True)

    def close(self) -> None:
        self.cancel()
        for task in list(self._running):
            task.cancel()
        self.closed = True


class PreviewSession:
    """Preview state owned by one editing session"""

    def __init__(self, debounce_seconds: float):
        self.debouncer = DebouncedTask(debounce_seconds)
        self.state = PreviewState()
        self._sequence = 0

    @property
    def sequence(self) -> int:
        return self._sequence

    def next_sequence(self) -> int:
        self._sequence += 1
        return self._sequence

    def is_latest(self, sequence: int) -> bool:
        return sequence == self._sequence

    async def wait_idle(self) -> None:
        await self.debouncer.join()

    def close(self) -> None:
        self.debouncer.close()


class PreviewEvaluator:
    def __init__(
        self,
        matching_service: MatchingService,
        sample_size: int = settings.preview.SAMPLE_SIZE,
        debounce_seconds: float = settings.debounce_seconds,
    ):
        self.matching_service = matching_service
        self.sample_size = sample_size
        self.debounce_seconds = debounce_seconds

    def new_session(self) -> PreviewSession:
        return PreviewSession(self.debounce_seconds)

    def submit(self, session: PreviewSession, shop: str, tree: FilterTree) -> PreviewState:
        """Schedule a debounced evaluation of `tree`, superseding earlier submissions"""
        sequence = session.next_sequence()

        if is_empty_tree(tree):
            # Nothing to evaluate: drop the pending call and the shown result
            session.debouncer.cancel()
            session.state = PreviewState(status=PreviewStatus.IDLE, sequence=sequence)
            return session.state

        session.state = PreviewState(
            status=PreviewStatus.PENDING,
            result=session.state.result,
            sequence=sequence,
        )
        session.debouncer.schedule(lambda: self._evaluate(session, shop, tree, sequence))
        return session.state

    async def evaluate_now(self, session: PreviewSession, shop: str, tree: FilterTree) -> PreviewState:
        """Evaluate immediately, e.g. when the user retries after an error"""
        session.debouncer.cancel()
        sequence = session.next_sequence()

        if is_empty_tree(tree):
            session.state = PreviewState(status=PreviewStatus.IDLE, sequence=sequence)
            return session.state

        await self._evaluate(session, shop, tree, sequence)
        return session.state

    async def _evaluate(self, session: PreviewSession, shop: str, tree: FilterTree, sequence: int) -> None:
        if not session.is_latest(sequence):
            return

        session.state = PreviewState(
            status=PreviewStatus.LOADING,
            result=session.state.result,
            sequence=sequence,
        )
        query = encode(tree)

        try:
            result = await self.matching_service.evaluate(query, shop, self.sample_size)
        except MatchingServiceError as e:
            if not session.is_latest(sequence):
                logger.debug(f"Discarding stale preview error #{sequence}: {e.message}")
                return
            logger.warning(f"Preview #{sequence} for {shop} failed: {e.message}")
            session.state = PreviewState(status=PreviewStatus.ERROR, error=e.message, sequence=sequence)
            return
        except Exception as e:
            logger.error(f"Unexpected error previewing segment for {shop}: {str(e)}", exc_info=True)
            if session.is_latest(sequence):
                session.state = PreviewState(
                    status=PreviewStatus.ERROR,
                    error="Failed to preview segment",
                    sequence=sequence,
                )
            return

        if not session.is_latest(sequence):
            logger.debug(f"Discarding stale preview #{sequence} (latest is #{session.sequence})")
            return

        session.state = PreviewState(status=PreviewStatus.READY, result=result, sequence=sequence)
