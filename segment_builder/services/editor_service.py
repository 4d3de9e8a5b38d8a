import time
from dataclasses import dataclass, field
from typing import Callable, Dict, Optional

from ..config import settings
from ..schemas.editor import (
    AddConditionEdit,
    AddGroupEdit,
    RemoveConditionEdit,
    RemoveGroupEdit,
    SessionDetailsUpdate,
    SessionView,
    SetFieldEdit,
    SetGroupLogicEdit,
    SetOperatorEdit,
    SetTreeLogicEdit,
    SetValueEdit,
    TreeEdit,
)
from ..schemas.filter import FilterTree, generate_id
from ..schemas.segment import Segment, SegmentCreate, SegmentServiceError, SegmentUpdate
from ..utils.logger import setup_logger
from . import filter_tree
from .preview_service import PreviewEvaluator, PreviewSession
from .segment_store import SegmentStorageClient
from .wire_codec import decode, encode_to_dict

logger = setup_logger("editor_service", settings.get_log_file("editor_service"))


class SessionNotFoundError(KeyError):
    pass


class EmptySegmentError(ValueError):
    pass


@dataclass
class EditorSession:
    """State of one segment being created or edited; owned by a single editor"""
    shop: str
    tree: FilterTree
    preview: PreviewSession
    id: str = field(default_factory=generate_id)
    segment_id: Optional[str] = None
    name: str = ""
    description: Optional[str] = None
    is_active: bool = True
    last_error: Optional[str] = None
    last_used: float = field(default_factory=time.monotonic)

    def view(self) -> SessionView:
        return SessionView(
            id=self.id,
            segment_id=self.segment_id,
            name=self.name,
            description=self.description,
            is_active=self.is_active,
            tree=self.tree,
            is_empty=filter_tree.is_empty_tree(self.tree),
            can_remove_group=filter_tree.can_remove_group(self.tree),
            removable_condition_groups=[
                g.id for g in self.tree.groups if filter_tree.can_remove_condition(self.tree, g.id)
            ],
            preview=self.preview.state,
            last_error=self.last_error,
        )


def apply_edit(tree: FilterTree, edit: TreeEdit) -> FilterTree:
    """Dispatch one edit request to the matching tree operation"""
    if isinstance(edit, SetFieldEdit):
        return filter_tree.set_field(tree, edit.condition_id, edit.field)
    if isinstance(edit, SetOperatorEdit):
        return filter_tree.set_operator(tree, edit.condition_id, edit.operator)
    if isinstance(edit, SetValueEdit):
        return filter_tree.set_value(tree, edit.condition_id, edit.value)
    if isinstance(edit, AddConditionEdit):
        return filter_tree.add_condition(tree, edit.group_id)
    if isinstance(edit, RemoveConditionEdit):
        return filter_tree.remove_condition(tree, edit.group_id, edit.condition_id)
    if isinstance(edit, AddGroupEdit):
        return filter_tree.add_group(tree)
    if isinstance(edit, RemoveGroupEdit):
        return filter_tree.remove_group(tree, edit.group_id)
    if isinstance(edit, SetGroupLogicEdit):
        return filter_tree.set_group_logic(tree, edit.group_id, edit.logic)
    if isinstance(edit, SetTreeLogicEdit):
        return filter_tree.set_tree_logic(tree, edit.logic)
    raise TypeError(f"Unsupported edit: {type(edit).__name__}")


class EditorService:
    """In-memory registry of open editing sessions.

    Sessions idle for longer than `session_ttl` seconds are closed the next
    time a session is opened or looked up.
    """

    def __init__(
        self,
        evaluator: PreviewEvaluator,
        storage: SegmentStorageClient,
        session_ttl: float = settings.editor.SESSION_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.evaluator = evaluator
        self.storage = storage
        self.session_ttl = session_ttl
        self.clock = clock
        self._sessions: Dict[str, EditorSession] = {}

    def expire_idle_sessions(self) -> int:
        cutoff = self.clock() - self.session_ttl
        expired = [s for s in self._sessions.values() if s.last_used < cutoff]
        for session in expired:
            logger.info(f"Editor session {session.id} expired after {self.session_ttl}s idle")
            self.close_session(session)
        return len(expired)

    def _open(self, shop: str, tree: FilterTree, **details) -> EditorSession:
        self.expire_idle_sessions()
        session = EditorSession(
            shop=shop,
            tree=tree,
            preview=self.evaluator.new_session(),
            last_used=self.clock(),
            **details,
        )
        self._sessions[session.id] = session
        self.evaluator.submit(session.preview, shop, tree)
        logger.info(f"Opened editor session {session.id} for {shop}")
        return session

    def open_session(
        self,
        shop: str,
        tree: Optional[FilterTree] = None,
        name: str = "",
        description: Optional[str] = None,
    ) -> EditorSession:
        return self._open(
            shop,
            tree or filter_tree.create_empty_tree(),
            name=name,
            description=description,
        )

    async def open_segment(self, shop: str, segment_id: str) -> EditorSession:
        """Start editing a stored segment; its filters are decoded from whatever form they were saved in"""
        segment: Segment = await self.storage.get_segment(shop, segment_id)
        return self._open(
            shop,
            decode(segment.filters),
            segment_id=segment.id,
            name=segment.name,
            description=segment.description,
            is_active=segment.is_active,
        )

    def get(self, session_id: str, shop: str) -> EditorSession:
        self.expire_idle_sessions()
        session = self._sessions.get(session_id)
        if session is None or session.shop != shop:
            raise SessionNotFoundError(session_id)
        session.last_used = self.clock()
        return session

    def apply_edits(self, session: EditorSession, edits: list) -> EditorSession:
        session.last_used = self.clock()
        tree = session.tree
        for edit in edits:
            tree = apply_edit(tree, edit)

        if tree is session.tree:
            logger.debug(f"Session {session.id}: edits left the tree unchanged")
            return session

        session.tree = tree
        self.evaluator.submit(session.preview, session.shop, tree)
        return session

    def update_details(self, session: EditorSession, details: SessionDetailsUpdate) -> EditorSession:
        for key, value in details.model_dump(exclude_unset=True).items():
            # Only the description can be cleared
            if value is None and key != "description":
                continue
            setattr(session, key, value)
        return session

    async def retry_preview(self, session: EditorSession) -> EditorSession:
        await self.evaluator.evaluate_now(session.preview, session.shop, session.tree)
        return session

    async def save(self, session: EditorSession) -> Segment:
        """Persist the session's tree; on failure the tree is kept so the user can retry"""
        if not session.name.strip():
            raise ValueError("Please provide a segment name")
        if filter_tree.is_empty_tree(session.tree):
            raise EmptySegmentError("Please add at least one filter condition")

        filters = encode_to_dict(session.tree)
        try:
            if session.segment_id:
                segment = await self.storage.update_segment(
                    session.shop,
                    session.segment_id,
                    SegmentUpdate(
                        name=session.name,
                        description=session.description,
                        filters=filters,
                        is_active=session.is_active,
                    ),
                )
            else:
                segment = await self.storage.create_segment(
                    session.shop,
                    SegmentCreate(
                        name=session.name,
                        description=session.description,
                        filters=filters,
                        is_active=session.is_active,
                    ),
                )
        except SegmentServiceError as e:
            session.last_error = e.message
            logger.warning(f"Saving session {session.id} failed: {e.message}")
            raise

        session.segment_id = segment.id
        session.last_error = None
        logger.info(f"Session {session.id} saved as segment {segment.id}")
        return segment

    def close_session(self, session: EditorSession) -> None:
        session.preview.close()
        self._sessions.pop(session.id, None)
        logger.info(f"Closed editor session {session.id}")

    def close_all(self) -> None:
        for session in list(self._sessions.values()):
            self.close_session(session)

    def __len__(self) -> int:
        return len(self._sessions)
