from fastapi import APIRouter, Body, Depends, HTTPException
from typing import Optional

from ..config import settings
from ..dependencies import get_editor, get_shop
from ..schemas.editor import EditRequest, OpenSessionRequest, SessionDetailsUpdate, SessionView
from ..schemas.segment import PreviewState, Segment, SegmentNotFoundError, SegmentServiceError
from ..services.editor_service import EditorService, EditorSession, SessionNotFoundError
from ..services.templates import get_template, template_tree
from ..services.wire_codec import decode
from ..utils.logger import setup_logger

logger = setup_logger("editor_router", settings.get_log_file("editor_router"))

router = APIRouter(prefix="/editor/sessions")


def load_session(
    session_id: str,
    shop: str = Depends(get_shop),
    editor: EditorService = Depends(get_editor),
) -> EditorSession:
    try:
        return editor.get(session_id, shop)
    except SessionNotFoundError:
        raise HTTPException(status_code=404, detail="Editor session not found")


@router.post("", response_model=SessionView, status_code=201)
async def open_session(
    request: Optional[OpenSessionRequest] = Body(None),
    shop: str = Depends(get_shop),
    editor: EditorService = Depends(get_editor),
) -> SessionView:
    """Start editing a blank segment, a template or a stored segment"""
    request = request or OpenSessionRequest()
    if request.segment_id:
        try:
            session = await editor.open_segment(shop, request.segment_id)
        except SegmentNotFoundError:
            raise HTTPException(status_code=404, detail="Segment not found")
        except SegmentServiceError as e:
            raise HTTPException(status_code=502, detail=e.message)
        return session.view()

    if request.template_id:
        template = get_template(request.template_id)
        if template is None:
            raise HTTPException(status_code=404, detail=f"Unknown template: {request.template_id}")
        session = editor.open_session(
            shop,
            template_tree(template),
            name=template.name,
            description=template.description,
        )
        return session.view()

    tree = decode(request.filters) if request.filters is not None else None
    return editor.open_session(shop, tree).view()


@router.get("/{session_id}", response_model=SessionView)
async def get_session(session: EditorSession = Depends(load_session)) -> SessionView:
    return session.view()


@router.post("/{session_id}/edits", response_model=SessionView)
async def apply_edits(
    request: EditRequest = Body(...),
    session: EditorSession = Depends(load_session),
    editor: EditorService = Depends(get_editor),
) -> SessionView:
    """Apply edits in order; edits that would break the tree are ignored"""
    return editor.apply_edits(session, request.edits).view()


@router.patch("/{session_id}", response_model=SessionView)
async def update_details(
    request: SessionDetailsUpdate = Body(...),
    session: EditorSession = Depends(load_session),
    editor: EditorService = Depends(get_editor),
) -> SessionView:
    return editor.update_details(session, request).view()


@router.get("/{session_id}/preview", response_model=PreviewState)
async def get_preview(session: EditorSession = Depends(load_session)) -> PreviewState:
    return session.preview.state


@router.post("/{session_id}/preview/retry", response_model=PreviewState)
async def retry_preview(
    session: EditorSession = Depends(load_session),
    editor: EditorService = Depends(get_editor),
) -> PreviewState:
    await editor.retry_preview(session)
    return session.preview.state


@router.post("/{session_id}/save", response_model=Segment)
async def save_session(
    session: EditorSession = Depends(load_session),
    editor: EditorService = Depends(get_editor),
) -> Segment:
    try:
        return await editor.save(session)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except SegmentNotFoundError:
        raise HTTPException(status_code=404, detail="Segment not found")
    except SegmentServiceError as e:
        logger.error(f"Saving editor session {session.id} failed: {e.message}")
        raise HTTPException(status_code=502, detail=e.message)


@router.delete("/{session_id}")
async def close_session(
    session: EditorSession = Depends(load_session),
    editor: EditorService = Depends(get_editor),
):
    editor.close_session(session)
    return {"message": "Editor session closed"}
