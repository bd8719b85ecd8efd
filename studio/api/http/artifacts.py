"""HTTP API layer: artifact projection, version history, edits and suggestions."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException

from studio.api.deps import get_session
from studio.core.errors import InvalidStateTransitionError, SuggestionNotLocatedError
from studio.infra.observability.logger import get_logger
from studio.protocol.messages import (
    ArtifactView,
    ContentEditRequest,
    NavigateRequest,
    NavigationResultDto,
    RestoreRequest,
    VersionChangeRequest,
    VersionDetailDto,
)
from studio.runtime.session import StreamSession

router = APIRouter(prefix="/api/v1/sessions", tags=["artifacts"])
logger = get_logger(__name__)


def _view(session: StreamSession, document_id: str) -> ArtifactView:
    view = session.view(document_id)
    if view is None:
        raise HTTPException(status_code=404, detail=f"artifact '{document_id}' not found")
    return view


def _conflict(exc: InvalidStateTransitionError) -> HTTPException:
    return HTTPException(status_code=409, detail=str(exc))


@router.get("/{session_id}/artifacts/{document_id}", response_model=ArtifactView)
def get_artifact(document_id: str, session: StreamSession = Depends(get_session)) -> ArtifactView:
    return _view(session, document_id)


@router.get("/{session_id}/artifacts/{document_id}/versions/{index}", response_model=VersionDetailDto)
def get_version(
    document_id: str,
    index: int,
    session: StreamSession = Depends(get_session),
) -> VersionDetailDto:
    _view(session, document_id)
    machine = session.machine(document_id)
    if machine is None or not 0 <= index < machine.version_count:
        raise HTTPException(status_code=404, detail=f"version {index} not found")
    return VersionDetailDto(
        index=index,
        content=machine.version_content(index),
        diff=machine.version_diff(index),
    )


@router.post("/{session_id}/artifacts/{document_id}/versions/navigate", response_model=NavigationResultDto)
async def navigate_version(
    document_id: str,
    request: NavigateRequest,
    session: StreamSession = Depends(get_session),
) -> NavigationResultDto:
    _view(session, document_id)
    moved = session.navigate_version(document_id, request.direction)
    return NavigationResultDto(moved=moved, artifact=_view(session, document_id))


@router.post("/{session_id}/artifacts/{document_id}/versions/change", response_model=NavigationResultDto)
async def change_version(
    document_id: str,
    request: VersionChangeRequest,
    session: StreamSession = Depends(get_session),
) -> NavigationResultDto:
    _view(session, document_id)
    moved = session.change_version(document_id, request.change)
    return NavigationResultDto(moved=moved, artifact=_view(session, document_id))


@router.post("/{session_id}/artifacts/{document_id}/versions/restore", response_model=ArtifactView)
async def restore_version(
    document_id: str,
    request: RestoreRequest,
    session: StreamSession = Depends(get_session),
) -> ArtifactView:
    _view(session, document_id)
    if not request.confirm:
        raise HTTPException(status_code=422, detail="restore drops newer versions; resend with confirm=true")
    try:
        view = await session.restore_version(document_id, request.index)
    except InvalidStateTransitionError as exc:
        raise _conflict(exc) from exc
    except IndexError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    logger.info(
        "api.artifact.restore session_id=%s document_id=%s index=%s",
        session.session_id,
        document_id,
        request.index,
    )
    return view


@router.post("/{session_id}/artifacts/{document_id}/content", response_model=ArtifactView)
async def edit_content(
    document_id: str,
    request: ContentEditRequest,
    session: StreamSession = Depends(get_session),
) -> ArtifactView:
    _view(session, document_id)
    try:
        return session.edit_content(document_id, request.content, debounce=request.debounce)
    except InvalidStateTransitionError as exc:
        raise _conflict(exc) from exc


@router.post(
    "/{session_id}/artifacts/{document_id}/suggestions/{suggestion_id}/apply",
    response_model=ArtifactView,
)
async def apply_suggestion(
    document_id: str,
    suggestion_id: str,
    session: StreamSession = Depends(get_session),
) -> ArtifactView:
    _view(session, document_id)
    try:
        session.apply_suggestion(document_id, suggestion_id)
    except SuggestionNotLocatedError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except InvalidStateTransitionError as exc:
        raise _conflict(exc) from exc
    return _view(session, document_id)
