"""HTTP API layer: feed upstream delta streams into sessions and manage their lifetime."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Body, Depends, HTTPException, Request, Response, status

from studio.api.deps import get_container, get_session
from studio.core.container import AppContainer
from studio.infra.observability.logger import get_logger
from studio.protocol.messages import IngestResultDto, SessionDetailDto, ToolCallDto
from studio.runtime.session import StreamSession

router = APIRouter(prefix="/api/v1/sessions", tags=["sessions"])
logger = get_logger(__name__)


def _to_detail(session: StreamSession) -> SessionDetailDto:
    return SessionDetailDto(
        session_id=session.session_id,
        current_document_id=session.current_document_id,
        documents=session.document_ids,
        blocked_on=session.blocked_on,
        awaiting_confirmation=[entry.call_id for entry in session.gate.pending()],
        ended=session.ended,
        disconnected=session.disconnected,
        errors=list(session.errors),
    )


@router.post("/{session_id}/events", response_model=IngestResultDto)
async def ingest_events(
    session_id: str,
    events: list[Any] = Body(...),
    container: AppContainer = Depends(get_container),
) -> IngestResultDto:
    session = container.sessions.get_or_create(session_id)
    result = await session.feed(events)
    logger.info(
        "api.session.events session_id=%s accepted=%s awaiting=%s closed=%s",
        session_id,
        result.accepted,
        len(result.awaiting_confirmation),
        result.closed,
    )
    return result


@router.post("/{session_id}/stream", response_model=IngestResultDto)
async def ingest_stream(
    session_id: str,
    request: Request,
    container: AppContainer = Depends(get_container),
) -> IngestResultDto:
    body = (await request.body()).decode("utf-8", errors="replace")
    session = container.sessions.get_or_create(session_id)
    result = await session.feed_sse(body)
    logger.info(
        "api.session.stream session_id=%s accepted=%s closed=%s",
        session_id,
        result.accepted,
        result.closed,
    )
    return result


@router.get("/{session_id}", response_model=SessionDetailDto)
def get_session_detail(session: StreamSession = Depends(get_session)) -> SessionDetailDto:
    return _to_detail(session)


@router.post("/{session_id}/disconnect", response_model=IngestResultDto)
async def disconnect_session(session: StreamSession = Depends(get_session)) -> IngestResultDto:
    return await session.disconnect()


@router.get("/{session_id}/tools", response_model=list[ToolCallDto])
def list_tool_calls(session: StreamSession = Depends(get_session)) -> list[ToolCallDto]:
    return session.ledger.to_list()


@router.delete("/{session_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_session(
    session_id: str,
    container: AppContainer = Depends(get_container),
) -> Response:
    session = container.sessions.pop(session_id)
    if session is None:
        raise HTTPException(status_code=404, detail=f"session '{session_id}' not found")
    await session.cancel()
    container.events.drop(session_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
