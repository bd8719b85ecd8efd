"""HTTP API layer: list pending confirmations and submit decisions."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException

from studio.api.deps import get_session
from studio.core.errors import ConfirmationError
from studio.infra.observability.logger import get_logger
from studio.protocol.messages import DecisionRequest, DecisionResultDto, PendingConfirmationDto
from studio.runtime.session import StreamSession

router = APIRouter(prefix="/api/v1/sessions", tags=["confirmations"])
logger = get_logger(__name__)


@router.get("/{session_id}/confirmations", response_model=list[PendingConfirmationDto])
def list_confirmations(session: StreamSession = Depends(get_session)) -> list[PendingConfirmationDto]:
    return [entry.to_dto() for entry in session.gate.pending()]


@router.post("/{session_id}/confirmations/{call_id}", response_model=DecisionResultDto)
async def decide(
    call_id: str,
    request: DecisionRequest,
    session: StreamSession = Depends(get_session),
) -> DecisionResultDto:
    entry = session.gate.get(call_id)
    if entry is None:
        raise HTTPException(status_code=404, detail=f"confirmation '{call_id}' not found")

    try:
        if request.decisions:
            resolved = await session.resolve(call_id, request.decisions)
        elif request.bulk is not None:
            resolved = await session.resolve_bulk(call_id, request.bulk, item_id=request.item_id)
        elif request.item_id and request.attribute_id and request.decision:
            resolved = await session.resolve_attribute(
                call_id,
                request.item_id,
                request.attribute_id,
                request.decision,
            )
        elif request.item_id and request.decision:
            resolved = await session.resolve(call_id, {request.item_id: request.decision})
        else:
            raise HTTPException(status_code=422, detail="decision payload is empty")
    except ConfirmationError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc

    logger.info(
        "api.confirmation.decision session_id=%s call_id=%s resolved=%s",
        session.session_id,
        call_id,
        resolved,
    )
    response = session.gate.response(call_id)
    return DecisionResultDto(
        call_id=call_id,
        resolved=resolved,
        decisions=dict(response.decisions) if response is not None else dict(entry.decisions),
        missing=[] if resolved else entry.missing(),
    )
