"""API layer: dependency helpers to access shared container and sessions."""

from __future__ import annotations

from fastapi import Depends, HTTPException, Request

from studio.core.container import AppContainer
from studio.runtime.session import StreamSession


def get_container(request: Request) -> AppContainer:
    return request.app.state.container  # type: ignore[return-value]


def get_session(session_id: str, container: AppContainer = Depends(get_container)) -> StreamSession:
    session = container.sessions.get(session_id)
    if session is None:
        raise HTTPException(status_code=404, detail=f"session '{session_id}' not found")
    return session
