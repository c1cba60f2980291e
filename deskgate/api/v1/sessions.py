"""Desktop session endpoints for the logged-in principal."""

from __future__ import annotations

import json
from collections.abc import AsyncIterator
from datetime import datetime

from fastapi import APIRouter
from fastapi.responses import StreamingResponse
from pydantic import BaseModel

from deskgate.api.dependencies import OrchestratorDep, PrincipalDep, SettingsDep
from deskgate.errors import NotFoundError
from deskgate.managers.session import ProgressChannel
from deskgate.models.session import DesktopSession

router = APIRouter()


# Request/Response Models


class SessionResponse(BaseModel):
    """Session response model."""

    session_id: str
    owner_id: str
    owner_name: str
    container_id: str | None
    container_name: str
    host_port: int
    display_index: int
    aux_port: int
    aux_process_id: int | None
    url: str
    created_at: datetime
    state: str

    @classmethod
    def from_session(cls, session: DesktopSession) -> "SessionResponse":
        return cls(**session.to_dict())


class SessionListResponse(BaseModel):
    items: list[SessionResponse]


class DestroyAllResponse(BaseModel):
    destroyed: int


# Endpoints


@router.post("", response_model=SessionResponse, status_code=201)
async def create_session(
    orchestrator: OrchestratorDep,
    principal: PrincipalDep,
) -> SessionResponse:
    """Provision a session and return it once it is running."""
    session = await orchestrator.create(principal.id, principal.name)
    return SessionResponse.from_session(session)


def _sse_frame(event: str, data: dict) -> str:
    return f"event: {event}\ndata: {json.dumps(data)}\n\n"


async def _progress_stream(channel: ProgressChannel) -> AsyncIterator[str]:
    async for event in channel.events():
        yield _sse_frame(event.step.value, event.payload())


@router.post("/stream")
async def create_session_stream(
    orchestrator: OrchestratorDep,
    principal: PrincipalDep,
    settings: SettingsDep,
) -> StreamingResponse:
    """Provision a session, streaming progress as server-sent events.

    The stream ends with ``event: complete`` (session) or ``event: error``.
    Disconnecting does not abort provisioning.
    """
    channel = ProgressChannel(maxsize=settings.sessions.progress_queue_size)
    orchestrator.start_create(principal.id, principal.name, channel)
    return StreamingResponse(
        _progress_stream(channel),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )


@router.get("", response_model=SessionListResponse)
async def list_sessions(
    orchestrator: OrchestratorDep,
    principal: PrincipalDep,
) -> SessionListResponse:
    """List the caller's sessions (registry view, not reconciled)."""
    sessions = orchestrator.list_for_owner(principal.id)
    return SessionListResponse(items=[SessionResponse.from_session(s) for s in sessions])


@router.delete("", response_model=DestroyAllResponse)
async def destroy_all_sessions(
    orchestrator: OrchestratorDep,
    principal: PrincipalDep,
) -> DestroyAllResponse:
    destroyed = await orchestrator.destroy_all_for_owner(principal.id)
    return DestroyAllResponse(destroyed=destroyed)


@router.get("/{session_id}", response_model=SessionResponse)
async def get_session(
    session_id: str,
    orchestrator: OrchestratorDep,
    principal: PrincipalDep,
) -> SessionResponse:
    """Get one session; a session whose container died is purged and 404s."""
    session = await orchestrator.get_one(principal.id, session_id)
    if session is None:
        raise NotFoundError(f"Session not found: {session_id}")
    return SessionResponse.from_session(session)


@router.delete("/{session_id}", status_code=204)
async def destroy_session(
    session_id: str,
    orchestrator: OrchestratorDep,
    principal: PrincipalDep,
) -> None:
    if not await orchestrator.destroy(principal.id, session_id):
        raise NotFoundError(f"Session not found: {session_id}")
