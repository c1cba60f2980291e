"""Admin endpoints. Require a principal listed in security.admin_users."""

from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter
from pydantic import BaseModel

from deskgate.api.dependencies import AdminDep, OrchestratorDep
from deskgate.api.v1.sessions import SessionResponse
from deskgate.errors import NotFoundError

router = APIRouter()


class AdminSessionResponse(SessionResponse):
    """Session plus what the container runtime reports."""

    status: str
    uptime: datetime | None = None


class AdminSessionListResponse(BaseModel):
    items: list[AdminSessionResponse]


class SessionSummary(BaseModel):
    session_id: str
    owner_id: str
    owner_name: str
    host_port: int
    created_at: datetime


class StatsResponse(BaseModel):
    active_sessions: int
    running_containers: int
    sessions: list[SessionSummary]


@router.get("/sessions", response_model=AdminSessionListResponse)
async def list_all_sessions(
    orchestrator: OrchestratorDep,
    _admin: AdminDep,
) -> AdminSessionListResponse:
    views = await orchestrator.list_all()
    return AdminSessionListResponse(items=[AdminSessionResponse(**v.to_dict()) for v in views])


@router.get("/stats", response_model=StatsResponse)
async def get_stats(
    orchestrator: OrchestratorDep,
    _admin: AdminDep,
) -> StatsResponse:
    """Registry size vs. running labelled containers; divergence is expected after drift."""
    stats = await orchestrator.stats()
    return StatsResponse(
        active_sessions=stats.active_sessions,
        running_containers=stats.running_containers,
        sessions=[SessionSummary(**s) for s in stats.sessions],
    )


@router.delete("/sessions/{session_id}", status_code=204)
async def force_destroy_session(
    session_id: str,
    orchestrator: OrchestratorDep,
    _admin: AdminDep,
) -> None:
    if not await orchestrator.destroy_any(session_id):
        raise NotFoundError(f"Session not found: {session_id}")
