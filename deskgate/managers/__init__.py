"""Managers - business logic layer."""

from deskgate.managers.session import SessionOrchestrator, SessionRegistry

__all__ = ["SessionOrchestrator", "SessionRegistry"]
