"""Host-side display client supervision.

Usage:
    from deskgate.services.display import DisplaySupervisor

    supervisor = DisplaySupervisor(config=settings.display)
    client = await supervisor.spawn(session)
    client.exited.add_done_callback(on_exit)
"""

from deskgate.services.display.supervisor import DisplayClient, DisplaySupervisor, ProcessExit

__all__ = [
    "DisplayClient",
    "DisplaySupervisor",
    "ProcessExit",
]
