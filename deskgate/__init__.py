"""deskgate - per-user containerized desktop sessions behind an authenticated tunnel."""

__version__ = "0.1.0"
