"""Service layer - host-side helpers used by the managers."""
