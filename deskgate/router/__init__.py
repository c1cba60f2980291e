"""Routing layer - maps browser traffic onto session backends."""
