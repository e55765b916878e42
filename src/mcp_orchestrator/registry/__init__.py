"""Capability registry: which (target, operation) pairs exist and how well they fit a step."""

__all__: list[str] = []
