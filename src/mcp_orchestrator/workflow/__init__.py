"""Explicit workflow domain concepts.

This package introduces first-class types for:
- Plans and steps (what to run, in which order)
- Argument building and context hand-off between steps
- Substitution after a failed attempt
- Result summaries and the final synthesis
"""

__all__: list[str] = []
