"""API route modules."""

__all__ = [
    "diagnostics",
    "health",
    "offers",
]
