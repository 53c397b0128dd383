"""Habitual: durable store of user behavioral patterns for session context."""

__version__ = "0.3.0"

__all__ = ["__version__"]
