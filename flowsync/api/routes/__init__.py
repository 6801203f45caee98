"""API route modules."""

from . import implementation, projects, reconciliation

__all__ = ["implementation", "projects", "reconciliation"]
