"""Spec-to-implementation drift tracking and reconciliation."""

__version__ = "0.1.0"
