"""Prompt lineage tracking."""

from gamefoundry.lineage.tracker import LineageError, LineageTracker

__all__ = ["LineageError", "LineageTracker"]
