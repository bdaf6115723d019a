from __future__ import annotations


class LayoutError(RuntimeError):
    """Base class for failures surfaced to the layout caller."""


class LayoutInputError(LayoutError, ValueError):
    """Request rejected before any work was done (bad sizes, counts, ids)."""


class AssignmentError(LayoutError):
    """Malformed cost matrix or a matching that left a photo unassigned."""


class LayoutValidationError(LayoutError):
    """Placements failed validation on both the primary and grid attempt."""
