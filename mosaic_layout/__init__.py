"""Content-aware collage fill layout engine."""

__version__ = "0.1.0"

from .engine import EngineSettings, fill_layout, handle_request
from .errors import (
    AssignmentError,
    LayoutError,
    LayoutInputError,
    LayoutValidationError,
)
from .models import KeepRegion, LayoutOptions, Photo, Placement, Rect
from .smart_crop import compute_crop
from .worker import LayoutWorker

__all__ = [
    "AssignmentError",
    "EngineSettings",
    "KeepRegion",
    "LayoutError",
    "LayoutInputError",
    "LayoutOptions",
    "LayoutValidationError",
    "LayoutWorker",
    "Photo",
    "Placement",
    "Rect",
    "compute_crop",
    "fill_layout",
    "handle_request",
]
