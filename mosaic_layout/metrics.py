from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, Dict, Optional, Sequence

from .assignment import (
    AssignmentSettings,
    deviation_from_square,
    is_orientation_reversed,
    safe_aspect,
)
from .models import Photo, Placement, PhotoStrategy, Rect, TileInfo
from .validation import draw_rect


@dataclass(frozen=True, order=True)
class LayoutScore:
    """Attempt quality; lower is better, compared field by field."""

    orientation_violations: int
    center_cost: float
    non_extreme_loss: float
    weighted_distortion: float

    def to_dict(self) -> Dict[str, float]:
        return {
            "orientationViolations": self.orientation_violations,
            "centerCost": self.center_cost,
            "nonExtremeLoss": self.non_extreme_loss,
            "weightedDistortion": self.weighted_distortion,
        }


def score_assignment(
    photos: Sequence[PhotoStrategy],
    tiles: Sequence[TileInfo],
    photo_to_tile: Sequence[int],
    settings: Optional[AssignmentSettings] = None,
) -> LayoutScore:
    settings = settings or AssignmentSettings()
    violations = 0
    center = 0.0
    non_extreme = 0.0
    weighted = 0.0
    for i, j in enumerate(photo_to_tile):
        p, t = photos[i], tiles[j]
        if is_orientation_reversed(p.orientation, t.aspect):
            violations += 1
        dev = deviation_from_square(p.source_aspect)
        center += settings.center_bias_weight * (1.0 - t.dist) * dev
        center -= settings.edge_bias_weight * t.dist * dev
        loss = abs(math.log(safe_aspect(p.preferred_aspect)) - math.log(safe_aspect(t.aspect)))
        if p.is_extreme:
            weighted += loss
        else:
            non_extreme += loss
            weighted += settings.non_extreme_weight * loss
    return LayoutScore(violations, center, non_extreme, weighted)


def coverage_report(
    tiles: Sequence[Rect],
    placements: Sequence[Placement],
    canvas_w: float,
    canvas_h: float,
) -> Dict[str, float]:
    """Area bookkeeping for a fill layout (tiles and placements aligned)."""
    canvas = Rect(0.0, 0.0, canvas_w, canvas_h)
    tile_area = 0.0
    covered = 0.0
    drawn_area = 0.0
    max_overflow = 0.0
    for tile, placement in zip(tiles, placements):
        tile_area += tile.area
        drawn = draw_rect(placement)
        if drawn is None:
            continue
        drawn_area += drawn.intersection_area(canvas)
        covered += drawn.intersection_area(tile)
        overflow = max(drawn.w / tile.w, drawn.h / tile.h) - 1.0
        max_overflow = max(max_overflow, overflow)
    return {
        "canvasArea": canvas.area,
        "tileArea": tile_area,
        "coveredArea": covered,
        "drawnArea": drawn_area,
        "coverage": covered / canvas.area if canvas.area > 0 else 0.0,
        "maxOverflow": max_overflow,
    }


def _safe_size(value: float, fallback: float) -> float:
    if not math.isfinite(value) or value <= 0:
        return fallback
    return value


def format_aspect(width: float, height: float) -> str:
    ratio = width / max(1e-6, height)
    if not math.isfinite(ratio):
        return "0.00"
    return f"{ratio:.2f}"


def _format_crop(crop: Rect) -> Dict[str, str]:
    w = _safe_size(crop.w, 1.0)
    h = _safe_size(crop.h, 1.0)
    return {"width": f"{w:.2f}", "height": f"{h:.2f}", "aspect": format_aspect(w, h)}


def selection_info(photo: Photo, display_crop: Optional[Rect] = None) -> Dict[str, Any]:
    """Original size, user crop and displayed crop of one photo."""
    w = round(_safe_size(photo.image_width, 1.0))
    h = round(_safe_size(photo.image_height, 1.0))
    return {
        "original": {"width": w, "height": h, "aspect": format_aspect(w, h)},
        "userCrop": _format_crop(photo.base_crop),
        "displayCrop": _format_crop(display_crop or photo.base_crop),
    }
