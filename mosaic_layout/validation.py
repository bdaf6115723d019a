from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Literal, Optional, Sequence, Tuple

from .models import Placement, Rect

ValidationMode = Literal["strict", "cover"]


@dataclass(frozen=True)
class ValidationSettings:
    tile_epsilon: float = 0.05
    boundary_epsilon: float = 0.05
    overlap_epsilon: float = 0.1
    area_epsilon: float = 0.5
    cover_max_overflow: float = 0.5


@dataclass(frozen=True)
class ValidationResult:
    ok: bool
    reason: Optional[str] = None

    def __bool__(self) -> bool:
        return self.ok


OK = ValidationResult(True)


def _fail(reason: str) -> ValidationResult:
    return ValidationResult(False, reason)


def draw_rect(placement: Placement) -> Optional[Rect]:
    """Canvas rectangle the placement covers, or None when degenerate."""
    w = placement.crop.w * placement.scale
    h = placement.crop.h * placement.scale
    values = (placement.center_x, placement.center_y, w, h)
    if not all(math.isfinite(v) for v in values) or w <= 0 or h <= 0:
        return None
    return Rect(placement.center_x - w / 2.0, placement.center_y - h / 2.0, w, h)


def validate(
    tile: Rect,
    placement: Placement,
    canvas_w: float,
    canvas_h: float,
    mode: ValidationMode = "strict",
    settings: Optional[ValidationSettings] = None,
) -> ValidationResult:
    settings = settings or ValidationSettings()
    drawn = draw_rect(placement)
    if drawn is None:
        return _fail(f"{placement.photo_id}: degenerate placement")
    eps = settings.tile_epsilon

    if mode == "strict":
        edges = (
            (drawn.x, tile.x),
            (drawn.y, tile.y),
            (drawn.right, tile.right),
            (drawn.bottom, tile.bottom),
        )
        if any(abs(a - b) > eps for a, b in edges):
            return _fail(f"{placement.photo_id}: drawn rect does not match tile")
        b = settings.boundary_epsilon
        if (
            drawn.x < -b
            or drawn.y < -b
            or drawn.right > canvas_w + b
            or drawn.bottom > canvas_h + b
        ):
            return _fail(f"{placement.photo_id}: outside canvas")
        return OK

    tx, ty = tile.center
    if abs(placement.center_x - tx) > eps or abs(placement.center_y - ty) > eps:
        return _fail(f"{placement.photo_id}: not centered on tile")
    if drawn.w < tile.w - eps or drawn.h < tile.h - eps:
        return _fail(f"{placement.photo_id}: does not cover tile")
    cap = settings.cover_max_overflow
    if drawn.w - tile.w > cap * tile.w + eps or drawn.h - tile.h > cap * tile.h + eps:
        return _fail(f"{placement.photo_id}: overflow above {cap:.0%} of tile")
    return OK


def validate_placements(
    entries: Sequence[Tuple[Rect, Placement]],
    canvas_w: float,
    canvas_h: float,
    mode: ValidationMode = "strict",
    settings: Optional[ValidationSettings] = None,
) -> ValidationResult:
    """Check every (tile, placement) pair and the tiling as a whole."""
    settings = settings or ValidationSettings()
    for tile, placement in entries:
        result = validate(tile, placement, canvas_w, canvas_h, mode, settings)
        if not result:
            return result

    tile_area = sum(tile.area for tile, _ in entries)
    if abs(tile_area - canvas_w * canvas_h) > settings.area_epsilon:
        return _fail(
            f"tile area {tile_area:.2f} != canvas area {canvas_w * canvas_h:.2f}"
        )

    if mode == "strict":
        drawn = [draw_rect(p) for _, p in entries]
        for i in range(len(drawn)):
            for j in range(i + 1, len(drawn)):
                a, b = drawn[i], drawn[j]
                if a is None or b is None:
                    continue
                if a.intersection_area(b) > settings.overlap_epsilon:
                    return _fail(
                        f"{entries[i][1].photo_id} overlaps {entries[j][1].photo_id}"
                    )
    return OK
