from __future__ import annotations

import logging
import math
import random
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from .assignment import AssignmentSettings, assign, build_photo_strategy
from .errors import LayoutError, LayoutInputError, LayoutValidationError
from .metrics import LayoutScore, score_assignment
from .models import LayoutOptions, LayoutRequest, Photo, Placement, Rect
from .partition import describe_tiles, grid_partition, partition
from .smart_crop import CropSettings, compute_crop
from .validation import ValidationSettings, validate_placements

log = logging.getLogger(__name__)

GOLDEN_STEP = 0x9E3779B9


@dataclass(frozen=True)
class EngineSettings:
    attempts: int = 8
    split_ratio_min: float = 0.38
    split_ratio_max: float = 0.62
    assignment: AssignmentSettings = field(default_factory=AssignmentSettings)
    crop: CropSettings = field(default_factory=CropSettings)
    validation: ValidationSettings = field(default_factory=ValidationSettings)


@dataclass
class LayoutResult:
    """Placements in input photo order, with the tile each one fills."""

    placements: List[Placement]
    tiles: List[Rect]
    seed: int
    score: Optional[LayoutScore] = None
    used_fallback: bool = False


def _positive_finite(v: Any) -> bool:
    try:
        f = float(v)
    except (TypeError, ValueError):
        return False
    return math.isfinite(f) and f > 0


def attempt_seed(seed: int, attempt: int) -> int:
    return (seed + attempt * GOLDEN_STEP) & 0xFFFFFFFF


def check_inputs(photos: Sequence[Photo], canvas_w: float, canvas_h: float) -> None:
    for name, v in (("canvas width", canvas_w), ("canvas height", canvas_h)):
        if isinstance(v, bool) or not _positive_finite(v):
            raise LayoutInputError(f"{name} must be a positive finite number, got {v!r}")
    if canvas_w * canvas_h < len(photos):
        raise LayoutInputError(
            f"canvas {canvas_w}x{canvas_h} is too small for {len(photos)} photos"
        )
    seen = set()
    for p in photos:
        if p.id in seen:
            raise LayoutInputError(f"duplicate photo id {p.id!r}")
        seen.add(p.id)
        dims = (p.image_width, p.image_height)
        if not all(math.isfinite(d) and d > 0 for d in dims):
            raise LayoutInputError(f"photo {p.id} has invalid image size {dims}")
        crop = p.base_crop
        if not all(math.isfinite(v) for v in (crop.x, crop.y, crop.w, crop.h)):
            raise LayoutInputError(f"photo {p.id} has a non-finite crop")
        if crop.w <= 0 or crop.h <= 0:
            raise LayoutInputError(f"photo {p.id} has an empty crop")


def place_photos(
    photos: Sequence[Photo],
    tiles: Sequence[Rect],
    photo_to_tile: Sequence[int],
    settings: EngineSettings,
) -> Tuple[List[Placement], List[Rect]]:
    """Crop each photo for its tile and scale it to cover the tile."""
    max_distortion = 1.0 + settings.validation.cover_max_overflow
    placements: List[Placement] = []
    photo_tiles: List[Rect] = []
    for photo, tile_idx in zip(photos, photo_to_tile):
        tile = tiles[tile_idx]
        crop = compute_crop(
            photo.image_width,
            photo.image_height,
            photo.base_crop,
            tile.aspect,
            photo.keep_regions,
            settings=settings.crop,
            max_distortion=max_distortion,
        )
        scale = max(tile.w / crop.w, tile.h / crop.h)
        cx, cy = tile.center
        placements.append(Placement(photo.id, cx, cy, scale, crop))
        photo_tiles.append(tile)
    return placements, photo_tiles


def fill_layout_detailed(
    photos: Sequence[Photo],
    canvas_w: float,
    canvas_h: float,
    options: Optional[LayoutOptions] = None,
    settings: Optional[EngineSettings] = None,
) -> LayoutResult:
    settings = settings or EngineSettings()
    options = options or LayoutOptions()
    check_inputs(photos, canvas_w, canvas_h)

    seed = options.seed
    if seed is None:
        seed = random.randrange(2**32)
        log.info("No layout seed given; using %d", seed)
    seed &= 0xFFFFFFFF
    n = len(photos)
    if n == 0:
        return LayoutResult([], [], seed)

    ratio_min = (
        settings.split_ratio_min
        if options.split_ratio_min is None
        else options.split_ratio_min
    )
    ratio_max = (
        settings.split_ratio_max
        if options.split_ratio_max is None
        else options.split_ratio_max
    )
    strategies = [build_photo_strategy(p.image_width, p.image_height) for p in photos]

    def attempt(k: int) -> Tuple[LayoutScore, List[Rect], List[int]]:
        tiles = partition(
            canvas_w, canvas_h, n, attempt_seed(seed, k), ratio_min, ratio_max
        )
        infos = describe_tiles(tiles, canvas_w, canvas_h)
        photo_to_tile = assign(strategies, infos, settings.assignment)
        score = score_assignment(strategies, infos, photo_to_tile, settings.assignment)
        log.debug("Attempt %d score %s", k, score)
        return score, tiles, photo_to_tile

    best = attempt(0)
    for k in range(1, settings.attempts):
        candidate = attempt(k)
        if candidate[0] < best[0]:
            best = candidate
    score, tiles, photo_to_tile = best

    placements, photo_tiles = place_photos(photos, tiles, photo_to_tile, settings)
    result = validate_placements(
        list(zip(photo_tiles, placements)), canvas_w, canvas_h, "cover", settings.validation
    )
    if result:
        return LayoutResult(placements, photo_tiles, seed, score)

    log.warning("Layout failed validation (%s); retrying on a grid", result.reason)
    tiles = grid_partition(canvas_w, canvas_h, n)
    infos = describe_tiles(tiles, canvas_w, canvas_h)
    photo_to_tile = assign(strategies, infos, settings.assignment)
    score = score_assignment(strategies, infos, photo_to_tile, settings.assignment)
    placements, photo_tiles = place_photos(photos, tiles, photo_to_tile, settings)
    result = validate_placements(
        list(zip(photo_tiles, placements)), canvas_w, canvas_h, "cover", settings.validation
    )
    if not result:
        raise LayoutValidationError(f"fill layout failed validation: {result.reason}")
    return LayoutResult(placements, photo_tiles, seed, score, used_fallback=True)


def fill_layout(
    photos: Sequence[Photo],
    canvas_w: float,
    canvas_h: float,
    options: Optional[LayoutOptions] = None,
    settings: Optional[EngineSettings] = None,
) -> List[Placement]:
    """Fill the canvas with ``photos``; one placement per photo, input order."""
    return fill_layout_detailed(photos, canvas_w, canvas_h, options, settings).placements


def layout_response(request_id: Any, placements: Sequence[Placement]) -> Dict[str, Any]:
    return {
        "requestId": request_id,
        "ok": True,
        "placements": [p.to_dict() for p in placements],
    }


def error_response(request_id: Any, error: Exception) -> Dict[str, Any]:
    return {"requestId": request_id, "ok": False, "error": str(error)}


def handle_request(
    request: Mapping[str, Any], settings: Optional[EngineSettings] = None
) -> Dict[str, Any]:
    """Process one layout request message and build its response message."""
    request_id = request.get("requestId") if isinstance(request, Mapping) else None
    try:
        req = LayoutRequest.from_dict(request)
        placements = fill_layout(
            req.photos, req.canvas_width, req.canvas_height, req.options, settings
        )
    except LayoutError as exc:
        log.warning("Layout request %s failed: %s", request_id, exc)
        return error_response(request_id, exc)
    except Exception as exc:
        log.exception("Layout request %s crashed", request_id)
        return error_response(request_id, exc)
    return layout_response(request_id, placements)
