from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import List, Optional, Sequence

import numpy as np
from scipy.optimize import linear_sum_assignment
from scipy.sparse import csr_matrix
from scipy.sparse.csgraph import maximum_bipartite_matching

from .errors import AssignmentError
from .models import Orientation, PhotoStrategy, TileInfo, clamp

log = logging.getLogger(__name__)

ASPECT_MIN = 1.0 / 1.5
ASPECT_MAX = 1.5
EPS = 1e-6


@dataclass(frozen=True)
class AssignmentSettings:
    non_extreme_weight: float = 1.1
    center_bias_weight: float = 0.55
    edge_bias_weight: float = 0.14
    orientation_penalty: float = 40.0
    hard_block_cost: float = 1e7


def safe_aspect(aspect: float) -> float:
    if not math.isfinite(aspect) or aspect <= 0:
        return 1.0
    return max(EPS, aspect)


def to_orientation(aspect: float) -> Orientation:
    if aspect > 1 + EPS:
        return "landscape"
    if aspect < 1 - EPS:
        return "portrait"
    return "square"


def deviation_from_square(aspect: float) -> float:
    return abs(math.log(safe_aspect(aspect)))


def is_orientation_reversed(orientation: Orientation, tile_aspect: float) -> bool:
    tile_orientation = to_orientation(safe_aspect(tile_aspect))
    if orientation == "square" or tile_orientation == "square":
        return False
    return orientation != tile_orientation


def build_photo_strategy(image_width: float, image_height: float) -> PhotoStrategy:
    source = safe_aspect(max(1.0, image_width) / max(1.0, image_height))
    orientation = to_orientation(source)
    if source < ASPECT_MIN:
        return PhotoStrategy(
            source_aspect=source,
            preferred_aspect=clamp(source, ASPECT_MIN, 1.0),
            orientation=orientation,
            is_extreme=True,
        )
    if source > ASPECT_MAX:
        return PhotoStrategy(
            source_aspect=source,
            preferred_aspect=clamp(source, 1.0, ASPECT_MAX),
            orientation=orientation,
            is_extreme=True,
        )
    return PhotoStrategy(
        source_aspect=source,
        preferred_aspect=source,
        orientation=orientation,
        is_extreme=False,
    )


def allowed_orientation_matrix(
    photos: Sequence[PhotoStrategy], tiles: Sequence[TileInfo]
) -> np.ndarray:
    return np.array(
        [
            [not is_orientation_reversed(p.orientation, t.aspect) for t in tiles]
            for p in photos
        ],
        dtype=bool,
    ).reshape(len(photos), len(tiles))


def find_perfect_matching(allowed: np.ndarray) -> Optional[List[int]]:
    """Maximum bipartite matching over the allowed-edge graph.

    Returns photo -> tile indices for a perfect matching, or None when no
    perfect matching exists.
    """
    allowed = np.asarray(allowed, dtype=bool)
    if allowed.ndim != 2 or allowed.shape[0] != allowed.shape[1]:
        return None
    if allowed.shape[0] == 0:
        return []

    # Unmatched rows come back as -1.
    matching = maximum_bipartite_matching(
        csr_matrix(allowed.astype(np.int8)), perm_type="column"
    )
    if np.any(matching < 0):
        return None
    return [int(j) for j in matching]


def build_cost_matrix(
    photos: Sequence[PhotoStrategy],
    tiles: Sequence[TileInfo],
    settings: AssignmentSettings,
    strict_orientation: bool,
) -> np.ndarray:
    n, m = len(photos), len(tiles)
    cost = np.zeros((n, m), dtype=np.float64)
    tile_logs = [math.log(safe_aspect(t.aspect)) for t in tiles]
    for i, p in enumerate(photos):
        pref_log = math.log(safe_aspect(p.preferred_aspect))
        deviation = deviation_from_square(p.source_aspect)
        weight = 1.0 if p.is_extreme else settings.non_extreme_weight
        for j, t in enumerate(tiles):
            value = weight * abs(pref_log - tile_logs[j])
            value += settings.center_bias_weight * (1.0 - t.dist) * deviation
            value -= settings.edge_bias_weight * t.dist * deviation
            if is_orientation_reversed(p.orientation, t.aspect):
                value += settings.orientation_penalty
                if strict_orientation:
                    value += settings.hard_block_cost
            cost[i, j] = value
    if cost.size:
        lowest = float(cost.min())
        if lowest < 0:
            # Uniform shift keeps the optimum and the primal-dual start valid.
            cost -= lowest
    return cost


def solve_assignment(cost: np.ndarray) -> np.ndarray:
    """Minimum-cost perfect matching of a square cost matrix.

    Returns an int array mapping row (photo) -> column (tile).
    """
    cost = np.asarray(cost, dtype=np.float64)
    if cost.ndim != 2 or cost.shape[0] != cost.shape[1]:
        raise AssignmentError(
            f"assignment requires a square cost matrix, got {cost.shape}"
        )
    n = cost.shape[0]
    if n == 0:
        return np.zeros(0, dtype=np.int64)
    if not np.all(np.isfinite(cost)):
        raise AssignmentError("assignment cost matrix has non-finite entries")

    try:
        rows, cols = linear_sum_assignment(cost)
    except ValueError as e:
        raise AssignmentError(f"assignment failed: {e}") from e
    row_to_col = np.full(n, -1, dtype=np.int64)
    row_to_col[rows] = cols
    if np.any(row_to_col < 0) or len(np.unique(row_to_col)) != n:
        raise AssignmentError("assignment failed: incomplete matching")
    return row_to_col


def assign(
    photos: Sequence[PhotoStrategy],
    tiles: Sequence[TileInfo],
    settings: Optional[AssignmentSettings] = None,
) -> List[int]:
    """Globally minimal photo -> tile assignment.

    Orientation flips become a hard block when a flip-free perfect matching
    exists, otherwise they only carry the soft penalty.
    """
    if len(photos) != len(tiles):
        raise AssignmentError(
            f"assignment requires equal counts, got {len(photos)} photos "
            f"and {len(tiles)} tiles"
        )
    n = len(photos)
    if n == 0:
        return []
    settings = settings or AssignmentSettings()

    hard_match = find_perfect_matching(allowed_orientation_matrix(photos, tiles))
    strict = hard_match is not None
    cost = build_cost_matrix(photos, tiles, settings, strict)
    photo_to_tile = [int(j) for j in solve_assignment(cost)]

    if strict and hard_match is not None:
        if any(
            is_orientation_reversed(photos[i].orientation, tiles[j].aspect)
            for i, j in enumerate(photo_to_tile)
        ):
            log.debug("Solver flipped an orientation; using strict matching")
            photo_to_tile = hard_match
    elif not strict:
        log.debug("No flip-free matching for %d photos; soft penalty only", n)

    if sorted(photo_to_tile) != list(range(n)):
        raise AssignmentError("assignment failed: missing tile mapping")
    return photo_to_tile


def invert_assignment(photo_to_tile: Sequence[int]) -> List[int]:
    tile_to_photo = [-1] * len(photo_to_tile)
    for photo_idx, tile_idx in enumerate(photo_to_tile):
        tile_to_photo[tile_idx] = photo_idx
    if any(i < 0 for i in tile_to_photo):
        raise AssignmentError("assignment is not a bijection")
    return tile_to_photo
