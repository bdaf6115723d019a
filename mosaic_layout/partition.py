from __future__ import annotations

import logging
import math
from typing import List, Optional, Sequence

from .models import Rect, TileInfo, clamp

log = logging.getLogger(__name__)

# Acceptable tile aspect band; matches the crop calculator's envelope.
ASPECT_MIN = 1.0 / 1.5
ASPECT_MAX = 1.5

DEFAULT_RATIO_MIN = 0.38
DEFAULT_RATIO_MAX = 0.62

MAX_ATTEMPTS = 8
MIN_SIDE_FACTOR = 0.38
MIN_SIDE_SHRINK = 0.6
MIN_SIDE_FLOOR = 2.0
# Total jitter span on the area ratio (+-6%).
JITTER_SPAN = 0.12


class Lcg:
    """32-bit linear congruential generator.

    The state is a plain integer mutated in place so callers can thread one
    generator through several partition attempts and stay reproducible.
    """

    __slots__ = ("state",)

    def __init__(self, seed: int) -> None:
        self.state = int(seed) & 0xFFFFFFFF

    def next_float(self) -> float:
        self.state = (self.state * 1664525 + 1013904223) & 0xFFFFFFFF
        return self.state / 4294967296.0


def round_half_up(v: float) -> int:
    return int(math.floor(v + 0.5))


def split_length(total: float, parts: int) -> List[float]:
    """Split ``total`` into ``parts`` integer lengths, remainder first.

    A fractional part of ``total`` is absorbed by the last length so the
    pieces always sum back to ``total``.
    """
    if parts <= 0:
        return []
    whole = int(math.floor(total))
    base = whole // parts
    rem = whole - base * parts
    out = [float(base + (1 if i < rem else 0)) for i in range(parts)]
    out[-1] += total - whole
    return out


def grid_partition(canvas_w: float, canvas_h: float, n: int) -> List[Rect]:
    """Row/column grid that succeeds for any ``n``."""
    if n <= 0:
        return []
    aspect = canvas_w / max(1.0, canvas_h)
    cols = max(1, round_half_up(math.sqrt(n * aspect)))
    rows = max(1, int(math.ceil(n / cols)))
    row_counts = [
        c for c in (max(0, min(cols, n - r * cols)) for r in range(rows)) if c
    ]
    heights = split_length(canvas_h, len(row_counts))
    tiles: List[Rect] = []
    y = 0.0
    for count, h in zip(row_counts, heights):
        x = 0.0
        for w in split_length(canvas_w, count):
            tiles.append(Rect(x, y, w, h))
            x += w
        y += h
    return tiles[:n]


def _prefer_vertical(rect: Rect, area_ratio: float) -> bool:
    aspect = rect.w / max(1e-9, rect.h)
    if aspect > ASPECT_MAX:
        return True
    if aspect < ASPECT_MIN:
        return False
    r = clamp(area_ratio, 1e-3, 1.0 - 1e-3)
    v_dev = max(abs(math.log(aspect * r)), abs(math.log(aspect * (1 - r))))
    h_dev = max(abs(math.log(aspect / r)), abs(math.log(aspect / (1 - r))))
    return v_dev <= h_dev


def _try_split(
    rect: Rect,
    vertical: bool,
    area_ratio: float,
    rng: Lcg,
    min_side: float,
) -> Optional[tuple[Rect, Rect]]:
    jitter = (rng.next_float() - 0.5) * JITTER_SPAN
    ratio = clamp(area_ratio + jitter, 0.1, 0.9)
    length = rect.w if vertical else rect.h
    if length < max(2.0, 2.0 * min_side):
        return None
    first = clamp(round_half_up(length * ratio), 1.0, length - 1.0)
    second = length - first
    if first < min_side or second < min_side:
        return None
    if vertical:
        return (
            Rect(rect.x, rect.y, first, rect.h),
            Rect(rect.x + first, rect.y, second, rect.h),
        )
    return (
        Rect(rect.x, rect.y, rect.w, first),
        Rect(rect.x, rect.y + first, rect.w, second),
    )


def _split_rect(
    rect: Rect,
    need: int,
    rng: Lcg,
    ratio_min: float,
    ratio_max: float,
    min_side: float,
) -> Optional[List[Rect]]:
    if need <= 1:
        return [rect]

    count_ratio = clamp(
        ratio_min + (ratio_max - ratio_min) * rng.next_float(),
        1.0 / need,
        1.0 - 1.0 / need,
    )
    left = int(clamp(round_half_up(need * count_ratio), 1, need - 1))
    right = need - left
    area_ratio = left / need

    vertical = _prefer_vertical(rect, area_ratio)
    halves = _try_split(rect, vertical, area_ratio, rng, min_side)
    if halves is None:
        halves = _try_split(rect, not vertical, area_ratio, rng, min_side)
    if halves is None:
        return None

    a = _split_rect(halves[0], left, rng, ratio_min, ratio_max, min_side)
    if a is None:
        return None
    b = _split_rect(halves[1], right, rng, ratio_min, ratio_max, min_side)
    if b is None:
        return None
    return a + b


def partition(
    canvas_w: float,
    canvas_h: float,
    n: int,
    seed: int | Lcg,
    ratio_min: float = DEFAULT_RATIO_MIN,
    ratio_max: float = DEFAULT_RATIO_MAX,
) -> List[Rect]:
    """Cut the canvas into exactly ``n`` non-overlapping rectangles.

    Recursive binary splits with seeded count ratios and jitter; each retry
    relaxes the minimum tile side. Falls back to :func:`grid_partition`, so
    this never fails.
    """
    if n <= 0:
        return []
    root = Rect(0.0, 0.0, float(canvas_w), float(canvas_h))
    if n == 1:
        return [root]

    ratio_min = clamp(ratio_min, 0.2, 0.49)
    ratio_max = clamp(ratio_max, 0.51, 0.8)
    rng = seed if isinstance(seed, Lcg) else Lcg(seed)

    min_side = max(
        MIN_SIDE_FLOOR, MIN_SIDE_FACTOR * math.sqrt(canvas_w * canvas_h / n)
    )
    for attempt in range(MAX_ATTEMPTS):
        tiles = _split_rect(root, n, rng, ratio_min, ratio_max, min_side)
        if tiles is not None and len(tiles) == n:
            return tiles
        log.debug(
            "Partition attempt %d/%d failed (min side %.1fpx)",
            attempt + 1,
            MAX_ATTEMPTS,
            min_side,
        )
        min_side = max(MIN_SIDE_FLOOR, min_side * MIN_SIDE_SHRINK)

    log.info("Recursive partition gave up for n=%d; using grid", n)
    return grid_partition(canvas_w, canvas_h, n)


def describe_tiles(
    tiles: Sequence[Rect], canvas_w: float, canvas_h: float
) -> List[TileInfo]:
    cx = canvas_w / 2.0
    cy = canvas_h / 2.0
    half_diag = math.hypot(cx, cy) or 1.0
    out: List[TileInfo] = []
    for t in tiles:
        tx, ty = t.center
        dist = math.hypot(tx - cx, ty - cy) / half_diag
        out.append(TileInfo(aspect=t.aspect, dist=clamp(dist, 0.0, 1.0)))
    return out
