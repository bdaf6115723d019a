from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from itertools import combinations
from typing import List, Optional, Sequence, Tuple

import numpy as np

from .models import KeepRegion, Rect, bounding_box, clamp

log = logging.getLogger(__name__)

EPS = 1e-6


@dataclass(frozen=True)
class CropSettings:
    aspect_min: float = 1.0 / 1.5
    aspect_max: float = 1.5
    # Non-extreme crops stay within this factor of the intrinsic aspect.
    non_extreme_tolerance: float = 1.25
    region_margin: float = 0.12
    face_weight: float = 10.0
    object_weight: float = 3.0
    top_k: int = 5
    area_penalty: float = 0.65
    search_step: float = 20.0
    search_radius: float = 80.0
    border_lambda: float = 0.6
    border_margin: float = 0.15
    min_face_visible: float = 100.0
    face_pad_x: float = 1.15
    face_pad_y: float = 1.65
    face_pad_above: float = 0.65


# (clipped, padded box; weight; source region)
Weighted = Tuple[Rect, float, KeepRegion]


def is_extreme_aspect(aspect: float, settings: CropSettings) -> bool:
    return aspect < settings.aspect_min or aspect > settings.aspect_max


def should_apply_smart_crop(
    image_width: float, image_height: float, settings: Optional[CropSettings] = None
) -> bool:
    settings = settings or CropSettings()
    if image_width <= 0 or image_height <= 0:
        return False
    return is_extreme_aspect(image_width / image_height, settings)


def converge_aspect(
    source_aspect: float,
    target_aspect: float,
    settings: CropSettings,
    max_distortion: Optional[float] = None,
) -> float:
    """Pull ``target_aspect`` toward what the image can show without distortion.

    Extreme images are clamped toward 1 inside the acceptable band, others
    stay within ``non_extreme_tolerance`` of their own aspect. With
    ``max_distortion`` the result is finally kept within that factor of the
    target.
    """
    if source_aspect < settings.aspect_min:
        aspect = clamp(target_aspect, settings.aspect_min, 1.0)
    elif source_aspect > settings.aspect_max:
        aspect = clamp(target_aspect, 1.0, settings.aspect_max)
    else:
        tol = settings.non_extreme_tolerance
        aspect = clamp(target_aspect, source_aspect / tol, source_aspect * tol)
    if max_distortion is not None and max_distortion >= 1.0:
        aspect = clamp(
            aspect, target_aspect / max_distortion, target_aspect * max_distortion
        )
    return aspect


def fit_aspect_inside(base: Rect, aspect: float) -> Rect:
    """Largest rectangle of ``aspect`` centered in ``base``."""
    if not math.isfinite(aspect) or aspect <= 0:
        return base
    w, h = base.w, base.h
    if base.aspect > aspect:
        w = h * aspect
    else:
        h = w / aspect
    return Rect(base.x + (base.w - w) / 2.0, base.y + (base.h - h) / 2.0, w, h)


def _padded(box: Rect, margin: float) -> Rect:
    m = margin * min(box.w, box.h)
    return box.expanded(m, m)


def weigh_regions(
    regions: Sequence[KeepRegion], base: Rect, settings: CropSettings
) -> List[Weighted]:
    base_area = max(1.0, base.area)
    out: List[Weighted] = []
    for r in regions:
        clipped = _padded(r.box, settings.region_margin).intersect(base)
        if clipped is None:
            continue
        kind_weight = (
            settings.face_weight if r.kind == "face" else settings.object_weight
        )
        weight = kind_weight * clamp(r.score, 0.0, 1.0)
        weight *= math.sqrt(clipped.area / base_area)
        out.append((clipped, weight, r))
    out.sort(key=lambda item: item[1], reverse=True)
    return out


def pick_focus(
    regions: Sequence[KeepRegion], base: Rect, settings: CropSettings
) -> Optional[Rect]:
    """Best union of one or two keep-regions, favouring weight over area."""
    candidates = weigh_regions(regions, base, settings)[: settings.top_k]
    if not candidates:
        return None
    base_area = max(1.0, base.area)
    subsets = [(c,) for c in candidates] + list(combinations(candidates, 2))

    best: Optional[Rect] = None
    best_score = -math.inf
    for subset in subsets:
        bb = bounding_box(c[0] for c in subset)
        if bb is None:
            continue
        total = sum(c[1] for c in subset)
        score = total - settings.area_penalty * total * (bb.area / base_area)
        if score > best_score:
            best, best_score = bb, score
    return best


def _place_axis(
    start: float,
    size: float,
    lo_bound: float,
    hi_bound: float,
    focus_lo: float,
    focus_len: float,
) -> float:
    hi_bound = hi_bound - size
    if focus_len <= size + EPS:
        lo = max(lo_bound, focus_lo + focus_len - size)
        hi = min(hi_bound, focus_lo)
        if lo <= hi + EPS:
            return clamp(start, lo, max(lo, hi))
    return clamp(focus_lo + focus_len / 2.0 - size / 2.0, lo_bound, hi_bound)


def place_window(window: Rect, base: Rect, focus: Rect) -> Rect:
    """Shift ``window`` (size fixed) so it holds ``focus`` and stays in ``base``.

    Each axis moves as little as possible; where the focus cannot fit the
    window is centered on it instead.
    """
    x = _place_axis(window.x, window.w, base.x, base.right, focus.x, focus.w)
    y = _place_axis(window.y, window.h, base.y, base.bottom, focus.y, focus.h)
    return Rect(x, y, window.w, window.h)


def face_focus(
    faces: Sequence[KeepRegion], base: Rect, window: Rect, settings: CropSettings
) -> Optional[Rect]:
    boxes = [
        b
        for b in (_padded(f.box, settings.region_margin).intersect(base) for f in faces)
        if b is not None
    ]
    union = bounding_box(boxes)
    if union is None:
        return None
    pad_x = union.w * (settings.face_pad_x - 1.0)
    pad_y = union.h * (settings.face_pad_y - 1.0)
    room_x = max(0.0, window.w - union.w)
    room_y = max(0.0, window.h - union.h)
    factor = 1.0
    if pad_x > room_x:
        factor = min(factor, room_x / pad_x)
    if pad_y > room_y:
        factor = min(factor, room_y / pad_y)
    pad_x *= factor
    pad_y *= factor
    return Rect(
        union.x - pad_x / 2.0,
        union.y - pad_y * settings.face_pad_above,
        union.w + pad_x,
        union.h + pad_y,
    )


def _score_windows(
    xs: np.ndarray,
    ys: np.ndarray,
    w: float,
    h: float,
    weighted: Sequence[Weighted],
    settings: CropSettings,
) -> np.ndarray:
    boxes = np.array([[b.x, b.y, b.right, b.bottom] for b, _, _ in weighted])
    weights = np.array([wt for _, wt, _ in weighted])
    areas = np.maximum(EPS, (boxes[:, 2] - boxes[:, 0]) * (boxes[:, 3] - boxes[:, 1]))

    left = xs[:, None]
    top = ys[:, None]
    right = left + w
    bottom = top + h
    ix = np.clip(np.minimum(right, boxes[:, 2]) - np.maximum(left, boxes[:, 0]), 0, None)
    iy = np.clip(np.minimum(bottom, boxes[:, 3]) - np.maximum(top, boxes[:, 1]), 0, None)
    coverage = ix * iy / areas

    margin = np.minimum.reduce(
        [
            boxes[:, 0] - left,
            boxes[:, 1] - top,
            right - boxes[:, 2],
            bottom - boxes[:, 3],
        ]
    )
    threshold = settings.border_margin * min(w, h)
    if threshold > 0:
        penalty = np.clip((threshold - margin) / threshold, 0.0, 1.0)
    else:
        penalty = np.zeros_like(margin)
    # A cut region gets the full penalty.
    penalty = np.where(margin < -EPS, 1.0, penalty)

    return (coverage * weights).sum(axis=1) - settings.border_lambda * (
        penalty * weights
    ).sum(axis=1)


def refine_window(
    window: Rect, base: Rect, weighted: Sequence[Weighted], settings: CropSettings
) -> Rect:
    """Grid search around ``window``; the starting position wins ties."""
    if not weighted or settings.search_step <= 0:
        return window
    steps = int(settings.search_radius // settings.search_step)
    offsets = np.arange(-steps, steps + 1) * settings.search_step
    xs = np.clip(window.x + offsets, base.x, base.right - window.w)
    ys = np.clip(window.y + offsets, base.y, base.bottom - window.h)
    gx, gy = np.meshgrid(xs, ys)
    gx = gx.ravel()
    gy = gy.ravel()

    scores = _score_windows(gx, gy, window.w, window.h, weighted, settings)
    start = _score_windows(
        np.array([window.x]), np.array([window.y]), window.w, window.h, weighted, settings
    )[0]
    best = int(np.argmax(scores))
    if not math.isfinite(scores[best]) or scores[best] <= start + 1e-9:
        return window
    return Rect(float(gx[best]), float(gy[best]), window.w, window.h)


def required_face_region(
    face: KeepRegion, base: Rect, settings: CropSettings
) -> Optional[Rect]:
    box = _padded(face.box, settings.region_margin)
    floor = settings.min_face_visible
    if box.w < floor or box.h < floor:
        cx, cy = box.center
        w = max(box.w, floor)
        h = max(box.h, floor)
        box = Rect(cx - w / 2.0, cy - h / 2.0, w, h)
    return box.intersect(base)


def enforce_face_floor(
    window: Rect,
    base: Rect,
    max_fit: Rect,
    faces: Sequence[KeepRegion],
    settings: CropSettings,
) -> Rect:
    """Grow and shift ``window`` until the accepted faces' regions are inside.

    Faces are taken heaviest first while their union still fits a window of
    this aspect inside the base crop; the rest are left to the earlier steps.
    """
    aspect = window.w / max(EPS, window.h)
    ranked = sorted(
        faces,
        key=lambda f: settings.face_weight
        * clamp(f.score, 0.0, 1.0)
        * math.sqrt(max(0.0, f.box.area)),
        reverse=True,
    )
    union: Optional[Rect] = None
    for face in ranked:
        region = required_face_region(face, base, settings)
        if region is None:
            continue
        candidate = region if union is None else bounding_box([union, region])
        if candidate is None:
            continue
        need_w = max(candidate.w, candidate.h * aspect)
        if need_w <= max_fit.w + EPS:
            union = candidate
    if union is None or window.contains(union):
        return window

    need_w = max(window.w, union.w, union.h * aspect)
    w = min(need_w, max_fit.w)
    h = min(w / aspect, max_fit.h)
    cx, cy = window.center
    grown = Rect(cx - w / 2.0, cy - h / 2.0, w, h)
    x = _place_axis(grown.x, w, base.x, base.right, union.x, union.w)
    y = _place_axis(grown.y, h, base.y, base.bottom, union.y, union.h)
    return Rect(x, y, w, h)


def _content_aware(
    window: Rect,
    base: Rect,
    source_aspect: float,
    aspect: float,
    regions: Sequence[KeepRegion],
    settings: CropSettings,
) -> Rect:
    focus = pick_focus(regions, base, settings)
    if focus is None:
        return window
    max_fit = window
    window = place_window(window, base, focus)

    faces = [r for r in regions if r.kind == "face"]
    if faces and source_aspect < 1.0 - EPS and aspect > 1.0 + EPS:
        padded = face_focus(faces, base, window, settings)
        if padded is not None:
            window = place_window(window, base, padded)

    window = refine_window(window, base, weigh_regions(regions, base, settings), settings)
    if faces:
        window = enforce_face_floor(window, base, max_fit, faces, settings)
    for v in (window.x, window.y, window.w, window.h):
        if not math.isfinite(v):
            raise ArithmeticError("non-finite crop window")
    return window.clamped_within(base)


def compute_crop(
    image_width: float,
    image_height: float,
    base_crop: Optional[Rect],
    target_aspect: float,
    keep_regions: Sequence[KeepRegion] = (),
    *,
    settings: Optional[CropSettings] = None,
    max_distortion: Optional[float] = None,
) -> Rect:
    """Crop window for a photo at ``target_aspect``.

    The result always lies inside ``base_crop`` (itself clamped into the
    image). Without keep-regions it is the largest centered window of the
    converged aspect; with them the window is moved toward faces and salient
    objects. Failures in the content-aware steps fall back to that largest
    centered window.
    """
    settings = settings or CropSettings()
    iw = max(1.0, float(image_width))
    ih = max(1.0, float(image_height))
    full = Rect(0.0, 0.0, iw, ih)
    base = full if base_crop is None else base_crop.clamped_within(full)
    if base.w <= 0 or base.h <= 0:
        base = full
    if not math.isfinite(target_aspect) or target_aspect <= 0:
        return base

    source_aspect = iw / ih
    aspect = converge_aspect(source_aspect, target_aspect, settings, max_distortion)
    max_fit = fit_aspect_inside(base, aspect).clamped_within(base)

    regions = [
        r
        for r in keep_regions
        if all(math.isfinite(v) for v in (r.box.x, r.box.y, r.box.w, r.box.h))
        and r.box.w > 0
        and r.box.h > 0
    ]
    if not regions:
        return max_fit
    try:
        return _content_aware(max_fit, base, source_aspect, aspect, regions, settings)
    except (ArithmeticError, ValueError):
        log.debug("Content-aware crop failed; using centered crop", exc_info=True)
        return max_fit


def center_crop_to_aspect(
    crop: Rect,
    target_aspect: float,
    image_width: float,
    image_height: float,
    keep_regions: Optional[Sequence[KeepRegion]] = None,
) -> Rect:
    """Shrink ``crop`` to ``target_aspect`` around its center.

    With keep-regions this defers to :func:`compute_crop`.
    """
    if keep_regions:
        return compute_crop(
            image_width, image_height, crop, target_aspect, keep_regions
        )
    full = Rect(0.0, 0.0, max(1.0, image_width), max(1.0, image_height))
    base = crop.clamped_within(full)
    if not math.isfinite(target_aspect) or target_aspect <= 0:
        return base
    return fit_aspect_inside(base, target_aspect).clamped_within(base)
