from __future__ import annotations

import logging
import math
import time
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Protocol, Sequence, Tuple

import cv2
import numpy as np

from .models import KeepRegion, KeepRegionKind, Rect, clamp

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class Detection:
    box: Rect
    score: Optional[float] = None
    label: Optional[str] = None


class DetectionProvider(Protocol):
    """Anything that finds boxes in an RGB ``uint8`` image (H, W, 3)."""

    def detect(self, image: np.ndarray) -> List[Detection]: ...


@dataclass(frozen=True)
class DetectionSettings:
    max_edge: int = 640
    max_faces: int = 5
    face_score_threshold: float = 0.2
    max_objects: int = 6
    object_score_threshold: float = 0.25
    deadline_sec: float = 0.45

    def limits(self, kind: KeepRegionKind) -> Tuple[int, float]:
        if kind == "face":
            return self.max_faces, self.face_score_threshold
        return self.max_objects, self.object_score_threshold


def downscale_for_detection(
    image: np.ndarray, max_edge: int
) -> Tuple[np.ndarray, float, float]:
    """Shrink so the longer edge is at most ``max_edge``.

    Returns the image and the x/y factors mapping back to the input.
    """
    h, w = image.shape[:2]
    edge = max(w, h)
    if max_edge <= 0 or edge <= max_edge:
        return image, 1.0, 1.0
    ratio = max_edge / edge
    dw = max(1, int(round(w * ratio)))
    dh = max(1, int(round(h * ratio)))
    small = cv2.resize(image, (dw, dh), interpolation=cv2.INTER_AREA)
    return small, w / dw, h / dh


def _to_region(
    det: Detection, kind: KeepRegionKind, sx: float, sy: float
) -> Optional[KeepRegion]:
    b = det.box
    box = Rect(b.x * sx, b.y * sy, b.w * sx, b.h * sy)
    if not all(math.isfinite(v) for v in (box.x, box.y, box.w, box.h)):
        return None
    if box.w <= 0 or box.h <= 0:
        return None
    score = 1.0 if det.score is None else float(det.score)
    if not math.isfinite(score):
        return None
    return KeepRegion(kind=kind, box=box, score=clamp(score, 0.0, 1.0), label=det.label)


def detect_keep_regions(
    image: np.ndarray,
    providers: Mapping[KeepRegionKind, DetectionProvider],
    settings: Optional[DetectionSettings] = None,
) -> List[KeepRegion]:
    """Run each provider under the deadline and collect keep-regions.

    Boxes come back in the coordinates of ``image``. A provider that times
    out or raises contributes nothing.
    """
    settings = settings or DetectionSettings()
    if image.ndim < 2 or image.shape[0] == 0 or image.shape[1] == 0:
        return []
    small, sx, sy = downscale_for_detection(image, settings.max_edge)

    regions: List[KeepRegion] = []
    pool = ThreadPoolExecutor(max_workers=max(1, len(providers)))
    deadline = time.monotonic() + settings.deadline_sec
    try:
        futures: Dict[KeepRegionKind, Any] = {
            kind: pool.submit(provider.detect, small)
            for kind, provider in providers.items()
        }
        for kind, fut in futures.items():
            try:
                remaining = max(0.0, deadline - time.monotonic())
                found: Sequence[Detection] = fut.result(timeout=remaining)
            except FutureTimeout:
                log.warning(
                    "%s detection missed the %.0fms deadline",
                    kind,
                    settings.deadline_sec * 1000,
                )
                continue
            except Exception as e:
                log.warning("%s detection failed: %s", kind, e)
                continue
            cap, threshold = settings.limits(kind)
            mapped = [r for r in (_to_region(d, kind, sx, sy) for d in found) if r]
            kept = [r for r in mapped if r.score >= threshold][:cap]
            log.debug("%s detection: %d found, %d kept", kind, len(mapped), len(kept))
            regions.extend(kept)
    finally:
        # Late providers keep running in the background; their results are dropped.
        pool.shutdown(wait=False, cancel_futures=True)
    return regions
