from __future__ import annotations

import math
from typing import Dict, List, Optional

import cv2
import numpy as np

from .detection import Detection, DetectionProvider
from .models import KeepRegionKind, Rect, clamp


def _to_gray_u8(image: np.ndarray) -> np.ndarray:
    if image.ndim == 2:
        gray = image
    elif image.shape[2] == 4:
        gray = cv2.cvtColor(image, cv2.COLOR_RGBA2GRAY)
    else:
        gray = cv2.cvtColor(image, cv2.COLOR_RGB2GRAY)
    if gray.dtype != np.uint8:
        gray = np.clip(gray, 0, 255).astype(np.uint8)
    return gray


class HaarFaceProvider:
    """Frontal-face boxes from the OpenCV Haar cascade (no scores)."""

    def __init__(
        self,
        scale_factor: float = 1.1,
        min_neighbors: int = 5,
        min_size: int = 30,
        cascade_path: Optional[str] = None,
    ) -> None:
        self.scale_factor = scale_factor
        self.min_neighbors = min_neighbors
        self.min_size = min_size
        self.cascade_path = cascade_path or (
            cv2.data.haarcascades + "haarcascade_frontalface_default.xml"
        )
        self._cascade: Optional[cv2.CascadeClassifier] = None

    def _classifier(self) -> cv2.CascadeClassifier:
        if self._cascade is None:
            try:
                cascade = cv2.CascadeClassifier(self.cascade_path)
            except cv2.error as e:
                raise RuntimeError(f"Could not load face cascade: {self.cascade_path}") from e
            if cascade.empty():
                raise RuntimeError(f"Could not load face cascade: {self.cascade_path}")
            self._cascade = cascade
        return self._cascade

    def detect(self, image: np.ndarray) -> List[Detection]:
        gray = _to_gray_u8(image)
        faces = self._classifier().detectMultiScale(
            gray,
            scaleFactor=self.scale_factor,
            minNeighbors=self.min_neighbors,
            minSize=(self.min_size, self.min_size),
        )
        return [
            Detection(Rect(float(x), float(y), float(w), float(h)))
            for (x, y, w, h) in faces
        ]


class GradientSaliencyProvider:
    """Bounding box of the highest gradient-energy cells of a coarse grid.

    Not semantic: it pulls crops toward detailed areas and stays silent on
    images whose detail is spread evenly.
    """

    def __init__(
        self,
        grid: int = 16,
        top_fraction: float = 0.18,
        work_edge: int = 256,
        variance_gate: float = 0.08,
        max_area_fraction: float = 0.92,
    ) -> None:
        self.grid = grid
        self.top_fraction = top_fraction
        self.work_edge = work_edge
        self.variance_gate = variance_gate
        self.max_area_fraction = max_area_fraction

    def energy_grid(self, image: np.ndarray) -> np.ndarray:
        rgb = image.astype(np.float64)
        if rgb.ndim == 2:
            lum = rgb
        else:
            lum = 0.2126 * rgb[..., 0] + 0.7152 * rgb[..., 1] + 0.0722 * rgb[..., 2]
        h, w = lum.shape
        base = lum[:-1, :-1]
        e = np.abs(lum[:-1, 1:] - base) + np.abs(lum[1:, :-1] - base)
        g = self.grid
        cx = np.minimum(g - 1, (np.arange(w - 1) / (w / g)).astype(int))
        cy = np.minimum(g - 1, (np.arange(h - 1) / (h / g)).astype(int))
        cells = cy[:, None] * g + cx[None, :]
        return np.bincount(cells.ravel(), weights=e.ravel(), minlength=g * g).reshape(g, g)

    def detect(self, image: np.ndarray) -> List[Detection]:
        h0, w0 = image.shape[:2]
        edge = max(w0, h0)
        work = image
        if edge > self.work_edge:
            ratio = self.work_edge / edge
            size = (max(1, round(w0 * ratio)), max(1, round(h0 * ratio)))
            work = cv2.resize(image, size, interpolation=cv2.INTER_AREA)
        h, w = work.shape[:2]
        if w < 8 or h < 8:
            return []
        sx, sy = w0 / w, h0 / h

        energy = self.energy_grid(work)
        mean = float(energy.mean())
        if mean <= 0:
            return []
        variance = max(0.0, float((energy**2).mean()) - mean * mean)
        if variance < mean * mean * self.variance_gate:
            return []

        flat = np.sort(energy.ravel())[::-1]
        k = max(1, int(math.floor(flat.size * self.top_fraction)))
        ys, xs = np.nonzero(energy >= flat[k - 1])
        if xs.size == 0:
            return []
        g = self.grid
        min_x, max_x = max(0, int(xs.min()) - 1), min(g - 1, int(xs.max()) + 1)
        min_y, max_y = max(0, int(ys.min()) - 1), min(g - 1, int(ys.max()) + 1)

        cell_w, cell_h = w / g, h / g
        box = Rect(
            min_x * cell_w * sx,
            min_y * cell_h * sy,
            (max_x + 1 - min_x) * cell_w * sx,
            (max_y + 1 - min_y) * cell_h * sy,
        )
        if box.area / max(1.0, float(w0 * h0)) > self.max_area_fraction:
            return []
        score = clamp(math.sqrt(variance) / max(1e-6, mean) * 0.35, 0.1, 1.0)
        return [Detection(box, score, "saliency")]


def default_providers(
    faces: bool = True, saliency: bool = True
) -> Dict[KeepRegionKind, DetectionProvider]:
    providers: Dict[KeepRegionKind, DetectionProvider] = {}
    if faces:
        providers["face"] = HaarFaceProvider()
    if saliency:
        providers["object"] = GradientSaliencyProvider()
    return providers
