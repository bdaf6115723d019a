from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Literal, Mapping, Optional

from .errors import LayoutInputError


KeepRegionKind = Literal["face", "object"]
Orientation = Literal["portrait", "landscape", "square"]

KEEP_REGION_KINDS = ("face", "object")


def clamp(value: float, lo: float, hi: float) -> float:
    return max(lo, min(hi, value))


def _finite(v: Any, what: str) -> float:
    try:
        f = float(v)
    except (TypeError, ValueError):
        raise LayoutInputError(f"{what} must be a number, got {v!r}")
    if not math.isfinite(f):
        raise LayoutInputError(f"{what} must be finite, got {v!r}")
    return f


@dataclass(frozen=True)
class Rect:
    x: float
    y: float
    w: float
    h: float

    @property
    def right(self) -> float:
        return self.x + self.w

    @property
    def bottom(self) -> float:
        return self.y + self.h

    @property
    def area(self) -> float:
        return self.w * self.h

    @property
    def aspect(self) -> float:
        return self.w / max(1e-6, self.h)

    @property
    def center(self) -> tuple[float, float]:
        return self.x + self.w / 2.0, self.y + self.h / 2.0

    def intersect(self, other: "Rect") -> Optional["Rect"]:
        x1 = max(self.x, other.x)
        y1 = max(self.y, other.y)
        x2 = min(self.right, other.right)
        y2 = min(self.bottom, other.bottom)
        if x2 - x1 <= 0 or y2 - y1 <= 0:
            return None
        return Rect(x1, y1, x2 - x1, y2 - y1)

    def intersection_area(self, other: "Rect") -> float:
        dx = min(self.right, other.right) - max(self.x, other.x)
        dy = min(self.bottom, other.bottom) - max(self.y, other.y)
        return max(0.0, dx) * max(0.0, dy)

    def contains(self, other: "Rect", tol: float = 1e-6) -> bool:
        return (
            self.x <= other.x + tol
            and self.y <= other.y + tol
            and self.right >= other.right - tol
            and self.bottom >= other.bottom - tol
        )

    def expanded(self, dx: float, dy: float) -> "Rect":
        return Rect(self.x - dx, self.y - dy, self.w + 2 * dx, self.h + 2 * dy)

    def clamped_within(self, bounds: "Rect") -> "Rect":
        """Shrink to fit, then slide inside ``bounds`` (size wins over x/y)."""
        w = min(self.w, bounds.w)
        h = min(self.h, bounds.h)
        x = clamp(self.x, bounds.x, bounds.right - w)
        y = clamp(self.y, bounds.y, bounds.bottom - h)
        return Rect(x, y, w, h)

    def to_dict(self) -> Dict[str, float]:
        return {"x": self.x, "y": self.y, "width": self.w, "height": self.h}

    def to_tile_dict(self) -> Dict[str, float]:
        return {"x": self.x, "y": self.y, "w": self.w, "h": self.h}

    @classmethod
    def from_dict(cls, d: Mapping[str, Any], what: str = "rect") -> "Rect":
        if not isinstance(d, Mapping):
            raise LayoutInputError(f"{what} must be an object, got {d!r}")
        w = d.get("w", d.get("width"))
        h = d.get("h", d.get("height"))
        return cls(
            x=_finite(d.get("x", 0.0), f"{what}.x"),
            y=_finite(d.get("y", 0.0), f"{what}.y"),
            w=_finite(w, f"{what}.w"),
            h=_finite(h, f"{what}.h"),
        )


def bounding_box(rects: Iterable[Rect]) -> Optional[Rect]:
    rects = list(rects)
    if not rects:
        return None
    x1 = min(r.x for r in rects)
    y1 = min(r.y for r in rects)
    x2 = max(r.right for r in rects)
    y2 = max(r.bottom for r in rects)
    if x2 - x1 <= 0 or y2 - y1 <= 0:
        return None
    return Rect(x1, y1, x2 - x1, y2 - y1)


@dataclass(frozen=True)
class KeepRegion:
    kind: KeepRegionKind
    box: Rect
    score: float = 1.0
    label: Optional[str] = None

    @classmethod
    def from_dict(cls, d: Mapping[str, Any]) -> "KeepRegion":
        if not isinstance(d, Mapping):
            raise LayoutInputError(f"keep-region must be an object: {d!r}")
        kind = d.get("kind")
        if kind not in KEEP_REGION_KINDS:
            raise LayoutInputError(f"unknown keep-region kind: {kind!r}")
        score = d.get("score", 1.0)
        score = 1.0 if score is None else _finite(score, "keepRegion.score")
        return cls(
            kind=kind,
            box=Rect.from_dict(d.get("box", {}), "keepRegion.box"),
            score=clamp(score, 0.0, 1.0),
            label=d.get("label"),
        )

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "kind": self.kind,
            "box": self.box.to_dict(),
            "score": self.score,
        }
        if self.label is not None:
            out["label"] = self.label
        return out


@dataclass(frozen=True)
class Photo:
    id: str
    base_crop: Rect
    image_width: float
    image_height: float
    keep_regions: tuple[KeepRegion, ...] = ()

    @property
    def image_rect(self) -> Rect:
        return Rect(0.0, 0.0, self.image_width, self.image_height)

    @classmethod
    def from_dict(cls, d: Mapping[str, Any]) -> "Photo":
        if not isinstance(d, Mapping):
            raise LayoutInputError(f"photo entry must be an object: {d!r}")
        if "id" not in d:
            raise LayoutInputError("photo entry without id")
        pid = str(d["id"])
        iw = _finite(d.get("imageWidth"), f"photo {pid} imageWidth")
        ih = _finite(d.get("imageHeight"), f"photo {pid} imageHeight")
        if iw <= 0 or ih <= 0:
            raise LayoutInputError(
                f"photo {pid} has non-positive image size {iw}x{ih}"
            )
        full = Rect(0.0, 0.0, iw, ih)
        crop_raw = d.get("crop")
        crop = (
            full
            if crop_raw is None
            else Rect.from_dict(crop_raw, f"photo {pid} crop")
        )
        if crop.w <= 0 or crop.h <= 0:
            raise LayoutInputError(f"photo {pid} has an empty crop")
        regions_raw = d.get("keepRegions") or []
        if not isinstance(regions_raw, list):
            raise LayoutInputError(f"photo {pid} keepRegions must be a list")
        regions = tuple(KeepRegion.from_dict(r) for r in regions_raw)
        return cls(
            id=pid,
            base_crop=crop.clamped_within(full),
            image_width=iw,
            image_height=ih,
            keep_regions=regions,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "crop": self.base_crop.to_dict(),
            "imageWidth": self.image_width,
            "imageHeight": self.image_height,
            "keepRegions": [r.to_dict() for r in self.keep_regions],
        }


@dataclass(frozen=True)
class PhotoStrategy:
    source_aspect: float
    preferred_aspect: float
    orientation: Orientation
    is_extreme: bool


@dataclass(frozen=True)
class TileInfo:
    aspect: float
    # Tile center distance to the canvas center over the half-diagonal.
    dist: float


@dataclass(frozen=True)
class Placement:
    photo_id: str
    center_x: float
    center_y: float
    scale: float
    crop: Rect
    rotation: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.photo_id,
            "centerX": self.center_x,
            "centerY": self.center_y,
            "scale": self.scale,
            "rotation": self.rotation,
            "crop": self.crop.to_dict(),
        }


@dataclass(frozen=True)
class LayoutOptions:
    seed: Optional[int] = None
    split_ratio_min: Optional[float] = None
    split_ratio_max: Optional[float] = None

    @classmethod
    def from_dict(cls, d: Optional[Mapping[str, Any]]) -> "LayoutOptions":
        if not d:
            return cls()
        if not isinstance(d, Mapping):
            raise LayoutInputError("request.options must be an object")
        seed = d.get("seed")
        rmin = d.get("splitRatioMin")
        rmax = d.get("splitRatioMax")
        return cls(
            seed=None if seed is None else int(_finite(seed, "options.seed")),
            split_ratio_min=(
                None if rmin is None else _finite(rmin, "splitRatioMin")
            ),
            split_ratio_max=(
                None if rmax is None else _finite(rmax, "splitRatioMax")
            ),
        )


@dataclass(frozen=True)
class LayoutRequest:
    request_id: Any
    photos: List[Photo]
    canvas_width: float
    canvas_height: float
    options: LayoutOptions = field(default_factory=LayoutOptions)

    @classmethod
    def from_dict(cls, d: Mapping[str, Any]) -> "LayoutRequest":
        if not isinstance(d, Mapping):
            raise LayoutInputError("request must be an object")
        photos_raw = d.get("photos")
        if not isinstance(photos_raw, list):
            raise LayoutInputError("request.photos must be a list")
        return cls(
            request_id=d.get("requestId"),
            photos=[Photo.from_dict(p) for p in photos_raw],
            canvas_width=_finite(d.get("canvasWidth"), "canvasWidth"),
            canvas_height=_finite(d.get("canvasHeight"), "canvasHeight"),
            options=LayoutOptions.from_dict(d.get("options")),
        )
