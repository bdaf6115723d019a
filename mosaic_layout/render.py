from __future__ import annotations

import hashlib
from pathlib import Path
from typing import Mapping, Optional, Sequence, Tuple

import numpy as np
from PIL import Image, ImageDraw

from .models import Placement, Rect
from .validation import draw_rect


def id_color(photo_id: str) -> Tuple[int, int, int]:
    digest = hashlib.md5(photo_id.encode("utf-8")).digest()
    # Keep blocks mid-bright so outlines stay visible.
    return tuple(64 + b % 160 for b in digest[:3])  # type: ignore[return-value]


def _box(r: Rect) -> Tuple[int, int, int, int]:
    return (
        int(round(r.x)),
        int(round(r.y)),
        int(round(r.right)),
        int(round(r.bottom)),
    )


def render_preview(
    placements: Sequence[Placement],
    canvas_w: float,
    canvas_h: float,
    images: Optional[Mapping[str, np.ndarray]] = None,
    tiles: Optional[Sequence[Rect]] = None,
    outline: bool = True,
) -> Image.Image:
    """Composite a fill layout into an RGB preview.

    Placements with an entry in ``images`` show their crop scaled to cover;
    the others are flat id-coloured blocks. With ``tiles`` (aligned with
    ``placements``) each photo is clipped to its tile.
    """
    images = images or {}
    canvas = Image.new("RGB", (int(round(canvas_w)), int(round(canvas_h))), (0, 0, 0))
    for i, p in enumerate(placements):
        drawn = draw_rect(p)
        if drawn is None:
            continue
        clip = drawn if tiles is None else tiles[i]
        dx0, dy0, dx1, dy1 = _box(drawn)
        if dx1 <= dx0 or dy1 <= dy0:
            continue
        src = images.get(p.photo_id)
        if src is None:
            layer = Image.new("RGB", (dx1 - dx0, dy1 - dy0), id_color(p.photo_id))
        else:
            photo = Image.fromarray(np.asarray(src, dtype=np.uint8))
            layer = photo.crop(_box(p.crop)).resize(
                (dx1 - dx0, dy1 - dy0), Image.Resampling.LANCZOS
            )
        cx0, cy0, cx1, cy1 = _box(clip)
        part = layer.crop((cx0 - dx0, cy0 - dy0, cx1 - dx0, cy1 - dy0))
        canvas.paste(part, (cx0, cy0))

    if outline and tiles is not None:
        draw = ImageDraw.Draw(canvas)
        width = max(1, int(min(canvas_w, canvas_h) / 400))
        for t in tiles:
            x0, y0, x1, y1 = _box(t)
            draw.rectangle([x0, y0, x1 - 1, y1 - 1], outline=(255, 255, 255), width=width)
    return canvas


def save_preview(img: Image.Image, path: Path, max_edge: int = 1600) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    if max(img.size) > max_edge:
        img = img.copy()
        img.thumbnail((max_edge, max_edge), Image.Resampling.LANCZOS)
    img.save(path)
