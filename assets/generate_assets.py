from __future__ import annotations

import json
from pathlib import Path

import numpy as np
from PIL import Image, ImageDraw


def subject_photo(w: int, h: int, seed: int) -> Image.Image:
    """Smooth colour gradient with one bright, detailed blob as the subject."""
    rng = np.random.default_rng(seed)
    yy, xx = np.mgrid[0:h, 0:w].astype(np.float32)
    c0 = rng.random(3) * 0.5
    c1 = rng.random(3) * 0.5
    t = (xx / max(1, w - 1))[..., None]
    img = c0 * (1 - t) + c1 * t

    cx = float(rng.uniform(0.2, 0.8) * w)
    cy = float(rng.uniform(0.2, 0.8) * h)
    r = float(rng.uniform(0.08, 0.18) * min(w, h))
    d2 = (yy - cy) ** 2 + (xx - cx) ** 2
    blob = np.exp(-d2 / (2.0 * r * r))[..., None]
    stripes = 0.5 + 0.5 * np.sin(xx / 3.0)[..., None]
    img = img + blob * (0.6 + 0.4 * stripes) * rng.random(3)
    return Image.fromarray((np.clip(img, 0, 1) * 255).astype(np.uint8))


def label(img: Image.Image, text: str) -> None:
    dr = ImageDraw.Draw(img)
    dr.rectangle([4, 4, 12 + 7 * len(text), 20], fill=(0, 0, 0))
    dr.text((8, 6), text, fill=(255, 255, 255))


def main(count: int = 20, seed: int = 2026) -> None:
    out = Path("assets") / "demo"
    out.mkdir(parents=True, exist_ok=True)
    rng = np.random.default_rng(seed)

    photos = []
    for i in range(count):
        # Aspect range covers extreme portraits through panoramas.
        aspect = float(np.exp(rng.uniform(np.log(0.18), np.log(4.2))))
        long_edge = int(rng.integers(600, 1200))
        if aspect >= 1:
            w, h = long_edge, max(16, int(round(long_edge / aspect)))
        else:
            w, h = max(16, int(round(long_edge * aspect))), long_edge
        pid = f"photo_{i:02d}"
        img = subject_photo(w, h, seed + i)
        label(img, pid)
        img.save(out / f"{pid}.png")
        photos.append({"id": pid, "path": f"{pid}.png", "imageWidth": w, "imageHeight": h})

    request = {
        "requestId": "demo",
        "canvasWidth": 3200,
        "canvasHeight": 2400,
        "photos": photos,
        "options": {"seed": seed},
    }
    with (out / "request.json").open("w") as f:
        json.dump(request, f, indent=2)


if __name__ == "__main__":
    main()
