from __future__ import annotations

import json
from datetime import datetime
from pathlib import Path
from typing import Any, Dict

import numpy as np
from PIL import Image, ImageOps


def now_stamp() -> str:
    return datetime.now().strftime("%Y-%m-%d_%H%M%S")


def make_output_dir(output_root: Path, stamp: str, job_name: str) -> Path:
    out = output_root / stamp / job_name
    out.mkdir(parents=True, exist_ok=True)
    return out


def save_json(obj: Any, path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w") as f:
        json.dump(obj, f, indent=2)


def load_json(path: Path) -> Dict[str, Any]:
    with path.open("r") as f:
        return json.load(f)


def load_image_rgb(path: Path) -> np.ndarray:
    """RGB ``uint8`` array (H, W, 3), EXIF orientation applied."""
    with Image.open(path) as img:
        img = ImageOps.exif_transpose(img)
        if img.mode != "RGB":
            img = img.convert("RGB")
        return np.asarray(img, dtype=np.uint8).copy()
