from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import numpy as np

from .detection import DetectionProvider, DetectionSettings, detect_keep_regions
from .models import KeepRegionKind
from .utils import load_image_rgb

log = logging.getLogger(__name__)


def prepare_request(
    request: Dict[str, Any],
    base_dir: Path,
    providers: Optional[Mapping[KeepRegionKind, DetectionProvider]] = None,
    settings: Optional[DetectionSettings] = None,
) -> Dict[str, np.ndarray]:
    """Load photo ``path`` entries in place and fill in detections.

    Missing image sizes are taken from the file. Photos that already carry
    keep-regions are not re-detected. Returns the loaded images by id.
    """
    images: Dict[str, np.ndarray] = {}
    for photo in request.get("photos") or []:
        raw = photo.get("path")
        if not raw:
            continue
        path = Path(raw)
        if not path.is_absolute():
            path = base_dir / path
        if not path.exists():
            log.warning("Photo %s not found: %s", photo.get("id"), path)
            continue
        img = load_image_rgb(path)
        h, w = img.shape[:2]
        photo.setdefault("imageWidth", w)
        photo.setdefault("imageHeight", h)
        images[str(photo.get("id"))] = img
        if providers and not photo.get("keepRegions"):
            regions = detect_keep_regions(img, providers, settings)
            photo["keepRegions"] = [r.to_dict() for r in regions]
            log.debug("Photo %s: %d keep-regions", photo.get("id"), len(regions))
    return images
