from __future__ import annotations

import os
import platform
import sys
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any, Dict

import cv2
import numpy as np
import PIL

from . import __version__


@dataclass
class EnvInfo:
    package: str
    python: str
    platform: str
    cpu_count: int
    cwd: str
    libraries: Dict[str, str]
    # Layouts differ when detection silently loses its face model.
    face_cascade: bool
    opencv_threads: int
    argv: list[str]
    env_vars: Dict[str, str]


def _face_cascade_available() -> bool:
    path = Path(cv2.data.haarcascades) / "haarcascade_frontalface_default.xml"
    return path.is_file()


def collect_env() -> EnvInfo:
    return EnvInfo(
        package=f"mosaic_layout {__version__}",
        python=sys.version.split(" ")[0],
        platform=f"{platform.platform()} ({platform.machine()})",
        cpu_count=os.cpu_count() or 1,
        cwd=str(Path.cwd()),
        libraries={
            "numpy": np.__version__,
            "opencv": cv2.__version__,
            "pillow": PIL.__version__,
        },
        face_cascade=_face_cascade_available(),
        opencv_threads=cv2.getNumThreads(),
        argv=list(sys.argv),
        env_vars={
            k: v
            for k, v in os.environ.items()
            if k in ("CONDA_DEFAULT_ENV", "VIRTUAL_ENV", "PYTHONPATH", "OMP_NUM_THREADS")
        },
    )


def env_as_dict() -> Dict[str, Any]:
    return asdict(collect_env())
