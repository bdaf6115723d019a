from __future__ import annotations

from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from .assignment import AssignmentSettings
from .detection import DetectionSettings
from .engine import EngineSettings
from .smart_crop import CropSettings
from .validation import ValidationSettings


@dataclass
class GlobalConfig:
    output_root: Path
    num_cores: Optional[int]
    log_level: str = "INFO"
    # None draws a fresh seed per job
    seed: Optional[int] = 2026
    save_previews: bool = True
    profiling: bool = True


@dataclass
class EngineConfig:
    attempts: int = 8
    split_ratio_min: float = 0.38
    split_ratio_max: float = 0.62
    non_extreme_weight: float = 1.1
    center_bias_weight: float = 0.55
    edge_bias_weight: float = 0.14
    orientation_penalty: float = 40.0
    cover_max_overflow: float = 0.5


@dataclass
class CropConfig:
    region_margin: float = 0.12
    face_weight: float = 10.0
    object_weight: float = 3.0
    search_step: float = 20.0
    search_radius: float = 80.0
    min_face_visible: float = 100.0


@dataclass
class DetectionConfig:
    faces: bool = True
    saliency: bool = True
    max_edge: int = 640
    max_faces: int = 5
    face_score_threshold: float = 0.2
    max_objects: int = 6
    object_score_threshold: float = 0.25
    deadline_sec: float = 0.45


@dataclass
class Job:
    name: str
    request: Path
    canvas_width: Optional[float] = None
    canvas_height: Optional[float] = None


@dataclass
class Config:
    global_cfg: GlobalConfig
    engine: EngineConfig = field(default_factory=EngineConfig)
    crop: CropConfig = field(default_factory=CropConfig)
    detection: DetectionConfig = field(default_factory=DetectionConfig)
    jobs: List[Job] = field(default_factory=list)

    def engine_settings(self) -> EngineSettings:
        e = self.engine
        return EngineSettings(
            attempts=e.attempts,
            split_ratio_min=e.split_ratio_min,
            split_ratio_max=e.split_ratio_max,
            assignment=AssignmentSettings(
                non_extreme_weight=e.non_extreme_weight,
                center_bias_weight=e.center_bias_weight,
                edge_bias_weight=e.edge_bias_weight,
                orientation_penalty=e.orientation_penalty,
            ),
            crop=CropSettings(**asdict(self.crop)),
            validation=ValidationSettings(cover_max_overflow=e.cover_max_overflow),
        )

    def detection_settings(self) -> DetectionSettings:
        d = asdict(self.detection)
        d.pop("faces")
        d.pop("saliency")
        return DetectionSettings(**d)

    def to_dict(self) -> Dict[str, Any]:
        g = asdict(self.global_cfg)
        g["output_root"] = str(self.global_cfg.output_root)
        return {
            "global": g,
            "engine": asdict(self.engine),
            "crop": asdict(self.crop),
            "detection": asdict(self.detection),
            "jobs": [
                {**asdict(j), "request": str(j.request)} for j in self.jobs
            ],
        }


def _as_int_or_none(v: Any) -> Optional[int]:
    if v is None:
        return None
    if isinstance(v, str) and v.lower() == "auto":
        return None
    return int(v)


def _section(cls: type, raw: Optional[Dict[str, Any]]) -> Any:
    """Build a flat dataclass section, casting values to the defaults' types."""
    raw = raw or {}
    default = cls()
    kwargs: Dict[str, Any] = {}
    for f in fields(cls):
        if f.name in raw:
            kind = type(getattr(default, f.name))
            kwargs[f.name] = kind(raw[f.name])
    unknown = set(raw) - {f.name for f in fields(cls)}
    if unknown:
        raise ValueError(f"Unknown {cls.__name__} keys: {sorted(unknown)}")
    return cls(**kwargs)


def _optional_float(v: Any) -> Optional[float]:
    return None if v is None else float(v)


def load_config(path: Path) -> Config:
    with path.open("r") as f:
        data: Dict[str, Any] = yaml.safe_load(f) or {}

    g = data.get("global", {})
    global_cfg = GlobalConfig(
        output_root=Path(g.get("output_root", "outputs")),
        num_cores=_as_int_or_none(g.get("num_cores", "auto")),
        log_level=str(g.get("log_level", "INFO")),
        seed=(None if g.get("seed", 2026) is None else int(g.get("seed", 2026))),
        save_previews=bool(g.get("save_previews", True)),
        profiling=bool(g.get("profiling", True)),
    )

    jobs_raw = data.get("jobs", [])
    # Relative request paths resolve against the config file.
    jobs = [
        Job(
            name=j["name"],
            request=(path.parent / j["request"]),
            canvas_width=_optional_float(j.get("canvas_width")),
            canvas_height=_optional_float(j.get("canvas_height")),
        )
        for j in jobs_raw
    ]

    return Config(
        global_cfg=global_cfg,
        engine=_section(EngineConfig, data.get("engine")),
        crop=_section(CropConfig, data.get("crop")),
        detection=_section(DetectionConfig, data.get("detection")),
        jobs=jobs,
    )
