from pathlib import Path

import pytest

from mosaic_layout.config import load_config


def _write(tmp_path: Path, text: str) -> Path:
    p = tmp_path / "config.yaml"
    p.write_text(text)
    return p


def test_defaults_from_empty_file(tmp_path):
    cfg = load_config(_write(tmp_path, ""))
    assert cfg.global_cfg.output_root == Path("outputs")
    assert cfg.global_cfg.num_cores is None
    assert cfg.global_cfg.seed == 2026
    assert cfg.jobs == []
    s = cfg.engine_settings()
    assert s.attempts == 8
    assert s.assignment.orientation_penalty == 40.0
    assert s.validation.cover_max_overflow == 0.5
    d = cfg.detection_settings()
    assert d.max_edge == 640 and d.deadline_sec == 0.45


def test_sections_and_jobs(tmp_path):
    cfg = load_config(
        _write(
            tmp_path,
            """
global:
  output_root: out
  num_cores: 2
  seed: null
  save_previews: false
engine:
  attempts: 3
  center_bias_weight: 0.7
  cover_max_overflow: 0.4
crop:
  search_radius: 40
detection:
  faces: false
  max_faces: 2
jobs:
  - name: a
    request: reqs/a.json
  - name: b
    request: /abs/b.json
    canvas_width: 1000
    canvas_height: 500
""",
        )
    )
    g = cfg.global_cfg
    assert g.num_cores == 2 and g.seed is None and g.save_previews is False
    s = cfg.engine_settings()
    assert s.attempts == 3
    assert s.assignment.center_bias_weight == 0.7
    assert s.validation.cover_max_overflow == 0.4
    assert s.crop.search_radius == 40.0
    assert cfg.detection.faces is False
    assert cfg.detection_settings().max_faces == 2
    assert cfg.jobs[0].request == tmp_path / "reqs" / "a.json"
    assert cfg.jobs[1].request == Path("/abs/b.json")
    assert cfg.jobs[1].canvas_width == 1000.0
    resolved = cfg.to_dict()
    assert resolved["global"]["output_root"] == "out"
    assert resolved["jobs"][0]["name"] == "a"


def test_unknown_keys_are_rejected(tmp_path):
    with pytest.raises(ValueError):
        load_config(_write(tmp_path, "engine:\n  atempts: 3\n"))
