import logging

import numpy as np
import pytest

import mosaic_layout.engine as engine
from mosaic_layout.engine import (
    EngineSettings,
    fill_layout,
    fill_layout_detailed,
    handle_request,
)
from mosaic_layout.errors import LayoutInputError, LayoutValidationError
from mosaic_layout.metrics import coverage_report
from mosaic_layout.models import KeepRegion, LayoutOptions, Photo, Rect
from mosaic_layout.validation import ValidationResult, draw_rect, validate_placements


def _photo(pid, w, h, regions=()):
    return Photo(pid, Rect(0, 0, w, h), w, h, tuple(regions))


def _random_photos(n, seed, lo=0.18, hi=4.2):
    rng = np.random.default_rng(seed)
    photos = []
    for i in range(n):
        aspect = float(np.exp(rng.uniform(np.log(lo), np.log(hi))))
        h = 1000.0
        photos.append(_photo(f"p{i}", round(h * aspect), h))
    return photos


def test_twenty_random_photos_cover_canvas():
    photos = _random_photos(20, 7)
    result = fill_layout_detailed(photos, 3200, 2400, LayoutOptions(seed=2026))
    assert [p.photo_id for p in result.placements] == [p.id for p in photos]
    entries = list(zip(result.tiles, result.placements))
    assert validate_placements(entries, 3200, 2400, "cover")

    drawn = [draw_rect(p) for p in result.placements]
    assert sum(d.area for d in drawn) >= 3200 * 2400 - 1
    report = coverage_report(result.tiles, result.placements, 3200, 2400)
    assert report["coveredArea"] >= 3200 * 2400 - 1
    assert report["maxOverflow"] <= 0.5 + 1e-6
    # every tile used exactly once
    assert len({(t.x, t.y) for t in result.tiles}) == 20


def test_crops_stay_inside_user_crop():
    photos = [
        Photo("a", Rect(100, 100, 800, 600), 1200, 900),
        Photo("b", Rect(0, 200, 500, 1200), 600, 1600),
        _photo("c", 3000, 1000),
    ]
    for p in fill_layout(photos, 1500, 1000, LayoutOptions(seed=1)):
        src = next(x for x in photos if x.id == p.photo_id)
        assert src.base_crop.contains(p.crop)
        assert p.rotation == 0.0


def test_single_photo_fills_canvas():
    result = fill_layout_detailed([_photo("only", 1200, 1200)], 1000, 1000, LayoutOptions(seed=5))
    assert result.tiles == [Rect(0.0, 0.0, 1000.0, 1000.0)]
    (p,) = result.placements
    assert np.isclose(p.crop.aspect, 1.0)
    assert np.allclose([p.center_x, p.center_y, p.scale], [500, 500, 1000 / 1200])


def test_same_seed_same_layout():
    photos = _random_photos(12, 3)
    a = fill_layout(photos, 2000, 1500, LayoutOptions(seed=99))
    b = fill_layout(photos, 2000, 1500, LayoutOptions(seed=99))
    assert a == b


def test_missing_seed_is_drawn_and_logged(caplog):
    with caplog.at_level(logging.INFO, logger="mosaic_layout.engine"):
        result = fill_layout_detailed(_random_photos(4, 1), 800, 600)
    assert 0 <= result.seed < 2**32
    assert any("seed" in r.getMessage() for r in caplog.records)


def test_many_photos():
    photos = _random_photos(60, 11)
    result = fill_layout_detailed(photos, 4000, 3000, LayoutOptions(seed=4))
    assert len(result.placements) == 60
    assert validate_placements(list(zip(result.tiles, result.placements)), 4000, 3000, "cover")


def test_faces_survive_the_fill():
    face = KeepRegion("face", Rect(1500, 200, 250, 250), 0.9)
    photos = [_photo("wide", 2000, 1000, [face])] + _random_photos(5, 2)
    for p in fill_layout(photos, 1200, 1200, LayoutOptions(seed=8)):
        if p.photo_id == "wide":
            assert p.crop.contains(face.box)


def test_input_errors():
    photos = _random_photos(3, 0)
    with pytest.raises(LayoutInputError):
        fill_layout(photos, 0, 100)
    with pytest.raises(LayoutInputError):
        fill_layout(photos, float("nan"), 100)
    with pytest.raises(LayoutInputError):
        fill_layout(photos, 1, 2)
    with pytest.raises(LayoutInputError):
        fill_layout([photos[0], photos[0]], 100, 100)
    with pytest.raises(LayoutInputError):
        fill_layout([Photo("z", Rect(0, 0, 10, 10), 0, 10)], 100, 100)
    assert fill_layout([], 100, 100, LayoutOptions(seed=1)) == []


def test_grid_fallback_when_validation_fails(monkeypatch, caplog):
    calls = []

    def flaky(entries, w, h, mode="strict", settings=None):
        calls.append(mode)
        if len(calls) == 1:
            return ValidationResult(False, "forced")
        return validate_placements(entries, w, h, mode, settings)

    monkeypatch.setattr(engine, "validate_placements", flaky)
    with caplog.at_level(logging.WARNING, logger="mosaic_layout.engine"):
        result = fill_layout_detailed(_random_photos(6, 5), 1200, 900, LayoutOptions(seed=2))
    assert result.used_fallback
    assert calls == ["cover", "cover"]
    assert any("forced" in r.getMessage() for r in caplog.records)


def test_second_validation_failure_raises(monkeypatch):
    monkeypatch.setattr(
        engine, "validate_placements", lambda *a, **k: ValidationResult(False, "nope")
    )
    with pytest.raises(LayoutValidationError):
        fill_layout(_random_photos(3, 5), 900, 600, LayoutOptions(seed=2))


def test_handle_request_wire_format():
    request = {
        "requestId": 17,
        "canvasWidth": 1600,
        "canvasHeight": 900,
        "options": {"seed": 2026, "splitRatioMin": 0.4, "splitRatioMax": 0.6},
        "photos": [
            {"id": "a", "crop": {"x": 0, "y": 0, "w": 1200, "h": 800}, "imageWidth": 1200, "imageHeight": 800},
            {
                "id": "b",
                "crop": {"x": 0, "y": 0, "width": 700, "height": 1200},
                "imageWidth": 700,
                "imageHeight": 1200,
                "keepRegions": [{"kind": "face", "box": {"x": 200, "y": 100, "w": 200, "h": 200}, "score": 0.8}],
            },
            {"id": "c", "imageWidth": 2400, "imageHeight": 800},
        ],
    }
    response = handle_request(request)
    assert response["requestId"] == 17
    assert response["ok"] is True
    placements = response["placements"]
    assert [p["id"] for p in placements] == ["a", "b", "c"]
    for p in placements:
        assert set(p) == {"id", "centerX", "centerY", "scale", "rotation", "crop"}
        assert p["rotation"] == 0
        assert set(p["crop"]) == {"x", "y", "width", "height"}


def test_handle_request_reports_errors():
    bad = handle_request({"requestId": "r1", "canvasWidth": -5, "canvasHeight": 10, "photos": []})
    assert bad == {"requestId": "r1", "ok": False, "error": bad["error"]}
    assert "canvas width" in bad["error"]

    bad_kind = handle_request(
        {
            "requestId": "r2",
            "canvasWidth": 100,
            "canvasHeight": 100,
            "photos": [
                {"id": "a", "imageWidth": 10, "imageHeight": 10, "keepRegions": [{"kind": "cat", "box": {"w": 1, "h": 1}}]}
            ],
        }
    )
    assert bad_kind["ok"] is False
    assert handle_request({"requestId": 3, "photos": "nope"})["ok"] is False


def test_handle_request_rejects_non_list_keep_regions():
    response = handle_request(
        {
            "requestId": "r9",
            "canvasWidth": 100,
            "canvasHeight": 100,
            "photos": [{"id": "a", "imageWidth": 10, "imageHeight": 10, "keepRegions": 5}],
        }
    )
    assert response["requestId"] == "r9"
    assert response["ok"] is False
    assert "keepRegions" in response["error"]
    with pytest.raises(LayoutInputError):
        Photo.from_dict({"id": "a", "imageWidth": 10, "imageHeight": 10, "keepRegions": "face"})


def test_handle_request_turns_unexpected_errors_into_responses(monkeypatch, caplog):
    def broken(*args, **kwargs):
        raise TypeError("unexpected")

    monkeypatch.setattr(engine, "fill_layout", broken)
    request = {"requestId": 4, "canvasWidth": 100, "canvasHeight": 100, "photos": []}
    with caplog.at_level(logging.ERROR, logger="mosaic_layout.engine"):
        response = handle_request(request)
    assert response == {"requestId": 4, "ok": False, "error": "unexpected"}
    assert any(r.exc_info for r in caplog.records)


def test_attempt_selection_keeps_lowest_score():
    photos = _random_photos(12, seed=5)
    options = LayoutOptions(seed=99)
    single = fill_layout_detailed(photos, 1600, 1200, options, EngineSettings(attempts=1))
    # Non-positive attempt counts still run the first attempt.
    none = fill_layout_detailed(photos, 1600, 1200, options, EngineSettings(attempts=0))
    assert none.placements == single.placements
    assert none.score == single.score

    many = fill_layout_detailed(photos, 1600, 1200, options, EngineSettings(attempts=8))
    assert many.score <= single.score
    for k in range(8):
        prefix = fill_layout_detailed(
            photos, 1600, 1200, options, EngineSettings(attempts=k + 1)
        )
        assert many.score <= prefix.score
