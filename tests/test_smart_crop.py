import math

import numpy as np

import mosaic_layout.smart_crop as smart_crop
from mosaic_layout.models import KeepRegion, Rect
from mosaic_layout.smart_crop import (
    CropSettings,
    center_crop_to_aspect,
    compute_crop,
    converge_aspect,
    fit_aspect_inside,
    pick_focus,
    should_apply_smart_crop,
)


def _face(x, y, w, h, score=1.0):
    return KeepRegion(kind="face", box=Rect(x, y, w, h), score=score)


def _inside(outer: Rect, inner: Rect, tol: float = 1e-6) -> bool:
    return outer.contains(inner, tol)


def test_centered_max_fit_without_regions():
    crop = compute_crop(1000, 800, None, 1.0)
    assert np.allclose([crop.x, crop.y, crop.w, crop.h], [100, 0, 800, 800])


def test_non_extreme_aspect_stays_within_quarter():
    rng = np.random.default_rng(1)
    for _ in range(200):
        w = float(rng.uniform(700, 1500))
        h = float(rng.uniform(700, 1500))
        src = w / h
        if src < 1 / 1.5 or src > 1.5:
            continue
        target = float(np.exp(rng.uniform(np.log(0.1), np.log(10))))
        crop = compute_crop(w, h, None, target)
        ratio = crop.aspect / src
        assert 1 / 1.25 - 1e-6 <= ratio <= 1.25 + 1e-6
        assert _inside(Rect(0, 0, w, h), crop)


def test_extreme_portrait_never_goes_landscape():
    crop = compute_crop(700, 1200, None, 2.5)
    assert 1 / 1.5 - 1e-6 <= crop.aspect <= 1.0 + 1e-6


def test_extreme_landscape_never_goes_portrait():
    crop = compute_crop(3000, 1000, None, 0.3)
    assert 1.0 - 1e-6 <= crop.aspect <= 1.5 + 1e-6


def test_converge_aspect_with_max_distortion():
    s = CropSettings()
    assert np.isclose(converge_aspect(0.5, 2.5, s), 1.0)
    a = converge_aspect(0.5, 1.6, s, max_distortion=1.5)
    assert np.isclose(a, 1.6 / 1.5)
    crop = compute_crop(700, 1200, None, 1.6, max_distortion=1.5)
    assert crop.aspect * 1.5 >= 1.6 - 1e-6
    # The tile cap wins over the extreme-portrait band.
    wide = compute_crop(700, 1200, None, 2.5, max_distortion=1.5)
    assert np.isclose(wide.aspect, 2.5 / 1.5)
    assert np.isclose(compute_crop(700, 1200, None, 2.5).aspect, 1.0)


def test_result_inside_base_crop():
    base = Rect(100, 50, 600, 500)
    regions = [_face(650, 60, 120, 120), KeepRegion("object", Rect(0, 0, 300, 300), 0.8)]
    for target in (0.5, 0.8, 1.0, 1.3, 2.0):
        crop = compute_crop(1000, 800, base, target, regions)
        assert _inside(base, crop)


def test_base_crop_is_clamped_into_image():
    crop = compute_crop(500, 500, Rect(-100, -100, 800, 300), 1.0)
    assert _inside(Rect(0, 0, 500, 500), crop)


def test_face_is_kept_in_window():
    face = _face(1600, 300, 200, 200)
    crop = compute_crop(2000, 1000, None, 1.0, [face])
    assert np.isclose(crop.aspect, 1.0)
    assert _inside(crop, face.box)


def test_small_face_gets_minimum_visible_region():
    face = _face(1900, 500, 20, 20)
    crop = compute_crop(2000, 1000, None, 1.0, [face])
    assert _inside(crop, Rect(1860, 460, 100, 100))


def test_portrait_to_landscape_face_headroom():
    face = _face(400, 100, 150, 150)
    crop = compute_crop(950, 1000, None, 1.5, [face])
    assert crop.aspect > 1.0
    assert _inside(crop, face.box)
    assert crop.y <= face.box.y


def test_pick_focus_prefers_faces():
    base = Rect(0, 0, 1000, 1000)
    face = _face(100, 100, 100, 100)
    obj = KeepRegion("object", Rect(700, 700, 120, 120), 0.3)
    focus = pick_focus([obj, face], base, CropSettings())
    assert focus is not None
    assert focus.contains(face.box)


def test_invalid_regions_are_ignored():
    bad = KeepRegion("face", Rect(math.nan, 0, 10, 10))
    assert compute_crop(1000, 800, None, 1.0, [bad]) == compute_crop(1000, 800, None, 1.0)


def test_failure_degrades_to_centered_crop(monkeypatch):
    def boom(*args, **kwargs):
        raise ValueError("broken detector box")

    monkeypatch.setattr(smart_crop, "pick_focus", boom)
    crop = compute_crop(2000, 1000, None, 1.0, [_face(1600, 300, 200, 200)])
    assert crop == fit_aspect_inside(Rect(0, 0, 2000, 1000), 1.0)


def test_bad_target_returns_base():
    base = Rect(10, 10, 100, 50)
    assert compute_crop(200, 200, base, float("nan")) == base
    assert compute_crop(200, 200, base, 0.0) == base


def test_helpers():
    assert should_apply_smart_crop(700, 1200)
    assert should_apply_smart_crop(3000, 1000)
    assert not should_apply_smart_crop(1000, 1000)
    assert center_crop_to_aspect(Rect(0, 0, 1000, 500), 1.0, 1000, 500) == Rect(
        250.0, 0.0, 500.0, 500.0
    )


def test_refine_moves_window_off_a_face_at_the_edge():
    settings = CropSettings()
    base = Rect(0, 0, 2000, 1000)
    window = Rect(0, 0, 1000, 1000)
    weighted = smart_crop.weigh_regions([_face(880, 400, 100, 100)], base, settings)

    refined = smart_crop.refine_window(window, base, weighted, settings)
    assert np.allclose([refined.x, refined.y, refined.w, refined.h], [80, 0, 1000, 1000])

    xs = np.array([0.0, 40.0, 80.0])
    scores = smart_crop._score_windows(xs, np.zeros(3), 1000, 1000, weighted, settings)
    assert scores[0] < scores[1] < scores[2]
    # Cutting through the face costs more than hugging it.
    cut = smart_crop._score_windows(
        np.array([-40.0]), np.zeros(1), 1000, 1000, weighted, settings
    )
    assert cut[0] < scores[0]


def test_refine_keeps_start_on_ties():
    settings = CropSettings()
    base = Rect(0, 0, 2000, 1000)
    window = Rect(0, 0, 1000, 1000)
    weighted = smart_crop.weigh_regions([_face(450, 450, 100, 100)], base, settings)
    assert smart_crop.refine_window(window, base, weighted, settings) == window
    assert smart_crop.refine_window(window, base, [], settings) == window
    no_search = CropSettings(search_step=0)
    edge = smart_crop.weigh_regions([_face(880, 400, 100, 100)], base, settings)
    assert smart_crop.refine_window(window, base, edge, no_search) == window
