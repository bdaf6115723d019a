import numpy as np
import pytest

from mosaic_layout.detection import detect_keep_regions
from mosaic_layout.providers import (
    GradientSaliencyProvider,
    HaarFaceProvider,
    default_providers,
)


def _textured(size: int, y0: int, x0: int, patch: int, seed: int = 0) -> np.ndarray:
    rng = np.random.default_rng(seed)
    img = np.zeros((size, size, 3), dtype=np.uint8)
    img[y0 : y0 + patch, x0 : x0 + patch] = rng.integers(
        0, 256, (patch, patch, 3), dtype=np.uint8
    )
    return img


def test_saliency_silent_on_flat_images():
    prov = GradientSaliencyProvider()
    assert prov.detect(np.zeros((200, 300, 3), dtype=np.uint8)) == []
    assert prov.detect(np.zeros((4, 4, 3), dtype=np.uint8)) == []


def test_saliency_silent_on_uniform_texture():
    rng = np.random.default_rng(3)
    noise = rng.integers(0, 256, (256, 256, 3), dtype=np.uint8)
    assert GradientSaliencyProvider().detect(noise) == []


def test_saliency_finds_textured_patch():
    img = _textured(256, 32, 96, 128)
    (det,) = GradientSaliencyProvider().detect(img)
    assert det.label == "saliency"
    assert 0.1 <= det.score <= 1.0
    b = det.box
    assert b.x <= 160 <= b.right and b.y <= 96 <= b.bottom
    assert b.area < 0.5 * 256 * 256


def test_saliency_maps_back_from_work_size():
    img = _textured(512, 64, 192, 256)
    (det,) = GradientSaliencyProvider().detect(img)
    b = det.box
    assert 0 <= b.x and b.right <= 512 + 1e-6
    assert b.x <= 320 <= b.right and b.y <= 192 <= b.bottom


def test_energy_grid_shape():
    grid = GradientSaliencyProvider(grid=8).energy_grid(_textured(64, 0, 0, 32))
    assert grid.shape == (8, 8)
    assert grid[:4, :4].sum() > grid[5:, 5:].sum()


def test_haar_provider_on_blank_image():
    prov = HaarFaceProvider()
    assert prov.detect(np.zeros((240, 320, 3), dtype=np.uint8)) == []


def test_haar_provider_bad_cascade():
    prov = HaarFaceProvider(cascade_path="/nonexistent/cascade.xml")
    with pytest.raises(RuntimeError):
        prov.detect(np.zeros((64, 64, 3), dtype=np.uint8))


def test_default_providers_through_detection():
    providers = default_providers(faces=False, saliency=True)
    assert set(providers) == {"object"}
    img = _textured(256, 32, 96, 128)
    regions = detect_keep_regions(img, providers)
    assert len(regions) == 1 and regions[0].kind == "object"
    assert set(default_providers()) == {"face", "object"}
