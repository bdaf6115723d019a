import numpy as np
from PIL import Image

from mosaic_layout.detection import Detection
from mosaic_layout.models import LayoutRequest, Rect
from mosaic_layout.prepare import prepare_request
from mosaic_layout.utils import load_image_rgb, load_json, save_json


class OneFace:
    def __init__(self):
        self.calls = 0

    def detect(self, image):
        self.calls += 1
        return [Detection(Rect(10, 10, 20, 20), 0.9)]


def _save(path, w, h):
    Image.new("L", (w, h), 128).save(path)


def test_load_image_rgb_converts_mode(tmp_path):
    _save(tmp_path / "g.png", 30, 20)
    arr = load_image_rgb(tmp_path / "g.png")
    assert arr.shape == (20, 30, 3) and arr.dtype == np.uint8


def test_json_roundtrip(tmp_path):
    path = tmp_path / "a" / "b.json"
    save_json({"k": [1, 2]}, path)
    assert load_json(path) == {"k": [1, 2]}


def test_prepare_fills_sizes_and_regions(tmp_path):
    _save(tmp_path / "a.png", 120, 80)
    _save(tmp_path / "b.png", 80, 120)
    face = OneFace()
    request = {
        "requestId": 1,
        "canvasWidth": 400,
        "canvasHeight": 300,
        "photos": [
            {"id": "a", "path": "a.png"},
            {
                "id": "b",
                "path": str(tmp_path / "b.png"),
                "keepRegions": [
                    {"kind": "object", "box": {"x": 0, "y": 0, "width": 5, "height": 5}}
                ],
            },
            {"id": "c", "path": "missing.png", "imageWidth": 10, "imageHeight": 10},
        ],
    }
    images = prepare_request(request, tmp_path, {"face": face})
    assert set(images) == {"a", "b"}
    a, b, c = request["photos"]
    assert (a["imageWidth"], a["imageHeight"]) == (120, 80)
    assert a["keepRegions"][0]["kind"] == "face"
    assert b["keepRegions"][0]["kind"] == "object"
    assert face.calls == 1
    assert c["imageWidth"] == 10

    parsed = LayoutRequest.from_dict(request)
    assert parsed.photos[0].keep_regions[0].box.w == 20
