from __future__ import annotations

import argparse
import logging
from pathlib import Path

from mosaic_layout.engine import error_response, fill_layout_detailed, layout_response
from mosaic_layout.errors import LayoutError
from mosaic_layout.logging_utils import setup_logging
from mosaic_layout.metrics import coverage_report
from mosaic_layout.models import LayoutRequest
from mosaic_layout.prepare import prepare_request
from mosaic_layout.providers import default_providers
from mosaic_layout.render import render_preview, save_preview
from mosaic_layout.utils import load_json, now_stamp, save_json


def build_args() -> argparse.Namespace:
    p = argparse.ArgumentParser(
        description="Lay out one request JSON and write the response."
    )
    p.add_argument(
        "--request", required=True, type=Path, help="Path to request JSON"
    )
    p.add_argument(
        "--out",
        type=Path,
        default=None,
        help="Output directory (defaults to outputs/<stamp>/<request_stem>/)",
    )
    p.add_argument(
        "--seed", type=int, default=None, help="Override options.seed"
    )
    p.add_argument(
        "--preview", action="store_true", help="Also write preview.png"
    )
    p.add_argument(
        "--detect",
        action="store_true",
        help="Run face/saliency detection on photos with a path",
    )
    p.add_argument("--log-level", default="INFO")
    return p.parse_args()


def main() -> None:
    args = build_args()
    setup_logging(None, args.log_level)
    log = logging.getLogger("mosaic_layout.cli")

    request = load_json(args.request)
    if args.seed is not None:
        request.setdefault("options", {})["seed"] = args.seed
    out_dir: Path = (
        args.out
        if args.out is not None
        else Path("outputs") / now_stamp() / args.request.stem
    )

    providers = default_providers() if args.detect else None
    images = prepare_request(request, args.request.parent, providers)

    try:
        req = LayoutRequest.from_dict(request)
        result = fill_layout_detailed(
            req.photos, req.canvas_width, req.canvas_height, req.options
        )
    except LayoutError as e:
        log.error("Layout failed: %s", e)
        save_json(error_response(request.get("requestId"), e), out_dir / "response.json")
        raise SystemExit(1)

    save_json(layout_response(req.request_id, result.placements), out_dir / "response.json")
    report = coverage_report(
        result.tiles, result.placements, req.canvas_width, req.canvas_height
    )
    if args.preview:
        img = render_preview(
            result.placements,
            req.canvas_width,
            req.canvas_height,
            images=images,
            tiles=result.tiles,
        )
        save_preview(img, out_dir / "preview.png")
        print(f"Preview written: {out_dir / 'preview.png'}")

    print(
        f"{len(result.placements)} placements (seed {result.seed}"
        f"{', grid fallback' if result.used_fallback else ''})"
    )
    print(f"Coverage {report['coverage']:.4f}, max overflow {report['maxOverflow']:.3f}")
    print(f"Response written: {out_dir / 'response.json'}")


if __name__ == "__main__":
    main()
