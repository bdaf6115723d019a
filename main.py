from __future__ import annotations

import json
import logging
from contextlib import contextmanager
from pathlib import Path
from time import perf_counter
from typing import Any, Dict, Optional

from joblib import Parallel, delayed  # type: ignore
from tqdm import tqdm
from tqdm_joblib import tqdm_joblib  # type: ignore

from mosaic_layout.config import Config, Job, load_config
from mosaic_layout.engine import error_response, fill_layout_detailed, layout_response
from mosaic_layout.env_info import env_as_dict
from mosaic_layout.errors import LayoutError
from mosaic_layout.logging_utils import setup_logging
from mosaic_layout.metrics import coverage_report, selection_info
from mosaic_layout.models import LayoutRequest
from mosaic_layout.prepare import prepare_request
from mosaic_layout.providers import default_providers
from mosaic_layout.render import render_preview, save_preview
from mosaic_layout.utils import load_json, make_output_dir, now_stamp, save_json


class TimingStats:
    def __init__(self, enabled: bool = True) -> None:
        self.enabled = enabled
        self._totals: dict[str, float] = {}
        self._counts: dict[str, int] = {}

    def add(self, name: str, dt: float) -> None:
        if not self.enabled:
            return
        self._totals[name] = self._totals.get(name, 0.0) + dt
        self._counts[name] = self._counts.get(name, 0) + 1

    def as_dict(self) -> dict[str, dict[str, float] | dict[str, int]]:
        return {"totals": self._totals, "counts": self._counts}


@contextmanager
def record(ts: Optional[TimingStats], name: str):
    if ts is None or not ts.enabled:
        yield
        return
    t0 = perf_counter()
    try:
        yield
    finally:
        ts.add(name, perf_counter() - t0)


def _process_job(job: Job, cfg: Config, stamp: str) -> Dict[str, Any]:
    log = logging.getLogger(f"job.{job.name}")
    gcfg = cfg.global_cfg
    summary: Dict[str, Any] = {"job": job.name, "ok": False}
    if not job.request.exists():
        log.warning("Request not found: %s", job.request)
        summary["error"] = "request not found"
        return summary

    ts = TimingStats(enabled=gcfg.profiling)
    out_dir = make_output_dir(Path(gcfg.output_root), stamp, job.name)
    with record(ts, "load_request"):
        request = load_json(job.request)
    if job.canvas_width is not None:
        request["canvasWidth"] = job.canvas_width
    if job.canvas_height is not None:
        request["canvasHeight"] = job.canvas_height
    options = request.setdefault("options", {})
    if options.get("seed") is None and gcfg.seed is not None:
        options["seed"] = gcfg.seed
    request.setdefault("requestId", job.name)

    providers = default_providers(cfg.detection.faces, cfg.detection.saliency)
    with record(ts, "prepare"):
        images = prepare_request(
            request, job.request.parent, providers, cfg.detection_settings()
        )
    log.info("Loaded %d images for %d photos", len(images), len(request.get("photos") or []))

    try:
        req = LayoutRequest.from_dict(request)
        with record(ts, "layout"):
            result = fill_layout_detailed(
                req.photos,
                req.canvas_width,
                req.canvas_height,
                req.options,
                cfg.engine_settings(),
            )
    except LayoutError as e:
        log.error("Layout failed: %s", e)
        save_json(error_response(request.get("requestId"), e), out_dir / "response.json")
        summary["error"] = str(e)
        return summary

    save_json(layout_response(req.request_id, result.placements), out_dir / "response.json")
    report = coverage_report(result.tiles, result.placements, req.canvas_width, req.canvas_height)
    crops = {p.photo_id: p.crop for p in result.placements}
    metrics = {
        "seed": result.seed,
        "usedFallback": result.used_fallback,
        "score": result.score.to_dict() if result.score else None,
        "coverage": report,
        "photos": {p.id: selection_info(p, crops.get(p.id)) for p in req.photos},
    }
    save_json(metrics, out_dir / "metrics.json")
    log.info(
        "%d placements, coverage %.4f, max overflow %.3f%s",
        len(result.placements),
        report["coverage"],
        report["maxOverflow"],
        " (grid fallback)" if result.used_fallback else "",
    )

    if gcfg.save_previews:
        with record(ts, "preview"):
            img = render_preview(
                result.placements,
                req.canvas_width,
                req.canvas_height,
                images=images,
                tiles=result.tiles,
            )
            save_preview(img, out_dir / "preview.png")

    save_json(ts.as_dict(), out_dir / "timings.json")
    summary.update(ok=True, photos=len(result.placements), coverage=report["coverage"])
    return summary


def aggregate_timings(run_root: Path) -> dict[str, dict[str, float] | dict[str, int]]:
    totals: dict[str, float] = {}
    counts: dict[str, int] = {}
    for job_dir in run_root.iterdir():
        tfile = job_dir / "timings.json"
        if not job_dir.is_dir() or not tfile.exists():
            continue
        try:
            with tfile.open("r") as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            logging.getLogger("mosaic_layout").warning(
                "Failed to read timings %s: %s", str(tfile), e
            )
            continue
        for k, v in data.get("totals", {}).items():
            totals[k] = totals.get(k, 0.0) + float(v)
        for k, v in data.get("counts", {}).items():
            counts[k] = counts.get(k, 0) + int(v)
    return {"totals": totals, "counts": counts}


def main(config_path: Path) -> None:
    cfg: Config = load_config(config_path)
    stamp = now_stamp()

    run_root = Path(cfg.global_cfg.output_root) / stamp
    setup_logging(run_root, cfg.global_cfg.log_level)
    log = logging.getLogger("mosaic_layout")
    log.info("Starting run: %s", stamp)
    log.info("Config file: %s", str(config_path))
    save_json(env_as_dict(), run_root / "environment.json")
    save_json(cfg.to_dict(), run_root / "resolved_config.json")

    n_jobs = -1 if cfg.global_cfg.num_cores is None else cfg.global_cfg.num_cores
    total = len(cfg.jobs)
    if n_jobs == 1:
        summaries = [
            _process_job(job, cfg, stamp)
            for job in tqdm(cfg.jobs, total=total, desc="Layout jobs", unit="job")
        ]
    else:
        log.info("Running in parallel with %s jobs", n_jobs if n_jobs > 0 else "auto")
        with tqdm_joblib(tqdm(total=total, desc="Layout jobs", unit="job")):
            summaries = Parallel(n_jobs=n_jobs)(
                delayed(_process_job)(job, cfg, stamp) for job in cfg.jobs
            )
    save_json(summaries, run_root / "summary.json")

    agg = aggregate_timings(run_root)
    save_json(agg, run_root / "run_timings.json")

    failed = [s["job"] for s in summaries if not s.get("ok")]
    log.info("%d/%d jobs succeeded", total - len(failed), total)
    if failed:
        log.warning("Failed jobs: %s", ", ".join(failed))

    totals = agg.get("totals", {})
    counts = agg.get("counts", {})
    items = sorted(totals.items(), key=lambda kv: kv[1], reverse=True)
    log.info("Timing summary (total seconds, calls, avg per call):")
    for name, total_secs in items:
        cnt = counts.get(name, 0) or 1
        log.info(
            " - %s: %.3fs total over %d calls (%.3fs avg)",
            name,
            total_secs,
            cnt,
            total_secs / cnt,
        )


if __name__ == "__main__":
    import argparse

    p = argparse.ArgumentParser()
    p.add_argument("--config", type=str, default="config.yaml")
    args = p.parse_args()
    main(Path(args.config))
