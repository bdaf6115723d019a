from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"


def setup_logging(run_dir: Optional[Path], level: str = "INFO") -> None:
    """Route the root logger to stderr and, given a run dir, to run.log."""
    log_level = getattr(logging, level.upper(), logging.INFO)
    fmt = logging.Formatter(fmt=LOG_FORMAT, datefmt="%H:%M:%S")

    # Clear existing handlers to avoid duplicates on re-run
    root = logging.getLogger()
    for h in list(root.handlers):
        root.removeHandler(h)
        h.close()

    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if run_dir is not None:
        run_dir.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(run_dir / "run.log", encoding="utf-8"))

    for h in handlers:
        h.setLevel(log_level)
        h.setFormatter(fmt)
        root.addHandler(h)
    root.setLevel(log_level)
    # PIL logs every plugin it probes at DEBUG
    logging.getLogger("PIL").setLevel(max(log_level, logging.INFO))
