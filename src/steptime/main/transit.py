from __future__ import annotations

import argparse
import dataclasses
import logging
from pathlib import Path

from steptime.core.config import DEFAULT_CONFIG_PATH, load_run_config
from steptime.core.errors import (
    ConfigError,
    IngestionFailed,
    MergeConflictError,
    OutOfOrderError,
)
from steptime.core.pipeline import run_pipeline
from steptime.core.report import write_report

logger = logging.getLogger(__name__)


def setup_logging(debug: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def main() -> int:
    """ステップCSVを集計し、工程間の所要日数レポートを出力する。"""
    ap = argparse.ArgumentParser(description="Step-to-step transition time report")
    ap.add_argument("--input", required=True, help="folder containing per-step CSV extracts")
    ap.add_argument("--out", required=True, help="output report CSV path")
    ap.add_argument("--config", default=DEFAULT_CONFIG_PATH.as_posix())
    ap.add_argument("--workers", type=int, default=None, help="override aggregate.workers")
    ap.add_argument(
        "--max-open-files", type=int, default=None, help="override ingest.max_open_files"
    )
    ap.add_argument("--debug", action="store_true")
    ap.add_argument(
        "--dry-run",
        action="store_true",
        help="集計まで実行し、レポートファイルは書き出さない",
    )
    args = ap.parse_args()
    setup_logging(args.debug)

    try:
        cfg = load_run_config(Path(args.config))
        overrides = {}
        if args.workers is not None:
            overrides["workers"] = args.workers
        if args.max_open_files is not None:
            overrides["max_open_files"] = args.max_open_files
        if overrides:
            cfg = dataclasses.replace(cfg, **overrides)
            cfg.validate()
    except (OSError, ConfigError) as e:
        logger.error("failed to read config file: %s", e)
        return 1

    try:
        result = run_pipeline(cfg, Path(args.input))
    except OSError as e:
        logger.error("failed to read input folder: %s", e)
        return 1
    except IngestionFailed as e:
        # each error was already logged by ingest_all
        logger.error("%s; no report written", e)
        return 1
    except MergeConflictError as e:
        for c in e.conflicts:
            logger.error("%s", c)
        logger.error("%s; no report written", e)
        return 1
    except OutOfOrderError as e:
        logger.error("%s; no report written", e)
        return 1

    n_rows = len(result.pairs())
    if args.dry_run:
        print(f"DRY-RUN: steps={len(cfg.step_order)} rows={n_rows} (report not written)")
        return 0

    try:
        out = write_report(result, Path(args.out), cfg.project_code)
    except OSError as e:
        logger.error("failed to write result to file: %s", e)
        return 1
    print(f"OK: wrote {n_rows} rows -> {out}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
