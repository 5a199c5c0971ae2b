from __future__ import annotations

import logging
from pathlib import Path

from .aggregate import Aggregator
from .config import RunConfig
from .discovery import discover_step_files
from .ingest import IngestConfig, StepIngestor, ingest_all
from .merge import flatten_units, merge_batches
from .models import ResultSet

logger = logging.getLogger(__name__)


def build_ingestor(cfg: RunConfig) -> StepIngestor:
    return StepIngestor(
        IngestConfig(
            step_order=cfg.step_order,
            name_map=cfg.name_map,
            serial_column=cfg.serial_column,
            completed_at_column=cfg.completed_at_column,
            timestamp_format=cfg.timestamp_format,
            on_conflict=cfg.on_conflict,
        )
    )


def run_pipeline(cfg: RunConfig, input_dir: Path) -> ResultSet:
    """入力フォルダのステップCSVを取り込み、統合・集計してResultSetを返す。"""
    files = discover_step_files(Path(input_dir), cfg.step_order_short, cfg.file_template)
    logger.info("found %d step file(s) in %s", len(files), input_dir)
    if not files:
        logger.warning("no step files matched in %s", input_dir)

    batches = ingest_all(files, build_ingestor(cfg), max_open_files=cfg.max_open_files)
    units = flatten_units(
        merge_batches((batch for _, batch in batches), on_conflict=cfg.on_conflict)
    )

    aggregator = Aggregator(
        cfg.step_order,
        workers=cfg.workers,
        max_days=cfg.max_days,
        on_out_of_order=cfg.on_out_of_order,
        executor=cfg.executor,
    )
    return aggregator.run(units)
