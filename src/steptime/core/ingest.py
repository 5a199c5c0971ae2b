from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from pathlib import Path

import numpy as np
import pandas as pd

from .errors import (
    DuplicateRowError,
    FileReadError,
    IngestError,
    IngestionFailed,
    MalformedRowError,
    MissingColumnError,
    StepConflictError,
    UnknownStepError,
)
from .models import StepRecord, UnitRecord

logger = logging.getLogger(__name__)

# header is line 1, first data row is line 2
_FIRST_DATA_LINE = 2


def read_step_csv(path: Path, short: str) -> pd.DataFrame:
    """
    ステップCSVを文字列として読み込む。空欄は空文字のまま保持する。
    Blank lines are kept as all-empty rows so that physical line numbers can
    still be derived; callers drop them with drop_blank_rows.
    """
    try:
        df = pd.read_csv(path, dtype=str, keep_default_na=False, skip_blank_lines=False)
    except (OSError, UnicodeDecodeError, pd.errors.ParserError, pd.errors.EmptyDataError) as e:
        raise FileReadError(path, short, f"cannot read file: {e}") from e
    # short rows come back as NaN even with keep_default_na=False
    return df.fillna("")


def line_numbers(df: pd.DataFrame) -> pd.Series:
    """
    1-based physical line on which each row starts. Quoted fields spanning
    several lines push every later row down by their embedded newlines.
    """
    extra = pd.Series(0, index=df.index, dtype="int64")
    for c in df.columns:
        extra += df[c].str.count("\n").astype("int64")
    before = extra.cumsum() - extra
    rows = pd.Series(np.arange(len(df), dtype="int64"), index=df.index)
    return rows + _FIRST_DATA_LINE + before


def drop_blank_rows(df: pd.DataFrame, lines: pd.Series) -> tuple[pd.DataFrame, pd.Series]:
    blank = (df == "").all(axis=1)
    return df[~blank], lines[~blank]


def ensure_cols(df: pd.DataFrame, cols: list[str], path: Path, short: str) -> None:
    missing = [c for c in cols if c not in df.columns]
    if missing:
        raise MissingColumnError(path, short, f"missing required columns: {missing}")


def to_naive_utc(values: pd.Series, fmt: str | None = None) -> pd.Series:
    """
    Parse timestamps; tz-aware values are converted to UTC and made naive,
    naive values are kept as-is. Unparseable values become NaT.
    """
    ts = pd.to_datetime(values, format=fmt or "mixed", errors="coerce", utc=True)
    return ts.dt.tz_localize(None)


@dataclass(frozen=True)
class IngestConfig:
    step_order: list[str]
    name_map: dict[str, str]
    serial_column: str = "serial_number"
    completed_at_column: str = "completed_at"
    timestamp_format: str | None = None
    on_conflict: str = "overwrite"


class StepIngestor:
    """Parses one step extract into partial UnitRecords, one StepRecord each."""

    def __init__(self, cfg: IngestConfig):
        self.cfg = cfg

    def ingest(self, path: Path, short: str) -> dict[str, UnitRecord]:
        step_name = self.cfg.name_map.get(short)
        if step_name is None or step_name not in self.cfg.step_order:
            raise UnknownStepError(path, short, f"step {step_name!r} is not in step order")

        df = read_step_csv(path, short)
        sn_col = self.cfg.serial_column
        ts_col = self.cfg.completed_at_column
        ensure_cols(df, [sn_col, ts_col], path, short)
        df, lines = drop_blank_rows(df, line_numbers(df))

        serials = df[sn_col].str.strip()
        raw_ts = df[ts_col].str.strip()
        completed = to_naive_utc(raw_ts, self.cfg.timestamp_format)

        bad = (serials == "") | completed.isna()
        if bad.any():
            pos = int(bad.to_numpy().argmax())
            line_no = int(lines.iloc[pos])
            if serials.iloc[pos] == "":
                reason = "missing serial number"
            else:
                reason = f"unparseable timestamp {raw_ts.iloc[pos]!r}"
            raise MalformedRowError(path, short, reason, line_no=line_no)

        batch: dict[str, UnitRecord] = {}
        for sn, ts, line_no in zip(serials, completed, lines):
            unit = batch.get(sn)
            if unit is None:
                unit = batch[sn] = UnitRecord(serial_number=sn)
            try:
                unit.set_step(StepRecord(step_name, ts), on_conflict=self.cfg.on_conflict)
            except StepConflictError as e:
                raise DuplicateRowError(path, short, str(e), line_no=int(line_no)) from e
        logger.debug("%s: %d row(s) -> %d unit(s)", path.name, len(df), len(batch))
        return batch


def ingest_all(
    files: dict[str, Path], ingestor: StepIngestor, max_open_files: int = 4
) -> list[tuple[str, dict[str, UnitRecord]]]:
    """
    Ingest every step file concurrently, at most max_open_files at a time.

    Returns (short, batch) pairs in the order of ``files``. When any file
    fails, every collected error is raised together as IngestionFailed.
    """
    batches: dict[str, dict[str, UnitRecord]] = {}
    errors: list[IngestError] = []
    if not files:
        return []

    with ThreadPoolExecutor(max_workers=max_open_files) as ex:
        futs = {ex.submit(ingestor.ingest, path, short): short for short, path in files.items()}
        for fut in as_completed(futs):
            short = futs[fut]
            try:
                batches[short] = fut.result()
            except IngestError as e:
                logger.error("failed to read file: %s", e)
                errors.append(e)
            else:
                logger.info("read %s: %d unit(s)", files[short].name, len(batches[short]))

    if errors:
        order = list(files)
        errors.sort(key=lambda e: order.index(e.step) if e.step in order else len(order))
        raise IngestionFailed(errors)
    return [(short, batches[short]) for short in files]
