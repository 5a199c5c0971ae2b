from __future__ import annotations

import dataclasses
from datetime import datetime
from pathlib import Path

import numpy as np
import pandas as pd
import pytest

from steptime.core.config import DEFAULT_CONFIG_PATH, load_run_config
from steptime.core.errors import IngestionFailed, OutOfOrderError
from steptime.core.pipeline import run_pipeline
from steptime.tools.sim_data_generator import generate_step_csv as gsc

pytestmark = pytest.mark.integration

START = datetime.fromisoformat("2026-02-01T08:00:00")


def _generate(tmp_path: Path, scenario: str, units: int = 120, seed: int = 11):
    cfg = load_run_config(DEFAULT_CONFIG_PATH)
    gsc.write_step_csvs(tmp_path, START, units, scenario, seed, cfg)
    return cfg


def test_generate_then_aggregate_normal(tmp_path: Path) -> None:
    cfg = _generate(tmp_path, "normal")

    rs = run_pipeline(cfg, tmp_path)

    # every unit passes every step in the normal scenario
    for i, j in rs.pairs():
        assert int(rs.counts[i, j].sum()) == 120
    first, last = cfg.step_order[0], cfg.step_order[-1]
    # seven exponential dwells of 48h on average often exceed a week
    assert rs.counts_for(first, last)[-1] > 0


def test_generate_then_aggregate_matches_direct_count(tmp_path: Path) -> None:
    cfg = _generate(tmp_path, "drop", units=80, seed=5)
    line = gsc.line_spec_from_config(cfg)
    df = gsc.generate_unit_histories(START, 80, 5, line)
    df = gsc.inject_defects_monitored(df, "drop", 5)
    df["step"] = df["short"].map(cfg.name_map)
    df["completed_at"] = pd.to_datetime(df["completed_at"])
    wide = df.pivot(index="serial_number", columns="step", values="completed_at")

    rs = run_pipeline(cfg, tmp_path)

    a, b = cfg.step_order[1], cfg.step_order[4]
    both = wide[[a, b]].dropna()
    days = ((both[b] - both[a]) // pd.Timedelta(days=1)).to_numpy()
    expected = np.bincount(np.clip(days, 1, 8) - 1, minlength=8)
    assert rs.counts_for(a, b) == expected.tolist()


@pytest.mark.parametrize("scenario", ["blank_serial", "bad_timestamp"])
def test_generate_defect_then_ingest_fails(tmp_path: Path, scenario: str) -> None:
    cfg = _generate(tmp_path, scenario)

    with pytest.raises(IngestionFailed) as exc:
        run_pipeline(cfg, tmp_path)

    assert len(exc.value.errors) == 1


def test_generate_reorder_with_error_policy(tmp_path: Path) -> None:
    cfg = _generate(tmp_path, "reorder")

    folded = run_pipeline(cfg, tmp_path)
    assert int(folded.counts[0, 1].sum()) == 120

    strict = dataclasses.replace(cfg, on_out_of_order="error")
    with pytest.raises(OutOfOrderError):
        run_pipeline(strict, tmp_path)
