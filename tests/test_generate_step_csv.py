from __future__ import annotations

from datetime import datetime
from pathlib import Path

import pandas as pd
import pytest

from steptime.core.config import RunConfig
from steptime.tools.sim_data_generator import generate_step_csv as gsc
from steptime.tools.sim_data_generator.defects import DefectConfig, inject_defect


def _cfg() -> RunConfig:
    return RunConfig.from_dict(
        {
            "project_code": "T1",
            "step_order": ["Step A", "Step B", "Step C"],
            "step_order_short": ["A", "B", "C"],
            "name_map": {"A": "Step A", "B": "Step B", "C": "Step C"},
        }
    )


def _histories(units: int = 20, seed: int = 42) -> pd.DataFrame:
    line = gsc.line_spec_from_config(_cfg())
    return gsc.generate_unit_histories(
        start_ts=datetime.fromisoformat("2026-02-01T08:00:00"), units=units, seed=seed, line=line
    )


def test_line_spec_follows_short_order() -> None:
    line = gsc.line_spec_from_config(_cfg(), mean_dwell_hours=12.0)

    assert line.project_code == "T1"
    assert [s.short for s in line.steps] == ["A", "B", "C"]
    assert all(s.mean_dwell_hours == 12.0 for s in line.steps)


def test_generate_unit_histories_shape_and_monotonic_times() -> None:
    df = _histories()

    assert list(df.columns) == ["serial_number", "short", "completed_at"]
    assert len(df) == 20 * 3
    assert df["serial_number"].iloc[0] == "T1SN000001"
    for _, g in df.groupby("serial_number"):
        ts = pd.to_datetime(g["completed_at"])
        assert ts.is_monotonic_increasing


def test_generate_unit_histories_is_seeded() -> None:
    assert _histories(seed=7).equals(_histories(seed=7))
    assert not _histories(seed=7).equals(_histories(seed=8))


def test_generate_unit_histories_rejects_tz_aware_start() -> None:
    with pytest.raises(ValueError, match="naive datetime"):
        gsc.generate_unit_histories(
            start_ts=datetime.fromisoformat("2026-02-01T08:00:00+09:00"),
            units=1,
            seed=1,
            line=gsc.line_spec_from_config(_cfg()),
        )


def test_inject_defect_drop_removes_rows_only_in_target_step() -> None:
    df = _histories()

    out = inject_defect(df, DefectConfig(mode="drop", fraction=0.25, short="B", seed=1))

    assert len(out) == len(df) - 5
    assert (out["short"] == "A").sum() == 20
    assert (out["short"] == "B").sum() == 15


def test_inject_defect_blank_serial_and_bad_timestamp() -> None:
    df = _histories()

    blank = inject_defect(df, DefectConfig(mode="blank_serial", fraction=0.0, seed=1))
    bad = inject_defect(df, DefectConfig(mode="bad_timestamp", fraction=0.0, seed=1))

    assert (blank["serial_number"] == "").sum() == 1
    assert (bad["completed_at"] == "not-a-date").sum() == 1
    assert (df["serial_number"] == "").sum() == 0


def test_inject_defect_reorder_makes_second_step_earlier() -> None:
    df = _histories(units=10)

    out = inject_defect(df, DefectConfig(mode="reorder", fraction=0.1, seed=3))

    changed = [
        sn
        for sn, g in out.groupby("serial_number")
        if not pd.to_datetime(g["completed_at"]).is_monotonic_increasing
    ]
    assert len(changed) == 1


def test_inject_defect_unknown_mode_is_noop() -> None:
    df = _histories()

    assert inject_defect(df, DefectConfig(mode="spike")).equals(df)


def test_write_step_csvs_uses_template_and_columns(tmp_path: Path) -> None:
    paths = gsc.write_step_csvs(
        tmp_path,
        start_ts=datetime.fromisoformat("2026-02-01T08:00:00"),
        units=5,
        scenario="normal",
        seed=1,
        cfg=_cfg(),
    )

    assert [p.name for p in paths] == [
        "raw-data-download-N199-Housing TI-LDG-A.csv",
        "raw-data-download-N199-Housing TI-LDG-B.csv",
        "raw-data-download-N199-Housing TI-LDG-C.csv",
    ]
    df = pd.read_csv(paths[0])
    assert list(df.columns) == ["serial_number", "completed_at"]
    assert len(df) == 5


def test_inject_defects_monitored_unknown_scenario_raises() -> None:
    with pytest.raises(ValueError, match="unknown scenario"):
        gsc.inject_defects_monitored(_histories(), scenario="mix", seed=1)
