from __future__ import annotations

import argparse
from dataclasses import dataclass
from datetime import datetime, timedelta
from pathlib import Path

import numpy as np
import pandas as pd

from steptime.core.config import DEFAULT_CONFIG_PATH, RunConfig, load_run_config
from steptime.core.discovery import step_file_name
from steptime.tools.sim_data_generator.defects import DefectConfig, inject_defect


@dataclass(frozen=True)
class StepSpec:
    short: str
    mean_dwell_hours: float


@dataclass(frozen=True)
class LineSpec:
    project_code: str
    steps: list[StepSpec]


def line_spec_from_config(cfg: RunConfig, mean_dwell_hours: float = 48.0) -> LineSpec:
    """
    Dwell time is the time spent before completing each step; the first step
    has none beyond the unit's release offset.
    """
    return LineSpec(
        project_code=cfg.project_code,
        steps=[StepSpec(s, mean_dwell_hours) for s in cfg.step_order_short],
    )


def generate_unit_histories(
    start_ts: datetime,
    units: int,
    seed: int,
    line: LineSpec,
    release_window_days: int = 14,
) -> pd.DataFrame:
    if start_ts.tzinfo is not None:
        raise ValueError("start_ts must be a naive datetime (no timezone info)")
    rng = np.random.default_rng(seed)

    release_h = rng.uniform(0.0, release_window_days * 24.0, size=units)
    rows = []
    for u in range(units):
        sn = f"{line.project_code}SN{u + 1:06d}"
        t = start_ts + timedelta(hours=float(release_h[u]))
        for k, step in enumerate(line.steps):
            if k > 0:
                t = t + timedelta(hours=float(rng.exponential(step.mean_dwell_hours)))
            rows.append(
                {
                    "serial_number": sn,
                    "short": step.short,
                    "completed_at": t.replace(microsecond=0).isoformat(),
                }
            )
    return pd.DataFrame(rows, columns=["serial_number", "short", "completed_at"])


def inject_defects_monitored(df: pd.DataFrame, scenario: str, seed: int) -> pd.DataFrame:
    if scenario == "normal":
        return df
    if scenario in ("blank_serial", "bad_timestamp"):
        # one broken row is enough to fail a file
        cfg = DefectConfig(mode=scenario, fraction=0.0, seed=seed)
    elif scenario in ("drop", "reorder"):
        cfg = DefectConfig(mode=scenario, fraction=0.1, seed=seed)
    else:
        raise ValueError(f"unknown scenario: {scenario}")
    return inject_defect(df, cfg)


def write_step_csvs(
    out_dir: Path,
    start_ts: datetime,
    units: int,
    scenario: str,
    seed: int,
    cfg: RunConfig,
    mean_dwell_hours: float = 48.0,
) -> list[Path]:
    line = line_spec_from_config(cfg, mean_dwell_hours)
    df = generate_unit_histories(start_ts=start_ts, units=units, seed=seed, line=line)
    df = inject_defects_monitored(df=df, scenario=scenario, seed=seed)

    out_dir.mkdir(parents=True, exist_ok=True)
    written: list[Path] = []
    for step in line.steps:
        sub = df[df["short"] == step.short][["serial_number", "completed_at"]]
        sub = sub.rename(
            columns={
                "serial_number": cfg.serial_column,
                "completed_at": cfg.completed_at_column,
            }
        )
        path = out_dir / step_file_name(step.short, cfg.file_template)
        sub.to_csv(path.as_posix(), index=False, lineterminator="\n")
        written.append(path)
    print(f"OK: wrote {len(written)} step files ({units} units) -> {out_dir.as_posix()}")
    return written


def main():
    ap = argparse.ArgumentParser()
    ap.add_argument("--out", default="data/raw")
    ap.add_argument("--config", default=DEFAULT_CONFIG_PATH.as_posix())
    ap.add_argument("--start", default="2026-02-01T08:00:00")
    ap.add_argument("--units", type=int, default=500)
    ap.add_argument("--mean-dwell-hours", type=float, default=48.0)
    ap.add_argument(
        "--scenario",
        choices=["normal", "drop", "blank_serial", "bad_timestamp", "reorder"],
        default="normal",
    )
    ap.add_argument("--seed", type=int, default=42)
    args = ap.parse_args()
    write_step_csvs(
        Path(args.out),
        datetime.fromisoformat(args.start),
        args.units,
        args.scenario,
        args.seed,
        load_run_config(args.config),
        args.mean_dwell_hours,
    )


if __name__ == "__main__":
    main()
