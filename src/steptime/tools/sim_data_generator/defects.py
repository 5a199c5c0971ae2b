from __future__ import annotations

from dataclasses import dataclass

import numpy as np
import pandas as pd


@dataclass(frozen=True)
class DefectConfig:
    mode: str  # drop/blank_serial/bad_timestamp/reorder
    fraction: float = 0.05
    short: str | None = None  # restrict to one step file
    seed: int = 42


def _step_mask(df: pd.DataFrame, short: str | None) -> pd.Series:
    if short is None:
        return pd.Series(True, index=df.index)
    return df["short"] == short


def _pick(idx: pd.Index, fraction: float, rng: np.random.Generator) -> pd.Index:
    if len(idx) == 0:
        return idx
    n = max(1, int(round(len(idx) * fraction)))
    return pd.Index(rng.choice(idx, size=min(n, len(idx)), replace=False))


def inject_dropped_steps(
    df: pd.DataFrame, mask: pd.Series, fraction: float, seed: int
) -> pd.DataFrame:
    rng = np.random.default_rng(seed)
    picked = _pick(df.index[mask], fraction, rng)
    return df.drop(index=picked)


def inject_blank_serials(
    df: pd.DataFrame, mask: pd.Series, fraction: float, seed: int
) -> pd.DataFrame:
    out = df.copy()
    rng = np.random.default_rng(seed)
    out.loc[_pick(out.index[mask], fraction, rng), "serial_number"] = ""
    return out


def inject_bad_timestamps(
    df: pd.DataFrame, mask: pd.Series, fraction: float, seed: int
) -> pd.DataFrame:
    out = df.copy()
    rng = np.random.default_rng(seed)
    out.loc[_pick(out.index[mask], fraction, rng), "completed_at"] = "not-a-date"
    return out


def inject_reorder(df: pd.DataFrame, fraction: float, seed: int) -> pd.DataFrame:
    """Swap the first two step timestamps of some units so the later step finishes first."""
    out = df.copy()
    rng = np.random.default_rng(seed)
    serials = pd.Index(out["serial_number"].unique())
    for sn in _pick(serials, fraction, rng):
        rows = out.index[out["serial_number"] == sn]
        if len(rows) < 2:
            continue
        a, b = rows[0], rows[1]
        out.loc[[a, b], "completed_at"] = out.loc[[b, a], "completed_at"].to_numpy()
    return out


def inject_defect(df: pd.DataFrame, cfg: DefectConfig) -> pd.DataFrame:
    """
    df columns:
      - serial_number (str)
      - short (str)
      - completed_at (str)
    """
    mask = _step_mask(df, cfg.short)
    if cfg.mode == "drop":
        return inject_dropped_steps(df, mask, cfg.fraction, cfg.seed)
    elif cfg.mode == "blank_serial":
        return inject_blank_serials(df, mask, cfg.fraction, cfg.seed)
    elif cfg.mode == "bad_timestamp":
        return inject_bad_timestamps(df, mask, cfg.fraction, cfg.seed)
    elif cfg.mode == "reorder":
        return inject_reorder(df, cfg.fraction, cfg.seed)
    return df
