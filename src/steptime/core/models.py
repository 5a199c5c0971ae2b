from __future__ import annotations

from dataclasses import dataclass, field

import numpy as np
import pandas as pd

from .errors import StepConflictError

CONFLICT_POLICIES = ("overwrite", "keep_first", "error")


@dataclass(frozen=True)
class StepRecord:
    name: str
    completed_at: pd.Timestamp


@dataclass
class UnitRecord:
    serial_number: str
    steps: dict[str, StepRecord] = field(default_factory=dict)

    def set_step(self, step: StepRecord, on_conflict: str = "overwrite") -> None:
        """
        Add a step record. An identical record is a no-op; a record with a
        different timestamp for an existing step is resolved by on_conflict.
        """
        current = self.steps.get(step.name)
        if current is None or current == step:
            self.steps[step.name] = step
            return
        if on_conflict == "overwrite":
            self.steps[step.name] = step
        elif on_conflict == "keep_first":
            return
        elif on_conflict == "error":
            raise StepConflictError(
                self.serial_number, step.name, current.completed_at, step.completed_at
            )
        else:
            raise ValueError(f"unknown conflict policy: {on_conflict}")

    def copy(self) -> UnitRecord:
        return UnitRecord(serial_number=self.serial_number, steps=dict(self.steps))


def bucket_labels(max_days: int) -> list[str]:
    return [f"{d}-Days" for d in range(1, max_days + 1)] + [f">{max_days}-Days"]


@dataclass
class ResultSet:
    """
    counts[i, j, b]: number of units going from step_order[i] to step_order[j]
    in bucket b. Only i <= j is ever populated.
    """

    step_order: list[str]
    max_days: int
    counts: np.ndarray

    @classmethod
    def empty(cls, step_order: list[str], max_days: int = 7) -> ResultSet:
        n = len(step_order)
        return cls(
            step_order=list(step_order),
            max_days=max_days,
            counts=np.zeros((n, n, max_days + 1), dtype=np.int64),
        )

    def add(self, partial: np.ndarray) -> None:
        if partial.shape != self.counts.shape:
            raise ValueError(f"shape mismatch: {partial.shape} != {self.counts.shape}")
        self.counts += partial

    def pairs(self) -> list[tuple[int, int]]:
        n = len(self.step_order)
        return [(i, j) for i in range(n) for j in range(i, n)]

    def counts_for(self, from_step: str, to_step: str) -> list[int]:
        i = self.step_order.index(from_step)
        j = self.step_order.index(to_step)
        if i > j:
            raise KeyError(f"{from_step} is after {to_step} in step order")
        return [int(x) for x in self.counts[i, j]]

    @property
    def steps_time_number(self) -> dict[str, dict[str, list[int]]]:
        out: dict[str, dict[str, list[int]]] = {}
        for i, j in self.pairs():
            out.setdefault(self.step_order[i], {})[self.step_order[j]] = [
                int(x) for x in self.counts[i, j]
            ]
        return out

    def to_frame(self, project_code: str) -> pd.DataFrame:
        """レポート出力順（FromStep外側・ToStep内側）のDataFrameを返す。"""
        labels = bucket_labels(self.max_days)
        rows = []
        for i, j in self.pairs():
            row = {
                "ProjectCode": project_code,
                "FromStep": self.step_order[i],
                "ToStep": self.step_order[j],
            }
            row.update({lab: int(v) for lab, v in zip(labels, self.counts[i, j])})
            rows.append(row)
        return pd.DataFrame(rows, columns=["ProjectCode", "FromStep", "ToStep", *labels])
