from __future__ import annotations

import logging
from collections.abc import Sequence
from concurrent.futures import ProcessPoolExecutor, ThreadPoolExecutor, as_completed

import numpy as np

from .errors import OutOfOrderError
from .models import ResultSet, UnitRecord

logger = logging.getLogger(__name__)

NS_PER_DAY = 86_400 * 1_000_000_000


def bucket_index(days, max_days: int = 7):
    """
    Map elapsed whole days to a bucket index.
      d <= 0          -> 0  ("1-Days")
      1 <= d <= max   -> d - 1
      d > max         -> max (overflow)
    Works on scalars and numpy arrays.
    """
    return np.clip(days, 1, max_days + 1) - 1


def shard_units(units: Sequence[UnitRecord], workers: int) -> list[list[UnitRecord]]:
    """ラウンドロビンでワーカー数分のシャードに分割する（空シャードは作らない）。"""
    n = min(workers, len(units))
    return [list(units[k::n]) for k in range(n)]


def shard_histogram(
    units: Sequence[UnitRecord],
    step_order: Sequence[str],
    max_days: int = 7,
    on_out_of_order: str = "fold",
) -> np.ndarray:
    """Count step-pair transitions for one shard into a local array."""
    n = len(step_order)
    counts = np.zeros((n, n, max_days + 1), dtype=np.int64)
    if not units:
        return counts

    pos = {name: i for i, name in enumerate(step_order)}
    t = np.zeros((len(units), n), dtype=np.int64)
    present = np.zeros((len(units), n), dtype=bool)
    for u, unit in enumerate(units):
        for name, rec in unit.steps.items():
            i = pos.get(name)
            if i is None:
                continue
            t[u, i] = rec.completed_at.value
            present[u, i] = True

    violations: dict[tuple[str, str], list[str]] = {}
    for i in range(n):
        for j in range(i, n):
            both = present[:, i] & present[:, j]
            if not both.any():
                continue
            delta = t[both, j] - t[both, i]
            late = delta < 0
            if late.any():
                if on_out_of_order == "error":
                    idx = np.flatnonzero(both)[late]
                    violations[(step_order[i], step_order[j])] = [
                        units[k].serial_number for k in idx
                    ]
                    continue
                if on_out_of_order == "skip":
                    delta = delta[~late]
            days = delta // NS_PER_DAY
            counts[i, j] += np.bincount(bucket_index(days, max_days), minlength=max_days + 1)
    # report every late pair of this shard, not just the first one
    if violations:
        raise OutOfOrderError(violations)
    return counts


class Aggregator:
    """
    Map-reduce master: shards units over a fixed pool, each worker fills a
    local histogram, and the master alone sums them into the ResultSet.
    """

    def __init__(
        self,
        step_order: Sequence[str],
        workers: int = 24,
        max_days: int = 7,
        on_out_of_order: str = "fold",
        executor: str = "thread",
    ):
        if workers < 1:
            raise ValueError(f"workers must be >= 1, got {workers}")
        self.step_order = list(step_order)
        self.workers = workers
        self.max_days = max_days
        self.on_out_of_order = on_out_of_order
        self.executor = executor

    def run(self, units: Sequence[UnitRecord]) -> ResultSet:
        result = ResultSet.empty(self.step_order, self.max_days)
        shards = shard_units(units, self.workers)
        if not shards:
            logger.warning("no units to aggregate")
            return result

        logger.info("aggregating %d unit(s) over %d shard(s)", len(units), len(shards))
        pool_cls = ProcessPoolExecutor if self.executor == "process" else ThreadPoolExecutor
        with pool_cls(max_workers=len(shards)) as ex:
            futs = [
                ex.submit(
                    shard_histogram, shard, self.step_order, self.max_days, self.on_out_of_order
                )
                for shard in shards
            ]
            violations: dict[tuple[str, str], list[str]] = {}
            for fut in as_completed(futs):
                try:
                    result.add(fut.result())
                except OutOfOrderError as e:
                    for pair, sns in e.violations.items():
                        violations.setdefault(pair, []).extend(sns)
        if violations:
            pos = {name: i for i, name in enumerate(self.step_order)}
            ordered = sorted(violations, key=lambda p: (pos[p[0]], pos[p[1]]))
            raise OutOfOrderError({pair: violations[pair] for pair in ordered})
        return result
