from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping

from .errors import MergeConflictError, StepConflictError
from .models import UnitRecord

logger = logging.getLogger(__name__)


def merge_batches(
    batches: Iterable[Mapping[str, UnitRecord]], on_conflict: str = "overwrite"
) -> dict[str, UnitRecord]:
    """部分レコードをシリアル番号ごとに1つのUnitRecordへ統合する。"""
    merged: dict[str, UnitRecord] = {}
    conflicts: list[StepConflictError] = []
    for batch in batches:
        for sn, part in batch.items():
            unit = merged.get(sn)
            if unit is None:
                merged[sn] = part.copy()
                continue
            for step in part.steps.values():
                try:
                    unit.set_step(step, on_conflict=on_conflict)
                except StepConflictError as e:
                    conflicts.append(e)
    if conflicts:
        raise MergeConflictError(conflicts)
    logger.info("merged %d unit(s)", len(merged))
    return merged


def flatten_units(units: Mapping[str, UnitRecord]) -> list[UnitRecord]:
    return list(units.values())
