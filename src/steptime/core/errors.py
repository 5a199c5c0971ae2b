from __future__ import annotations

from pathlib import Path


class ConfigError(ValueError):
    """設定ファイルの内容が不正な場合に送出する。"""


class IngestError(RuntimeError):
    """1つのステップCSVの取り込みに失敗したことを表す基底例外。"""

    def __init__(self, path: Path, step: str, reason: str, line_no: int | None = None):
        self.path = Path(path)
        self.step = step
        self.reason = reason
        self.line_no = line_no
        where = self.path.name if line_no is None else f"{self.path.name}:{line_no}"
        super().__init__(f"[{step}] {where}: {reason}")


class FileReadError(IngestError):
    pass


class MissingColumnError(IngestError):
    pass


class MalformedRowError(IngestError):
    pass


class DuplicateRowError(IngestError):
    pass


class UnknownStepError(IngestError):
    pass


class IngestionFailed(RuntimeError):
    """全ワーカーから集めた取り込みエラーをまとめて報告する。"""

    def __init__(self, errors: list[IngestError]):
        self.errors = list(errors)
        super().__init__(f"{len(self.errors)} step file(s) failed to ingest")


class StepConflictError(ValueError):
    def __init__(self, serial_number: str, step: str, existing, incoming):
        self.serial_number = serial_number
        self.step = step
        self.existing = existing
        self.incoming = incoming
        super().__init__(
            f"conflicting records for serial={serial_number} step={step}: "
            f"{existing} != {incoming}"
        )


class MergeConflictError(RuntimeError):
    def __init__(self, conflicts: list[StepConflictError]):
        self.conflicts = list(conflicts)
        super().__init__(f"{len(self.conflicts)} conflicting step record(s) found while merging")


class OutOfOrderError(ValueError):
    """(from_step, to_step) -> 逆転していたシリアル番号の一覧をまとめて報告する。"""

    def __init__(self, violations: dict[tuple[str, str], list[str]]):
        self.violations = {pair: sorted(sns) for pair, sns in violations.items()}
        self.serial_numbers = sorted({sn for sns in self.violations.values() for sn in sns})
        parts = [
            f"{to_step} completed before {from_step} for {len(sns)} unit(s): "
            f"{', '.join(sns[:10])}"
            for (from_step, to_step), sns in self.violations.items()
        ]
        super().__init__("; ".join(parts))

    def __reduce__(self):
        # shard workers may run in another process
        return (OutOfOrderError, (self.violations,))
