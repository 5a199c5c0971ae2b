from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml

from .errors import ConfigError
from .models import CONFLICT_POLICIES

DEFAULT_CONFIG_PATH = Path(__file__).resolve().parents[1] / "configs" / "steps.yaml"
DEFAULT_FILE_TEMPLATE = "raw-data-download-N199-Housing TI-LDG-{short}.csv"

OUT_OF_ORDER_POLICIES = ("fold", "skip", "error")
EXECUTOR_KINDS = ("thread", "process")


def load_yaml(path: str | Path) -> dict[str, Any]:
    p = Path(path)
    with p.open("r", encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


@dataclass(frozen=True)
class RunConfig:
    step_order: list[str]
    step_order_short: list[str]
    name_map: dict[str, str]
    project_code: str = "N199"
    file_template: str = DEFAULT_FILE_TEMPLATE
    serial_column: str = "serial_number"
    completed_at_column: str = "completed_at"
    timestamp_format: str | None = None
    max_open_files: int = 4
    on_conflict: str = "overwrite"
    workers: int = 24
    max_days: int = 7
    on_out_of_order: str = "fold"
    executor: str = "thread"

    @classmethod
    def from_dict(cls, doc: dict[str, Any]) -> RunConfig:
        columns = doc.get("columns", {}) or {}
        ingest = doc.get("ingest", {}) or {}
        merge = doc.get("merge", {}) or {}
        agg = doc.get("aggregate", {}) or {}
        try:
            cfg = cls(
                step_order=[str(s) for s in doc.get("step_order", [])],
                step_order_short=[str(s) for s in doc.get("step_order_short", [])],
                name_map={str(k): str(v) for k, v in (doc.get("name_map", {}) or {}).items()},
                project_code=str(doc.get("project_code", "N199")),
                file_template=str(doc.get("file_template", DEFAULT_FILE_TEMPLATE)),
                serial_column=str(columns.get("serial_number", "serial_number")),
                completed_at_column=str(columns.get("completed_at", "completed_at")),
                timestamp_format=ingest.get("timestamp_format"),
                max_open_files=int(ingest.get("max_open_files", 4)),
                on_conflict=str(merge.get("on_conflict", "overwrite")),
                workers=int(agg.get("workers", 24)),
                max_days=int(agg.get("max_days", 7)),
                on_out_of_order=str(agg.get("on_out_of_order", "fold")),
                executor=str(agg.get("executor", "thread")),
            )
        except (TypeError, ValueError) as e:
            raise ConfigError(f"invalid config value: {e}") from e
        cfg.validate()
        return cfg

    def validate(self) -> None:
        if not self.step_order:
            raise ConfigError("step_order must not be empty")
        if len(set(self.step_order)) != len(self.step_order):
            raise ConfigError("step_order contains duplicate step names")
        known = set(self.step_order)
        for short in self.step_order_short:
            if short not in self.name_map:
                raise ConfigError(f"name_map has no entry for short name {short!r}")
            if self.name_map[short] not in known:
                raise ConfigError(
                    f"name_map[{short!r}]={self.name_map[short]!r} is not in step_order"
                )
        if "{short}" not in self.file_template:
            raise ConfigError("file_template must contain '{short}'")
        if self.max_open_files < 1:
            raise ConfigError("ingest.max_open_files must be >= 1")
        if self.workers < 1:
            raise ConfigError("aggregate.workers must be >= 1")
        if self.max_days < 1:
            raise ConfigError("aggregate.max_days must be >= 1")
        if self.on_conflict not in CONFLICT_POLICIES:
            raise ConfigError(f"merge.on_conflict must be one of {CONFLICT_POLICIES}")
        if self.on_out_of_order not in OUT_OF_ORDER_POLICIES:
            raise ConfigError(f"aggregate.on_out_of_order must be one of {OUT_OF_ORDER_POLICIES}")
        if self.executor not in EXECUTOR_KINDS:
            raise ConfigError(f"aggregate.executor must be one of {EXECUTOR_KINDS}")


def load_run_config(path: str | Path) -> RunConfig:
    """YAML設定を読み込み、検証済みのRunConfigを返す。"""
    try:
        doc = load_yaml(path)
    except yaml.YAMLError as e:
        raise ConfigError(f"failed to parse config {path}: {e}") from e
    if not isinstance(doc, dict):
        raise ConfigError(f"config root must be a mapping: {path}")
    return RunConfig.from_dict(doc)
