from __future__ import annotations

import logging
from pathlib import Path

from .config import DEFAULT_FILE_TEMPLATE

logger = logging.getLogger(__name__)


def step_file_name(short: str, template: str = DEFAULT_FILE_TEMPLATE) -> str:
    return template.format(short=short)


def discover_step_files(
    input_dir: Path, step_order_short: list[str], template: str = DEFAULT_FILE_TEMPLATE
) -> dict[str, Path]:
    """入力フォルダから各ステップのCSVを探し、short名 -> パスを設定順で返す。"""
    input_dir = Path(input_dir)
    if not input_dir.is_dir():
        raise FileNotFoundError(f"input folder not found: {input_dir}")

    wanted = {step_file_name(s, template): s for s in step_order_short}
    found: dict[str, Path] = {}
    for entry in sorted(input_dir.iterdir()):
        if entry.is_dir() or entry.suffix.lower() != ".csv":
            continue
        short = wanted.get(entry.name)
        if short is None:
            logger.debug("skip unmatched file: %s", entry.name)
            continue
        found[short] = entry
    # keep config order
    return {s: found[s] for s in step_order_short if s in found}
