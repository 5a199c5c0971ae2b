from __future__ import annotations

from pathlib import Path

from .models import ResultSet


def write_report(result: ResultSet, path: Path, project_code: str = "N199") -> str:
    """
    Write the transition report as CSV with CRLF line endings.
    Written to a temporary sibling first so a failed write leaves no report behind.
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_name(path.name + ".tmp")
    df = result.to_frame(project_code)
    try:
        df.to_csv(tmp.as_posix(), index=False, lineterminator="\r\n")
        tmp.replace(path)
    finally:
        tmp.unlink(missing_ok=True)
    return path.as_posix()
