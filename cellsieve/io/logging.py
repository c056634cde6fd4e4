"""Structured report output for cellsieve.

Results are summarized as nested dicts (``to_dict()``) and written as JSON
documents or appended as JSON lines to a run log.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Union

import numpy as np
import pandas as pd

PathLike = Union[str, Path]


def _prepare_log_destination(log_path: PathLike) -> Path:
    """Ensure log destination directory exists."""
    path = Path(log_path)
    path.parent.mkdir(parents=True, exist_ok=True)
    return path


def to_builtin(value: Any) -> Any:
    """Recursively convert numpy/pandas values and tuples to plain Python."""
    if isinstance(value, dict):
        return {str(k): to_builtin(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_builtin(v) for v in value]
    if isinstance(value, np.ndarray):
        return to_builtin(value.tolist())
    if isinstance(value, (pd.Series, pd.Index)):
        return to_builtin(value.tolist())
    if isinstance(value, np.generic):
        return to_builtin(value.item())
    # JSON has no NaN or infinity
    if isinstance(value, float) and not np.isfinite(value):
        return None
    return value


def log_json(log_path: PathLike, record: dict[str, Any]) -> None:
    """Append a JSON line to log_path."""
    path = _prepare_log_destination(log_path)
    with path.open("a", encoding="utf-8") as handle:
        handle.write(json.dumps(to_builtin(record), default=str))
        handle.write("\n")


def write_json(path: PathLike, record: dict[str, Any]) -> Path:
    """Write one indented JSON document, replacing any existing file."""
    path = _prepare_log_destination(path)
    with path.open("w", encoding="utf-8") as handle:
        json.dump(to_builtin(record), handle, indent=2, default=str)
        handle.write("\n")
    return path
