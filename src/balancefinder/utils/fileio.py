"""
Atomic file-write utilities for analysis results.

Results are written to a temporary file in the destination directory and
moved into place with ``os.replace()`` (POSIX rename guarantee), so an
interrupted run never leaves a half-written summary next to complete ones.
"""

from __future__ import annotations

import json
import os
import tempfile
from typing import Any, Callable

import numpy as np
import pandas as pd

__all__ = ['atomic_write_json', 'atomic_write_table', 'to_jsonable']


def to_jsonable(value: Any) -> Any:
    """
    Convert numpy/pandas scalars and containers into JSON-compatible objects.

    Non-finite floats become None.
    """
    if isinstance(value, dict):
        return {str(k): to_jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_jsonable(v) for v in value]
    if isinstance(value, np.ndarray):
        return [to_jsonable(v) for v in value.tolist()]
    if isinstance(value, pd.Series):
        return {str(k): to_jsonable(v) for k, v in value.items()}
    if isinstance(value, np.generic):
        value = value.item()
    if isinstance(value, float) and not np.isfinite(value):
        return None
    return value


def _atomic_write(path: str | os.PathLike, writer: Callable[[Any], None]) -> None:
    path = str(path)
    dir_path = os.path.dirname(path) or "."
    tmp_path: str | None = None
    try:
        with tempfile.NamedTemporaryFile(
            mode="w", dir=dir_path, suffix=".tmp", delete=False, newline=""
        ) as tmp:
            tmp_path = tmp.name
            writer(tmp)
        os.replace(tmp_path, path)
    except BaseException:
        # Clean up the temp file on any failure
        if tmp_path is not None and os.path.exists(tmp_path):
            os.unlink(tmp_path)
        raise


def atomic_write_json(path: str | os.PathLike, data: Any, *, indent: int = 2) -> None:
    """Write *data* as JSON atomically via temp-file + rename.

    numpy scalars/arrays are converted with :func:`to_jsonable` first.

    Parameters
    ----------
    path:
        Destination file path.
    data:
        Object made of dicts, lists, scalars, numpy values.
    indent:
        JSON indentation (default 2).
    """
    payload = to_jsonable(data)
    _atomic_write(path, lambda fh: json.dump(payload, fh, indent=indent))


def atomic_write_table(path: str | os.PathLike, table: pd.DataFrame, *, sep: str = "\t") -> None:
    """Write a DataFrame (index included) atomically via temp-file + rename.

    Parameters
    ----------
    path:
        Destination file path.
    table:
        DataFrame to write.
    sep:
        Field separator (default tab).
    """
    _atomic_write(path, lambda fh: table.to_csv(fh, sep=sep))
