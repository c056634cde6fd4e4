"""CSV I/O utilities for cellsieve."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import List, Union

import pandas as pd

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]


def ensure_output_dir(path: PathLike) -> Path:
    """Create the directory at path if it does not exist and return it."""
    directory = Path(path)
    directory.mkdir(parents=True, exist_ok=True)
    return directory


def write_dataframe(df: pd.DataFrame, path: PathLike, *, index: bool = False) -> Path:
    """Write DataFrame to path ensuring the parent directory exists.

    Parameters
    ----------
    df : pd.DataFrame
        DataFrame to write.
    path : PathLike
        Output path.
    index : bool
        Whether to write row index (default: False).

    Returns
    -------
    Path
        The output path.
    """
    output_path = Path(path)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    df.to_csv(output_path, index=index)
    return output_path


def load_gene_list(path: PathLike, column: str = "gene") -> List[str]:
    """Read gene names from a text file (one per line) or a CSV column.

    Parameters
    ----------
    path : PathLike
        ``.csv`` files are read with pandas and ``column`` is used (the
        first column if absent); any other file is read line by line.
    column : str
        Column holding gene names in CSV input.

    Returns
    -------
    List[str]
        Gene names in file order, blanks and ``#`` comments skipped.
    """
    path = Path(path)
    if path.suffix.lower() == ".csv":
        df = pd.read_csv(path)
        series = df[column] if column in df.columns else df.iloc[:, 0]
        genes = [str(g).strip() for g in series.dropna()]
    else:
        with path.open(encoding="utf-8") as handle:
            genes = [line.strip() for line in handle]
    genes = [g for g in genes if g and not g.startswith("#")]
    logger.info("Loaded %d genes from %s", len(genes), path)
    return genes
