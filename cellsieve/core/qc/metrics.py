"""Per-cell and per-gene quality metrics.

Cell metrics follow the scuttle naming convention:

- ``sum``: total counts per cell
- ``detected``: number of genes with a nonzero count
- ``subsets_<name>_sum`` / ``_detected`` / ``_percent``: the same restricted
  to a named gene subset (e.g. mitochondrial genes)
- ``subset_percent``: percentage of counts in the primary subset
- ``altexp_percent``: percentage of counts in the spike-in gene set

Percentages are 0 for cells with no counts.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional, Sequence, Union

import numpy as np
import pandas as pd
from scipy import sparse

from ...errors import EmptyMatrixError
from .matrix import CountMatrix

GeneSelection = Union[Sequence[str], Sequence[int], np.ndarray]

CELL_METRIC_COLUMNS = ["sum", "detected", "subset_percent", "altexp_percent"]
GENE_METRIC_COLUMNS = ["mean", "n_detected", "detected"]


@dataclass(frozen=True, eq=False)
class CellMetrics:
    """Per-cell QC metrics, one row per cell.

    Attributes
    ----------
    table : pd.DataFrame
        Metric table indexed by cell name. Holds the four core columns,
        per-subset columns and any carried-through cell metadata.
    primary_subset : str, optional
        Name of the subset reported as ``subset_percent``.
    spike_in : bool
        Whether a spike-in set contributed to ``altexp_percent``.
    """

    table: pd.DataFrame
    primary_subset: Optional[str] = None
    spike_in: bool = False

    @property
    def cell_names(self) -> pd.Index:
        return self.table.index

    @property
    def n_cells(self) -> int:
        return len(self.table)

    def __len__(self) -> int:
        return len(self.table)

    def column(self, name: str) -> np.ndarray:
        """Return a copy of one metric column as a float array."""
        if name not in self.table.columns:
            raise KeyError(f"Cell metric '{name}' not available")
        return self.table[name].to_numpy(dtype=float, copy=True)

    @property
    def sum(self) -> np.ndarray:
        return self.column("sum")

    @property
    def detected(self) -> np.ndarray:
        return self.column("detected")

    @property
    def subset_percent(self) -> np.ndarray:
        return self.column("subset_percent")

    @property
    def altexp_percent(self) -> np.ndarray:
        return self.column("altexp_percent")


@dataclass(frozen=True, eq=False)
class GeneMetrics:
    """Per-gene QC metrics, one row per gene.

    Attributes
    ----------
    table : pd.DataFrame
        Metric table indexed by gene name with ``mean``, ``n_detected``
        (cells with count >= 1) and ``detected`` (percentage of cells).
    n_cells : int
        Number of cells the metrics were computed over.
    """

    table: pd.DataFrame
    n_cells: int

    @property
    def gene_names(self) -> pd.Index:
        return self.table.index

    @property
    def n_genes(self) -> int:
        return len(self.table)

    def __len__(self) -> int:
        return len(self.table)

    @property
    def mean(self) -> np.ndarray:
        return self.table["mean"].to_numpy(dtype=float, copy=True)

    @property
    def n_detected(self) -> np.ndarray:
        return self.table["n_detected"].to_numpy(dtype=int, copy=True)


def _check_not_empty(counts: CountMatrix) -> None:
    if counts.n_genes == 0 or counts.n_cells == 0:
        raise EmptyMatrixError(
            f"Count matrix has shape {counts.shape}; both dimensions must be non-zero"
        )


def _column_sums(matrix: Any) -> np.ndarray:
    return np.asarray(matrix.sum(axis=0), dtype=float).ravel()


def _column_detected(matrix: Any) -> np.ndarray:
    return np.asarray((matrix > 0).sum(axis=0), dtype=int).ravel()


def _percent(part: np.ndarray, total: np.ndarray) -> np.ndarray:
    """part / total * 100, defined as 0 where total is 0."""
    out = np.zeros_like(total, dtype=float)
    np.divide(part, total, out=out, where=total > 0)
    return out * 100.0


def genes_with_prefix(counts: CountMatrix, prefix: str, case_sensitive: bool = False) -> np.ndarray:
    """Boolean mask of genes whose name starts with ``prefix``.

    Convenience for labeling mitochondrial (``"mt-"``) or spike-in
    (``"ERCC-"``) features when no annotation table is available.
    """
    names = counts.gene_names.to_series()
    if not case_sensitive:
        return names.str.lower().str.startswith(prefix.lower()).to_numpy()
    return names.str.startswith(prefix).to_numpy()


def compute_cell_metrics(
    counts: CountMatrix,
    subsets: Optional[Mapping[str, GeneSelection]] = None,
    spike_in: Optional[GeneSelection] = None,
    primary_subset: Optional[str] = None,
) -> CellMetrics:
    """Compute per-cell QC metrics.

    Parameters
    ----------
    counts : CountMatrix
        Input counts (genes x cells).
    subsets : Mapping[str, GeneSelection], optional
        Named gene subsets (e.g. ``{"Mito": mito_genes}``).
    spike_in : GeneSelection, optional
        Spike-in features, reported as ``altexp_percent``.
    primary_subset : str, optional
        Subset reported as ``subset_percent``. Defaults to the first subset.

    Returns
    -------
    CellMetrics
        Metrics table indexed by cell name.

    Raises
    ------
    EmptyMatrixError
        If the matrix has zero genes or zero cells.
    ValueError
        If ``primary_subset`` is not one of the subsets or a selection
        references unknown genes.
    """
    _check_not_empty(counts)
    subsets = dict(subsets or {})
    if primary_subset is None and subsets:
        primary_subset = next(iter(subsets))
    if primary_subset is not None and primary_subset not in subsets:
        raise ValueError(f"Primary subset '{primary_subset}' is not among {list(subsets)}")

    matrix = counts.counts
    totals = _column_sums(matrix)
    table = pd.DataFrame(
        {
            "sum": totals,
            "detected": _column_detected(matrix),
        },
        index=counts.cell_names.copy(),
    )

    for name, selection in subsets.items():
        rows = counts.gene_positions(selection)
        sub = matrix[rows, :]
        sub_sum = _column_sums(sub) if rows.size else np.zeros(counts.n_cells)
        table[f"subsets_{name}_sum"] = sub_sum
        table[f"subsets_{name}_detected"] = (
            _column_detected(sub) if rows.size else np.zeros(counts.n_cells, dtype=int)
        )
        table[f"subsets_{name}_percent"] = _percent(sub_sum, totals)

    if primary_subset is not None:
        table["subset_percent"] = table[f"subsets_{primary_subset}_percent"]
    else:
        table["subset_percent"] = 0.0

    if spike_in is not None:
        rows = counts.gene_positions(spike_in)
        spike_sum = _column_sums(matrix[rows, :]) if rows.size else np.zeros(counts.n_cells)
        table["altexp_sum"] = spike_sum
        table["altexp_percent"] = _percent(spike_sum, totals)
    else:
        table["altexp_percent"] = 0.0

    metadata = counts.cell_metadata
    if metadata is not None:
        extra = [c for c in metadata.columns if c not in table.columns]
        table = table.join(metadata[extra])

    return CellMetrics(table=table, primary_subset=primary_subset, spike_in=spike_in is not None)


def compute_gene_metrics(
    counts: CountMatrix,
    cell_subsets: Optional[Mapping[str, np.ndarray]] = None,
) -> GeneMetrics:
    """Compute per-gene QC metrics.

    Parameters
    ----------
    counts : CountMatrix
        Input counts (genes x cells).
    cell_subsets : Mapping[str, np.ndarray], optional
        Named boolean masks over cells; adds ``subsets_<name>_mean`` and
        ``subsets_<name>_detected`` (percentage) columns.

    Returns
    -------
    GeneMetrics
        Metrics table indexed by gene name.

    Raises
    ------
    EmptyMatrixError
        If the matrix has zero genes or zero cells.
    """
    _check_not_empty(counts)
    matrix = counts.counts
    if sparse.issparse(matrix):
        matrix = matrix.tocsr()

    n_cells = counts.n_cells
    row_sums = np.asarray(matrix.sum(axis=1), dtype=float).ravel()
    n_detected = np.asarray((matrix >= 1).sum(axis=1), dtype=int).ravel()

    table = pd.DataFrame(
        {
            "mean": row_sums / n_cells,
            "n_detected": n_detected,
            "detected": n_detected / n_cells * 100.0,
        },
        index=counts.gene_names.copy(),
    )

    for name, mask in (cell_subsets or {}).items():
        mask = np.asarray(mask, dtype=bool)
        if mask.shape[0] != n_cells:
            raise ValueError(
                f"Cell subset '{name}' has length {mask.shape[0]}, expected {n_cells}"
            )
        n_sub = int(mask.sum())
        sub = matrix[:, np.flatnonzero(mask)]
        if n_sub:
            sub_mean = np.asarray(sub.sum(axis=1), dtype=float).ravel() / n_sub
            sub_det = np.asarray((sub >= 1).sum(axis=1), dtype=float).ravel() / n_sub * 100.0
        else:
            sub_mean = np.full(counts.n_genes, np.nan)
            sub_det = np.full(counts.n_genes, np.nan)
        table[f"subsets_{name}_mean"] = sub_mean
        table[f"subsets_{name}_detected"] = sub_det

    return GeneMetrics(table=table, n_cells=n_cells)


def metrics_summary(metrics: CellMetrics) -> Dict[str, Dict[str, float]]:
    """Median and range of the core cell metrics, for reporting."""
    summary = {}
    for column in CELL_METRIC_COLUMNS:
        values = metrics.column(column)
        summary[column] = {
            "median": float(np.median(values)),
            "min": float(np.min(values)),
            "max": float(np.max(values)),
        }
    return summary
