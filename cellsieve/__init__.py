"""cellsieve: Quality control and clustering decisions for single-cell count data.

This package provides tools for:
- Per-cell and per-gene quality metrics from raw count matrices
- Competing discard policies (manual cutoffs, adaptive MAD cutoffs,
  multivariate outlyingness) and gene abundance/frequency filters
- Exact agreement tables between policies to support method selection
- Shared-nearest-neighbor graphs, walktrap and Louvain community detection
- k-means with gap-statistic selection and Ward clustering with dynamic
  branch cutting
- Selection of one canonical clustering for downstream analysis

Every stage consumes immutable artifacts and returns new ones.

Example usage:
    >>> from cellsieve.core.qc import CountMatrix, QCEngine
    >>> from cellsieve.core.clustering import ClusteringEngine, Embedding
    >>>
    >>> counts = CountMatrix.from_anndata(adata)
    >>> qc = QCEngine().run(counts, subsets={"Mito": mito_genes})
    >>> embedding = Embedding.from_anndata(filtered_adata, basis="X_pca")
    >>> clusters = ClusteringEngine().run(embedding)
    >>> clusters.selected.to_series()
"""

__version__ = "0.1.0"

from .errors import (
    CellSieveError,
    EmptyMatrixError,
    EmptyResultError,
    InvalidConfigurationError,
    NonConvergenceError,
)

__all__ = [
    "__version__",
    "CellSieveError",
    "EmptyMatrixError",
    "EmptyResultError",
    "InvalidConfigurationError",
    "NonConvergenceError",
]
