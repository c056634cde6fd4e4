"""Low-dimensional cell embeddings consumed by the clustering methods.

The embedding is produced upstream (typically PCA of log-normalized counts)
and is read-only here. :func:`compute_pca` is a convenience that delegates
the upstream step to scanpy.
"""

from __future__ import annotations

from typing import Any, Optional, Sequence
import logging

import numpy as np
import pandas as pd
from scipy import sparse

from ...errors import EmptyMatrixError, InvalidConfigurationError

logger = logging.getLogger(__name__)


class Embedding:
    """Cells x dimensions matrix of real coordinates.

    Parameters
    ----------
    values : np.ndarray
        Coordinates, one row per cell
    cell_names : Sequence[str], optional
        Cell identifiers. Defaults to ``cell_0 .. cell_{n-1}``.
    basis : str
        Name of the representation (e.g. "X_pca")

    Raises
    ------
    EmptyMatrixError
        If there are no cells or no dimensions.
    ValueError
        If values are not 2-D, contain non-finite entries, or names do
        not match.
    """

    def __init__(
        self,
        values: Any,
        cell_names: Optional[Sequence[str]] = None,
        basis: str = "X_pca",
    ):
        if sparse.issparse(values):
            values = values.toarray()
        arr = np.array(values, dtype=float, copy=True)
        if arr.ndim != 2:
            raise ValueError(f"Embedding must be 2-D, got {arr.ndim} dimensions")
        if arr.shape[0] == 0 or arr.shape[1] == 0:
            raise EmptyMatrixError(f"Embedding has shape {arr.shape}")
        if not np.all(np.isfinite(arr)):
            raise ValueError("Embedding contains non-finite values")

        if cell_names is None:
            cell_names = [f"cell_{i}" for i in range(arr.shape[0])]
        cells = pd.Index([str(c) for c in cell_names], name="cell")
        if len(cells) != arr.shape[0]:
            raise ValueError(f"Expected {arr.shape[0]} cell names, got {len(cells)}")
        if not cells.is_unique:
            raise ValueError("Cell names must be unique")

        arr.setflags(write=False)
        self._values = arr
        self._cell_names = cells
        self.basis = basis

    @classmethod
    def from_anndata(
        cls,
        adata: Any,  # AnnData
        basis: str = "X_pca",
        n_dims: Optional[int] = None,
    ) -> "Embedding":
        """Read an embedding from ``adata.obsm``.

        Parameters
        ----------
        adata : AnnData
            Input AnnData object
        basis : str
            Key in ``adata.obsm``
        n_dims : int, optional
            Keep only the first ``n_dims`` dimensions

        Raises
        ------
        InvalidConfigurationError
            If ``basis`` is not present.
        """
        if basis not in adata.obsm:
            raise InvalidConfigurationError(
                f"Embedding '{basis}' not found in adata.obsm "
                f"(available: {list(adata.obsm.keys())})"
            )
        values = np.asarray(adata.obsm[basis])
        if n_dims is not None:
            values = values[:, :n_dims]
        return cls(values, cell_names=adata.obs_names, basis=basis)

    @classmethod
    def from_dataframe(cls, df: pd.DataFrame, basis: str = "X_pca") -> "Embedding":
        """Create from a DataFrame indexed by cell name."""
        return cls(df.to_numpy(dtype=float), cell_names=df.index.astype(str), basis=basis)

    @property
    def values(self) -> np.ndarray:
        """Read-only coordinates (cells x dimensions)."""
        return self._values

    @property
    def cell_names(self) -> pd.Index:
        return self._cell_names

    @property
    def n_cells(self) -> int:
        return self._values.shape[0]

    @property
    def n_dims(self) -> int:
        return self._values.shape[1]

    @property
    def shape(self) -> tuple:
        return self._values.shape

    def to_dataframe(self) -> pd.DataFrame:
        columns = [f"{self.basis}_{i + 1}" for i in range(self.n_dims)]
        return pd.DataFrame(np.array(self._values), index=self._cell_names.copy(), columns=columns)

    def __repr__(self) -> str:
        return f"Embedding({self.n_cells} cells x {self.n_dims} dims, basis='{self.basis}')"


def compute_pca(
    counts: Any,  # CountMatrix
    n_comps: int = 50,
    seed: Optional[int] = 0,
    target_sum: Optional[float] = None,
) -> Embedding:
    """Log-normalize counts and run PCA with scanpy.

    Parameters
    ----------
    counts : CountMatrix
        Filtered counts (genes x cells)
    n_comps : int
        Number of principal components, reduced to fit the matrix
    seed : int, optional
        Random seed for the solver
    target_sum : float, optional
        Library size after normalization. Uses the median if None.

    Returns
    -------
    Embedding
        PCA coordinates with basis "X_pca"
    """
    import scanpy as sc

    adata = counts.to_anndata()
    adata.X = adata.X.astype(np.float32)
    sc.pp.normalize_total(adata, target_sum=target_sum)
    sc.pp.log1p(adata)

    use_comps = min(n_comps, max(adata.n_vars - 1, 1), max(adata.n_obs - 1, 1))
    logger.info(
        "Computing PCA: %d cells, %d genes, %d components",
        adata.n_obs,
        adata.n_vars,
        use_comps,
    )
    sc.tl.pca(adata, n_comps=use_comps, svd_solver="arpack", random_state=seed)
    return Embedding.from_anndata(adata, basis="X_pca")
