"""Immutable gene-by-cell count matrix.

The count matrix is the unit passed between QC stages. Filtering never
mutates a matrix in place; it returns a new one.
"""

from __future__ import annotations

from typing import Any, Optional, Sequence, Union

import numpy as np
import pandas as pd
from scipy import sparse

MatrixLike = Union[np.ndarray, sparse.spmatrix]


def _freeze(matrix: MatrixLike) -> MatrixLike:
    """Return a read-only copy of a dense or CSC sparse matrix."""
    if sparse.issparse(matrix):
        frozen = sparse.csc_matrix(matrix, copy=True)
        frozen.sum_duplicates()
        frozen.data.setflags(write=False)
        frozen.indices.setflags(write=False)
        frozen.indptr.setflags(write=False)
        return frozen
    frozen = np.array(matrix, copy=True)
    frozen.setflags(write=False)
    return frozen


class CountMatrix:
    """Genes x cells matrix of non-negative counts.

    Parameters
    ----------
    counts : np.ndarray or scipy.sparse matrix
        Count values with genes as rows and cells as columns.
    gene_names : Sequence[str], optional
        Gene identifiers. Defaults to ``gene_0 .. gene_{n-1}``.
    cell_names : Sequence[str], optional
        Cell identifiers. Defaults to ``cell_0 .. cell_{n-1}``.
    cell_metadata : pd.DataFrame, optional
        Per-cell annotations (e.g. batch labels), one row per cell.

    Raises
    ------
    ValueError
        If counts are not 2-D, contain negative values, or names/metadata
        do not match the matrix shape.

    Example
    -------
    >>> counts = CountMatrix(np.array([[1, 0], [3, 4]]), ["g1", "g2"], ["c1", "c2"])
    >>> counts.shape
    (2, 2)
    """

    def __init__(
        self,
        counts: MatrixLike,
        gene_names: Optional[Sequence[str]] = None,
        cell_names: Optional[Sequence[str]] = None,
        cell_metadata: Optional[pd.DataFrame] = None,
    ):
        if not sparse.issparse(counts):
            counts = np.asarray(counts)
        if counts.ndim != 2:
            raise ValueError(f"Count matrix must be 2-D, got {counts.ndim} dimensions")

        values = counts.data if sparse.issparse(counts) else counts
        if values.size and np.nanmin(values) < 0:
            raise ValueError("Count matrix contains negative values")

        n_genes, n_cells = counts.shape
        if gene_names is None:
            gene_names = [f"gene_{i}" for i in range(n_genes)]
        if cell_names is None:
            cell_names = [f"cell_{i}" for i in range(n_cells)]

        genes = pd.Index([str(g) for g in gene_names], name="gene")
        cells = pd.Index([str(c) for c in cell_names], name="cell")
        if len(genes) != n_genes:
            raise ValueError(f"Expected {n_genes} gene names, got {len(genes)}")
        if len(cells) != n_cells:
            raise ValueError(f"Expected {n_cells} cell names, got {len(cells)}")

        if cell_metadata is not None:
            if len(cell_metadata) != n_cells:
                raise ValueError(
                    f"Cell metadata has {len(cell_metadata)} rows for {n_cells} cells"
                )
            cell_metadata = cell_metadata.copy()
            cell_metadata.index = cells

        self._counts = _freeze(counts)
        self._gene_names = genes
        self._cell_names = cells
        self._cell_metadata = cell_metadata

    # ------------------------------------------------------------------
    # Constructors
    # ------------------------------------------------------------------

    @classmethod
    def from_dataframe(
        cls,
        df: pd.DataFrame,
        cell_metadata: Optional[pd.DataFrame] = None,
    ) -> "CountMatrix":
        """Create from a DataFrame with genes as rows and cells as columns."""
        return cls(
            df.to_numpy(),
            gene_names=df.index.astype(str),
            cell_names=df.columns.astype(str),
            cell_metadata=cell_metadata,
        )

    @classmethod
    def from_anndata(cls, adata: Any, layer: Optional[str] = None) -> "CountMatrix":
        """Create from an AnnData object (cells x genes, transposed here).

        Parameters
        ----------
        adata : AnnData
            Input AnnData object. ``adata.obs`` becomes the cell metadata.
        layer : str, optional
            Layer holding raw counts. Uses ``adata.X`` if None.
        """
        matrix = adata.layers[layer] if layer else adata.X
        matrix = matrix.T if sparse.issparse(matrix) else np.asarray(matrix).T
        return cls(
            matrix,
            gene_names=adata.var_names,
            cell_names=adata.obs_names,
            cell_metadata=adata.obs,
        )

    def to_anndata(self) -> Any:
        """Convert to an AnnData object with cells as observations."""
        import anndata as ad

        matrix = self._counts.T
        matrix = sparse.csr_matrix(matrix) if sparse.issparse(matrix) else np.array(matrix)
        obs = (
            self._cell_metadata.copy()
            if self._cell_metadata is not None
            else pd.DataFrame(index=self._cell_names.copy())
        )
        obs.index = pd.Index(self._cell_names, name=None)
        var = pd.DataFrame(index=pd.Index(self._gene_names, name=None))
        return ad.AnnData(X=matrix, obs=obs, var=var)

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    @property
    def counts(self) -> MatrixLike:
        """Read-only count values (genes x cells)."""
        return self._counts

    @property
    def gene_names(self) -> pd.Index:
        return self._gene_names

    @property
    def cell_names(self) -> pd.Index:
        return self._cell_names

    @property
    def cell_metadata(self) -> Optional[pd.DataFrame]:
        """Copy of the per-cell metadata, or None."""
        if self._cell_metadata is None:
            return None
        return self._cell_metadata.copy()

    @property
    def shape(self) -> tuple:
        return self._counts.shape

    @property
    def n_genes(self) -> int:
        return self._counts.shape[0]

    @property
    def n_cells(self) -> int:
        return self._counts.shape[1]

    @property
    def is_sparse(self) -> bool:
        return sparse.issparse(self._counts)

    def to_dense(self) -> np.ndarray:
        """Return a writable dense copy of the counts."""
        if self.is_sparse:
            return self._counts.toarray()
        return np.array(self._counts)

    def gene_positions(self, genes: Union[Sequence[str], Sequence[int], np.ndarray]) -> np.ndarray:
        """Resolve a gene selection to sorted unique row positions.

        Parameters
        ----------
        genes : Sequence[str], Sequence[int], or boolean array
            Gene names, integer row positions, or a boolean mask over genes.

        Raises
        ------
        ValueError
            If names are unknown, positions are out of range, or a boolean
            mask has the wrong length.
        """
        selection = np.asarray(genes)
        if selection.size == 0:
            return np.array([], dtype=int)
        if selection.dtype == bool:
            if selection.shape[0] != self.n_genes:
                raise ValueError(
                    f"Boolean gene mask has length {selection.shape[0]}, "
                    f"expected {self.n_genes}"
                )
            return np.flatnonzero(selection)
        if np.issubdtype(selection.dtype, np.integer):
            if selection.min() < 0 or selection.max() >= self.n_genes:
                raise ValueError("Gene positions out of range")
            return np.unique(selection)

        positions = self._gene_names.get_indexer([str(g) for g in selection])
        missing = [str(g) for g, p in zip(selection, positions) if p < 0]
        if missing:
            preview = ", ".join(missing[:5])
            raise ValueError(f"{len(missing)} genes not found in matrix: {preview}")
        return np.unique(positions)

    # ------------------------------------------------------------------
    # Derivation
    # ------------------------------------------------------------------

    def subset(
        self,
        gene_keep: Optional[np.ndarray] = None,
        cell_keep: Optional[np.ndarray] = None,
    ) -> "CountMatrix":
        """Return a new matrix restricted to kept genes and cells.

        Parameters
        ----------
        gene_keep : np.ndarray, optional
            Boolean mask over genes (True = keep). Keeps all if None.
        cell_keep : np.ndarray, optional
            Boolean mask over cells (True = keep). Keeps all if None.
        """
        gene_keep = (
            np.ones(self.n_genes, dtype=bool) if gene_keep is None else np.asarray(gene_keep, dtype=bool)
        )
        cell_keep = (
            np.ones(self.n_cells, dtype=bool) if cell_keep is None else np.asarray(cell_keep, dtype=bool)
        )
        matrix = self._counts[np.flatnonzero(gene_keep), :][:, np.flatnonzero(cell_keep)]
        metadata = None
        if self._cell_metadata is not None:
            metadata = self._cell_metadata.loc[cell_keep].copy()
        return CountMatrix(
            matrix,
            gene_names=self._gene_names[gene_keep],
            cell_names=self._cell_names[cell_keep],
            cell_metadata=metadata,
        )

    def equals(self, other: "CountMatrix") -> bool:
        """Check equality of counts, names, and metadata."""
        if not isinstance(other, CountMatrix) or self.shape != other.shape:
            return False
        if not (
            self._gene_names.equals(other.gene_names)
            and self._cell_names.equals(other.cell_names)
        ):
            return False
        if not np.array_equal(self.to_dense(), other.to_dense()):
            return False
        if self._cell_metadata is None or other._cell_metadata is None:
            return self._cell_metadata is None and other._cell_metadata is None
        return self._cell_metadata.equals(other._cell_metadata)

    def __repr__(self) -> str:
        kind = "sparse" if self.is_sparse else "dense"
        return f"CountMatrix({self.n_genes} genes x {self.n_cells} cells, {kind})"
