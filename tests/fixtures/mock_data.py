"""Synthetic data generators for testing.

Provides count matrices with planted low-quality cells and Gaussian-blob
embeddings with known cluster membership, without requiring real data.
"""

from typing import Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from cellsieve.core.clustering import Embedding
from cellsieve.core.qc import CountMatrix


def create_mock_counts(
    n_genes: int = 50,
    n_cells: int = 100,
    n_low: int = 0,
    low_factor: float = 0.1,
    n_mito: int = 0,
    n_spike: int = 0,
    base_mean: float = 200.0,
    batches: Optional[Sequence[str]] = None,
    seed: int = 42,
) -> CountMatrix:
    """Create a genes x cells count matrix in which every gene is detected.

    Library sizes of normal cells vary within a factor of 2. The first
    ``n_low`` cells have their counts scaled by ``low_factor``.

    Parameters
    ----------
    n_genes : int
        Number of genes, including mitochondrial and spike-in features
    n_cells : int
        Number of cells
    n_low : int
        Number of low-library-size cells (placed first)
    low_factor : float
        Scale factor for low cells
    n_mito : int
        Number of genes named ``mt-*`` (placed first)
    n_spike : int
        Number of genes named ``ERCC-*`` (placed last)
    base_mean : float
        Mean count per gene for a cell with scale 1
    batches : Sequence[str], optional
        Batch label per cell, stored in cell metadata column "batch"
    seed : int
        Random seed for reproducibility

    Returns
    -------
    CountMatrix
        Dense counts, minimum 1 everywhere
    """
    rng = np.random.default_rng(seed)
    scale = rng.uniform(1.0, 2.0, size=n_cells)
    scale[:n_low] *= low_factor
    expected = base_mean * np.outer(np.ones(n_genes), scale)
    counts = np.maximum(rng.poisson(expected), 1)

    n_plain = n_genes - n_mito - n_spike
    genes = (
        [f"mt-Gene{i}" for i in range(n_mito)]
        + [f"Gene{i}" for i in range(n_plain)]
        + [f"ERCC-{i:05d}" for i in range(n_spike)]
    )
    cells = [f"cell_{i}" for i in range(n_cells)]
    metadata = None
    if batches is not None:
        metadata = pd.DataFrame({"batch": list(batches)}, index=cells)
    return CountMatrix(counts, gene_names=genes, cell_names=cells, cell_metadata=metadata)


def create_blob_embedding(
    n_per_blob: int = 100,
    n_dims: int = 10,
    n_blobs: int = 3,
    separation: float = 20.0,
    sigma: float = 1.0,
    seed: int = 0,
) -> Tuple[Embedding, np.ndarray]:
    """Create well-separated isotropic Gaussian blobs.

    Blob 0 is centered at the origin and blob i > 0 at ``separation`` along
    axis i - 1, so the first two blob centers are ``separation`` apart.

    Returns
    -------
    Tuple[Embedding, np.ndarray]
        The embedding and the true blob index of each cell
    """
    rng = np.random.default_rng(seed)
    centers = np.zeros((n_blobs, n_dims))
    for i in range(1, n_blobs):
        centers[i, i - 1] = separation
    truth = np.repeat(np.arange(n_blobs), n_per_blob)
    values = centers[truth] + rng.normal(scale=sigma, size=(truth.size, n_dims))
    cells = [f"cell_{i}" for i in range(truth.size)]
    return Embedding(values, cell_names=cells), truth


def blob_purity(labels: np.ndarray, truth: np.ndarray) -> np.ndarray:
    """Fraction of each group in ``truth`` carried by its majority label.

    Swap the arguments to get the purity of each cluster instead.
    """
    table = pd.crosstab(pd.Series(truth, name="truth"), pd.Series(labels, name="label"))
    return (table.max(axis=1) / table.sum(axis=1)).to_numpy()
