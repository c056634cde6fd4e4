"""Shared-nearest-neighbor graph construction.

Each cell's neighbor set is itself (rank 0) plus its k nearest neighbors in
Euclidean embedding space (ranks 1..k). Two cells are joined when either
lies in the other's kNN list. Edge weights:

- ``rank``: k - 0.5 * min over shared neighbors n of (r_a(n) + r_b(n))
- ``jaccard``: |shared| / |union| of the two neighbor sets
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict
import logging
import warnings

import numpy as np
import pandas as pd
from scipy import sparse
from sklearn.neighbors import NearestNeighbors

from ...errors import InvalidConfigurationError
from .config import WEIGHT_SCHEMES
from .embedding import Embedding

logger = logging.getLogger(__name__)


@dataclass(frozen=True, eq=False)
class NeighborGraph:
    """Undirected weighted graph over cells.

    Attributes
    ----------
    edges : np.ndarray
        (n_edges, 2) node pairs with ``edges[:, 0] < edges[:, 1]``
    weights : np.ndarray
        Positive edge weights, aligned with ``edges``
    cell_names : pd.Index
        Node labels
    k : int
        Neighbors per cell actually used
    weight_scheme : str
        "rank" or "jaccard"
    """

    edges: np.ndarray
    weights: np.ndarray
    cell_names: pd.Index
    k: int
    weight_scheme: str
    params: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        for name in ("edges", "weights"):
            arr = np.array(getattr(self, name), copy=True)
            arr.setflags(write=False)
            object.__setattr__(self, name, arr)

    @property
    def n_nodes(self) -> int:
        return len(self.cell_names)

    @property
    def n_edges(self) -> int:
        return self.edges.shape[0]

    @property
    def total_weight(self) -> float:
        return float(self.weights.sum())

    def to_sparse(self) -> sparse.csr_matrix:
        """Symmetric weighted adjacency matrix."""
        n = self.n_nodes
        rows = np.concatenate([self.edges[:, 0], self.edges[:, 1]])
        cols = np.concatenate([self.edges[:, 1], self.edges[:, 0]])
        data = np.concatenate([self.weights, self.weights])
        return sparse.csr_matrix((data, (rows, cols)), shape=(n, n))

    def strength(self) -> np.ndarray:
        """Summed edge weight per node."""
        return np.asarray(self.to_sparse().sum(axis=1)).ravel()

    def neighbors(self, node: int) -> np.ndarray:
        """Sorted adjacent node positions."""
        return np.sort(self.to_sparse()[node].indices)

    def to_igraph(self):
        """Convert to an undirected ``igraph.Graph`` with a "weight" edge attribute."""
        import igraph as ig

        graph = ig.Graph(n=self.n_nodes, edges=self.edges.tolist(), directed=False)
        graph.es["weight"] = self.weights.tolist()
        graph.vs["name"] = list(self.cell_names)
        return graph


def _knn(values: np.ndarray, k: int, n_jobs: int) -> np.ndarray:
    """Indices of the k nearest neighbors of each point, self excluded."""
    nn = NearestNeighbors(n_neighbors=k, metric="euclidean", n_jobs=n_jobs)
    nn.fit(values)
    # Without X, kneighbors excludes each point from its own neighbors
    _, indices = nn.kneighbors()
    return indices


def _edge_weight(
    ranks_a: Dict[int, int],
    ranks_b: Dict[int, int],
    k: int,
    scheme: str,
) -> float:
    shared = ranks_a.keys() & ranks_b.keys()
    if scheme == "jaccard":
        union = len(ranks_a.keys() | ranks_b.keys())
        return len(shared) / union
    best = min(ranks_a[n] + ranks_b[n] for n in shared)
    return k - 0.5 * best


def build_snn_graph(
    embedding: Embedding,
    k: int = 10,
    weight_scheme: str = "rank",
    n_jobs: int = 1,
) -> NeighborGraph:
    """Build a shared-nearest-neighbor graph.

    Parameters
    ----------
    embedding : Embedding
        Cell coordinates
    k : int
        Nearest neighbors per cell; clamped to n_cells - 1
    weight_scheme : str
        "rank" or "jaccard"
    n_jobs : int
        Workers for the neighbor search (does not affect the result)

    Returns
    -------
    NeighborGraph
        Symmetric graph; every kNN pair becomes one undirected edge

    Raises
    ------
    InvalidConfigurationError
        If ``k`` < 1 or the weight scheme is unknown.
    """
    if k < 1:
        raise InvalidConfigurationError(f"k must be >= 1, got {k}")
    if weight_scheme not in WEIGHT_SCHEMES:
        raise InvalidConfigurationError(
            f"Unknown weight scheme '{weight_scheme}'; expected one of {WEIGHT_SCHEMES}"
        )

    n = embedding.n_cells
    if n < 2:
        return NeighborGraph(
            edges=np.empty((0, 2), dtype=int),
            weights=np.empty(0),
            cell_names=embedding.cell_names,
            k=0,
            weight_scheme=weight_scheme,
        )
    if k >= n:
        warnings.warn(
            f"k={k} is not smaller than the number of cells ({n}); using k={n - 1}",
            UserWarning,
        )
        k = n - 1

    indices = _knn(embedding.values, k, n_jobs)
    ranks = []
    for i in range(n):
        node_ranks = {int(j): r for r, j in enumerate(indices[i], start=1)}
        node_ranks[i] = 0
        ranks.append(node_ranks)

    pairs = set()
    for i in range(n):
        for j in indices[i]:
            j = int(j)
            pairs.add((i, j) if i < j else (j, i))
    edges = np.array(sorted(pairs), dtype=int).reshape(-1, 2)

    weights = np.array(
        [_edge_weight(ranks[a], ranks[b], k, weight_scheme) for a, b in edges],
        dtype=float,
    )

    logger.info(
        "Built SNN graph: %d cells, %d edges (k=%d, scheme=%s)",
        n,
        len(edges),
        k,
        weight_scheme,
    )
    return NeighborGraph(
        edges=edges,
        weights=weights,
        cell_names=embedding.cell_names,
        k=k,
        weight_scheme=weight_scheme,
        params={"k": k, "weight_scheme": weight_scheme},
    )
