"""Graph community detection on the SNN graph.

Provides:
- run_walktrap: random-walk hierarchical communities, dendrogram cut at
  maximal modularity (deterministic)
- run_louvain: multilevel modularity optimization with a seeded RNG
- pairwise_modularity: observed / expected edge weight per cluster pair
"""

from __future__ import annotations

from typing import Optional
import logging
import random

import numpy as np
import pandas as pd

from ...errors import InvalidConfigurationError, NonConvergenceError
from .graph import NeighborGraph
from .labeling import ClusterLabeling, ModularityMatrix

logger = logging.getLogger(__name__)


def _graph_modularity(graph, membership, resolution: float = 1.0) -> float:
    if graph.ecount() == 0:
        return 0.0
    return float(graph.modularity(membership, weights="weight", resolution=resolution))


def run_walktrap(graph: NeighborGraph, steps: int = 4) -> ClusterLabeling:
    """Walktrap communities on the SNN graph.

    Parameters
    ----------
    graph : NeighborGraph
        Input graph
    steps : int
        Random-walk length

    Returns
    -------
    ClusterLabeling
        Method "walktrap"; diagnostics hold the graph modularity

    Raises
    ------
    InvalidConfigurationError
        If ``steps`` < 1.
    NonConvergenceError
        If igraph fails to produce a partition.
    """
    if steps < 1:
        raise InvalidConfigurationError(f"Walktrap steps must be >= 1, got {steps}")

    params = {"steps": steps, "k": graph.k, "weight_scheme": graph.weight_scheme}
    if graph.n_nodes < 2:
        return ClusterLabeling.from_raw(
            "walktrap", np.zeros(graph.n_nodes), graph.cell_names, params, {"modularity": 0.0}
        )

    g = graph.to_igraph()
    try:
        dendrogram = g.community_walktrap(weights="weight", steps=steps)
        membership = dendrogram.as_clustering().membership
    except Exception as exc:
        raise NonConvergenceError(f"Walktrap failed: {exc}") from exc

    modularity = _graph_modularity(g, membership)
    labeling = ClusterLabeling.from_raw(
        "walktrap", membership, graph.cell_names, params, {"modularity": modularity}
    )
    logger.info(
        "Walktrap: %d clusters (modularity=%.4f)", labeling.n_clusters, modularity
    )
    return labeling


def run_louvain(
    graph: NeighborGraph,
    seed: Optional[int] = 1337,
    resolution: float = 1.0,
    reproducible: bool = True,
) -> ClusterLabeling:
    """Louvain (multilevel) communities on the SNN graph.

    igraph draws from a process-wide generator; it is pointed at a private
    ``random.Random(seed)`` for the duration of the call and restored after.

    Parameters
    ----------
    graph : NeighborGraph
        Input graph
    seed : int, optional
        Seed for vertex-order tie-breaking
    resolution : float
        Modularity resolution; higher gives more clusters
    reproducible : bool
        If True, a missing seed is an error

    Returns
    -------
    ClusterLabeling
        Method "louvain"; diagnostics hold the graph modularity

    Raises
    ------
    InvalidConfigurationError
        If the seed is missing while ``reproducible`` is True, or the
        resolution is not positive.
    NonConvergenceError
        If igraph fails to produce a partition.
    """
    import igraph as ig

    if seed is None and reproducible:
        raise InvalidConfigurationError("A seed is required for Louvain clustering")
    if resolution <= 0:
        raise InvalidConfigurationError(f"Louvain resolution must be > 0, got {resolution}")

    params = {
        "seed": seed,
        "resolution": resolution,
        "k": graph.k,
        "weight_scheme": graph.weight_scheme,
    }
    if graph.n_nodes < 2:
        return ClusterLabeling.from_raw(
            "louvain", np.zeros(graph.n_nodes), graph.cell_names, params, {"modularity": 0.0}
        )

    g = graph.to_igraph()
    ig.set_random_number_generator(random.Random(seed))
    try:
        clustering = g.community_multilevel(weights="weight", resolution=resolution)
        membership = clustering.membership
    except Exception as exc:
        raise NonConvergenceError(f"Louvain failed: {exc}") from exc
    finally:
        ig.set_random_number_generator(random)

    modularity = _graph_modularity(g, membership, resolution)
    labeling = ClusterLabeling.from_raw(
        "louvain", membership, graph.cell_names, params, {"modularity": modularity}
    )
    logger.info(
        "Louvain: %d clusters (modularity=%.4f, resolution=%.2f)",
        labeling.n_clusters,
        modularity,
        resolution,
    )
    return labeling


def pairwise_modularity(graph: NeighborGraph, labeling: ClusterLabeling) -> ModularityMatrix:
    """Observed over expected edge weight for every pair of clusters.

    Each undirected edge adds its weight once to the (cluster(a), cluster(b))
    entry. The expected weight under the degree-preserving null model is
    ``s_i * s_j / (4 W)``, where ``s_i`` is the summed node strength of
    cluster i and ``W`` the total edge weight, so observed and expected both
    sum to ``W``. The ratio matrix is symmetrized by averaging (i, j) and
    (j, i). Pairs with zero expected weight report 0.

    Parameters
    ----------
    graph : NeighborGraph
        Graph the labeling was computed on
    labeling : ClusterLabeling
        Clustering of the graph's nodes

    Returns
    -------
    ModularityMatrix
        Symmetric, non-negative and finite

    Raises
    ------
    ValueError
        If the labeling does not cover the graph's nodes.
    """
    if not labeling.covers(graph.cell_names):
        raise ValueError(
            f"Labeling '{labeling.method}' does not cover the graph's {graph.n_nodes} nodes"
        )

    ids = labeling.cluster_ids
    position = {int(c): i for i, c in enumerate(ids)}
    codes = np.array([position[int(c)] for c in labeling.labels], dtype=int)
    n_clusters = len(ids)

    observed = np.zeros((n_clusters, n_clusters))
    if graph.n_edges:
        np.add.at(
            observed,
            (codes[graph.edges[:, 0]], codes[graph.edges[:, 1]]),
            graph.weights,
        )

    strength = np.bincount(codes, weights=graph.strength(), minlength=n_clusters)
    total = graph.total_weight
    expected = np.outer(strength, strength) / (4.0 * total) if total > 0 else np.zeros_like(observed)

    ratio = np.zeros_like(observed)
    np.divide(observed, expected, out=ratio, where=expected > 0)
    ratio = (ratio + ratio.T) / 2.0

    index = pd.Index(ids, name="cluster")
    return ModularityMatrix(
        values=pd.DataFrame(ratio, index=index, columns=index.rename("cluster_b")),
        method=labeling.method,
    )
