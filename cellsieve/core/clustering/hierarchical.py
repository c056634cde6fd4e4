"""Ward hierarchical clustering with dynamic branch cutting.

The dendrogram is cut adaptively from its shape rather than at one fixed
height (hybrid dynamic tree cut, Langfelder et al. 2008):

- reference height: 5% quantile of the merge heights
- cut height: reference + 99% of the range above it; merges above the cut
  are always split
- a branch is a basic cluster when it has at least ``min_cluster_size``
  points, its core scatter is at most the maximal core scatter, and it sits
  at least the minimal gap below its parent merge
- ``deep_split`` (0..4) sets the maximal core scatter and the minimal gap

Points left outside every cluster join the cluster of minimal mean
distance. Silhouette widths are reported as diagnostics only.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Tuple
import logging

import numpy as np
from scipy.cluster.hierarchy import linkage
from scipy.spatial.distance import cdist, pdist, squareform
from sklearn.metrics import silhouette_samples

from ...errors import InvalidConfigurationError
from .embedding import Embedding
from .labeling import ClusterLabeling

logger = logging.getLogger(__name__)

# Maximal core scatter as a fraction of (cut height - reference height)
DEEP_SPLIT_SCATTER = (0.64, 0.73, 0.82, 0.91, 0.95)
REFERENCE_QUANTILE = 0.05
CUT_FRACTION = 0.99


@dataclass
class CutParameters:
    """Absolute thresholds used by the dynamic cut."""

    reference_height: float
    cut_height: float
    max_core_scatter: float
    min_gap: float
    min_cluster_size: int
    deep_split: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "reference_height": self.reference_height,
            "cut_height": self.cut_height,
            "max_core_scatter": self.max_core_scatter,
            "min_gap": self.min_gap,
            "min_cluster_size": self.min_cluster_size,
            "deep_split": self.deep_split,
        }


def cut_parameters(heights: np.ndarray, min_cluster_size: int, deep_split: int) -> CutParameters:
    """Derive absolute scatter and gap thresholds from the merge heights."""
    if deep_split not in range(len(DEEP_SPLIT_SCATTER)):
        raise InvalidConfigurationError(f"deep_split must be in 0..4, got {deep_split}")
    reference = float(np.quantile(heights, REFERENCE_QUANTILE))
    top = float(heights.max())
    cut = reference + CUT_FRACTION * (top - reference)
    scatter_frac = DEEP_SPLIT_SCATTER[deep_split]
    gap_frac = (1.0 - scatter_frac) * 3.0 / 4.0
    return CutParameters(
        reference_height=reference,
        cut_height=cut,
        max_core_scatter=reference + scatter_frac * (cut - reference),
        min_gap=gap_frac * (cut - reference),
        min_cluster_size=min_cluster_size,
        deep_split=deep_split,
    )


class _Dendrogram:
    """Navigation helpers over a scipy linkage matrix."""

    def __init__(self, Z: np.ndarray):
        self.Z = Z
        self.n = Z.shape[0] + 1

    @property
    def root(self) -> int:
        return 2 * self.n - 2

    def height(self, node: int) -> float:
        return 0.0 if node < self.n else float(self.Z[node - self.n, 2])

    def size(self, node: int) -> int:
        return 1 if node < self.n else int(self.Z[node - self.n, 3])

    def children(self, node: int) -> Tuple[int, int]:
        row = self.Z[node - self.n]
        return int(row[0]), int(row[1])

    def subtree(self, node: int) -> Tuple[np.ndarray, np.ndarray]:
        """Leaves and sorted internal merge heights below ``node``."""
        leaves: List[int] = []
        heights: List[float] = []
        stack = [node]
        while stack:
            current = stack.pop()
            if current < self.n:
                leaves.append(current)
            else:
                heights.append(self.height(current))
                stack.extend(self.children(current))
        return np.array(sorted(leaves), dtype=int), np.sort(np.array(heights, dtype=float))


def _core_scatter(heights: np.ndarray, size: int, min_cluster_size: int) -> float:
    """Mean of the lowest merge heights within the branch core."""
    if heights.size == 0:
        return 0.0
    base = min_cluster_size // 2 + 1
    core_size = int(base + np.sqrt(size - base)) if size > base else size
    n_core = max(1, min(core_size - 1, heights.size))
    return float(heights[:n_core].mean())


def cutree_hybrid(Z: np.ndarray, X: np.ndarray, min_cluster_size: int = 10, deep_split: int = 1) -> Tuple[np.ndarray, CutParameters]:
    """Dynamic hybrid cut of a dendrogram.

    Parameters
    ----------
    Z : np.ndarray
        scipy linkage matrix over the rows of ``X``
    X : np.ndarray
        Observations, used to place unassigned points
    min_cluster_size : int
        Smallest cluster reported
    deep_split : int
        Split sensitivity, 0..4

    Returns
    -------
    Tuple[np.ndarray, CutParameters]
        Raw cluster label per observation (0..K-1) and the thresholds used
    """
    tree = _Dendrogram(Z)
    params = cut_parameters(Z[:, 2], min_cluster_size, deep_split)

    def qualifies(node: int, parent_height: float) -> bool:
        size = tree.size(node)
        if size < min_cluster_size:
            return False
        _, heights = tree.subtree(node)
        scatter = _core_scatter(heights, size, min_cluster_size)
        return scatter <= params.max_core_scatter and parent_height - scatter >= params.min_gap

    labels = np.full(tree.n, -1, dtype=int)
    n_clusters = 0
    stack = [tree.root]
    while stack:
        node = stack.pop()
        if node < tree.n:
            if min_cluster_size <= 1:
                labels[node] = n_clusters
                n_clusters += 1
            continue

        h = tree.height(node)
        left, right = tree.children(node)
        if h > params.cut_height:
            stack.extend((right, left))
            continue

        q_left, q_right = qualifies(left, h), qualifies(right, h)
        if (q_left and q_right) or (q_left and tree.size(right) >= min_cluster_size) or (
            q_right and tree.size(left) >= min_cluster_size
        ):
            stack.extend((right, left))
        elif tree.size(node) >= min_cluster_size:
            leaves, _ = tree.subtree(node)
            labels[leaves] = n_clusters
            n_clusters += 1

    if n_clusters == 0:
        logger.info("Dynamic cut found no cluster; assigning all points to one cluster")
        return np.zeros(tree.n, dtype=int), params

    unassigned = np.flatnonzero(labels < 0)
    if unassigned.size:
        mean_dist = np.column_stack(
            [cdist(X[unassigned], X[labels == c]).mean(axis=1) for c in range(n_clusters)]
        )
        labels[unassigned] = mean_dist.argmin(axis=1)
        logger.debug("Assigned %d unclustered points by mean distance", unassigned.size)

    return labels, params


def run_hclust(
    embedding: Embedding,
    min_cluster_size: int = 10,
    deep_split: int = 1,
    linkage_method: str = "ward",
) -> ClusterLabeling:
    """Ward clustering of the embedding with a dynamic branch cut.

    Parameters
    ----------
    embedding : Embedding
        Cell coordinates
    min_cluster_size : int
        Smallest cluster reported
    deep_split : int
        Split sensitivity, 0..4
    linkage_method : str
        Must be "ward"

    Returns
    -------
    ClusterLabeling
        Method "hclust"; diagnostics hold the linkage matrix, cut
        parameters, per-cell silhouette widths and their mean

    Raises
    ------
    InvalidConfigurationError
        If the linkage is not Ward, ``min_cluster_size`` < 1 or
        ``deep_split`` is outside 0..4.
    """
    if linkage_method != "ward":
        raise InvalidConfigurationError(f"Only Ward linkage is supported, got '{linkage_method}'")
    if min_cluster_size < 1:
        raise InvalidConfigurationError(f"min_cluster_size must be >= 1, got {min_cluster_size}")
    if deep_split not in range(len(DEEP_SPLIT_SCATTER)):
        raise InvalidConfigurationError(f"deep_split must be in 0..4, got {deep_split}")

    X = embedding.values
    n = embedding.n_cells
    params = {"linkage": linkage_method, "min_cluster_size": min_cluster_size, "deep_split": deep_split}
    if n < 2:
        return ClusterLabeling.from_raw("hclust", np.zeros(n), embedding.cell_names, params)

    distances = pdist(X, metric="euclidean")
    Z = linkage(distances, method="ward")
    raw, cut = cutree_hybrid(Z, X, min_cluster_size=min_cluster_size, deep_split=deep_split)

    diagnostics: Dict[str, Any] = {"linkage": Z, **cut.to_dict()}
    n_clusters = np.unique(raw).size
    if 2 <= n_clusters <= n - 1:
        widths = silhouette_samples(squareform(distances), raw, metric="precomputed")
        diagnostics["silhouette"] = widths
        diagnostics["mean_silhouette"] = float(widths.mean())
    else:
        diagnostics["mean_silhouette"] = float("nan")

    labeling = ClusterLabeling.from_raw("hclust", raw, embedding.cell_names, params, diagnostics)
    logger.info(
        "Hierarchical: %d clusters (mean silhouette=%.3f)",
        labeling.n_clusters,
        diagnostics["mean_silhouette"],
    )
    return labeling
