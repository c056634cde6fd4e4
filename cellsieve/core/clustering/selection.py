"""Designate one clustering as canonical."""

from __future__ import annotations

from typing import Mapping, Optional
import logging

import pandas as pd

from ...errors import InvalidConfigurationError
from .config import CLUSTER_METHODS
from .labeling import ClusterLabeling, ClusterSet

logger = logging.getLogger(__name__)


def select_clustering(
    labelings: Mapping[str, ClusterLabeling],
    method: str = "louvain",
    cell_names: Optional[pd.Index] = None,
) -> ClusterSet:
    """Mark ``method`` as the canonical labeling.

    Parameters
    ----------
    labelings : Mapping[str, ClusterLabeling]
        Available labelings by method
    method : str
        One of walktrap, louvain, kmeans, hclust
    cell_names : pd.Index, optional
        Cells the canonical labeling must cover, in order

    Returns
    -------
    ClusterSet
        All labelings with ``method`` selected

    Raises
    ------
    InvalidConfigurationError
        If ``method`` is unknown or has no labeling.
    ValueError
        If the selected labeling does not cover ``cell_names``.
    """
    if method not in CLUSTER_METHODS:
        raise InvalidConfigurationError(
            f"Unknown clustering method '{method}'; expected one of {CLUSTER_METHODS}"
        )
    if method not in labelings:
        raise InvalidConfigurationError(
            f"No '{method}' labeling available (have: {sorted(labelings)})"
        )
    chosen = labelings[method]
    if cell_names is not None and not chosen.covers(cell_names):
        raise ValueError(
            f"Labeling '{method}' covers {len(chosen)} cells, expected the {len(cell_names)} given"
        )
    logger.info("Selected '%s' (%d clusters) as canonical", method, chosen.n_clusters)
    return ClusterSet(labelings, selected=method)
