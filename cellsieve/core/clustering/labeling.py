"""Clustering result types.

All labelings number clusters 1..K by decreasing size (ties broken by first
appearance), so labels from different methods are comparable at a glance.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Dict, Iterator, Mapping, Optional, Sequence

import numpy as np
import pandas as pd


def relabel_by_size(labels: Sequence) -> np.ndarray:
    """Map arbitrary labels to 1..K ordered by decreasing cluster size.

    Parameters
    ----------
    labels : Sequence
        One raw label per cell (any hashable values)

    Returns
    -------
    np.ndarray
        Integer labels, 1 for the largest cluster
    """
    raw = pd.Series(np.asarray(labels))
    if raw.empty:
        return np.zeros(0, dtype=int)
    codes, uniques = pd.factorize(raw, sort=False)
    sizes = np.bincount(codes)
    # Stable sort keeps first-appearance order among equal sizes
    order = np.argsort(-sizes, kind="stable")
    new_ids = np.empty(len(uniques), dtype=int)
    new_ids[order] = np.arange(1, len(uniques) + 1)
    return new_ids[codes]


@dataclass(frozen=True, eq=False)
class ClusterLabeling:
    """One clustering of a fixed set of cells.

    Attributes
    ----------
    method : str
        Producing method ("walktrap", "louvain", "kmeans", "hclust")
    labels : np.ndarray
        Integer cluster id per cell, 1..K
    cell_names : pd.Index
        Cells the labels refer to
    params : Dict[str, Any]
        Parameters the method ran with
    diagnostics : Dict[str, Any]
        Method-specific outputs (modularity, gap table, silhouette, ...)
    """

    method: str
    labels: np.ndarray
    cell_names: pd.Index
    params: Dict[str, Any] = field(default_factory=dict)
    diagnostics: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        labels = np.array(self.labels, dtype=int, copy=True)
        if labels.ndim != 1:
            raise ValueError(f"Labels must be 1-D, got {labels.ndim} dimensions")
        if labels.shape[0] != len(self.cell_names):
            raise ValueError(
                f"{labels.shape[0]} labels for {len(self.cell_names)} cells"
            )
        labels.setflags(write=False)
        object.__setattr__(self, "labels", labels)

    @classmethod
    def from_raw(
        cls,
        method: str,
        raw_labels: Sequence,
        cell_names: pd.Index,
        params: Optional[Dict[str, Any]] = None,
        diagnostics: Optional[Dict[str, Any]] = None,
    ) -> "ClusterLabeling":
        """Build with labels renumbered 1..K by decreasing size."""
        return cls(
            method=method,
            labels=relabel_by_size(raw_labels),
            cell_names=cell_names,
            params=dict(params or {}),
            diagnostics=dict(diagnostics or {}),
        )

    def __len__(self) -> int:
        return self.labels.shape[0]

    @property
    def n_clusters(self) -> int:
        return int(np.unique(self.labels).size)

    @property
    def cluster_ids(self) -> np.ndarray:
        return np.unique(self.labels)

    def cluster_sizes(self) -> Dict[int, int]:
        ids, sizes = np.unique(self.labels, return_counts=True)
        return {int(i): int(s) for i, s in zip(ids, sizes)}

    def to_series(self) -> pd.Series:
        return pd.Series(self.labels, index=self.cell_names, name=self.method)

    def covers(self, cell_names: pd.Index) -> bool:
        """True if the labeling refers to exactly ``cell_names`` in order."""
        return self.cell_names.equals(pd.Index(cell_names))

    def summary(self) -> Dict[str, Any]:
        """Convert to dictionary for reporting."""
        result = {
            "method": self.method,
            "n_cells": len(self),
            "n_clusters": self.n_clusters,
            "cluster_sizes": self.cluster_sizes(),
            "params": dict(self.params),
        }
        scalars = {
            key: value
            for key, value in self.diagnostics.items()
            if isinstance(value, (int, float, str, bool, np.integer, np.floating))
        }
        if scalars:
            result["diagnostics"] = {
                k: v.item() if isinstance(v, np.generic) else v for k, v in scalars.items()
            }
        return result


@dataclass(frozen=True, eq=False)
class ModularityMatrix:
    """Observed / expected edge weight for every pair of clusters.

    Attributes
    ----------
    values : pd.DataFrame
        Square, symmetric, indexed by cluster id on both axes
    method : str
        Labeling the matrix was computed for
    """

    values: pd.DataFrame
    method: str = ""

    @property
    def cluster_ids(self) -> np.ndarray:
        return self.values.index.to_numpy()

    def to_numpy(self) -> np.ndarray:
        return self.values.to_numpy(copy=True)

    def is_symmetric(self) -> bool:
        arr = self.values.to_numpy()
        return bool(np.allclose(arr, arr.T))


class ClusterSet(Mapping):
    """Immutable mapping of method name to ClusterLabeling.

    Exactly one method is ``selected`` as canonical.

    Parameters
    ----------
    labelings : Mapping[str, ClusterLabeling]
        Labelings by method name
    selected : str
        Canonical method; must be a key of ``labelings``
    """

    def __init__(self, labelings: Mapping[str, ClusterLabeling], selected: str):
        if selected not in labelings:
            raise KeyError(f"Selected method '{selected}' is not among {sorted(labelings)}")
        self._labelings = MappingProxyType(dict(labelings))
        self._selected = selected

    def __getitem__(self, method: str) -> ClusterLabeling:
        return self._labelings[method]

    def __iter__(self) -> Iterator[str]:
        return iter(self._labelings)

    def __len__(self) -> int:
        return len(self._labelings)

    @property
    def selected_method(self) -> str:
        return self._selected

    @property
    def selected(self) -> ClusterLabeling:
        return self._labelings[self._selected]

    def to_dataframe(self) -> pd.DataFrame:
        """One label column per method, indexed by cell name."""
        return pd.DataFrame({m: lab.to_series() for m, lab in self._labelings.items()})

    def __repr__(self) -> str:
        return f"ClusterSet(methods={list(self._labelings)}, selected='{self._selected}')"
