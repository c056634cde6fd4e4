"""Agreement between clusterings of the same cells."""

from __future__ import annotations

import itertools
from typing import Mapping

import numpy as np
import pandas as pd
from sklearn.metrics import adjusted_rand_score

from .labeling import ClusterLabeling


def contingency_table(a: ClusterLabeling, b: ClusterLabeling) -> pd.DataFrame:
    """Cell counts for every (cluster in a, cluster in b) pair.

    Raises
    ------
    ValueError
        If the labelings refer to different cells.
    """
    if not a.covers(b.cell_names):
        raise ValueError(f"Labelings '{a.method}' and '{b.method}' cover different cells")
    return pd.crosstab(
        pd.Series(a.labels, name=a.method),
        pd.Series(b.labels, name=b.method),
    )


def agreement_matrix(labelings: Mapping[str, ClusterLabeling]) -> pd.DataFrame:
    """Adjusted Rand index between every pair of labelings.

    Returns
    -------
    pd.DataFrame
        Square and symmetric, indexed by method, 1.0 on the diagonal
    """
    methods = list(labelings)
    ari = pd.DataFrame(np.eye(len(methods)), index=methods, columns=methods)
    for m1, m2 in itertools.combinations(methods, 2):
        a, b = labelings[m1], labelings[m2]
        if not a.covers(b.cell_names):
            raise ValueError(f"Labelings '{m1}' and '{m2}' cover different cells")
        score = adjusted_rand_score(a.labels, b.labels)
        ari.loc[m1, m2] = ari.loc[m2, m1] = score
    return ari
