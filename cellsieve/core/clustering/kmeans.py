"""k-means clustering with gap-statistic selection of k.

For each candidate k the log within-cluster dispersion of the data is
compared with its expectation under uniform reference data drawn in the
data's bounding box (Tibshirani, Walther & Hastie, 2001). The chosen k is
the smallest with ``gap(k) >= gap(k+1) - se(k+1)``.

Seeds for every (k, reference) fit are derived from the master seed before
any work starts, so results do not depend on ``n_jobs``.
"""

from __future__ import annotations

from typing import List, Optional, Tuple
import logging

import numpy as np
import pandas as pd
from joblib import Parallel, delayed
from sklearn.cluster import KMeans

from ...errors import InvalidConfigurationError, NonConvergenceError
from .embedding import Embedding
from .labeling import ClusterLabeling, relabel_by_size

logger = logging.getLogger(__name__)

_MAX_SEED = 2**31 - 1


def _log_dispersion(X: np.ndarray, k: int, seed: int, n_init: int) -> float:
    """log of the k-means within-cluster sum of squares."""
    if k == 1:
        inertia = float(((X - X.mean(axis=0)) ** 2).sum())
    else:
        model = KMeans(n_clusters=k, n_init=n_init, random_state=seed)
        inertia = float(model.fit(X).inertia_)
    return float(np.log(max(inertia, np.finfo(float).tiny)))


def _gap_for_k(
    X: np.ndarray,
    k: int,
    data_seed: int,
    reference_seeds: np.ndarray,
    fit_seeds: np.ndarray,
    n_init: int,
) -> Tuple[float, float, float]:
    """Return (log W, mean log W*, sd log W*) for one candidate k."""
    log_w = _log_dispersion(X, k, data_seed, n_init)
    low, high = X.min(axis=0), X.max(axis=0)
    ref_log_w = np.empty(len(reference_seeds))
    for b, (ref_seed, fit_seed) in enumerate(zip(reference_seeds, fit_seeds)):
        rng = np.random.default_rng(int(ref_seed))
        reference = rng.uniform(low, high, size=X.shape)
        ref_log_w[b] = _log_dispersion(reference, k, int(fit_seed), n_init)
    return log_w, float(ref_log_w.mean()), float(ref_log_w.std())


def select_k(gap_table: pd.DataFrame) -> int:
    """Smallest k with gap(k) >= gap(k+1) - se(k+1); the largest k if none."""
    ks = gap_table.index.to_numpy()
    gap = gap_table["gap"].to_numpy()
    se = gap_table["se"].to_numpy()
    for i in range(len(ks) - 1):
        if gap[i] >= gap[i + 1] - se[i + 1]:
            return int(ks[i])
    return int(ks[-1])


def gap_statistic(
    X: np.ndarray,
    k_max: int = 50,
    n_references: int = 20,
    seed: Optional[int] = 2024,
    n_init: int = 10,
    n_jobs: int = 1,
    reproducible: bool = True,
) -> pd.DataFrame:
    """Compute the gap statistic for k = 1..k_max.

    Parameters
    ----------
    X : np.ndarray
        Observations x features
    k_max : int
        Largest candidate k; clamped to n_observations - 1
    n_references : int
        Number of uniform reference datasets (B)
    seed : int, optional
        Master seed
    n_init : int
        k-means restarts per fit
    n_jobs : int
        joblib workers over candidate k
    reproducible : bool
        If True, a missing seed is an error

    Returns
    -------
    pd.DataFrame
        Indexed by k with columns ``log_w``, ``ref_log_w``, ``gap``, ``sd``
        and ``se`` where ``se = sd * sqrt(1 + 1/B)``

    Raises
    ------
    InvalidConfigurationError
        If ``k_max`` < 1, ``n_references`` < 1, or the seed is missing
        while ``reproducible`` is True.
    NonConvergenceError
        If any gap value is not finite.
    """
    if k_max < 1:
        raise InvalidConfigurationError(f"k_max must be >= 1, got {k_max}")
    if n_references < 1:
        raise InvalidConfigurationError(f"n_references must be >= 1, got {n_references}")
    if seed is None and reproducible:
        raise InvalidConfigurationError("A seed is required for the gap statistic")

    X = np.asarray(X, dtype=float)
    n = X.shape[0]
    k_limit = max(1, min(k_max, n - 1))
    if k_limit < k_max:
        logger.info("Clamping k_max from %d to %d (n=%d)", k_max, k_limit, n)
    ks = list(range(1, k_limit + 1))

    rng = np.random.default_rng(seed)
    data_seeds = rng.integers(0, _MAX_SEED, size=len(ks))
    # Reference datasets are shared across k; fit seeds are drawn per (k, b)
    reference_seeds = rng.integers(0, _MAX_SEED, size=n_references)
    fit_seeds = rng.integers(0, _MAX_SEED, size=(len(ks), n_references))

    logger.info(
        "Computing gap statistic: n=%d, k=1..%d, B=%d", n, k_limit, n_references
    )
    results: List[Tuple[float, float, float]] = Parallel(n_jobs=n_jobs, backend="loky")(
        delayed(_gap_for_k)(X, k, int(data_seeds[i]), reference_seeds, fit_seeds[i], n_init)
        for i, k in enumerate(ks)
    )

    table = pd.DataFrame(results, index=pd.Index(ks, name="k"), columns=["log_w", "ref_log_w", "sd"])
    table["gap"] = table["ref_log_w"] - table["log_w"]
    table["se"] = table["sd"] * np.sqrt(1.0 + 1.0 / n_references)
    table = table[["log_w", "ref_log_w", "gap", "sd", "se"]]

    if not np.all(np.isfinite(table[["gap", "se"]].to_numpy())):
        raise NonConvergenceError("Gap statistic produced non-finite values")
    return table


def run_kmeans(
    embedding: Embedding,
    k_max: int = 50,
    n_references: int = 20,
    seed: Optional[int] = 2024,
    n_init: int = 10,
    n_jobs: int = 1,
    reproducible: bool = True,
) -> ClusterLabeling:
    """k-means at the gap-statistic choice of k.

    Parameters
    ----------
    embedding : Embedding
        Cell coordinates
    k_max, n_references, seed, n_init, n_jobs, reproducible
        See :func:`gap_statistic`

    Returns
    -------
    ClusterLabeling
        Method "kmeans"; diagnostics hold the gap table, the chosen k,
        the cluster centers and the inertia

    Raises
    ------
    InvalidConfigurationError
        For invalid parameters (see :func:`gap_statistic`).
    NonConvergenceError
        If the gap table is not finite or the final fit leaves a cluster
        empty.
    """
    X = embedding.values
    table = gap_statistic(
        X,
        k_max=k_max,
        n_references=n_references,
        seed=seed,
        n_init=n_init,
        n_jobs=n_jobs,
        reproducible=reproducible,
    )
    k = select_k(table)

    if k == 1:
        raw = np.zeros(embedding.n_cells, dtype=int)
        centers = X.mean(axis=0, keepdims=True)
        inertia = float(((X - centers) ** 2).sum())
    else:
        model = KMeans(n_clusters=k, n_init=n_init, random_state=seed)
        raw = model.fit_predict(X)
        centers = model.cluster_centers_
        inertia = float(model.inertia_)
    if np.unique(raw).size != k:
        raise NonConvergenceError(
            f"k-means returned {np.unique(raw).size} non-empty clusters for k={k}"
        )

    labels = relabel_by_size(raw)
    # Row j - 1 of the centers belongs to cluster j
    first = [int(np.flatnonzero(labels == j)[0]) for j in range(1, k + 1)]
    centers = np.asarray(centers)[raw[first]]

    labeling = ClusterLabeling(
        method="kmeans",
        labels=labels,
        cell_names=embedding.cell_names,
        params={"k_max": k_max, "n_references": n_references, "seed": seed, "n_init": n_init},
        diagnostics={
            "k": k,
            "inertia": inertia,
            "gap_table": table,
            "centers": centers,
        },
    )
    logger.info("k-means: gap statistic selected k=%d", k)
    return labeling
