"""Adjusted outlyingness for skewed multivariate data.

Projection-pursuit estimate of how far each observation lies from the
robust center of the point cloud (Hubert & Van der Veeken, 2008). For each
random direction the data are projected to one dimension and each value is
scaled by the distance from the median to the whisker of the skew-adjusted
boxplot on its side. The score of an observation is its maximum over all
directions.

Directions are normals of hyperplanes through random p-subsets of the
observations, so the score is affine invariant. All directions are drawn
up front from the seed, which makes the result independent of ``n_jobs``.
"""

from __future__ import annotations

import logging
from typing import List, Optional

import numpy as np
from joblib import Parallel, delayed
from statsmodels.stats.stattools import medcouple

from ...errors import InvalidConfigurationError

logger = logging.getLogger(__name__)

# Above this size the medcouple of a projection is estimated on a fixed
# subsample; the exact statistic needs O(n^2) memory.
MEDCOUPLE_MAX_SAMPLES = 2000


def _draw_directions(
    X: np.ndarray,
    n_directions: int,
    rng: np.random.Generator,
) -> np.ndarray:
    """Unit normals of hyperplanes through random p-subsets of rows."""
    n, p = X.shape
    if p == 1:
        return np.ones((1, 1))

    directions = np.empty((n_directions, p))
    ones = np.ones(p)
    for i in range(n_directions):
        idx = rng.choice(n, size=p, replace=False)
        try:
            normal = np.linalg.solve(X[idx], ones)
        except np.linalg.LinAlgError:
            normal = rng.standard_normal(p)
        norm = np.linalg.norm(normal)
        if not np.isfinite(norm) or norm == 0:
            normal = rng.standard_normal(p)
            norm = np.linalg.norm(normal)
        directions[i] = normal / norm
    return directions


def _adjusted_fences(z: np.ndarray, mc_sample: Optional[np.ndarray]) -> tuple:
    """Whiskers of the medcouple-adjusted boxplot of ``z``."""
    q1, q3 = np.percentile(z, [25, 75])
    iqr = q3 - q1
    sample = z if mc_sample is None else z[mc_sample]
    # Exact O(n^2) medcouple; the fast path fails on tied values
    mc = float(medcouple(sample, use_fast=False))
    if mc >= 0:
        lower_fence = q1 - 1.5 * np.exp(-4.0 * mc) * iqr
        upper_fence = q3 + 1.5 * np.exp(3.0 * mc) * iqr
    else:
        lower_fence = q1 - 1.5 * np.exp(-3.0 * mc) * iqr
        upper_fence = q3 + 1.5 * np.exp(4.0 * mc) * iqr
    upper_whisker = z[z <= upper_fence].max()
    lower_whisker = z[z >= lower_fence].min()
    return lower_whisker, upper_whisker


def _score_directions(
    X: np.ndarray,
    directions: np.ndarray,
    mc_sample: Optional[np.ndarray],
) -> np.ndarray:
    """Maximum adjusted outlyingness over a block of directions."""
    best = np.zeros(X.shape[0])
    for direction in directions:
        z = X @ direction
        center = np.median(z)
        lower_whisker, upper_whisker = _adjusted_fences(z, mc_sample)

        above = z > center
        scale = np.where(above, upper_whisker - center, center - lower_whisker)
        # Collapsed whiskers (tied bulk): use the mean absolute deviation
        fallback = np.mean(np.abs(z - center))
        scale = np.where(scale > 0, scale, fallback)
        score = np.zeros_like(z)
        valid = scale > 0
        score[valid] = np.abs(z[valid] - center) / scale[valid]
        np.maximum(best, score, out=best)
    return best


def adjusted_outlyingness(
    X: np.ndarray,
    n_directions: Optional[int] = None,
    seed: Optional[int] = 42,
    n_jobs: int = 1,
    reproducible: bool = True,
) -> np.ndarray:
    """Compute the adjusted outlyingness of each row of ``X``.

    Parameters
    ----------
    X : np.ndarray
        Observations x features. Constant features are ignored.
    n_directions : int, optional
        Number of projection directions (default: 250 x n_features).
    seed : int, optional
        Seed for direction sampling.
    n_jobs : int
        joblib workers; blocks of directions are scored in parallel.
    reproducible : bool
        If True, a missing seed is an error.

    Returns
    -------
    np.ndarray
        Non-negative outlyingness score per observation.

    Raises
    ------
    InvalidConfigurationError
        If ``seed`` is None while ``reproducible`` is True, or
        ``n_directions`` < 1.
    ValueError
        If ``X`` is not 2-D or contains non-finite values.
    """
    if seed is None and reproducible:
        raise InvalidConfigurationError(
            "A seed is required for the outlyingness direction search"
        )
    X = np.asarray(X, dtype=float)
    if X.ndim != 2:
        raise ValueError(f"Expected a 2-D feature matrix, got {X.ndim} dimensions")
    if not np.all(np.isfinite(X)):
        raise ValueError("Feature matrix contains non-finite values")

    n, p = X.shape
    if n == 0:
        return np.zeros(0)

    varying = np.ptp(X, axis=0) > 0
    if not varying.any():
        logger.info("All outlyingness features are constant; scores are zero")
        return np.zeros(n)
    if not varying.all():
        logger.debug("Dropping %d constant feature(s)", int((~varying).sum()))
    X = X[:, varying]
    p = X.shape[1]

    if n_directions is None:
        n_directions = 250 * p
    if n_directions < 1:
        raise InvalidConfigurationError(f"n_directions must be >= 1, got {n_directions}")

    rng = np.random.default_rng(seed)
    directions = _draw_directions(X, n_directions, rng) if n > p else rng.standard_normal((n_directions, p))
    directions /= np.linalg.norm(directions, axis=1, keepdims=True)

    mc_sample = None
    if n > MEDCOUPLE_MAX_SAMPLES:
        mc_sample = np.sort(rng.choice(n, size=MEDCOUPLE_MAX_SAMPLES, replace=False))

    logger.info(
        "Computing adjusted outlyingness: %d observations, %d features, %d directions",
        n,
        p,
        len(directions),
    )

    if n_jobs == 1:
        return _score_directions(X, directions, mc_sample)

    n_blocks = max(1, min(len(directions), abs(n_jobs) * 4 if n_jobs > 0 else 16))
    blocks: List[np.ndarray] = np.array_split(directions, n_blocks)
    results = Parallel(n_jobs=n_jobs, backend="loky")(
        delayed(_score_directions)(X, block, mc_sample) for block in blocks if len(block)
    )
    return np.maximum.reduce(results)
