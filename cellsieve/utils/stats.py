"""Robust statistics for cellsieve.

Provides the median absolute deviation (MAD) and the
median +/- n MADs outlier rule used by the adaptive and multivariate QC
policies.
"""

from __future__ import annotations

from typing import Iterable, Literal, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd

ArrayLike = Union[Iterable[float], np.ndarray]
Direction = Literal["lower", "higher", "both"]

# Consistency constant making the MAD comparable to the standard deviation
# of normally distributed data.
MAD_CONSTANT = 1.4826

_DIRECTIONS = ("lower", "higher", "both")


def mad(
    values: ArrayLike,
    *,
    center: float | None = None,
    constant: float = MAD_CONSTANT,
) -> float:
    """Compute the scaled median absolute deviation, ignoring NaNs.

    Parameters
    ----------
    values : ArrayLike
        Input values. Infinite values take part in the median.
    center : float, optional
        Pre-computed center. If None, the median of the data.
    constant : float
        Scale factor (default: 1.4826).

    Returns
    -------
    float
        Scaled MAD. NaN if there are no non-NaN values.
    """
    arr = np.asarray(values, dtype=float)
    arr = arr[~np.isnan(arr)]
    if arr.size == 0:
        return float("nan")
    if center is None:
        center = float(np.median(arr))
    with np.errstate(invalid="ignore"):
        deviations = np.abs(arr - center)
    return float(constant * np.nanmedian(deviations))


def outlier_thresholds(
    values: ArrayLike,
    nmads: float = 3.0,
) -> Tuple[float, float, float, float]:
    """Return (lower, higher, median, mad) for the median +/- nmads rule."""
    arr = np.asarray(values, dtype=float)
    arr = arr[~np.isnan(arr)]
    if arr.size == 0:
        nan = float("nan")
        return nan, nan, nan, nan
    center = float(np.median(arr))
    spread = mad(arr, center=center)
    with np.errstate(invalid="ignore"):
        lower = center - nmads * spread
        higher = center + nmads * spread
    return float(lower), float(higher), center, spread


def is_outlier(
    values: ArrayLike,
    nmads: float = 3.0,
    direction: Direction = "both",
    log: bool = False,
    batch: Optional[Sequence] = None,
) -> Tuple[np.ndarray, pd.DataFrame]:
    """Flag values more than ``nmads`` MADs away from the median.

    Parameters
    ----------
    values : ArrayLike
        Metric values, one per observation.
    nmads : float
        Number of MADs defining the outlier bounds.
    direction : {"lower", "higher", "both"}
        Which side(s) of the median to flag. Comparisons are strict.
    log : bool
        Apply the natural log before computing bounds. Zeros become -inf
        and are flagged as lower outliers.
    batch : Sequence, optional
        Batch label per observation. Bounds are computed independently
        within each batch.

    Returns
    -------
    Tuple[np.ndarray, pd.DataFrame]
        Boolean outlier flags and a threshold table indexed by batch
        (``"all"`` without batches) with columns lower, higher, median,
        mad. Thresholds are reported on the original scale.

    Raises
    ------
    ValueError
        If direction is unknown or batch length does not match values.
    """
    if direction not in _DIRECTIONS:
        raise ValueError(
            f"Unknown outlier direction '{direction}'; expected one of {_DIRECTIONS}"
        )

    arr = np.asarray(values, dtype=float)
    if log:
        with np.errstate(divide="ignore", invalid="ignore"):
            arr = np.log(arr)

    if batch is None:
        groups = {"all": np.arange(arr.size)}
    else:
        batch_arr = np.asarray(batch)
        if batch_arr.shape[0] != arr.shape[0]:
            raise ValueError(
                f"Batch length {batch_arr.shape[0]} does not match {arr.shape[0]} values"
            )
        labels = pd.unique(batch_arr)
        groups = {label: np.flatnonzero(batch_arr == label) for label in labels}

    flags = np.zeros(arr.shape[0], dtype=bool)
    records = []
    for label, idx in groups.items():
        sub = arr[idx]
        lower, higher, center, spread = outlier_thresholds(sub, nmads)
        with np.errstate(invalid="ignore"):
            if direction in ("lower", "both"):
                flags[idx] |= sub < lower
            if direction in ("higher", "both"):
                flags[idx] |= sub > higher

        if log:
            with np.errstate(over="ignore"):
                lower, higher, center = np.exp([lower, higher, center])
        records.append(
            {
                "batch": label,
                "lower": float(lower) if direction != "higher" else float("-inf"),
                "higher": float(higher) if direction != "lower" else float("inf"),
                "median": float(center),
                "mad": float(spread),
            }
        )

    thresholds = pd.DataFrame.from_records(records).set_index("batch")
    return flags, thresholds
