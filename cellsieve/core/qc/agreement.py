"""Agreement analysis across discard masks.

Policies rarely agree exactly. The tables here show how the discard sets
overlap so that a person can pick the policy that drives filtering.
"""

from __future__ import annotations

import itertools
from typing import Any, Dict, List, Sequence

import numpy as np
import pandas as pd

from .masks import DiscardMask, check_aligned


def _check_masks(masks: Sequence[DiscardMask]) -> None:
    if not masks:
        raise ValueError("At least one discard mask is required")
    names = [m.name for m in masks]
    if len(set(names)) != len(names):
        raise ValueError(f"Discard mask names must be unique, got {names}")
    for other in masks[1:]:
        check_aligned(masks[0], other)


def compute_agreement(masks: Sequence[DiscardMask]) -> pd.DataFrame:
    """Exact partition of entities by membership in each discard set.

    Parameters
    ----------
    masks : Sequence[DiscardMask]
        Masks sharing level and index.

    Returns
    -------
    pd.DataFrame
        One row for each of the 2^n membership combinations, including
        the all-False row (kept by every policy). Columns: one boolean per
        mask, ``n`` (count) and ``fraction``. ``n`` sums to the population
        size.

    Raises
    ------
    ValueError
        If no masks are given, names repeat, or masks are not aligned.
    """
    _check_masks(masks)
    names = [m.name for m in masks]
    stacked = np.column_stack([m.values for m in masks])
    total = stacked.shape[0]

    # Encode each row's membership pattern as an integer, bit i = mask i
    weights = 1 << np.arange(len(masks))
    codes = stacked.astype(np.int64) @ weights
    counts = np.bincount(codes, minlength=1 << len(masks))

    rows: List[Dict[str, Any]] = []
    for combo in itertools.product([False, True], repeat=len(masks)):
        code = sum(w for w, flag in zip(weights, combo) if flag)
        row: Dict[str, Any] = dict(zip(names, combo))
        row["n"] = int(counts[code])
        row["fraction"] = counts[code] / total if total else 0.0
        rows.append(row)

    return pd.DataFrame(rows, columns=names + ["n", "fraction"])


def pairwise_overlap(masks: Sequence[DiscardMask]) -> pd.DataFrame:
    """Intersection size and Jaccard index for every pair of discard sets.

    Returns
    -------
    pd.DataFrame
        Long format with columns ``mask_a``, ``mask_b``, ``n_a``, ``n_b``,
        ``n_both`` and ``jaccard``. Jaccard is 1.0 when both sets are empty.
    """
    _check_masks(masks)
    records = []
    for a, b in itertools.combinations(masks, 2):
        both = int(np.sum(a.values & b.values))
        either = int(np.sum(a.values | b.values))
        records.append(
            {
                "mask_a": a.name,
                "mask_b": b.name,
                "n_a": a.n_discarded,
                "n_b": b.n_discarded,
                "n_both": both,
                "jaccard": both / either if either else 1.0,
            }
        )
    return pd.DataFrame(records, columns=["mask_a", "mask_b", "n_a", "n_b", "n_both", "jaccard"])


def summarize_masks(masks: Sequence[DiscardMask]) -> pd.DataFrame:
    """Per-mask discard counts with the per-reason breakdown.

    Returns
    -------
    pd.DataFrame
        Indexed by mask name; ``n_total``, ``n_discarded``,
        ``discard_fraction`` and one ``reason_<criterion>`` column per
        criterion seen in any mask (0 where a mask lacks it).
    """
    _check_masks(masks)
    records = []
    for mask in masks:
        summary = mask.summary()
        record = {
            "n_total": summary["n_total"],
            "n_discarded": summary["n_discarded"],
            "discard_fraction": summary["discard_fraction"],
        }
        for reason, count in summary["reasons"].items():
            record[f"reason_{reason}"] = count
        records.append(record)
    table = pd.DataFrame(records, index=pd.Index([m.name for m in masks], name="mask"))
    reason_cols = [c for c in table.columns if c.startswith("reason_")]
    table[reason_cols] = table[reason_cols].fillna(0).astype(int)
    return table
