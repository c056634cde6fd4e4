"""Discard masks produced by QC policies."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Literal, Sequence

import numpy as np
import pandas as pd

Level = Literal["cell", "gene"]


@dataclass(frozen=True, eq=False)
class DiscardMask:
    """Boolean discard flag per cell or per gene.

    Masks are never modified after creation; the flag array is read-only.

    Attributes
    ----------
    name : str
        Producing policy (e.g. "manual", "adaptive", "outlier")
    level : str
        "cell" or "gene"
    values : np.ndarray
        True where the entity is discarded
    index : pd.Index
        Cell or gene names aligned with ``values``
    reasons : pd.DataFrame
        Per-criterion flags (one boolean column per criterion)
    thresholds : Dict[str, Any]
        Thresholds the policy applied
    """

    name: str
    level: Level
    values: np.ndarray
    index: pd.Index
    reasons: pd.DataFrame = field(default_factory=pd.DataFrame)
    thresholds: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        values = np.array(self.values, dtype=bool, copy=True)
        if values.ndim != 1:
            raise ValueError(f"Discard mask must be 1-D, got {values.ndim} dimensions")
        if len(self.index) != values.shape[0]:
            raise ValueError(
                f"Discard mask has {values.shape[0]} flags for {len(self.index)} entities"
            )
        if self.level not in ("cell", "gene"):
            raise ValueError(f"Unknown mask level '{self.level}'")
        values.setflags(write=False)
        object.__setattr__(self, "values", values)

    def __len__(self) -> int:
        return self.values.shape[0]

    @property
    def keep(self) -> np.ndarray:
        """Complement of the discard flags."""
        return ~self.values

    @property
    def n_discarded(self) -> int:
        return int(self.values.sum())

    @property
    def n_kept(self) -> int:
        return len(self) - self.n_discarded

    def to_series(self) -> pd.Series:
        return pd.Series(self.values, index=self.index, name=self.name)

    def reason_counts(self) -> Dict[str, int]:
        """Number of entities flagged by each criterion."""
        return {col: int(self.reasons[col].sum()) for col in self.reasons.columns}

    def summary(self) -> Dict[str, Any]:
        """Convert to dictionary for reporting."""
        return {
            "name": self.name,
            "level": self.level,
            "n_total": len(self),
            "n_discarded": self.n_discarded,
            "discard_fraction": round(self.n_discarded / len(self), 4) if len(self) else 0.0,
            "reasons": self.reason_counts(),
        }

    @classmethod
    def union(cls, masks: Sequence["DiscardMask"], name: str) -> "DiscardMask":
        """Combine masks with logical OR into a new mask.

        Raises
        ------
        ValueError
            If no masks are given or they differ in level or index.
        """
        if not masks:
            raise ValueError("At least one mask is required")
        first = masks[0]
        for other in masks[1:]:
            check_aligned(first, other)
        values = np.logical_or.reduce([m.values for m in masks])
        reasons = pd.DataFrame({m.name: m.values for m in masks}, index=first.index)
        return cls(
            name=name,
            level=first.level,
            values=values,
            index=first.index,
            reasons=reasons,
            thresholds={m.name: m.thresholds for m in masks},
        )


def check_aligned(a: DiscardMask, b: DiscardMask) -> None:
    """Raise ValueError unless two masks share level and index."""
    if a.level != b.level:
        raise ValueError(f"Mask '{a.name}' is {a.level}-level but '{b.name}' is {b.level}-level")
    if not a.index.equals(b.index):
        raise ValueError(f"Masks '{a.name}' and '{b.name}' are not aligned to the same index")
