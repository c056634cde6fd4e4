"""Discard policies for cells and genes.

Every policy maps a metrics snapshot to a :class:`DiscardMask`:

- manual (cell): fixed cutoffs, any violation discards
- adaptive (cell): median/MAD outliers per metric, optionally per batch
- outlier (cell): multivariate adjusted outlyingness, median/MAD on the score
- low_abundance (gene): mean count below a threshold
- low_frequency (gene): detected in too few cells

Policies register themselves with :class:`PolicyRegistry`, so new ones can
be added without touching the QC engine::

    @PolicyRegistry.register
    class MyPolicy(BasePolicy):
        policy_id = "my_policy"
        level = "cell"
        ...
"""

from __future__ import annotations

import math
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Type, Union

import numpy as np
import pandas as pd

from ...errors import InvalidConfigurationError
from ...utils.stats import is_outlier
from .config import (
    AdaptiveConfig,
    GeneFilterConfig,
    ManualConfig,
    OutlierConfig,
    QCConfig,
)
from .masks import DiscardMask
from .metrics import CellMetrics, GeneMetrics
from .outlyingness import adjusted_outlyingness

Metrics = Union[CellMetrics, GeneMetrics]


class BasePolicy(ABC):
    """Abstract base class for discard policies.

    All policies must implement:
    - policy_id: Unique identifier
    - level: "cell" or "gene"
    - apply(): Metrics -> DiscardMask

    Attributes
    ----------
    policy_id : str
        Unique identifier, also used as the mask name
    level : str
        Entity the policy filters
    description : str
        Human-readable description
    config_section : str
        Attribute of :class:`QCConfig` holding this policy's settings
    """

    policy_id: str = "BASE_POLICY"
    level: str = "cell"
    description: str = "Base policy"
    config_section: str = ""

    def __init__(self, config: Any = None, reproducible: bool = True):
        self.config = config
        self.reproducible = reproducible

    @classmethod
    def from_qc_config(cls, qc_config: QCConfig) -> "BasePolicy":
        """Instantiate with the matching section of a master config."""
        section = getattr(qc_config, cls.config_section) if cls.config_section else None
        return cls(config=section, reproducible=qc_config.reproducible)

    def _check_level(self, metrics: Metrics) -> None:
        expected = CellMetrics if self.level == "cell" else GeneMetrics
        if not isinstance(metrics, expected):
            raise TypeError(
                f"Policy '{self.policy_id}' expects {expected.__name__}, "
                f"got {type(metrics).__name__}"
            )

    def make_mask(
        self,
        metrics: Metrics,
        reasons: pd.DataFrame,
        thresholds: Dict[str, Any],
    ) -> DiscardMask:
        """Build the mask as the logical OR of the reason columns."""
        index = metrics.table.index
        values = reasons.any(axis=1).to_numpy() if reasons.shape[1] else np.zeros(len(index), bool)
        return DiscardMask(
            name=self.policy_id,
            level=self.level,
            values=values,
            index=index,
            reasons=reasons,
            thresholds=thresholds,
        )

    @abstractmethod
    def apply(self, metrics: Metrics) -> DiscardMask:
        """Compute the discard mask.

        Parameters
        ----------
        metrics : CellMetrics or GeneMetrics
            Metrics snapshot matching ``level``

        Returns
        -------
        DiscardMask
            One flag per entity (True = discard)
        """


class PolicyRegistry:
    """Registry for discard policies.

    Provides:
    - Decorator-based registration: @PolicyRegistry.register
    - Lookup by ID or by level
    - Instantiation from a QCConfig
    """

    _policies: Dict[str, Type[BasePolicy]] = {}

    @classmethod
    def register(cls, policy_class: Type[BasePolicy]) -> Type[BasePolicy]:
        """Register a policy class (usable as a decorator)."""
        cls._policies[policy_class.policy_id] = policy_class
        return policy_class

    @classmethod
    def get_policy(cls, policy_id: str) -> Type[BasePolicy]:
        """Get policy class by ID.

        Raises
        ------
        InvalidConfigurationError
            If no policy is registered under ``policy_id``.
        """
        if policy_id not in cls._policies:
            raise InvalidConfigurationError(
                f"Unknown policy '{policy_id}'; available: {cls.list_policy_ids()}"
            )
        return cls._policies[policy_id]

    @classmethod
    def get_policies_by_level(cls, level: str) -> List[Type[BasePolicy]]:
        """All registered policies for "cell" or "gene"."""
        return [p for p in cls._policies.values() if p.level == level]

    @classmethod
    def list_policy_ids(cls, level: Optional[str] = None) -> List[str]:
        """Sorted list of registered policy IDs, optionally for one level."""
        return sorted(
            pid for pid, p in cls._policies.items() if level is None or p.level == level
        )

    @classmethod
    def instantiate(cls, policy_id: str, qc_config: Optional[QCConfig] = None) -> BasePolicy:
        """Instantiate a policy by ID from a master config."""
        return cls.get_policy(policy_id).from_qc_config(qc_config or QCConfig())

    @classmethod
    def instantiate_all(
        cls,
        level: str,
        qc_config: Optional[QCConfig] = None,
        skip: Optional[List[str]] = None,
    ) -> List[BasePolicy]:
        """Instantiate every registered policy of one level."""
        qc_config = qc_config or QCConfig()
        skip = skip or []
        return [
            cls._policies[pid].from_qc_config(qc_config)
            for pid in cls.list_policy_ids(level)
            if pid not in skip
        ]

    @classmethod
    def unregister(cls, policy_id: str) -> None:
        """Remove a policy (for testing)."""
        cls._policies.pop(policy_id, None)


# ============================================================================
# Cell policies
# ============================================================================


@PolicyRegistry.register
class ManualPolicy(BasePolicy):
    """Discard cells violating any of four fixed cutoffs."""

    policy_id = "manual"
    level = "cell"
    description = "Fixed cutoffs on library size, detected genes and percentages"
    config_section = "manual"

    def __init__(self, config: Optional[ManualConfig] = None, reproducible: bool = True):
        config = config or ManualConfig()
        config.validate()
        super().__init__(config, reproducible)

    def apply(self, metrics: CellMetrics) -> DiscardMask:
        self._check_level(metrics)
        cfg = self.config
        reasons = pd.DataFrame(
            {
                "low_lib_size": metrics.sum < cfg.min_sum,
                "low_n_features": metrics.detected < cfg.min_detected,
                "high_subset_percent": metrics.subset_percent > cfg.max_subset_percent,
                "high_altexp_percent": metrics.altexp_percent > cfg.max_altexp_percent,
            },
            index=metrics.cell_names,
        )
        thresholds = {
            "sum": {"lower": cfg.min_sum},
            "detected": {"lower": cfg.min_detected},
            "subset_percent": {"higher": cfg.max_subset_percent},
            "altexp_percent": {"higher": cfg.max_altexp_percent},
        }
        return self.make_mask(metrics, reasons, thresholds)


@PolicyRegistry.register
class AdaptivePolicy(BasePolicy):
    """Discard cells that are MAD outliers on any single metric.

    Library size and detected genes are log-transformed and flagged on the
    low side; the percentages are flagged on the high side.
    """

    policy_id = "adaptive"
    level = "cell"
    description = "Median/MAD outliers per metric"
    config_section = "adaptive"

    # metric -> (reason column, direction, log-transform)
    CRITERIA = {
        "sum": ("low_lib_size", "lower", True),
        "detected": ("low_n_features", "lower", True),
        "subset_percent": ("high_subset_percent", "higher", False),
        "altexp_percent": ("high_altexp_percent", "higher", False),
    }

    def __init__(self, config: Optional[AdaptiveConfig] = None, reproducible: bool = True):
        config = config or AdaptiveConfig()
        config.validate()
        super().__init__(config, reproducible)

    def _batches(self, metrics: CellMetrics) -> Optional[np.ndarray]:
        key = self.config.batch_key
        if key is None:
            return None
        if key not in metrics.table.columns:
            raise InvalidConfigurationError(
                f"adaptive.batch_key '{key}' is not a cell metadata column"
            )
        return metrics.table[key].astype(str).to_numpy()

    def apply(self, metrics: CellMetrics) -> DiscardMask:
        self._check_level(metrics)
        batch = self._batches(metrics)

        reasons = pd.DataFrame(index=metrics.cell_names)
        thresholds: Dict[str, Any] = {}
        for metric, (reason, direction, log) in self.CRITERIA.items():
            flags, bounds = is_outlier(
                metrics.column(metric),
                nmads=self.config.mad_multiplier,
                direction=direction,
                log=log,
                batch=batch,
            )
            reasons[reason] = flags
            thresholds[metric] = bounds[[direction, "median", "mad"]].to_dict(orient="index")

        return self.make_mask(metrics, reasons, thresholds)


@PolicyRegistry.register
class OutlierPolicy(BasePolicy):
    """Discard cells with high multivariate adjusted outlyingness."""

    policy_id = "outlier"
    level = "cell"
    description = "High adjusted outlyingness over all QC metrics jointly"
    config_section = "outlier"

    def __init__(self, config: Optional[OutlierConfig] = None, reproducible: bool = True):
        config = config or OutlierConfig()
        config.validate()
        super().__init__(config, reproducible)

    @staticmethod
    def feature_matrix(metrics: CellMetrics) -> np.ndarray:
        """[log1p(sum), log1p(detected), subset_percent, altexp_percent]."""
        return np.column_stack(
            [
                np.log1p(metrics.sum),
                np.log1p(metrics.detected),
                metrics.subset_percent,
                metrics.altexp_percent,
            ]
        )

    def apply(self, metrics: CellMetrics) -> DiscardMask:
        self._check_level(metrics)
        scores = adjusted_outlyingness(
            self.feature_matrix(metrics),
            n_directions=self.config.n_directions,
            seed=self.config.seed,
            n_jobs=self.config.n_jobs,
            reproducible=self.reproducible,
        )
        flags, bounds = is_outlier(scores, nmads=self.config.mad_multiplier, direction="higher")
        reasons = pd.DataFrame({"high_outlyingness": flags}, index=metrics.cell_names)
        thresholds = {
            "outlyingness": bounds[["higher", "median", "mad"]].to_dict(orient="index"),
            "scores": pd.Series(scores, index=metrics.cell_names, name="outlyingness"),
        }
        return self.make_mask(metrics, reasons, thresholds)


# ============================================================================
# Gene policies
# ============================================================================


@PolicyRegistry.register
class LowAbundancePolicy(BasePolicy):
    """Discard genes whose mean count is below ``min_mean``."""

    policy_id = "low_abundance"
    level = "gene"
    description = "Mean count below threshold"
    config_section = "gene"

    def __init__(self, config: Optional[GeneFilterConfig] = None, reproducible: bool = True):
        config = config or GeneFilterConfig()
        config.validate()
        super().__init__(config, reproducible)

    def apply(self, metrics: GeneMetrics) -> DiscardMask:
        self._check_level(metrics)
        reasons = pd.DataFrame(
            {"low_mean": metrics.mean < self.config.min_mean},
            index=metrics.gene_names,
        )
        return self.make_mask(metrics, reasons, {"mean": {"lower": self.config.min_mean}})


@PolicyRegistry.register
class LowFrequencyPolicy(BasePolicy):
    """Discard genes detected in fewer than ceil(fraction x n_cells) cells."""

    policy_id = "low_frequency"
    level = "gene"
    description = "Detected in too few cells"
    config_section = "gene"

    def __init__(self, config: Optional[GeneFilterConfig] = None, reproducible: bool = True):
        config = config or GeneFilterConfig()
        config.validate()
        super().__init__(config, reproducible)

    @staticmethod
    def min_cells(fraction: float, n_cells: int) -> int:
        # Rounding guards against 0.01 * 300 == 3.0000000000000004
        return int(math.ceil(round(fraction * n_cells, 9)))

    def apply(self, metrics: GeneMetrics) -> DiscardMask:
        self._check_level(metrics)
        required = self.min_cells(self.config.min_fraction_cells, metrics.n_cells)
        reasons = pd.DataFrame(
            {"low_frequency": metrics.n_detected < required},
            index=metrics.gene_names,
        )
        return self.make_mask(metrics, reasons, {"n_detected": {"lower": required}})
