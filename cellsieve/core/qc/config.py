"""Configuration classes for the QC module.

All thresholds are configurable; nothing is tied to a particular dataset.
Section names match the YAML layout::

    manual:   {min_sum: 100000, min_detected: 5000, ...}
    adaptive: {mad_multiplier: 3, batch_key: null}
    outlier:  {mad_multiplier: 3, seed: 42}
    gene:     {min_mean: 1, min_fraction_cells: 0.01}
    selection: {cell_policy: adaptive, gene_policy: null}
"""

from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from ...errors import InvalidConfigurationError


def _section(cls, data: Optional[Dict[str, Any]], name: str):
    """Build a config dataclass from a mapping, rejecting unknown keys."""
    data = data or {}
    known = {f.name for f in fields(cls)}
    unknown = sorted(set(data) - known)
    if unknown:
        raise InvalidConfigurationError(
            f"Unknown key(s) in '{name}' section: {', '.join(unknown)}"
        )
    return cls(**data)


def _require_non_negative(section: str, **values: Optional[float]) -> None:
    for key, value in values.items():
        if value is not None and value < 0:
            raise InvalidConfigurationError(f"{section}.{key} must be >= 0, got {value}")


@dataclass
class ManualConfig:
    """Fixed cutoffs for the manual cell policy.

    Attributes
    ----------
    min_sum : float
        Discard cells with fewer total counts
    min_detected : float
        Discard cells with fewer detected genes
    max_subset_percent : float
        Discard cells with a higher primary-subset percentage
    max_altexp_percent : float
        Discard cells with a higher spike-in percentage
    """

    min_sum: float = 1e5
    min_detected: float = 5000
    max_subset_percent: float = 10.0
    max_altexp_percent: float = 10.0

    def validate(self) -> None:
        _require_non_negative("manual", **asdict(self))


@dataclass
class AdaptiveConfig:
    """Median/MAD cutoffs for the adaptive cell policy.

    Attributes
    ----------
    mad_multiplier : float
        Number of MADs from the median beyond which a cell is an outlier
    batch_key : str, optional
        Cell metadata column; thresholds are computed within each batch
    """

    mad_multiplier: float = 3.0
    batch_key: Optional[str] = None

    def validate(self) -> None:
        if self.mad_multiplier <= 0:
            raise InvalidConfigurationError(
                f"adaptive.mad_multiplier must be > 0, got {self.mad_multiplier}"
            )


@dataclass
class OutlierConfig:
    """Settings for the multivariate outlyingness policy.

    Attributes
    ----------
    mad_multiplier : float
        MADs above the median outlyingness that mark a cell as discarded
    seed : int, optional
        Seed for the random direction search
    n_directions : int, optional
        Number of projection directions. Defaults to 250 x n_features.
    n_jobs : int
        Worker processes for the direction search
    """

    mad_multiplier: float = 3.0
    seed: Optional[int] = 42
    n_directions: Optional[int] = None
    n_jobs: int = 1

    def validate(self) -> None:
        if self.mad_multiplier <= 0:
            raise InvalidConfigurationError(
                f"outlier.mad_multiplier must be > 0, got {self.mad_multiplier}"
            )
        if self.n_directions is not None and self.n_directions < 1:
            raise InvalidConfigurationError(
                f"outlier.n_directions must be >= 1, got {self.n_directions}"
            )


@dataclass
class GeneFilterConfig:
    """Thresholds for the gene-level policies.

    Attributes
    ----------
    min_mean : float
        Discard genes with a lower mean count (low_abundance)
    min_fraction_cells : float
        Discard genes detected in fewer than ceil(fraction x n_cells)
        cells (low_frequency)
    """

    min_mean: float = 1.0
    min_fraction_cells: float = 0.01

    def validate(self) -> None:
        _require_non_negative("gene", **asdict(self))
        if self.min_fraction_cells > 1:
            raise InvalidConfigurationError(
                f"gene.min_fraction_cells must be <= 1, got {self.min_fraction_cells}"
            )


@dataclass
class SelectionConfig:
    """Which policy masks drive filtering.

    Attributes
    ----------
    cell_policy : str
        Cell policy whose mask filters cells
    gene_policy : str, optional
        Gene policy whose mask filters genes. Genes are kept if None.
    """

    cell_policy: str = "adaptive"
    gene_policy: Optional[str] = None

    def validate(self) -> None:
        # Policies import this module
        from .policies import PolicyRegistry

        cell_ids = PolicyRegistry.list_policy_ids("cell")
        if self.cell_policy not in cell_ids:
            raise InvalidConfigurationError(
                f"selection.cell_policy '{self.cell_policy}' is not a cell policy; "
                f"choose from {cell_ids}"
            )
        gene_ids = PolicyRegistry.list_policy_ids("gene")
        if self.gene_policy is not None and self.gene_policy not in gene_ids:
            raise InvalidConfigurationError(
                f"selection.gene_policy '{self.gene_policy}' is not a gene policy; "
                f"choose from {gene_ids}"
            )


@dataclass
class QCConfig:
    """Master configuration for quality control.

    Attributes
    ----------
    manual, adaptive, outlier, gene, selection
        Per-policy sections
    reproducible : bool
        Require seeds for randomized routines
    """

    manual: ManualConfig = field(default_factory=ManualConfig)
    adaptive: AdaptiveConfig = field(default_factory=AdaptiveConfig)
    outlier: OutlierConfig = field(default_factory=OutlierConfig)
    gene: GeneFilterConfig = field(default_factory=GeneFilterConfig)
    selection: SelectionConfig = field(default_factory=SelectionConfig)
    reproducible: bool = True

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "QCConfig":
        """Build from a mapping with one entry per section."""
        config = cls(
            manual=_section(ManualConfig, data.get("manual"), "manual"),
            adaptive=_section(AdaptiveConfig, data.get("adaptive"), "adaptive"),
            outlier=_section(OutlierConfig, data.get("outlier"), "outlier"),
            gene=_section(GeneFilterConfig, data.get("gene"), "gene"),
            selection=_section(SelectionConfig, data.get("selection"), "selection"),
            reproducible=bool(data.get("reproducible", True)),
        )
        config.validate()
        return config

    @classmethod
    def from_yaml(cls, path: Path) -> "QCConfig":
        """Load configuration from YAML file."""
        with open(path) as f:
            data = yaml.safe_load(f) or {}

        # Handle nested cellsieve section
        if "cellsieve" in data:
            data = data["cellsieve"]

        return cls.from_dict(data)

    @classmethod
    def default(cls) -> "QCConfig":
        """Create default configuration."""
        return cls()

    def validate(self) -> None:
        """Check all sections.

        Raises
        ------
        InvalidConfigurationError
            If any value is out of range, a selected policy is not
            registered at its level, or a required seed is missing.
        """
        self.manual.validate()
        self.adaptive.validate()
        self.outlier.validate()
        self.gene.validate()
        self.selection.validate()
        if self.reproducible and self.outlier.seed is None:
            raise InvalidConfigurationError(
                "outlier.seed is required when reproducible results are requested"
            )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "manual": asdict(self.manual),
            "adaptive": asdict(self.adaptive),
            "outlier": asdict(self.outlier),
            "gene": asdict(self.gene),
            "selection": asdict(self.selection),
            "reproducible": self.reproducible,
        }
