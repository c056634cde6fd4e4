"""Configuration classes for clustering module.

Section names match the YAML layout::

    graph:     {k_neighbors: 10, weight_scheme: rank}
    community: {walktrap_steps: 4, louvain_resolution: 1.0, seed: 1337}
    kmeans:    {k_max: 50, seed: 2024, n_references: 20}
    hclust:    {linkage: ward, min_cluster_size: 10, deep_split: 1}
    cluster:   {selected_method: louvain}
"""

from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from ...errors import InvalidConfigurationError

WEIGHT_SCHEMES = ("rank", "jaccard")
CLUSTER_METHODS = ("walktrap", "louvain", "kmeans", "hclust")


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


@dataclass
class GraphConfig:
    """Configuration for the shared-nearest-neighbor graph.

    Attributes
    ----------
    k_neighbors : int
        Nearest neighbors per cell
    weight_scheme : str
        Edge weighting: "rank" or "jaccard"
    n_jobs : int
        Workers for the neighbor search
    """

    k_neighbors: int = 10
    weight_scheme: str = "rank"
    n_jobs: int = 1

    def validate(self) -> None:
        if self.k_neighbors < 1:
            raise InvalidConfigurationError(
                f"graph.k_neighbors must be >= 1, got {self.k_neighbors}"
            )
        if self.weight_scheme not in WEIGHT_SCHEMES:
            raise InvalidConfigurationError(
                f"graph.weight_scheme must be one of {WEIGHT_SCHEMES}, "
                f"got '{self.weight_scheme}'"
            )


@dataclass
class CommunityConfig:
    """Configuration for graph community detection.

    Attributes
    ----------
    walktrap_steps : int
        Random-walk length for walktrap
    louvain_resolution : float
        Resolution parameter for Louvain
    seed : int, optional
        Random seed for Louvain
    """

    walktrap_steps: int = 4
    louvain_resolution: float = 1.0
    seed: Optional[int] = 1337

    def validate(self) -> None:
        if self.walktrap_steps < 1:
            raise InvalidConfigurationError(
                f"community.walktrap_steps must be >= 1, got {self.walktrap_steps}"
            )
        if self.louvain_resolution <= 0:
            raise InvalidConfigurationError(
                f"community.louvain_resolution must be > 0, got {self.louvain_resolution}"
            )


@dataclass
class KMeansConfig:
    """Configuration for k-means with gap-statistic selection.

    Attributes
    ----------
    k_max : int
        Largest candidate cluster count
    seed : int, optional
        Random seed for k-means and reference sampling
    n_references : int
        Reference datasets per candidate k
    n_init : int
        k-means restarts per fit
    n_jobs : int
        Workers for the candidate-k loop
    """

    k_max: int = 50
    seed: Optional[int] = 2024
    n_references: int = 20
    n_init: int = 10
    n_jobs: int = 1

    def validate(self) -> None:
        if self.k_max < 1:
            raise InvalidConfigurationError(f"kmeans.k_max must be >= 1, got {self.k_max}")
        if self.n_references < 1:
            raise InvalidConfigurationError(
                f"kmeans.n_references must be >= 1, got {self.n_references}"
            )
        if self.n_init < 1:
            raise InvalidConfigurationError(f"kmeans.n_init must be >= 1, got {self.n_init}")


@dataclass
class HClustConfig:
    """Configuration for hierarchical clustering.

    Attributes
    ----------
    linkage : str
        Linkage method; only "ward" is supported
    min_cluster_size : int
        Smallest cluster the dynamic cut may report
    deep_split : int
        Split sensitivity from 0 (coarse) to 4 (fine)
    """

    linkage: str = "ward"
    min_cluster_size: int = 10
    deep_split: int = 1

    def validate(self) -> None:
        if self.linkage != "ward":
            raise InvalidConfigurationError(
                f"hclust.linkage must be 'ward', got '{self.linkage}'"
            )
        if self.min_cluster_size < 1:
            raise InvalidConfigurationError(
                f"hclust.min_cluster_size must be >= 1, got {self.min_cluster_size}"
            )
        if self.deep_split not in range(5):
            raise InvalidConfigurationError(
                f"hclust.deep_split must be in 0..4, got {self.deep_split}"
            )


@dataclass
class SelectorConfig:
    """Which clustering becomes canonical.

    Attributes
    ----------
    selected_method : str
        One of walktrap, louvain, kmeans, hclust
    """

    selected_method: str = "louvain"

    def validate(self) -> None:
        if self.selected_method not in CLUSTER_METHODS:
            raise InvalidConfigurationError(
                f"cluster.selected_method must be one of {CLUSTER_METHODS}, "
                f"got '{self.selected_method}'"
            )


@dataclass
class ClusterConfig:
    """Master configuration for clustering.

    Attributes
    ----------
    graph : GraphConfig
        SNN graph configuration
    community : CommunityConfig
        Walktrap/Louvain configuration
    kmeans : KMeansConfig
        Gap-statistic k-means configuration
    hclust : HClustConfig
        Hierarchical clustering configuration
    cluster : SelectorConfig
        Canonical method selection
    reproducible : bool
        Require seeds for randomized routines
    """

    graph: GraphConfig = field(default_factory=GraphConfig)
    community: CommunityConfig = field(default_factory=CommunityConfig)
    kmeans: KMeansConfig = field(default_factory=KMeansConfig)
    hclust: HClustConfig = field(default_factory=HClustConfig)
    cluster: SelectorConfig = field(default_factory=SelectorConfig)
    reproducible: bool = True

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ClusterConfig":
        """Build from a mapping with one entry per section."""
        config = cls(
            graph=_section(GraphConfig, data.get("graph"), "graph"),
            community=_section(CommunityConfig, data.get("community"), "community"),
            kmeans=_section(KMeansConfig, data.get("kmeans"), "kmeans"),
            hclust=_section(HClustConfig, data.get("hclust"), "hclust"),
            cluster=_section(SelectorConfig, data.get("cluster"), "cluster"),
            reproducible=bool(data.get("reproducible", True)),
        )
        config.validate()
        return config

    @classmethod
    def from_yaml(cls, path: Path) -> "ClusterConfig":
        """Load configuration from YAML file."""
        with open(path) as f:
            data = yaml.safe_load(f) or {}

        # Handle nested cellsieve section
        if "cellsieve" in data:
            data = data["cellsieve"]

        return cls.from_dict(data)

    @classmethod
    def default(cls) -> "ClusterConfig":
        """Create default configuration."""
        return cls()

    def validate(self) -> None:
        """Check all sections.

        Raises
        ------
        InvalidConfigurationError
            If any value is out of range or a required seed is missing.
        """
        self.graph.validate()
        self.community.validate()
        self.kmeans.validate()
        self.hclust.validate()
        self.cluster.validate()
        if self.reproducible:
            for section, seed in (("community", self.community.seed), ("kmeans", self.kmeans.seed)):
                if seed is None:
                    raise InvalidConfigurationError(
                        f"{section}.seed is required when reproducible results are requested"
                    )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "graph": asdict(self.graph),
            "community": asdict(self.community),
            "kmeans": asdict(self.kmeans),
            "hclust": asdict(self.hclust),
            "cluster": asdict(self.cluster),
            "reproducible": self.reproducible,
        }
