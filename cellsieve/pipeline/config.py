"""Master configuration for a full cellsieve run.

A single YAML file configures QC and clustering. All sections are
optional; everything may be nested under a top-level ``cellsieve:`` key::

    cellsieve:
      adaptive: {mad_multiplier: 3, batch_key: batch}
      selection: {cell_policy: adaptive, gene_policy: low_frequency}
      graph: {k_neighbors: 10, weight_scheme: rank}
      cluster: {selected_method: louvain}
      embedding: {n_comps: 50, seed: 0}
"""

from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from ..core.clustering.config import ClusterConfig
from ..core.qc.config import QCConfig
from ..errors import InvalidConfigurationError

QC_SECTIONS = ("manual", "adaptive", "outlier", "gene", "selection")
CLUSTER_SECTIONS = ("graph", "community", "kmeans", "hclust", "cluster")


@dataclass
class EmbeddingConfig:
    """Settings for the PCA computed when no embedding is supplied.

    Attributes
    ----------
    n_comps : int
        Number of principal components
    seed : int, optional
        Random seed for the PCA solver
    target_sum : float, optional
        Library size after normalization; the median if None
    """

    n_comps: int = 50
    seed: Optional[int] = 0
    target_sum: Optional[float] = None

    def validate(self) -> None:
        if self.n_comps < 1:
            raise InvalidConfigurationError(f"embedding.n_comps must be >= 1, got {self.n_comps}")


@dataclass
class SieveConfig:
    """Configuration for QC, embedding and clustering.

    Attributes
    ----------
    qc : QCConfig
        Cell/gene policy settings
    clustering : ClusterConfig
        Graph, community, k-means, hclust and selection settings
    embedding : EmbeddingConfig
        PCA settings
    reproducible : bool
        Require seeds for randomized routines
    """

    qc: QCConfig = field(default_factory=QCConfig)
    clustering: ClusterConfig = field(default_factory=ClusterConfig)
    embedding: EmbeddingConfig = field(default_factory=EmbeddingConfig)
    reproducible: bool = True

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "SieveConfig":
        """Build from a flat mapping of sections.

        Raises
        ------
        InvalidConfigurationError
            On unknown sections or keys, or out-of-range values.
        """
        data = dict(data or {})
        known = set(QC_SECTIONS) | set(CLUSTER_SECTIONS) | {"embedding", "reproducible"}
        unknown = sorted(set(data) - known)
        if unknown:
            raise InvalidConfigurationError(f"Unknown configuration section(s): {', '.join(unknown)}")

        reproducible = bool(data.get("reproducible", True))
        qc_data = {key: data[key] for key in QC_SECTIONS if key in data}
        cluster_data = {key: data[key] for key in CLUSTER_SECTIONS if key in data}
        qc_data["reproducible"] = cluster_data["reproducible"] = reproducible

        embedding_data = data.get("embedding") or {}
        unknown = sorted(set(embedding_data) - set(EmbeddingConfig.__dataclass_fields__))
        if unknown:
            raise InvalidConfigurationError(
                f"Unknown key(s) in 'embedding' section: {', '.join(unknown)}"
            )
        embedding = EmbeddingConfig(**embedding_data)
        embedding.validate()

        return cls(
            qc=QCConfig.from_dict(qc_data),
            clustering=ClusterConfig.from_dict(cluster_data),
            embedding=embedding,
            reproducible=reproducible,
        )

    @classmethod
    def from_yaml(cls, path: Path) -> "SieveConfig":
        """Load configuration from YAML file."""
        with open(path) as f:
            data = yaml.safe_load(f) or {}

        # Handle nested cellsieve section
        if "cellsieve" in data:
            data = data["cellsieve"]

        return cls.from_dict(data)

    @classmethod
    def default(cls) -> "SieveConfig":
        """Create default configuration."""
        return cls()

    def validate(self) -> None:
        self.qc.validate()
        self.clustering.validate()
        self.embedding.validate()

    def to_dict(self) -> Dict[str, Any]:
        """Flat section mapping; ``from_dict(to_dict())`` round-trips."""
        result: Dict[str, Any] = {}
        result.update({k: v for k, v in self.qc.to_dict().items() if k != "reproducible"})
        result.update({k: v for k, v in self.clustering.to_dict().items() if k != "reproducible"})
        result["embedding"] = asdict(self.embedding)
        result["reproducible"] = self.reproducible
        return result

    def to_yaml(self, path: Path) -> None:
        """Write the configuration as YAML."""
        with open(path, "w") as f:
            yaml.safe_dump({"cellsieve": self.to_dict()}, f, sort_keys=False)
