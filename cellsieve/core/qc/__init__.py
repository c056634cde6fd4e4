"""Quality control for single-cell count matrices.

This module provides:
- CountMatrix: immutable genes x cells counts
- compute_cell_metrics / compute_gene_metrics: per-cell and per-gene metrics
- Discard policies (manual, adaptive, outlier, low_abundance, low_frequency)
  behind a pluggable PolicyRegistry
- compute_agreement: exact overlap table between policy masks
- filter_cells / filter_genes / apply_masks: build the filtered matrix
- QCEngine: run all of the above from a QCConfig

Example usage:
    >>> from cellsieve.core.qc import CountMatrix, QCEngine, QCConfig
    >>> counts = CountMatrix.from_anndata(adata)
    >>> result = QCEngine(QCConfig()).run(counts, subsets={"Mito": mito})
    >>> result.cell_agreement
"""

from .config import (
    AdaptiveConfig,
    GeneFilterConfig,
    ManualConfig,
    OutlierConfig,
    QCConfig,
    SelectionConfig,
)
from .matrix import CountMatrix
from .metrics import (
    CellMetrics,
    GeneMetrics,
    compute_cell_metrics,
    compute_gene_metrics,
    genes_with_prefix,
    metrics_summary,
)
from .masks import DiscardMask
from .outlyingness import adjusted_outlyingness
from .policies import (
    AdaptivePolicy,
    BasePolicy,
    LowAbundancePolicy,
    LowFrequencyPolicy,
    ManualPolicy,
    OutlierPolicy,
    PolicyRegistry,
)
from .agreement import compute_agreement, pairwise_overlap, summarize_masks
from .filtering import apply_masks, filter_cells, filter_genes
from .engine import QCEngine, QCResult

__all__ = [
    # Config
    "QCConfig",
    "ManualConfig",
    "AdaptiveConfig",
    "OutlierConfig",
    "GeneFilterConfig",
    "SelectionConfig",
    # Data
    "CountMatrix",
    "CellMetrics",
    "GeneMetrics",
    "DiscardMask",
    # Metrics
    "compute_cell_metrics",
    "compute_gene_metrics",
    "genes_with_prefix",
    "metrics_summary",
    # Policies
    "BasePolicy",
    "PolicyRegistry",
    "ManualPolicy",
    "AdaptivePolicy",
    "OutlierPolicy",
    "LowAbundancePolicy",
    "LowFrequencyPolicy",
    "adjusted_outlyingness",
    # Agreement and filtering
    "compute_agreement",
    "pairwise_overlap",
    "summarize_masks",
    "filter_cells",
    "filter_genes",
    "apply_masks",
    # Engine
    "QCEngine",
    "QCResult",
]
