"""Quality-control engine.

Runs every registered policy on a fixed metrics snapshot, tabulates their
agreement, and filters with the selected policies:

1. Cell metrics on the input matrix
2. All cell policies -> one DiscardMask each
3. Filter cells with the selected cell mask
4. Gene metrics on the cell-filtered matrix
5. All gene policies, filter genes with the selected gene mask (if any)
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional
import logging

import pandas as pd

from .agreement import compute_agreement, pairwise_overlap, summarize_masks
from .config import QCConfig
from .filtering import apply_masks
from .masks import DiscardMask
from .matrix import CountMatrix
from .metrics import (
    CellMetrics,
    GeneMetrics,
    GeneSelection,
    compute_cell_metrics,
    compute_gene_metrics,
    metrics_summary,
)
from .policies import PolicyRegistry


@dataclass
class QCResult:
    """Result of a quality-control run.

    Attributes
    ----------
    cell_metrics : CellMetrics
        Metrics of the input matrix
    gene_metrics : GeneMetrics
        Metrics of the cell-filtered matrix
    cell_masks : Dict[str, DiscardMask]
        One mask per cell policy
    gene_masks : Dict[str, DiscardMask]
        One mask per gene policy
    cell_agreement : pd.DataFrame
        Exact overlap table of the cell masks
    gene_agreement : pd.DataFrame
        Exact overlap table of the gene masks
    selected_cell_policy : str
        Policy whose mask filtered cells
    selected_gene_policy : str, optional
        Policy whose mask filtered genes (None keeps all genes)
    filtered : CountMatrix
        Matrix after filtering
    """

    cell_metrics: CellMetrics
    gene_metrics: GeneMetrics
    cell_masks: Dict[str, DiscardMask] = field(default_factory=dict)
    gene_masks: Dict[str, DiscardMask] = field(default_factory=dict)
    cell_agreement: Optional[pd.DataFrame] = None
    gene_agreement: Optional[pd.DataFrame] = None
    selected_cell_policy: str = "adaptive"
    selected_gene_policy: Optional[str] = None
    filtered: Optional[CountMatrix] = None

    @property
    def selected_cell_mask(self) -> DiscardMask:
        return self.cell_masks[self.selected_cell_policy]

    @property
    def selected_gene_mask(self) -> Optional[DiscardMask]:
        if self.selected_gene_policy is None:
            return None
        return self.gene_masks[self.selected_gene_policy]

    def cell_mask_table(self) -> pd.DataFrame:
        """One boolean column per cell policy, indexed by cell name."""
        return pd.DataFrame({name: m.to_series() for name, m in self.cell_masks.items()})

    def gene_mask_table(self) -> pd.DataFrame:
        """One boolean column per gene policy, indexed by gene name."""
        return pd.DataFrame({name: m.to_series() for name, m in self.gene_masks.items()})

    def cell_overlap(self) -> pd.DataFrame:
        return pairwise_overlap(list(self.cell_masks.values()))

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for reporting."""
        result: Dict[str, Any] = {
            "cells_total": self.cell_metrics.n_cells,
            "selected_cell_policy": self.selected_cell_policy,
            "selected_gene_policy": self.selected_gene_policy,
            "cell_metrics": metrics_summary(self.cell_metrics),
            "cell_policies": {name: m.summary() for name, m in self.cell_masks.items()},
            "gene_policies": {name: m.summary() for name, m in self.gene_masks.items()},
        }
        if self.filtered is not None:
            result["cells_kept"] = self.filtered.n_cells
            result["genes_kept"] = self.filtered.n_genes
        return result


class QCEngine:
    """Quality-control engine for count matrices.

    Parameters
    ----------
    config : QCConfig, optional
        QC configuration. If None, uses defaults.
    logger : logging.Logger, optional
        Logger instance. If None, creates default logger.

    Example
    -------
    >>> from cellsieve.core.qc import CountMatrix, QCEngine
    >>> engine = QCEngine()
    >>> result = engine.run(counts, subsets={"Mito": mito_genes})
    >>> result.cell_agreement
    """

    def __init__(
        self,
        config: Optional[QCConfig] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.config = config or QCConfig()
        self.config.validate()
        self.logger = logger or logging.getLogger(__name__)

    def compute_cell_masks(self, metrics: CellMetrics) -> Dict[str, DiscardMask]:
        """Apply every registered cell policy to the same metrics snapshot."""
        masks = {}
        for policy in PolicyRegistry.instantiate_all("cell", self.config):
            mask = policy.apply(metrics)
            self.logger.info(
                "Policy %s: %d / %d cells discarded",
                policy.policy_id,
                mask.n_discarded,
                len(mask),
            )
            masks[policy.policy_id] = mask
        return masks

    def compute_gene_masks(self, metrics: GeneMetrics) -> Dict[str, DiscardMask]:
        """Apply every registered gene policy to the same metrics snapshot."""
        masks = {}
        for policy in PolicyRegistry.instantiate_all("gene", self.config):
            mask = policy.apply(metrics)
            self.logger.info(
                "Policy %s: %d / %d genes discarded",
                policy.policy_id,
                mask.n_discarded,
                len(mask),
            )
            masks[policy.policy_id] = mask
        return masks

    def _selected(self, masks: Dict[str, DiscardMask], policy_id: str) -> DiscardMask:
        # Raises InvalidConfigurationError for unknown IDs
        PolicyRegistry.get_policy(policy_id)
        if policy_id not in masks:
            raise ValueError(f"Policy '{policy_id}' produced no mask at this level")
        return masks[policy_id]

    def run(
        self,
        counts: CountMatrix,
        subsets: Optional[Mapping[str, GeneSelection]] = None,
        spike_in: Optional[GeneSelection] = None,
        primary_subset: Optional[str] = None,
    ) -> QCResult:
        """Run metrics, all policies, agreement analysis and filtering.

        Parameters
        ----------
        counts : CountMatrix
            Raw counts (genes x cells)
        subsets : Mapping[str, GeneSelection], optional
            Named gene subsets, e.g. mitochondrial genes
        spike_in : GeneSelection, optional
            Spike-in features
        primary_subset : str, optional
            Subset reported as ``subset_percent``

        Returns
        -------
        QCResult
            Masks, agreement tables and the filtered matrix

        Raises
        ------
        EmptyMatrixError
            If the input has zero genes or cells.
        EmptyResultError
            If the selected masks discard everything.
        InvalidConfigurationError
            If a selected policy is unknown.
        """
        selection = self.config.selection
        self.logger.info("Running QC on %r", counts)

        cell_metrics = compute_cell_metrics(
            counts, subsets=subsets, spike_in=spike_in, primary_subset=primary_subset
        )
        cell_masks = self.compute_cell_masks(cell_metrics)
        cell_mask = self._selected(cell_masks, selection.cell_policy)
        cell_filtered = apply_masks(counts, cell_mask=cell_mask)

        gene_metrics = compute_gene_metrics(cell_filtered)
        gene_masks = self.compute_gene_masks(gene_metrics)
        gene_mask = None
        if selection.gene_policy is not None:
            gene_mask = self._selected(gene_masks, selection.gene_policy)
        filtered = apply_masks(cell_filtered, gene_mask=gene_mask)

        result = QCResult(
            cell_metrics=cell_metrics,
            gene_metrics=gene_metrics,
            cell_masks=cell_masks,
            gene_masks=gene_masks,
            cell_agreement=compute_agreement(list(cell_masks.values())),
            gene_agreement=compute_agreement(list(gene_masks.values())) if gene_masks else None,
            selected_cell_policy=selection.cell_policy,
            selected_gene_policy=selection.gene_policy,
            filtered=filtered,
        )

        summary = summarize_masks(list(cell_masks.values()))
        self.logger.debug("Cell policy summary:\n%s", summary.to_string())
        self.logger.info(
            "QC complete: %d -> %d cells, %d -> %d genes",
            counts.n_cells,
            filtered.n_cells,
            counts.n_genes,
            filtered.n_genes,
        )
        return result
