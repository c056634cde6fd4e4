"""End-to-end cellsieve run: QC, embedding and clustering.

Each stage consumes the previous stage's artifacts and returns new ones;
nothing is modified in place.
"""

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Mapping, Optional
import logging
import time

from ..core.clustering import ClusteringEngine, ClusteringResult, Embedding, compute_pca
from ..core.qc import CountMatrix, QCEngine, QCResult
from ..core.qc.metrics import GeneSelection
from .config import SieveConfig
from .logger import PipelineLogger


@dataclass
class PipelineResult:
    """Artifacts of a full run.

    Attributes
    ----------
    qc : QCResult
        Masks, agreement tables and the filtered matrix
    embedding : Embedding
        Coordinates used for clustering
    clustering : ClusteringResult
        Labelings with one selected
    timings : Dict[str, float]
        Seconds per stage
    """

    qc: QCResult
    embedding: Embedding
    clustering: ClusteringResult
    timings: Dict[str, float] = field(default_factory=dict)

    @property
    def filtered(self) -> CountMatrix:
        return self.qc.filtered

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for reporting."""
        return {
            "qc": self.qc.to_dict(),
            "embedding": {"basis": self.embedding.basis, "n_dims": self.embedding.n_dims},
            "clustering": self.clustering.to_dict(),
            "timings": {k: round(v, 3) for k, v in self.timings.items()},
        }


class SievePipeline:
    """Run QC, embedding and clustering in sequence.

    Parameters
    ----------
    config : SieveConfig, optional
        Master configuration. If None, uses defaults.
    logger : PipelineLogger, optional
        Stage logger. If None, stage events go to the module logger.

    Example
    -------
    >>> from cellsieve.pipeline import SievePipeline, SieveConfig
    >>> pipeline = SievePipeline(SieveConfig.from_yaml("cellsieve.yaml"))
    >>> result = pipeline.run(counts, subsets={"Mito": mito_genes})
    >>> result.clustering.selected.to_series()
    """

    def __init__(
        self,
        config: Optional[SieveConfig] = None,
        logger: Optional[PipelineLogger] = None,
    ):
        self.config = config or SieveConfig()
        self.config.validate()
        self.pipeline_logger = logger
        self.logger = logger.logger if logger is not None else logging.getLogger(__name__)

    def _summarize(self, stage_id: str, summary: Dict[str, Any]) -> None:
        if self.pipeline_logger:
            self.pipeline_logger.log_stage_summary(stage_id, summary)

    def _run_stage(self, stage_id: str, name: str, func: Callable, timings: Dict[str, float]):
        if self.pipeline_logger:
            self.pipeline_logger.log_stage_start(stage_id, name)
        start_time = time.time()
        try:
            result = func()
        except Exception as e:
            if self.pipeline_logger:
                self.pipeline_logger.log_stage_error(stage_id, str(e))
            raise
        timings[stage_id] = time.time() - start_time
        if self.pipeline_logger:
            self.pipeline_logger.log_stage_complete(stage_id, timings[stage_id])
        return result

    def run_qc(
        self,
        counts: CountMatrix,
        subsets: Optional[Mapping[str, GeneSelection]] = None,
        spike_in: Optional[GeneSelection] = None,
        primary_subset: Optional[str] = None,
    ) -> QCResult:
        engine = QCEngine(self.config.qc, logger=self.logger)
        return engine.run(counts, subsets=subsets, spike_in=spike_in, primary_subset=primary_subset)

    def compute_embedding(self, counts: CountMatrix) -> Embedding:
        cfg = self.config.embedding
        return compute_pca(counts, n_comps=cfg.n_comps, seed=cfg.seed, target_sum=cfg.target_sum)

    def run_clustering(self, embedding: Embedding) -> ClusteringResult:
        return ClusteringEngine(self.config.clustering, logger=self.logger).run(embedding)

    def run(
        self,
        counts: CountMatrix,
        subsets: Optional[Mapping[str, GeneSelection]] = None,
        spike_in: Optional[GeneSelection] = None,
        primary_subset: Optional[str] = None,
        embedding: Optional[Embedding] = None,
    ) -> PipelineResult:
        """Run the full pipeline.

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
        embedding : Embedding, optional
            Precomputed coordinates of the filtered cells. Computed with
            PCA if None.

        Returns
        -------
        PipelineResult
            Artifacts of every stage

        Raises
        ------
        ValueError
            If a supplied embedding does not match the filtered cells.
        """
        timings: Dict[str, float] = {}
        if self.pipeline_logger:
            self.pipeline_logger.log_run_start(counts.n_genes, counts.n_cells)
        qc = self._run_stage(
            "qc",
            "Quality control",
            lambda: self.run_qc(counts, subsets, spike_in, primary_subset),
            timings,
        )
        self._summarize(
            "qc",
            {
                "cell_policy": qc.selected_cell_policy,
                "cells_kept": f"{qc.filtered.n_cells}/{counts.n_cells}",
                "genes_kept": f"{qc.filtered.n_genes}/{counts.n_genes}",
            },
        )

        if embedding is None:
            embedding = self._run_stage(
                "embedding", "PCA embedding", lambda: self.compute_embedding(qc.filtered), timings
            )
        elif not embedding.cell_names.equals(qc.filtered.cell_names):
            # Allow an embedding of all cells; keep the rows that passed QC
            missing = qc.filtered.cell_names.difference(embedding.cell_names)
            if len(missing):
                raise ValueError(f"Embedding lacks {len(missing)} cells that passed QC")
            frame = embedding.to_dataframe().loc[qc.filtered.cell_names]
            embedding = Embedding.from_dataframe(frame, basis=embedding.basis)

        clustering = self._run_stage(
            "clustering", "Clustering", lambda: self.run_clustering(embedding), timings
        )
        self._summarize("clustering", {**clustering.n_clusters, "selected": clustering.clusters.selected_method})
        return PipelineResult(qc=qc, embedding=embedding, clustering=clustering, timings=timings)
