"""Clustering engine for cell population identification.

Runs four competing clusterings of one embedding and selects the
canonical one:

    SNN graph → walktrap, louvain (+ pairwise modularity)
    embedding → k-means (gap statistic), Ward + dynamic cut
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Optional
import logging

import pandas as pd

from .community import pairwise_modularity, run_louvain, run_walktrap
from .comparison import agreement_matrix
from .config import ClusterConfig
from .embedding import Embedding
from .graph import NeighborGraph, build_snn_graph
from .hierarchical import run_hclust
from .kmeans import run_kmeans
from .labeling import ClusterLabeling, ClusterSet, ModularityMatrix
from .selection import select_clustering


@dataclass
class ClusteringResult:
    """Result from a clustering run.

    Attributes
    ----------
    graph : NeighborGraph
        SNN graph used by the community detectors
    clusters : ClusterSet
        All labelings, one marked canonical
    modularity : Dict[str, ModularityMatrix]
        Pairwise modularity per graph-based labeling
    agreement : pd.DataFrame
        Adjusted Rand index between methods
    """

    graph: NeighborGraph
    clusters: ClusterSet
    modularity: Dict[str, ModularityMatrix] = field(default_factory=dict)
    agreement: Optional[pd.DataFrame] = None

    @property
    def selected(self) -> ClusterLabeling:
        return self.clusters.selected

    @property
    def n_clusters(self) -> Dict[str, int]:
        return {method: lab.n_clusters for method, lab in self.clusters.items()}

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for reporting."""
        result: Dict[str, Any] = {
            "n_cells": self.graph.n_nodes,
            "graph": {
                "k": self.graph.k,
                "weight_scheme": self.graph.weight_scheme,
                "n_edges": self.graph.n_edges,
            },
            "selected_method": self.clusters.selected_method,
            "methods": {m: lab.summary() for m, lab in self.clusters.items()},
        }
        if self.agreement is not None:
            result["adjusted_rand_index"] = self.agreement.round(4).to_dict()
        return result


class ClusteringEngine:
    """Clustering engine running graph, partition and hierarchical methods.

    Parameters
    ----------
    config : ClusterConfig, optional
        Clustering configuration. If None, uses defaults.
    logger : logging.Logger, optional
        Logger instance. If None, creates default logger.

    Example
    -------
    >>> from cellsieve.core.clustering import ClusteringEngine, Embedding
    >>> engine = ClusteringEngine()
    >>> result = engine.run(Embedding.from_anndata(adata, basis="X_pca"))
    >>> result.selected.to_series().value_counts()
    """

    def __init__(
        self,
        config: Optional[ClusterConfig] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.config = config or ClusterConfig()
        self.config.validate()
        self.logger = logger or logging.getLogger(__name__)

    def build_graph(self, embedding: Embedding) -> NeighborGraph:
        cfg = self.config.graph
        return build_snn_graph(
            embedding,
            k=cfg.k_neighbors,
            weight_scheme=cfg.weight_scheme,
            n_jobs=cfg.n_jobs,
        )

    def run_graph_methods(self, graph: NeighborGraph) -> Dict[str, ClusterLabeling]:
        """Walktrap and Louvain on the same graph."""
        cfg = self.config.community
        return {
            "walktrap": run_walktrap(graph, steps=cfg.walktrap_steps),
            "louvain": run_louvain(
                graph,
                seed=cfg.seed,
                resolution=cfg.louvain_resolution,
                reproducible=self.config.reproducible,
            ),
        }

    def run_kmeans(self, embedding: Embedding) -> ClusterLabeling:
        cfg = self.config.kmeans
        return run_kmeans(
            embedding,
            k_max=cfg.k_max,
            n_references=cfg.n_references,
            seed=cfg.seed,
            n_init=cfg.n_init,
            n_jobs=cfg.n_jobs,
            reproducible=self.config.reproducible,
        )

    def run_hclust(self, embedding: Embedding) -> ClusterLabeling:
        cfg = self.config.hclust
        return run_hclust(
            embedding,
            min_cluster_size=cfg.min_cluster_size,
            deep_split=cfg.deep_split,
            linkage_method=cfg.linkage,
        )

    def run(self, embedding: Embedding) -> ClusteringResult:
        """Run all methods and select the canonical labeling.

        Parameters
        ----------
        embedding : Embedding
            Cell coordinates (typically PCA of the filtered matrix)

        Returns
        -------
        ClusteringResult
            Graph, labelings, modularity matrices and method agreement

        Raises
        ------
        InvalidConfigurationError
            If a parameter is invalid or a required seed is missing.
        NonConvergenceError
            If a method fails to produce a partition.
        """
        self.logger.info("Running clustering on %r", embedding)

        graph = self.build_graph(embedding)
        labelings = self.run_graph_methods(graph)
        modularity = {
            method: pairwise_modularity(graph, labeling)
            for method, labeling in labelings.items()
        }
        labelings["kmeans"] = self.run_kmeans(embedding)
        labelings["hclust"] = self.run_hclust(embedding)

        clusters = select_clustering(
            labelings,
            method=self.config.cluster.selected_method,
            cell_names=embedding.cell_names,
        )
        result = ClusteringResult(
            graph=graph,
            clusters=clusters,
            modularity=modularity,
            agreement=agreement_matrix(labelings),
        )

        for method, n in result.n_clusters.items():
            self.logger.info("  %s: %d clusters", method, n)
        return result
