"""Clustering of QC-filtered cells.

Provides four competing clusterings of one low-dimensional embedding and
the selection of a canonical result.

Methods
-------
- walktrap / louvain: community detection on a shared-nearest-neighbor graph
- kmeans: k-means with the number of clusters chosen by the gap statistic
- hclust: Ward linkage with dynamic branch cutting

Example Usage
-------------
>>> from cellsieve.core.clustering import ClusteringEngine, ClusterConfig, Embedding
>>> embedding = Embedding.from_anndata(adata, basis="X_pca", n_dims=20)
>>> result = ClusteringEngine(ClusterConfig()).run(embedding)
>>> result.clusters.selected_method
'louvain'
"""

# Configuration classes
from .config import (
    CLUSTER_METHODS,
    WEIGHT_SCHEMES,
    ClusterConfig,
    CommunityConfig,
    GraphConfig,
    HClustConfig,
    KMeansConfig,
    SelectorConfig,
)

# Data types
from .embedding import Embedding, compute_pca
from .graph import NeighborGraph, build_snn_graph
from .labeling import ClusterLabeling, ClusterSet, ModularityMatrix, relabel_by_size

# Methods
from .community import pairwise_modularity, run_louvain, run_walktrap
from .kmeans import gap_statistic, run_kmeans, select_k
from .hierarchical import cutree_hybrid, run_hclust
from .comparison import agreement_matrix, contingency_table
from .selection import select_clustering

# Engine
from .engine import ClusteringEngine, ClusteringResult

__all__ = [
    # Config
    "CLUSTER_METHODS",
    "WEIGHT_SCHEMES",
    "ClusterConfig",
    "GraphConfig",
    "CommunityConfig",
    "KMeansConfig",
    "HClustConfig",
    "SelectorConfig",
    # Data
    "Embedding",
    "compute_pca",
    "NeighborGraph",
    "build_snn_graph",
    "ClusterLabeling",
    "ClusterSet",
    "ModularityMatrix",
    "relabel_by_size",
    # Methods
    "run_walktrap",
    "run_louvain",
    "pairwise_modularity",
    "gap_statistic",
    "select_k",
    "run_kmeans",
    "cutree_hybrid",
    "run_hclust",
    "contingency_table",
    "agreement_matrix",
    "select_clustering",
    # Engine
    "ClusteringEngine",
    "ClusteringResult",
]
