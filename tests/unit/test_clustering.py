"""Tests for embeddings, the SNN graph, community detection and selection."""

import warnings

import pytest
import numpy as np
import pandas as pd

from cellsieve.core.clustering import (
    ClusterConfig,
    ClusterLabeling,
    ClusterSet,
    ClusteringEngine,
    Embedding,
    GraphConfig,
    KMeansConfig,
    HClustConfig,
    SelectorConfig,
    agreement_matrix,
    build_snn_graph,
    compute_pca,
    contingency_table,
    pairwise_modularity,
    relabel_by_size,
    run_louvain,
    run_walktrap,
    select_clustering,
)
from cellsieve.errors import EmptyMatrixError, InvalidConfigurationError

from tests.fixtures import blob_purity


# ============================================================================
# Embedding
# ============================================================================


class TestEmbedding:
    """Tests for the Embedding container."""

    def test_read_only(self):
        emb = Embedding(np.zeros((3, 2)))
        with pytest.raises(ValueError):
            emb.values[0, 0] = 1.0

    def test_non_finite(self):
        with pytest.raises(ValueError, match="non-finite"):
            Embedding(np.array([[0.0, np.nan]]))

    def test_empty(self):
        with pytest.raises(EmptyMatrixError):
            Embedding(np.zeros((0, 3)))

    def test_duplicate_names(self):
        with pytest.raises(ValueError, match="unique"):
            Embedding(np.zeros((2, 2)), cell_names=["a", "a"])

    def test_from_anndata(self, mock_counts):
        adata = mock_counts.to_anndata()
        adata.obsm["X_pca"] = np.arange(300, dtype=float).reshape(100, 3)
        emb = Embedding.from_anndata(adata, basis="X_pca", n_dims=2)
        assert emb.shape == (100, 2)
        assert emb.cell_names.equals(mock_counts.cell_names)

    def test_from_anndata_missing_basis(self, mock_counts):
        with pytest.raises(InvalidConfigurationError, match="X_umap"):
            Embedding.from_anndata(mock_counts.to_anndata(), basis="X_umap")

    def test_dataframe_round_trip(self):
        emb = Embedding(np.eye(3), cell_names=["a", "b", "c"], basis="X_pca")
        df = emb.to_dataframe()
        assert list(df.columns) == ["X_pca_1", "X_pca_2", "X_pca_3"]
        back = Embedding.from_dataframe(df)
        np.testing.assert_array_equal(back.values, emb.values)

    def test_compute_pca(self, mock_counts):
        emb = compute_pca(mock_counts, n_comps=5, seed=0)
        assert emb.shape == (100, 5)
        assert emb.basis == "X_pca"
        assert emb.cell_names.equals(mock_counts.cell_names)


# ============================================================================
# SNN graph
# ============================================================================


class TestSNNGraph:
    """Tests for shared-nearest-neighbor graph construction."""

    @pytest.fixture
    def line(self):
        return Embedding(np.array([[0.0], [1.0], [3.0]]), cell_names=["a", "b", "c"])

    def test_rank_weights(self, line):
        """Weights follow k - 0.5 * min combined shared rank, self at rank 0."""
        graph = build_snn_graph(line, k=1, weight_scheme="rank")
        np.testing.assert_array_equal(graph.edges, [[0, 1], [1, 2]])
        np.testing.assert_allclose(graph.weights, [0.5, 0.5])

    def test_jaccard_weights(self, line):
        graph = build_snn_graph(line, k=1, weight_scheme="jaccard")
        np.testing.assert_allclose(graph.weights, [1.0, 1 / 3])

    @pytest.mark.parametrize("scheme", ["rank", "jaccard"])
    def test_symmetric_and_positive(self, small_blobs, scheme):
        emb, _ = small_blobs
        graph = build_snn_graph(emb, k=5, weight_scheme=scheme)
        adj = graph.to_sparse()
        assert (adj != adj.T).nnz == 0
        assert np.all(graph.weights > 0)
        assert np.all(graph.edges[:, 0] < graph.edges[:, 1])
        assert adj.diagonal().sum() == 0

    def test_every_knn_pair_is_an_edge(self, small_blobs):
        """Each cell is adjacent to at least its k nearest neighbors."""
        emb, _ = small_blobs
        graph = build_snn_graph(emb, k=4)
        degrees = np.diff(graph.to_sparse().indptr)
        assert degrees.min() >= 4

    def test_full_neighborhood(self):
        """With k = N - 1 every cell neighbors every other cell."""
        rng = np.random.default_rng(4)
        emb = Embedding(rng.normal(size=(6, 3)))
        graph = build_snn_graph(emb, k=5, weight_scheme="jaccard")
        assert graph.n_edges == 15
        for node in range(6):
            assert list(graph.neighbors(node)) == [i for i in range(6) if i != node]
        np.testing.assert_allclose(graph.weights, 1.0)

    def test_k_clamped_with_warning(self):
        emb = Embedding(np.arange(8, dtype=float).reshape(4, 2))
        with pytest.warns(UserWarning, match="using k=3"):
            graph = build_snn_graph(emb, k=10)
        assert graph.k == 3
        assert graph.n_edges == 6

    def test_single_cell(self):
        with warnings.catch_warnings():
            warnings.simplefilter("error")
            graph = build_snn_graph(Embedding(np.zeros((1, 2))), k=3)
        assert graph.n_edges == 0

    def test_invalid_parameters(self, line):
        with pytest.raises(InvalidConfigurationError):
            build_snn_graph(line, k=0)
        with pytest.raises(InvalidConfigurationError, match="weight scheme"):
            build_snn_graph(line, k=1, weight_scheme="cosine")

    def test_components_follow_blobs(self, small_blobs):
        """Separated blobs give no edges between blobs."""
        emb, truth = small_blobs
        graph = build_snn_graph(emb, k=5)
        assert np.all(truth[graph.edges[:, 0]] == truth[graph.edges[:, 1]])

    def test_to_igraph(self, small_blobs):
        emb, _ = small_blobs
        graph = build_snn_graph(emb, k=5)
        g = graph.to_igraph()
        assert g.vcount() == graph.n_nodes
        assert g.ecount() == graph.n_edges
        assert sum(g.es["weight"]) == pytest.approx(graph.total_weight)


# ============================================================================
# Labeling types
# ============================================================================


class TestLabeling:
    """Tests for relabeling and labeling containers."""

    def test_relabel_by_size(self):
        labels = relabel_by_size(["b", "a", "a", "c", "c", "c"])
        np.testing.assert_array_equal(labels, [3, 2, 2, 1, 1, 1])

    def test_relabel_ties_by_first_appearance(self):
        np.testing.assert_array_equal(relabel_by_size([7, 7, 2, 2]), [1, 1, 2, 2])

    def test_labeling_read_only(self):
        lab = ClusterLabeling.from_raw("x", [0, 1], pd.Index(["a", "b"]))
        with pytest.raises(ValueError):
            lab.labels[0] = 5

    def test_length_mismatch(self):
        with pytest.raises(ValueError):
            ClusterLabeling(method="x", labels=[1, 2], cell_names=pd.Index(["a"]))

    def test_summary(self):
        lab = ClusterLabeling.from_raw(
            "x", [0, 0, 1], pd.Index(["a", "b", "c"]), diagnostics={"modularity": np.float64(0.4)}
        )
        summary = lab.summary()
        assert summary["n_clusters"] == 2
        assert summary["cluster_sizes"] == {1: 2, 2: 1}
        assert summary["diagnostics"] == {"modularity": 0.4}

    def test_cluster_set(self):
        cells = pd.Index(["a", "b"])
        a = ClusterLabeling.from_raw("louvain", [0, 1], cells)
        b = ClusterLabeling.from_raw("kmeans", [0, 0], cells)
        clusters = ClusterSet({"louvain": a, "kmeans": b}, selected="kmeans")
        assert clusters.selected is b
        assert list(clusters.to_dataframe().columns) == ["louvain", "kmeans"]
        with pytest.raises(KeyError):
            ClusterSet({"louvain": a}, selected="hclust")


# ============================================================================
# Community detection
# ============================================================================


class TestCommunityDetection:
    """Tests for walktrap, Louvain and pairwise modularity."""

    @pytest.fixture
    def graph(self, blobs):
        emb, _ = blobs
        return build_snn_graph(emb, k=10)

    def test_walktrap_respects_blobs(self, graph, blobs):
        _, truth = blobs
        lab = run_walktrap(graph)
        assert lab.n_clusters >= 3
        assert np.all(blob_purity(truth, lab.labels) == 1.0)
        assert lab.diagnostics["modularity"] > 0.5

    def test_louvain_respects_blobs(self, graph, blobs):
        _, truth = blobs
        lab = run_louvain(graph, seed=1)
        assert lab.n_clusters >= 3
        # Every community lies inside one blob
        assert np.all(blob_purity(truth, lab.labels) == 1.0)

    def test_louvain_deterministic(self, graph):
        a = run_louvain(graph, seed=99)
        b = run_louvain(graph, seed=99)
        np.testing.assert_array_equal(a.labels, b.labels)

    def test_louvain_requires_seed(self, graph):
        with pytest.raises(InvalidConfigurationError, match="seed"):
            run_louvain(graph, seed=None)
        lab = run_louvain(graph, seed=None, reproducible=False)
        assert len(lab) == graph.n_nodes

    def test_labels_ordered_by_size(self, graph):
        lab = run_louvain(graph, seed=1)
        sizes = [lab.cluster_sizes()[c] for c in lab.cluster_ids]
        assert sizes == sorted(sizes, reverse=True)
        assert list(lab.cluster_ids) == list(range(1, lab.n_clusters + 1))

    @pytest.mark.parametrize("method", ["walktrap", "louvain"])
    def test_modularity_matrix_properties(self, graph, method):
        lab = run_walktrap(graph) if method == "walktrap" else run_louvain(graph, seed=1)
        matrix = pairwise_modularity(graph, lab)
        values = matrix.to_numpy()
        assert values.shape == (lab.n_clusters, lab.n_clusters)
        assert matrix.is_symmetric()
        assert np.all(np.isfinite(values))
        assert np.all(values >= 0)
        # Denser than expected inside; blobs share no edges
        assert np.diag(values).min() > 1.0
        off = values[~np.eye(len(values), dtype=bool)]
        assert (off == 0).any()

    def test_modularity_single_cluster(self, graph):
        """One cluster holds all weight, so observed equals expected."""
        lab = ClusterLabeling.from_raw("all", np.zeros(graph.n_nodes), graph.cell_names)
        values = pairwise_modularity(graph, lab).to_numpy()
        np.testing.assert_allclose(values, [[1.0]])

    def test_modularity_misaligned(self, graph):
        lab = ClusterLabeling.from_raw("x", [0, 1], pd.Index(["a", "b"]))
        with pytest.raises(ValueError):
            pairwise_modularity(graph, lab)


# ============================================================================
# Comparison and selection
# ============================================================================


class TestSelection:
    """Tests for canonical-method selection and cross-method agreement."""

    @pytest.fixture
    def labelings(self):
        cells = pd.Index([f"c{i}" for i in range(6)])
        return {
            "louvain": ClusterLabeling.from_raw("louvain", [0, 0, 0, 1, 1, 1], cells),
            "kmeans": ClusterLabeling.from_raw("kmeans", [5, 5, 5, 2, 2, 2], cells),
            "hclust": ClusterLabeling.from_raw("hclust", [0, 1, 0, 1, 0, 1], cells),
        }

    def test_select(self, labelings):
        clusters = select_clustering(labelings, method="kmeans")
        assert clusters.selected_method == "kmeans"
        assert clusters.selected is labelings["kmeans"]

    def test_unknown_method(self, labelings):
        with pytest.raises(InvalidConfigurationError, match="Unknown"):
            select_clustering(labelings, method="dbscan")

    def test_missing_method(self, labelings):
        with pytest.raises(InvalidConfigurationError):
            select_clustering(labelings, method="walktrap")

    def test_coverage_checked(self, labelings):
        with pytest.raises(ValueError):
            select_clustering(labelings, method="louvain", cell_names=pd.Index(["c0"]))

    def test_agreement_matrix(self, labelings):
        ari = agreement_matrix(labelings)
        assert ari.loc["louvain", "kmeans"] == pytest.approx(1.0)
        assert ari.loc["louvain", "hclust"] < 0.5
        np.testing.assert_allclose(ari.to_numpy(), ari.to_numpy().T)

    def test_contingency_table(self, labelings):
        table = contingency_table(labelings["louvain"], labelings["hclust"])
        assert table.to_numpy().sum() == 6


# ============================================================================
# Engine
# ============================================================================


class TestClusteringEngine:
    """End-to-end tests for the clustering engine."""

    @pytest.fixture
    def config(self):
        return ClusterConfig(
            kmeans=KMeansConfig(k_max=6, n_references=5, n_init=3),
            hclust=HClustConfig(min_cluster_size=5),
        )

    def test_run(self, small_blobs, config):
        emb, truth = small_blobs
        result = ClusteringEngine(config).run(emb)
        assert set(result.clusters) == {"walktrap", "louvain", "kmeans", "hclust"}
        assert result.clusters.selected_method == "louvain"
        assert set(result.modularity) == {"walktrap", "louvain"}
        np.testing.assert_allclose(np.diag(result.agreement.to_numpy()), 1.0)
        for labeling in result.clusters.values():
            assert labeling.covers(emb.cell_names)
            assert np.all(blob_purity(truth, labeling.labels) == 1.0)

    def test_selected_method(self, small_blobs, config):
        emb, _ = small_blobs
        config.cluster = SelectorConfig(selected_method="hclust")
        result = ClusteringEngine(config).run(emb)
        assert result.selected.method == "hclust"
        assert result.to_dict()["selected_method"] == "hclust"

    def test_invalid_config(self):
        with pytest.raises(InvalidConfigurationError):
            ClusteringEngine(ClusterConfig(graph=GraphConfig(weight_scheme="cosine")))
