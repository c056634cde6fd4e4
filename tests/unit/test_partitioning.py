"""Tests for gap-statistic k-means and dynamic-cut hierarchical clustering."""

import pytest
import numpy as np
import pandas as pd
from scipy.cluster.hierarchy import linkage

from cellsieve.core.clustering import (
    Embedding,
    cutree_hybrid,
    gap_statistic,
    run_hclust,
    run_kmeans,
    select_k,
)
from cellsieve.core.clustering.hierarchical import cut_parameters
from cellsieve.errors import InvalidConfigurationError

from tests.fixtures import blob_purity, create_blob_embedding


# ============================================================================
# k-means with gap statistic
# ============================================================================


@pytest.fixture(scope="module")
def kmeans_blobs():
    """k-means on three blobs, computed once for the module."""
    emb, truth = create_blob_embedding(n_per_blob=100, n_dims=10, n_blobs=3, separation=20.0)
    labeling = run_kmeans(emb, k_max=10, n_references=10, seed=2024, n_init=5)
    return emb, truth, labeling


class TestKMeans:
    """Tests for k-means clustering with gap-statistic selection."""

    def test_selects_three_clusters(self, kmeans_blobs):
        _, _, labeling = kmeans_blobs
        assert labeling.diagnostics["k"] == 3
        assert labeling.n_clusters == 3

    def test_blob_purity(self, kmeans_blobs):
        """Each blob is at least 95% one cluster."""
        _, truth, labeling = kmeans_blobs
        assert np.all(blob_purity(labeling.labels, truth) >= 0.95)

    def test_gap_table(self, kmeans_blobs):
        _, _, labeling = kmeans_blobs
        table = labeling.diagnostics["gap_table"]
        assert list(table.index) == list(range(1, 11))
        assert list(table.columns) == ["log_w", "ref_log_w", "gap", "sd", "se"]
        assert np.all(np.isfinite(table.to_numpy()))
        assert table["gap"].idxmax() == 3

    def test_centers_match_labels(self, kmeans_blobs):
        """Row j - 1 of the centers is the mean of cluster j."""
        emb, _, labeling = kmeans_blobs
        centers = labeling.diagnostics["centers"]
        for j in range(1, 4):
            np.testing.assert_allclose(
                centers[j - 1], emb.values[labeling.labels == j].mean(axis=0), atol=1e-2
            )

    def test_deterministic(self):
        emb, _ = create_blob_embedding(n_per_blob=20, n_dims=3, seed=8)
        a = run_kmeans(emb, k_max=5, n_references=4, seed=1, n_init=2)
        b = run_kmeans(emb, k_max=5, n_references=4, seed=1, n_init=2)
        np.testing.assert_array_equal(a.labels, b.labels)
        pd.testing.assert_frame_equal(a.diagnostics["gap_table"], b.diagnostics["gap_table"])

    def test_independent_of_n_jobs(self):
        emb, _ = create_blob_embedding(n_per_blob=20, n_dims=3, seed=8)
        serial = gap_statistic(emb.values, k_max=4, n_references=3, seed=5, n_init=2, n_jobs=1)
        parallel = gap_statistic(emb.values, k_max=4, n_references=3, seed=5, n_init=2, n_jobs=2)
        pd.testing.assert_frame_equal(serial, parallel)

    def test_k_max_clamped(self):
        emb = Embedding(np.array([[0.0, 0.0], [0.0, 1.0], [5.0, 5.0], [5.0, 6.0]]))
        table = gap_statistic(emb.values, k_max=10, n_references=3, seed=0, n_init=2)
        assert table.index.max() == 3

    @pytest.mark.parametrize(
        "kwargs",
        [{"k_max": 0}, {"n_references": 0}, {"seed": None}],
    )
    def test_invalid_parameters(self, kwargs):
        emb, _ = create_blob_embedding(n_per_blob=5, n_dims=2)
        params = {"k_max": 3, "n_references": 2, "seed": 1, "n_init": 1}
        params.update(kwargs)
        with pytest.raises(InvalidConfigurationError):
            run_kmeans(emb, **params)

    def test_select_k_rule(self):
        """Smallest k with gap(k) >= gap(k+1) - se(k+1)."""
        table = pd.DataFrame(
            {"gap": [0.1, 0.5, 0.9, 0.95, 1.0], "se": [0.1, 0.1, 0.1, 0.1, 0.1]},
            index=pd.Index([1, 2, 3, 4, 5], name="k"),
        )
        assert select_k(table) == 3

    def test_select_k_falls_back_to_largest(self):
        table = pd.DataFrame({"gap": [0.1, 0.5, 0.9], "se": [0.0, 0.0, 0.0]}, index=[1, 2, 3])
        assert select_k(table) == 3


# ============================================================================
# Hierarchical clustering
# ============================================================================


class TestHierarchical:
    """Tests for Ward clustering with the dynamic branch cut."""

    def test_three_blobs(self, blobs):
        emb, truth = blobs
        labeling = run_hclust(emb, min_cluster_size=10, deep_split=1)
        assert labeling.n_clusters == 3
        assert labeling.diagnostics["mean_silhouette"] > 0.5
        assert np.all(blob_purity(labeling.labels, truth) >= 0.95)

    def test_silhouette_per_cell(self, blobs):
        emb, _ = blobs
        labeling = run_hclust(emb)
        widths = labeling.diagnostics["silhouette"]
        assert widths.shape == (emb.n_cells,)
        assert np.all((widths >= -1) & (widths <= 1))
        assert labeling.diagnostics["mean_silhouette"] == pytest.approx(widths.mean())

    def test_silhouette_matches_euclidean_widths(self, blobs):
        """Widths from the stored distance matrix equal direct Euclidean widths."""
        from sklearn.metrics import silhouette_samples

        emb, _ = blobs
        labeling = run_hclust(emb, min_cluster_size=10, deep_split=1)
        expected = silhouette_samples(emb.values, np.asarray(labeling.labels), metric="euclidean")
        np.testing.assert_allclose(labeling.diagnostics["silhouette"], expected, atol=1e-10)

    def test_every_cell_assigned(self, blobs):
        emb, _ = blobs
        labeling = run_hclust(emb, min_cluster_size=30, deep_split=4)
        assert len(labeling) == emb.n_cells
        assert labeling.labels.min() == 1
        assert min(labeling.cluster_sizes().values()) >= 1

    def test_single_blob_one_cluster(self):
        """A single Gaussian yields a valid labeling; one cluster has no silhouette."""
        rng = np.random.default_rng(2)
        emb = Embedding(rng.normal(size=(60, 4)))
        labeling = run_hclust(emb, min_cluster_size=10, deep_split=0)
        assert labeling.n_clusters >= 1
        if labeling.n_clusters == 1:
            assert np.isnan(labeling.diagnostics["mean_silhouette"])

    def test_cut_parameters(self):
        heights = np.linspace(1.0, 101.0, 101)
        params = cut_parameters(heights, min_cluster_size=5, deep_split=1)
        assert params.reference_height == pytest.approx(6.0)
        assert params.cut_height == pytest.approx(6.0 + 0.99 * 95.0)
        assert params.reference_height < params.max_core_scatter < params.cut_height
        assert params.min_gap > 0

    def test_deep_split_order(self):
        """Higher deep_split allows more core scatter and smaller gaps."""
        heights = np.linspace(0.0, 10.0, 50)
        coarse = cut_parameters(heights, 10, 0)
        fine = cut_parameters(heights, 10, 4)
        assert fine.max_core_scatter > coarse.max_core_scatter
        assert fine.min_gap < coarse.min_gap

    def test_cutree_hybrid_direct(self, small_blobs):
        emb, truth = small_blobs
        Z = linkage(emb.values, method="ward")
        labels, params = cutree_hybrid(Z, emb.values, min_cluster_size=5, deep_split=1)
        assert labels.shape == (emb.n_cells,)
        assert np.unique(labels).size == 3
        assert params.min_cluster_size == 5

    def test_non_ward_rejected(self, blobs):
        emb, _ = blobs
        with pytest.raises(InvalidConfigurationError, match="Ward"):
            run_hclust(emb, linkage_method="average")

    @pytest.mark.parametrize("kwargs", [{"min_cluster_size": 0}, {"deep_split": 5}])
    def test_invalid_parameters(self, blobs, kwargs):
        emb, _ = blobs
        with pytest.raises(InvalidConfigurationError):
            run_hclust(emb, **kwargs)
