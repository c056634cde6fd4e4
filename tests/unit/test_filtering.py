"""Tests for mask application and the QC engine."""

import logging

import pytest
import numpy as np
import pandas as pd

from cellsieve.core.qc import (
    CountMatrix,
    DiscardMask,
    QCConfig,
    QCEngine,
    SelectionConfig,
    apply_masks,
    filter_cells,
    filter_genes,
)
from cellsieve.errors import EmptyMatrixError, EmptyResultError, InvalidConfigurationError

from tests.fixtures import create_mock_counts


def _cell_mask(counts, values, name="test"):
    return DiscardMask(name=name, level="cell", values=values, index=counts.cell_names)


def _gene_mask(counts, values, name="test"):
    return DiscardMask(name=name, level="gene", values=values, index=counts.gene_names)


class TestFiltering:
    """Tests for filter_cells, filter_genes and apply_masks."""

    def test_keep_all_returns_equal_matrix(self, mock_counts):
        """An all-False mask yields a matrix equal to the input."""
        filtered = filter_cells(mock_counts, _cell_mask(mock_counts, np.zeros(100, bool)))
        assert filtered.equals(mock_counts)
        assert filtered is not mock_counts

    def test_drops_flagged_cells(self, mock_counts):
        values = np.zeros(100, bool)
        values[[0, 5, 99]] = True
        filtered = filter_cells(mock_counts, _cell_mask(mock_counts, values))
        assert filtered.n_cells == 97
        assert "cell_5" not in filtered.cell_names
        assert filtered.n_genes == mock_counts.n_genes

    def test_input_untouched(self, mock_counts):
        before = mock_counts.to_dense()
        values = np.zeros(100, bool)
        values[:10] = True
        filter_cells(mock_counts, _cell_mask(mock_counts, values))
        np.testing.assert_array_equal(mock_counts.to_dense(), before)

    def test_filter_genes(self, mock_counts):
        values = np.zeros(50, bool)
        values[:3] = True
        filtered = filter_genes(mock_counts, _gene_mask(mock_counts, values))
        assert filtered.n_genes == 47
        assert list(filtered.gene_names) == list(mock_counts.gene_names[3:])

    def test_all_discarded(self, mock_counts):
        with pytest.raises(EmptyResultError):
            filter_cells(mock_counts, _cell_mask(mock_counts, np.ones(100, bool)))

    def test_length_mismatch(self, mock_counts):
        other = create_mock_counts(n_cells=20)
        with pytest.raises(ValueError, match="aligned"):
            filter_cells(mock_counts, _cell_mask(other, np.zeros(20, bool)))

    def test_wrong_level(self, mock_counts):
        with pytest.raises(ValueError, match="cell-level"):
            filter_cells(mock_counts, _gene_mask(mock_counts, np.zeros(50, bool)))

    def test_apply_both(self, mock_counts):
        cells = np.zeros(100, bool)
        cells[:5] = True
        genes = np.zeros(50, bool)
        genes[-2:] = True
        filtered = apply_masks(
            mock_counts,
            cell_mask=_cell_mask(mock_counts, cells),
            gene_mask=_gene_mask(mock_counts, genes),
        )
        assert filtered.shape == (48, 95)

    def test_sparse_metadata_preserved(self):
        from scipy import sparse

        meta = pd.DataFrame({"batch": ["a", "b", "c"]})
        counts = CountMatrix(sparse.csc_matrix(np.ones((2, 3))), cell_metadata=meta)
        filtered = filter_cells(counts, _cell_mask(counts, [False, True, False]))
        assert filtered.is_sparse
        assert list(filtered.cell_metadata["batch"]) == ["a", "c"]


class TestQCEngine:
    """End-to-end tests for the QC engine."""

    def test_low_library_cells_removed(self):
        """5 cells with a tenth of the usual library are exactly the adaptive discards."""
        counts = create_mock_counts(n_genes=50, n_cells=100, n_low=5)
        result = QCEngine().run(counts)

        adaptive = result.cell_masks["adaptive"]
        assert np.flatnonzero(adaptive.values).tolist() == [0, 1, 2, 3, 4]
        assert result.filtered.n_cells == 95
        assert result.filtered.n_genes == 50

    def test_all_cell_policies_run(self, mock_counts):
        result = QCEngine().run(mock_counts)
        assert set(result.cell_masks) == {"manual", "adaptive", "outlier"}
        assert set(result.gene_masks) == {"low_abundance", "low_frequency"}
        assert len(result.cell_agreement) == 8
        assert result.cell_agreement["n"].sum() == 100
        assert len(result.gene_agreement) == 4

    def test_gene_metrics_after_cell_filter(self, mock_counts):
        result = QCEngine().run(mock_counts)
        assert result.gene_metrics.n_cells == result.selected_cell_mask.n_kept

    def test_gene_policy_selection(self):
        counts = np.ones((3, 200))
        counts[2, :] = 0
        counts[2, 0] = 1
        matrix = CountMatrix(counts)
        config = QCConfig(selection=SelectionConfig(cell_policy="adaptive", gene_policy="low_frequency"))
        result = QCEngine(config).run(matrix)
        assert result.filtered.n_genes == 2
        assert result.selected_gene_mask.n_discarded == 1

    def test_manual_selection_can_empty(self, mock_counts):
        """Default manual cutoffs exceed these small libraries."""
        config = QCConfig(selection=SelectionConfig(cell_policy="manual"))
        with pytest.raises(EmptyResultError):
            QCEngine(config).run(mock_counts)

    def test_unknown_selected_policy(self, mock_counts):
        config = QCConfig(selection=SelectionConfig(cell_policy="magic"))
        with pytest.raises(InvalidConfigurationError):
            QCEngine(config).run(mock_counts)

    def test_gene_policy_as_cell_policy(self):
        config = QCConfig(selection=SelectionConfig(cell_policy="low_abundance"))
        with pytest.raises(InvalidConfigurationError, match="not a cell policy"):
            QCEngine(config)

    def test_with_mito_and_spike_subsets(self):
        """Tied subset percentages still give finite outlier scores."""
        counts = create_mock_counts(n_genes=50, n_cells=100, n_low=5, n_mito=3, n_spike=2)
        result = QCEngine().run(counts, subsets={"Mito": [0, 1, 2]}, spike_in=[48, 49])

        assert set(result.cell_masks) == {"manual", "adaptive", "outlier"}
        scores = result.cell_masks["outlier"].thresholds["scores"].to_numpy()
        assert np.all(np.isfinite(scores))
        assert result.cell_masks["outlier"].values[:5].all()

    def test_empty_input(self):
        with pytest.raises(EmptyMatrixError):
            QCEngine().run(CountMatrix(np.zeros((0, 0))))

    def test_subsets_reported(self, mock_counts):
        mito = [g for g in mock_counts.gene_names if g.startswith("mt-")]
        result = QCEngine().run(mock_counts, subsets={"Mito": mito})
        assert "subsets_Mito_percent" in result.cell_metrics.table.columns
        assert result.cell_metrics.subset_percent.mean() == pytest.approx(6.0, rel=0.1)

    def test_to_dict(self, mock_counts):
        summary = QCEngine().run(mock_counts).to_dict()
        assert summary["cells_total"] == 100
        assert summary["selected_cell_policy"] == "adaptive"
        assert summary["cells_kept"] <= 100

    def test_logs_policy_counts(self, mock_counts, caplog):
        with caplog.at_level(logging.INFO, logger="qc_engine_test"):
            QCEngine(logger=logging.getLogger("qc_engine_test")).run(mock_counts)
        assert any("Policy adaptive" in r.getMessage() for r in caplog.records)
