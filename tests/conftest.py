"""Pytest configuration and shared fixtures for cellsieve tests."""

import sys
from pathlib import Path

import pytest
import numpy as np
import pandas as pd

# Add package to path
PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

# Import mock data generators
from tests.fixtures import (
    create_blob_embedding,
    create_mock_counts,
)

from cellsieve.core.qc import CellMetrics


# ============================================================================
# Count Matrix Fixtures
# ============================================================================


@pytest.fixture
def mock_counts():
    """100 cells x 50 genes, 5 low-library cells first, 3 mito and 2 spike-in genes."""
    return create_mock_counts(n_genes=50, n_cells=100, n_low=5, n_mito=3, n_spike=2)


@pytest.fixture
def clean_counts():
    """100 cells x 50 genes without planted outliers."""
    return create_mock_counts(n_genes=50, n_cells=100)


@pytest.fixture
def make_cell_metrics():
    """Factory for CellMetrics built directly from metric vectors."""

    def _make(sum_, detected, subset_percent=None, altexp_percent=None, **extra):
        n = len(sum_)
        table = pd.DataFrame(
            {
                "sum": np.asarray(sum_, dtype=float),
                "detected": np.asarray(detected, dtype=float),
                "subset_percent": (
                    np.zeros(n) if subset_percent is None else np.asarray(subset_percent, dtype=float)
                ),
                "altexp_percent": (
                    np.zeros(n) if altexp_percent is None else np.asarray(altexp_percent, dtype=float)
                ),
                **extra,
            },
            index=pd.Index([f"cell_{i}" for i in range(n)], name="cell"),
        )
        return CellMetrics(table=table)

    return _make


# ============================================================================
# Embedding Fixtures
# ============================================================================


@pytest.fixture(scope="session")
def blobs():
    """Three Gaussian blobs of 100 cells in 10 dimensions, centers 20 apart."""
    return create_blob_embedding(n_per_blob=100, n_dims=10, n_blobs=3, separation=20.0)


@pytest.fixture
def small_blobs():
    """Three small blobs for quick graph tests."""
    return create_blob_embedding(n_per_blob=20, n_dims=5, n_blobs=3, separation=20.0, seed=3)


# ============================================================================
# Configuration Fixtures
# ============================================================================


@pytest.fixture
def tmp_output_dir(tmp_path: Path) -> Path:
    """Create a temporary output directory for tests."""
    output_dir = tmp_path / "output"
    output_dir.mkdir(parents=True, exist_ok=True)
    return output_dir


@pytest.fixture
def sample_config(tmp_path) -> Path:
    """Create a sample cellsieve configuration file."""
    import yaml

    config = {
        "cellsieve": {
            "adaptive": {"mad_multiplier": 3},
            "selection": {"cell_policy": "adaptive", "gene_policy": "low_frequency"},
            "graph": {"k_neighbors": 8, "weight_scheme": "jaccard"},
            "kmeans": {"k_max": 6, "n_references": 5, "n_init": 3},
            "hclust": {"min_cluster_size": 8},
            "cluster": {"selected_method": "kmeans"},
            "embedding": {"n_comps": 5},
        }
    }

    path = tmp_path / "cellsieve.yaml"
    with open(path, "w") as f:
        yaml.dump(config, f)

    return path
