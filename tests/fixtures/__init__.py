"""Test fixtures for cellsieve.

Provides synthetic data generators and test utilities.
"""

from .mock_data import (
    blob_purity,
    create_blob_embedding,
    create_mock_counts,
)

__all__ = [
    "blob_purity",
    "create_blob_embedding",
    "create_mock_counts",
]
