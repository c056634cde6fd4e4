"""Utility functions for cellsieve.

Provides robust statistics shared by the QC policies.
"""

from .stats import (
    MAD_CONSTANT,
    mad,
    outlier_thresholds,
    is_outlier,
)

__all__ = [
    "MAD_CONSTANT",
    "mad",
    "outlier_thresholds",
    "is_outlier",
]
