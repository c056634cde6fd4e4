"""Apply discard masks to a count matrix.

Filtering returns a new matrix; the input is never modified. Order of the
surviving genes and cells is preserved.
"""

from __future__ import annotations

import logging
from typing import Optional

from ...errors import EmptyResultError
from .masks import DiscardMask
from .matrix import CountMatrix

logger = logging.getLogger(__name__)


def _check_mask(counts: CountMatrix, mask: DiscardMask, level: str) -> None:
    if mask.level != level:
        raise ValueError(f"Expected a {level}-level mask, got '{mask.name}' ({mask.level})")
    names = counts.cell_names if level == "cell" else counts.gene_names
    if not mask.index.equals(names):
        raise ValueError(
            f"Mask '{mask.name}' is not aligned to the matrix {level}s "
            f"({len(mask)} flags for {len(names)} {level}s)"
        )


def filter_cells(counts: CountMatrix, mask: DiscardMask) -> CountMatrix:
    """Drop discarded cells.

    Raises
    ------
    ValueError
        If the mask is not a cell mask aligned to ``counts``.
    EmptyResultError
        If every cell would be discarded.
    """
    return apply_masks(counts, cell_mask=mask)


def filter_genes(counts: CountMatrix, mask: DiscardMask) -> CountMatrix:
    """Drop discarded genes.

    Raises
    ------
    ValueError
        If the mask is not a gene mask aligned to ``counts``.
    EmptyResultError
        If every gene would be discarded.
    """
    return apply_masks(counts, gene_mask=mask)


def apply_masks(
    counts: CountMatrix,
    cell_mask: Optional[DiscardMask] = None,
    gene_mask: Optional[DiscardMask] = None,
) -> CountMatrix:
    """Drop discarded cells and genes in one step.

    Parameters
    ----------
    counts : CountMatrix
        Input matrix
    cell_mask : DiscardMask, optional
        Cell-level mask; all cells are kept if None
    gene_mask : DiscardMask, optional
        Gene-level mask; all genes are kept if None

    Returns
    -------
    CountMatrix
        New matrix with the kept genes and cells in their original order

    Raises
    ------
    ValueError
        If a mask has the wrong level or is misaligned.
    EmptyResultError
        If nothing would remain along either axis.
    """
    cell_keep = gene_keep = None
    if cell_mask is not None:
        _check_mask(counts, cell_mask, "cell")
        if cell_mask.n_kept == 0:
            raise EmptyResultError(f"Mask '{cell_mask.name}' discards all {len(cell_mask)} cells")
        cell_keep = cell_mask.keep
    if gene_mask is not None:
        _check_mask(counts, gene_mask, "gene")
        if gene_mask.n_kept == 0:
            raise EmptyResultError(f"Mask '{gene_mask.name}' discards all {len(gene_mask)} genes")
        gene_keep = gene_mask.keep

    filtered = counts.subset(gene_keep=gene_keep, cell_keep=cell_keep)
    logger.info(
        "Filtered %d genes x %d cells -> %d genes x %d cells",
        counts.n_genes,
        counts.n_cells,
        filtered.n_genes,
        filtered.n_cells,
    )
    return filtered
