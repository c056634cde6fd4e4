"""Write QC and clustering results to an output directory.

Layout::

    out/
      qc_summary.json          QCResult.to_dict()
      cell_metrics.csv         one row per cell
      cell_masks.csv           one boolean column per cell policy
      cell_agreement.csv       exact overlap table of the cell masks
      cell_overlap.csv         pairwise intersections and Jaccard indices
      gene_metrics.csv, gene_masks.csv, gene_agreement.csv
      clusters.csv             one label column per method
      clustering_summary.json  ClusteringResult.to_dict()
      modularity_<method>.csv  pairwise modularity per graph method
      gap_statistic.csv        k-means gap table
      method_agreement.csv     adjusted Rand index between methods
"""

from __future__ import annotations

from pathlib import Path
from typing import Dict

from ..core.clustering import ClusteringResult
from ..core.qc import QCResult
from .csv import ensure_output_dir, write_dataframe
from .logging import PathLike, write_json


def write_qc_reports(result: QCResult, out_dir: PathLike) -> Dict[str, Path]:
    """Write QC tables and summary; returns the written paths by name."""
    out = ensure_output_dir(out_dir)
    paths = {
        "summary": write_json(out / "qc_summary.json", result.to_dict()),
        "cell_metrics": write_dataframe(result.cell_metrics.table, out / "cell_metrics.csv", index=True),
        "cell_masks": write_dataframe(result.cell_mask_table(), out / "cell_masks.csv", index=True),
        "cell_agreement": write_dataframe(result.cell_agreement, out / "cell_agreement.csv"),
        "cell_overlap": write_dataframe(result.cell_overlap(), out / "cell_overlap.csv"),
        "gene_metrics": write_dataframe(result.gene_metrics.table, out / "gene_metrics.csv", index=True),
        "gene_masks": write_dataframe(result.gene_mask_table(), out / "gene_masks.csv", index=True),
    }
    if result.gene_agreement is not None:
        paths["gene_agreement"] = write_dataframe(result.gene_agreement, out / "gene_agreement.csv")
    return paths


def write_clustering_reports(result: ClusteringResult, out_dir: PathLike) -> Dict[str, Path]:
    """Write labelings, diagnostics and summary; returns the written paths by name."""
    out = ensure_output_dir(out_dir)
    paths = {
        "summary": write_json(out / "clustering_summary.json", result.to_dict()),
        "clusters": write_dataframe(result.clusters.to_dataframe(), out / "clusters.csv", index=True),
    }
    for method, matrix in result.modularity.items():
        paths[f"modularity_{method}"] = write_dataframe(
            matrix.values, out / f"modularity_{method}.csv", index=True
        )
    if "kmeans" in result.clusters:
        gap_table = result.clusters["kmeans"].diagnostics.get("gap_table")
        if gap_table is not None:
            paths["gap_statistic"] = write_dataframe(gap_table, out / "gap_statistic.csv", index=True)
    if result.agreement is not None:
        paths["method_agreement"] = write_dataframe(
            result.agreement, out / "method_agreement.csv", index=True
        )
    return paths
