"""I/O utilities for cellsieve.

Provides JSON report output, CSV I/O, and report writers.
"""

from .logging import log_json, to_builtin, write_json
from .csv import ensure_output_dir, load_gene_list, write_dataframe
from .reports import write_clustering_reports, write_qc_reports

__all__ = [
    # JSON output
    "log_json",
    "to_builtin",
    "write_json",
    # CSV I/O
    "ensure_output_dir",
    "load_gene_list",
    "write_dataframe",
    # Reports
    "write_qc_reports",
    "write_clustering_reports",
]
