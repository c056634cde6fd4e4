"""Command-line interface for cellsieve.

Example Usage
-------------
    cellsieve --help
    cellsieve qc --input raw.h5ad --out qc/
    cellsieve cluster --input qc/filtered.h5ad --out clusters/ --method louvain
    cellsieve run --input raw.h5ad --out results/ --config cellsieve.yaml
"""

from .main import cli, main

__all__ = [
    "cli",
    "main",
]
