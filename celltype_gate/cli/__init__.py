"""Command-line interface for celltype-gate.

Example Usage
-------------
    # From command line:
    celltype-gate --help
    celltype-gate gate --input data.h5ad --model Bcell_Model.tsv --out gated/
    celltype-gate combine --input gated/gated.h5ad --model-name Bcell --model-name Tcell
    celltype-gate show-model Bcell_Model.tsv
"""

from .main import cli, main

__all__ = [
    "cli",
    "main",
]
