"""CellType-Gate: Hierarchical signature gating for single-cell RNA-seq data.

This package provides tools for:
- Gating models built from positive/negative gene signatures per level
- Rank-based signature scoring of every cell
- kNN smoothing of signature scores, or cluster-majority voting
- Level-by-level purification of a target cell population
- Multi-model consensus labeling

Example usage:
    >>> from celltype_gate.core.model import load_model
    >>> from celltype_gate.core.gating import GatingEngine
    >>>
    >>> model = load_model("Bcell_scGate_Model.tsv")
    >>> result = GatingEngine(model).run(adata)
    >>> adata.obs["is.pure"].value_counts()
"""

__version__ = "0.1.0"
