"""Test fixtures for celltype-gate.

Provides mock data generators and stub collaborators.
"""

from .mock_adata import (
    BLACKLIST_GENES,
    GROUP_MARKERS,
    FixedScorer,
    LabelClusterer,
    create_mock_adata,
    create_score_table,
    create_scored_adata,
    marker_genes,
)

__all__ = [
    "BLACKLIST_GENES",
    "GROUP_MARKERS",
    "FixedScorer",
    "LabelClusterer",
    "create_mock_adata",
    "create_score_table",
    "create_scored_adata",
    "marker_genes",
]
