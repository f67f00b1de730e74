"""Signature scoring module.

Provides the score provider contract and the default rank-based scorer.
"""

from .provider import (
    SCORE_SUFFIX,
    ScoreProvider,
    collect_signatures,
    score_column,
    score_signatures,
)
from .ucell import UCellScorer, rank_genes, u_score

__all__ = [
    "SCORE_SUFFIX",
    "ScoreProvider",
    "UCellScorer",
    "collect_signatures",
    "rank_genes",
    "score_column",
    "score_signatures",
    "u_score",
]
