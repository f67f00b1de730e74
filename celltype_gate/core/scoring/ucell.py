"""Rank-based signature scoring.

Scores every cell against every signature with a Mann-Whitney U
statistic computed on per-cell gene ranks. Genes are ranked by
descending expression within each cell; only the top ``max_rank``
positions are informative, everything below is tied at
``max_rank + 1``. A signature whose genes all sit at the top of the
ranking scores close to 1, one whose genes are absent from the top
scores close to 0.

Supports parallel scoring of cell chunks via joblib.
"""

from __future__ import annotations

import logging
import time
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

import numpy as np
import pandas as pd
from joblib import Parallel, delayed
from scipy import sparse
from scipy.stats import rankdata

try:
    import scanpy as sc
except ImportError:
    sc = None

from ..model import Signature
from .provider import ScoreProvider

GeneIndex = Tuple[np.ndarray, np.ndarray]


def rank_genes(matrix: np.ndarray, max_rank: int) -> np.ndarray:
    """Rank genes within each cell (row), highest expression = rank 1.

    Ties get their average rank. Ranks beyond ``max_rank`` are set to
    ``max_rank + 1``.
    """
    ranks = rankdata(-np.asarray(matrix, dtype=np.float64), method="average", axis=1)
    ranks[ranks > max_rank] = max_rank + 1
    return ranks


def u_score(ranks: np.ndarray, gene_idx: np.ndarray, max_rank: int) -> np.ndarray:
    """Normalized U statistic of a gene set for each cell."""
    n_genes = len(gene_idx)
    if n_genes == 0:
        return np.zeros(ranks.shape[0], dtype=np.float64)
    rank_sum = ranks[:, gene_idx].sum(axis=1)
    u_stat = rank_sum - n_genes * (n_genes + 1) / 2.0
    return np.clip(1.0 - u_stat / (n_genes * max_rank), 0.0, 1.0)


def _score_chunk(
    chunk: np.ndarray,
    gene_index: Sequence[GeneIndex],
    max_rank: int,
    w_neg: float,
) -> np.ndarray:
    """Score one chunk of cells against all signatures.

    This function is designed to run in a separate process via joblib.
    """
    ranks = rank_genes(chunk, max_rank)
    out = np.zeros((chunk.shape[0], len(gene_index)), dtype=np.float64)
    for j, (pos_idx, neg_idx) in enumerate(gene_index):
        score = u_score(ranks, pos_idx, max_rank)
        if len(neg_idx) > 0:
            score = np.maximum(score - w_neg * u_score(ranks, neg_idx, max_rank), 0.0)
        out[:, j] = score
    return out


class UCellScorer(ScoreProvider):
    """Rank-based (UCell-style) signature scorer.

    Parameters
    ----------
    chunk_size : int
        Number of cells ranked at once
    n_workers : int
        Number of joblib workers (1 = sequential)
    w_neg : float
        Weight of the down-weighted gene set subtracted from the score
    layer : str, optional
        Expression layer to rank. Uses AnnData.X if None.
    logger : logging.Logger, optional
        Logger instance

    Example
    -------
    >>> scorer = UCellScorer(n_workers=4)
    >>> scores = scorer.score(adata, {"Tcell": Signature("Tcell", ("CD3D", "CD3E"))}, 1500)
    >>> scores["Tcell"].describe()
    """

    def __init__(
        self,
        chunk_size: int = 1000,
        n_workers: int = 1,
        w_neg: float = 1.0,
        layer: Optional[str] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.chunk_size = chunk_size
        self.n_workers = n_workers
        self.w_neg = w_neg
        self.layer = layer
        self.logger = logger or logging.getLogger(__name__)

    def _index_genes(
        self,
        signatures: Mapping[str, Signature],
        var_names: Sequence[str],
    ) -> List[GeneIndex]:
        var_index = {name: i for i, name in enumerate(var_names)}
        gene_index = []
        for name, sig in signatures.items():
            pos = [g for g in sig.positive_genes if g in var_index]
            neg = [g for g in sig.negative_genes if g in var_index]
            missing = [g for g in sig.positive_genes + sig.negative_genes if g not in var_index]
            if missing:
                self.logger.warning(
                    "Signature '%s': %d/%d genes not found in dataset: %s",
                    name,
                    len(missing),
                    len(sig.genes),
                    missing,
                )
            if not pos:
                self.logger.warning(
                    "Signature '%s' has no positive genes in dataset; scores set to 0",
                    name,
                )
            gene_index.append((
                np.array([var_index[g] for g in pos], dtype=np.int64),
                np.array([var_index[g] for g in neg], dtype=np.int64),
            ))
        return gene_index

    def score(
        self,
        adata: "sc.AnnData",
        signatures: Mapping[str, Signature],
        max_rank: int,
    ) -> pd.DataFrame:
        if self.layer is not None:
            if self.layer not in adata.layers:
                raise ValueError(f"Missing layer: {self.layer}")
            matrix = adata.layers[self.layer]
        else:
            matrix = adata.X

        n_cells, n_genes = matrix.shape
        names = list(signatures)
        if max_rank > n_genes:
            self.logger.info(
                "max_rank=%d exceeds number of genes; using %d", max_rank, n_genes
            )
            max_rank = n_genes

        gene_index = self._index_genes(signatures, list(adata.var_names.astype(str)))

        start_time = time.time()
        bounds = [
            (i, min(i + self.chunk_size, n_cells))
            for i in range(0, n_cells, self.chunk_size)
        ]

        def _dense(lo: int, hi: int) -> np.ndarray:
            block = matrix[lo:hi]
            return block.toarray() if sparse.issparse(block) else np.asarray(block)

        if self.n_workers <= 1 or len(bounds) <= 1:
            blocks = [
                _score_chunk(_dense(lo, hi), gene_index, max_rank, self.w_neg)
                for lo, hi in bounds
            ]
        else:
            blocks = Parallel(n_jobs=self.n_workers, backend="loky")(
                delayed(_score_chunk)(_dense(lo, hi), gene_index, max_rank, self.w_neg)
                for lo, hi in bounds
            )

        values = np.vstack(blocks) if blocks else np.zeros((0, len(names)))
        self.logger.info(
            "Scored %d cells against %d signatures (max_rank=%d) in %.2f sec",
            n_cells,
            len(names),
            max_rank,
            time.time() - start_time,
        )
        return pd.DataFrame(values, index=adata.obs_names.copy(), columns=names)
