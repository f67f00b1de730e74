"""kNN smoothing of signature scores.

Each cell's score is replaced by the unweighted mean over the cell
itself and its k nearest neighbors in an embedding. The neighbor graph
is computed once per run with an exact (brute-force) search and distance
ties are broken by cell id, so the result depends only on the embedding
and the cell ids, not on cell order.
"""

from __future__ import annotations

import logging
from typing import Optional, Sequence

import numpy as np
import pandas as pd
from sklearn.neighbors import NearestNeighbors

# Brute-force euclidean distances carry rounding error; candidates within
# this (relative) band of the k-th distance are re-ranked on exact distances
TIE_RTOL = 1e-6


def _tie_rank(cell_ids: Optional[Sequence[str]], n_cells: int) -> np.ndarray:
    """Position of each cell when sorted by id; row position without ids."""
    if cell_ids is None:
        return np.arange(n_cells)
    ids = np.asarray([str(c) for c in cell_ids], dtype=object)
    if len(ids) != n_cells:
        raise ValueError(f"Got {len(ids)} cell ids for {n_cells} embedding rows")
    rank = np.empty(n_cells, dtype=np.intp)
    rank[np.argsort(ids, kind="stable")] = np.arange(n_cells)
    return rank


def build_neighbor_index(
    embedding: np.ndarray,
    k_param: int,
    cell_ids: Optional[Sequence[str]] = None,
    logger: Optional[logging.Logger] = None,
) -> np.ndarray:
    """Find the k nearest neighbors of every cell.

    Neighbors at the same distance as the k-th one are ranked by cell id,
    so the neighbor set of a cell does not change when rows are reordered.

    Parameters
    ----------
    embedding : np.ndarray
        Array of shape (n_cells, n_dims)
    k_param : int
        Number of neighbors, excluding the cell itself. Capped at n_cells - 1.
    cell_ids : Sequence[str], optional
        Cell identifiers aligned with the rows of embedding, used to break
        distance ties. Without ids, ties go to the lower row.

    Returns
    -------
    np.ndarray
        Integer array of shape (n_cells, k + 1); column 0 is the cell itself
    """
    if logger is None:
        logger = logging.getLogger(__name__)

    embedding = np.asarray(embedding, dtype=np.float64)
    n_cells = embedding.shape[0]
    self_idx = np.arange(n_cells).reshape(-1, 1)

    k = min(int(k_param), n_cells - 1)
    if k < 1:
        return self_idx
    if k < k_param:
        logger.warning(
            "k_param=%d exceeds population size; using k=%d", k_param, k
        )
    if k == n_cells - 1:
        # Every other cell is a neighbor
        others = np.tile(np.arange(n_cells), (n_cells, 1))
        others = others[~np.eye(n_cells, dtype=bool)].reshape(n_cells, k)
        return np.hstack([self_idx, others])

    rank = _tie_rank(cell_ids, n_cells)
    nn = NearestNeighbors(n_neighbors=k + 1, algorithm="brute", metric="euclidean")
    nn.fit(embedding)
    # Querying without X excludes each point from its own neighbor list
    distances, neighbors = nn.kneighbors()

    # Rows whose (k+1)-th candidate ties the k-th have an ambiguous neighbor set
    kth = distances[:, k - 1]
    tol = TIE_RTOL * np.maximum(kth, 1.0)
    ambiguous = np.flatnonzero(distances[:, k] - kth <= tol)
    result = neighbors[:, :k].copy()
    if len(ambiguous):
        logger.debug("Breaking distance ties by cell id for %d cells", len(ambiguous))
    for i in ambiguous:
        cand_idx = nn.radius_neighbors(
            embedding[i : i + 1], radius=kth[i] + 2 * tol[i], return_distance=False
        )[0]
        cand_idx = np.union1d(cand_idx, neighbors[i])
        cand_idx = cand_idx[cand_idx != i]
        exact = np.sqrt(((embedding[cand_idx] - embedding[i]) ** 2).sum(axis=1))
        order = np.lexsort((rank[cand_idx], exact))
        result[i] = cand_idx[order[:k]]
    return np.hstack([self_idx, result])


def smooth_scores(scores: pd.DataFrame, neighbor_index: np.ndarray) -> pd.DataFrame:
    """Average scores over each cell's neighborhood.

    Rows of ``neighbor_index`` must align with rows of ``scores``.
    """
    if len(scores) != neighbor_index.shape[0]:
        raise ValueError(
            f"Neighbor index has {neighbor_index.shape[0]} rows, "
            f"scores have {len(scores)}"
        )
    values = scores.to_numpy(dtype=np.float64)
    smoothed = values[neighbor_index].mean(axis=1)
    return pd.DataFrame(smoothed, index=scores.index, columns=scores.columns)


def knn_smooth(
    scores: pd.DataFrame,
    embedding: np.ndarray,
    k_param: int,
    min_cells: int = 0,
    logger: Optional[logging.Logger] = None,
) -> pd.DataFrame:
    """Build the neighbor graph and smooth scores in one step.

    Populations smaller than ``min_cells`` are returned unchanged.
    """
    if logger is None:
        logger = logging.getLogger(__name__)

    if len(scores) < max(min_cells, 2):
        logger.info(
            "Skipping kNN smoothing: %d cells (min_cells=%d)", len(scores), min_cells
        )
        return scores.copy()

    neighbor_index = build_neighbor_index(
        embedding, k_param, cell_ids=scores.index, logger=logger
    )
    logger.info(
        "Smoothed %d signature scores over %d neighbors for %d cells",
        scores.shape[1],
        neighbor_index.shape[1] - 1,
        len(scores),
    )
    return smooth_scores(scores, neighbor_index)
