"""Level evaluation rules.

A level passes a cell when its best positive-signature score reaches
``pos_thr`` and its best negative-signature score stays below
``neg_thr``. A level without negative signatures never rejects a cell
on that basis.

Two rules are provided:

- per-cell: each cell is judged on its own (possibly smoothed) scores
- cluster-majority: each cluster is judged on its mean scores and every
  member inherits the cluster's call; clusters smaller than
  ``min_cells`` fall back to the per-cell rule
"""

from __future__ import annotations

import logging
from typing import Optional

import numpy as np
import pandas as pd

from ..model import GatingLevel


def passes_thresholds(
    values: pd.DataFrame,
    level: GatingLevel,
    pos_thr: float,
    neg_thr: float,
) -> np.ndarray:
    """Boolean pass mask for the rows of a score table.

    Parameters
    ----------
    values : pd.DataFrame
        Rows are cells (or clusters), columns include every signature of the level
    level : GatingLevel
        Level whose positive and negative signatures are tested
    pos_thr, neg_thr : float
        Thresholds; max positive >= pos_thr passes, max negative >= neg_thr fails
    """
    n_rows = len(values)
    if n_rows == 0:
        return np.zeros(0, dtype=bool)

    if level.positive_names:
        pos_max = values[level.positive_names].to_numpy(dtype=np.float64).max(axis=1)
        pos_ok = pos_max >= pos_thr
    else:
        pos_ok = np.ones(n_rows, dtype=bool)

    if level.negative_names:
        neg_max = values[level.negative_names].to_numpy(dtype=np.float64).max(axis=1)
        neg_ok = neg_max < neg_thr
    else:
        neg_ok = np.ones(n_rows, dtype=bool)

    return pos_ok & neg_ok


def evaluate_per_cell(
    scores: pd.DataFrame,
    level: GatingLevel,
    pos_thr: float,
    neg_thr: float,
) -> pd.Series:
    """Per-cell threshold rule. Returns a boolean Series (True = Pure)."""
    mask = passes_thresholds(scores, level, pos_thr, neg_thr)
    return pd.Series(mask, index=scores.index, dtype=bool)


def evaluate_by_cluster(
    scores: pd.DataFrame,
    level: GatingLevel,
    clusters: pd.Series,
    pos_thr: float,
    neg_thr: float,
    min_cells: int,
    logger: Optional[logging.Logger] = None,
) -> pd.Series:
    """Cluster-majority rule. Returns a boolean Series (True = Pure).

    Parameters
    ----------
    scores : pd.DataFrame
        Scores of the alive cells
    clusters : pd.Series
        Cluster ID per alive cell
    min_cells : int
        Clusters with fewer members are judged per cell
    """
    if logger is None:
        logger = logging.getLogger(__name__)

    clusters = clusters.reindex(scores.index)
    if clusters.isna().any():
        raise ValueError(
            f"Cluster labels missing for {int(clusters.isna().sum())} cells"
        )
    clusters = clusters.astype(str)

    signature_names = level.signature_names
    means = scores[signature_names].groupby(clusters.to_numpy()).mean()
    sizes = clusters.value_counts()

    cluster_pass = pd.Series(
        passes_thresholds(means, level, pos_thr, neg_thr), index=means.index
    )
    result = clusters.map(cluster_pass).astype(bool)

    small = sizes.index[sizes < min_cells]
    if len(small) > 0:
        in_small = clusters.isin(small)
        per_cell = evaluate_per_cell(scores[in_small], level, pos_thr, neg_thr)
        result[in_small] = per_cell
        logger.debug(
            "%s: %d clusters below min_cells=%d judged per cell (%d cells)",
            level.name,
            len(small),
            min_cells,
            int(in_small.sum()),
        )

    logger.debug(
        "%s: %d/%d clusters pass",
        level.name,
        int(cluster_pass.sum()),
        len(cluster_pass),
    )
    return result
