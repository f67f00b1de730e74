"""Multi-level gating of one model.

Levels are evaluated in ascending order over a shrinking alive set:
cells called Impure at a level are removed and keep "Impure" in every
deeper level column. A cell is Pure for the model iff it passes every
level. In cluster-majority mode the clustering parameters shrink by
``param_decay`` per level.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, List, Optional

import pandas as pd

from ..errors import GatingConfigError
from ..model import GatingModel
from .levels import evaluate_by_cluster, evaluate_per_cell

PURE = "Pure"
IMPURE = "Impure"
PURITY_CATEGORIES = [PURE, IMPURE]


@dataclass(frozen=True)
class LevelParams:
    """Clustering parameters in effect at one level."""

    level: int
    nfeatures: int
    pca_dim: int
    resolution: float
    seed: int


ClusterFn = Callable[[pd.Index, LevelParams], pd.Series]


def decay_schedule(
    n_levels: int,
    nfeatures: int,
    pca_dim: int,
    resol: float,
    param_decay: float,
    seed: int,
) -> List[LevelParams]:
    """Clustering parameters for levels 1..n_levels.

    Level l uses ``nfeatures * (1 - param_decay) ** (l - 1)`` (rounded) and
    ``resol * (1 - param_decay) ** (l - 1)``. ``pca_dim`` is the same at
    every level.

    Raises:
        GatingConfigError: If decay drives a parameter to zero while
            levels remain
    """
    schedule = []
    for level in range(1, n_levels + 1):
        factor = (1.0 - param_decay) ** (level - 1)
        params = LevelParams(
            level=level,
            nfeatures=int(round(nfeatures * factor)),
            pca_dim=pca_dim,
            resolution=resol * factor,
            seed=seed,
        )
        for name, value in (
            ("nfeatures", params.nfeatures),
            ("resol", params.resolution),
        ):
            if value <= 0:
                raise GatingConfigError(
                    f"param_decay={param_decay} drives '{name}' to {value} at "
                    f"level{level} of {n_levels}; lower param_decay or {name}"
                )
        schedule.append(params)
    return schedule


@dataclass
class ModelGatingResult:
    """Gating outcome for one model.

    Attributes:
        name: Model name
        final: Pure/Impure per cell (categorical)
        levels: One Pure/Impure column per level (level1, level2, ...)
        n_impure: Number of cells called Impure
        stopped_at_level: First level entered with no alive cells, if any
    """

    name: str
    final: pd.Series
    levels: pd.DataFrame
    n_impure: int = 0
    stopped_at_level: Optional[int] = None
    level_sizes: List[int] = field(default_factory=list)

    @property
    def impure_fraction(self) -> float:
        n = len(self.final)
        return self.n_impure / n if n else 0.0


def _as_purity(values: pd.Series) -> pd.Series:
    return pd.Series(
        pd.Categorical(values, categories=PURITY_CATEGORIES),
        index=values.index,
        name=values.name,
    )


def check_signatures(model: GatingModel, scores: pd.DataFrame, model_name: str) -> None:
    """Raise if a signature of the model has no score column."""
    missing = [name for name in model.signatures if name not in scores.columns]
    if missing:
        raise GatingConfigError(
            f"Model '{model_name}' references signatures without scores: {missing}"
        )


def gate_model(
    scores: pd.DataFrame,
    model: GatingModel,
    pos_thr: float = 0.2,
    neg_thr: float = 0.2,
    min_cells: int = 30,
    cluster_fn: Optional[ClusterFn] = None,
    schedule: Optional[List[LevelParams]] = None,
    name: str = "Target",
    logger: Optional[logging.Logger] = None,
) -> ModelGatingResult:
    """Gate cells through every level of a model.

    Args:
        scores: Per-cell signature scores (smoothed in kNN mode), columns
            named by signature
        model: Gating model
        pos_thr: Positive threshold
        neg_thr: Negative threshold
        min_cells: Alive populations or clusters smaller than this use the
            per-cell rule
        cluster_fn: Clustering callback (alive cell ids, level params) ->
            cluster id per cell. None selects the per-cell rule.
        schedule: Per-level clustering parameters, required with cluster_fn
        name: Model name used in logs and errors
        logger: Logger instance

    Returns:
        ModelGatingResult

    Raises:
        GatingConfigError: If a signature of the model has no scores, or
            the schedule does not cover every level
    """
    if logger is None:
        logger = logging.getLogger(__name__)

    check_signatures(model, scores, name)
    if cluster_fn is not None:
        if schedule is None or len(schedule) < model.n_levels:
            raise GatingConfigError(
                f"Model '{name}' has {model.n_levels} levels but the clustering "
                f"schedule covers {0 if schedule is None else len(schedule)}"
            )

    alive = scores.index
    level_calls = {}
    level_sizes = []
    stopped_at = None

    for level in model.levels:
        calls = pd.Series(IMPURE, index=scores.index, name=level.name)
        level_sizes.append(len(alive))

        if len(alive) == 0:
            if stopped_at is None:
                stopped_at = level.level
                logger.warning(
                    "[%s] No cells left entering %s; remaining levels are Impure",
                    name,
                    level.name,
                )
            level_calls[level.name] = calls
            continue

        alive_scores = scores.loc[alive]
        if cluster_fn is None or len(alive) < min_cells:
            if cluster_fn is not None:
                logger.info(
                    "[%s] %s: %d alive cells < min_cells=%d, using per-cell rule",
                    name,
                    level.name,
                    len(alive),
                    min_cells,
                )
            pure = evaluate_per_cell(alive_scores, level, pos_thr, neg_thr)
        else:
            clusters = cluster_fn(alive, schedule[level.level - 1])
            pure = evaluate_by_cluster(
                alive_scores,
                level,
                clusters,
                pos_thr,
                neg_thr,
                min_cells,
                logger=logger,
            )

        calls.loc[pure.index[pure.to_numpy()]] = PURE
        level_calls[level.name] = calls

        alive = pure.index[pure.to_numpy()]
        logger.info(
            "[%s] %s: %d/%d cells pass (+%s%s)",
            name,
            level.name,
            len(alive),
            len(alive_scores),
            ",".join(level.positive_names),
            f" -{','.join(level.negative_names)}" if level.negative else "",
        )

    final = pd.Series(IMPURE, index=scores.index, name=name)
    final.loc[alive] = PURE
    levels = pd.DataFrame(
        {col: _as_purity(values) for col, values in level_calls.items()},
        index=scores.index,
    )

    return ModelGatingResult(
        name=name,
        final=_as_purity(final),
        levels=levels,
        n_impure=int(len(final) - len(alive)),
        stopped_at_level=stopped_at,
        level_sizes=level_sizes,
    )
