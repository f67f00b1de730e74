"""Gating engine.

This module provides the GatingEngine class that orchestrates a gating
run: signature collection and scoring, kNN smoothing or per-level
clustering, gating of each model, and multi-model consensus.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence, Set, Union

import numpy as np
import pandas as pd
from joblib import Parallel, delayed

try:
    import scanpy as sc
except ImportError:
    sc = None

from ..clustering import ClusteringConfig, ClusteringEngine, resolve_blacklist
from ..errors import GatingConfigError
from ..model import GatingModel
from ..scoring import (
    ScoreProvider,
    UCellScorer,
    collect_signatures,
    score_column,
    score_signatures,
)
from .config import GatingParams
from .consensus import combine_multiclass, purity_column
from .orchestrator import LevelParams, ModelGatingResult, decay_schedule, gate_model
from .smoothing import knn_smooth

SINGLE_MODEL_NAME = "Target"

ModelsArg = Union[GatingModel, Mapping[str, GatingModel], Sequence[GatingModel]]


@dataclass
class GatingResult:
    """Result from a gating run.

    Attributes:
        adata: AnnData with score, purity and consensus columns added to obs
        scores: Signature scores used for gating (smoothed in kNN mode)
        model_results: Per-model gating outcome keyed by model name
        consensus: Consensus label per cell (None with a single model)
        columns: obs columns written by the run
    """

    adata: "sc.AnnData"
    scores: pd.DataFrame
    model_results: Dict[str, ModelGatingResult]
    consensus: Optional[pd.Series] = None
    columns: List[str] = field(default_factory=list)


def normalize_models(models: ModelsArg, prefix: str = "is.pure") -> Dict[str, GatingModel]:
    """Turn a model, a mapping or a sequence of models into a named collection.

    A single model is named "Target"; unnamed models in a sequence are
    named ``<prefix>.1``, ``<prefix>.2``, ...
    """
    if isinstance(models, GatingModel):
        return {SINGLE_MODEL_NAME: models}
    if isinstance(models, Mapping):
        named = {str(k): v for k, v in models.items()}
    else:
        named = {f"{prefix}.{i}": m for i, m in enumerate(models, start=1)}

    if not named:
        raise GatingConfigError("No gating models supplied")
    for name, model in named.items():
        if not isinstance(model, GatingModel):
            raise GatingConfigError(
                f"Model '{name}' is a {type(model).__name__}, expected GatingModel"
            )
    return named


class GatingEngine:
    """Hierarchical gating of cells against one or more models.

    The engine:
    1. Collects every signature across models and scores each cell once
    2. Smooths scores over the kNN graph (by_knn=True) or clusters the
       alive cells at each level (by_knn=False)
    3. Gates each model level by level
    4. Combines model calls into a consensus label

    Example:
        >>> engine = GatingEngine({"Bcell": bcell_model}, GatingParams(pos_thr=0.3))
        >>> result = engine.run(adata)
        >>> adata.obs["is.pure_Bcell"].value_counts()
    """

    def __init__(
        self,
        models: ModelsArg,
        params: Optional[GatingParams] = None,
        scorer: Optional[ScoreProvider] = None,
        clusterer: Optional[ClusteringEngine] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.params = params or GatingParams()
        self.params.validate()
        self.models = normalize_models(models, self.params.output_col_name)
        self.logger = logger or logging.getLogger(__name__)
        self.scorer = scorer or UCellScorer(
            n_workers=self.params.n_workers,
            layer=self.params.layer,
            logger=self.logger,
        )
        self._clusterer = clusterer

    @property
    def single_model(self) -> bool:
        return list(self.models) == [SINGLE_MODEL_NAME]

    @property
    def clusterer(self) -> ClusteringEngine:
        if self._clusterer is None:
            p = self.params
            self._clusterer = ClusteringEngine(
                ClusteringConfig(
                    nfeatures=p.nfeatures,
                    pca_dim=p.pca_dim,
                    k_param=p.k_param,
                    resolution=p.resol,
                    random_seed=p.seed,
                    layer=p.layer,
                ),
                logger=self.logger,
            )
        return self._clusterer

    def final_column(self, model_name: str) -> str:
        if self.single_model:
            return self.params.output_col_name
        return purity_column(self.params.output_col_name, model_name)

    def _schedules(self) -> Dict[str, Optional[List[LevelParams]]]:
        p = self.params
        schedules = {}
        for i, (name, model) in enumerate(self.models.items()):
            if p.by_knn:
                schedules[name] = None
                continue
            try:
                schedules[name] = decay_schedule(
                    model.n_levels, p.nfeatures, p.pca_dim, p.resol, p.param_decay, p.seed + i
                )
            except GatingConfigError as e:
                raise GatingConfigError(f"Model '{name}': {e}") from None
        return schedules

    def _embedding(self, adata: "sc.AnnData", blacklist: Set[str]) -> np.ndarray:
        p = self.params
        if p.reduction == "calculate":
            return self.clusterer.compute_embedding(
                adata,
                n_features=p.nfeatures,
                n_components=p.pca_dim,
                blacklist=blacklist,
                seed=p.seed,
            )
        if p.reduction not in adata.obsm:
            raise GatingConfigError(
                f"Reduction '{p.reduction}' not found in adata.obsm "
                f"(available: {list(adata.obsm.keys())})"
            )
        embedding = np.asarray(adata.obsm[p.reduction])
        return embedding[:, : p.pca_dim]

    def _gate_one(
        self,
        adata: "sc.AnnData",
        scores: pd.DataFrame,
        name: str,
        model: GatingModel,
        schedule: Optional[List[LevelParams]],
        blacklist: Set[str],
    ) -> ModelGatingResult:
        p = self.params
        cluster_fn = None
        if schedule is not None:
            def cluster_fn(cell_ids: pd.Index, level: LevelParams) -> pd.Series:
                result = self.clusterer.cluster(
                    adata,
                    cell_ids,
                    n_features=level.nfeatures,
                    n_components=level.pca_dim,
                    resolution=level.resolution,
                    blacklist=blacklist,
                    seed=level.seed,
                    k_param=p.k_param,
                )
                return result.labels

        return gate_model(
            scores,
            model,
            pos_thr=p.pos_thr,
            neg_thr=p.neg_thr,
            min_cells=p.min_cells,
            cluster_fn=cluster_fn,
            schedule=schedule,
            name=name,
            logger=self.logger,
        )

    def run(self, adata: "sc.AnnData") -> GatingResult:
        """Gate every cell of adata against every model.

        Args:
            adata: AnnData; obs is annotated in place

        Returns:
            GatingResult

        Raises:
            GatingConfigError: For invalid models, missing signature
                scores, or a decay schedule that empties a parameter
        """
        p = self.params
        start = time.time()

        self.logger.info("=" * 70)
        self.logger.info("Gating %d cells against %d model(s)", adata.n_obs, len(self.models))
        self.logger.info("=" * 70)
        self.logger.info(
            "Mode: %s | pos_thr=%.3f neg_thr=%.3f min_cells=%d",
            "kNN smoothing" if p.by_knn else "cluster majority",
            p.pos_thr,
            p.neg_thr,
            p.min_cells,
        )

        # Configuration errors surface before any scoring or level evaluation
        schedules = self._schedules()
        signatures = collect_signatures(self.models, p.additional_signatures)
        blacklist = resolve_blacklist(p.genes_blacklist, adata.var_names)
        if blacklist:
            self.logger.info("Blacklisted %d genes from feature selection", len(blacklist))

        self.logger.info("Scoring %d signatures", len(signatures))
        scores = score_signatures(adata, signatures, self.scorer, p.max_rank, logger=self.logger)

        if p.by_knn:
            embedding = self._embedding(adata, blacklist)
            scores = knn_smooth(
                scores, embedding, p.k_param, min_cells=p.min_cells, logger=self.logger
            )

        columns = []
        for name in scores.columns:
            col = score_column(name)
            adata.obs[col] = scores[name].to_numpy()
            columns.append(col)

        tasks = [
            (name, model, schedules[name]) for name, model in self.models.items()
        ]
        n_jobs = min(p.n_workers, len(tasks))
        if not p.by_knn and self._clusterer is None:
            # Create once before worker threads share it
            self._clusterer = self.clusterer
        if n_jobs > 1:
            self.logger.info("Gating %d models with %d workers", len(tasks), n_jobs)
            outcomes = Parallel(n_jobs=n_jobs, backend="threading")(
                delayed(self._gate_one)(adata, scores, name, model, schedule, blacklist)
                for name, model, schedule in tasks
            )
        else:
            outcomes = [
                self._gate_one(adata, scores, name, model, schedule, blacklist)
                for name, model, schedule in tasks
            ]
        model_results = {r.name: r for r in outcomes}

        for name, result in model_results.items():
            col = self.final_column(name)
            adata.obs[col] = result.final.values
            columns.append(col)
            if p.save_levels:
                for level_name in result.levels.columns:
                    level_col = f"{col}.{level_name}"
                    adata.obs[level_col] = result.levels[level_name].values
                    columns.append(level_col)

        consensus = None
        if len(model_results) > 1:
            consensus = combine_multiclass(
                adata.obs,
                list(model_results),
                prefix=p.output_col_name,
                min_cells=p.min_cells,
                multi_as_na=p.multi_as_na,
                logger=self.logger,
            )
            adata.obs[p.consensus_col] = consensus.values
            columns.append(p.consensus_col)

        self.logger.info("-" * 70)
        for name, result in model_results.items():
            self.logger.info(
                "Model '%s': %d/%d cells (%.1f%%) marked Impure",
                name,
                result.n_impure,
                len(result.final),
                100.0 * result.impure_fraction,
            )
        if consensus is not None:
            for label, count in consensus.value_counts(dropna=False).items():
                self.logger.info("  %s: %d cells", "NA" if pd.isna(label) else label, count)
        self.logger.info("Gating finished in %.1fs", time.time() - start)

        return GatingResult(
            adata=adata,
            scores=scores,
            model_results=model_results,
            consensus=consensus,
            columns=columns,
        )


def run_gating(
    adata: "sc.AnnData",
    models: ModelsArg,
    scorer: Optional[ScoreProvider] = None,
    clusterer: Optional[ClusteringEngine] = None,
    logger: Optional[logging.Logger] = None,
    **params: Any,
) -> GatingResult:
    """Functional wrapper around GatingEngine.

    Keyword arguments are GatingParams fields.
    """
    engine = GatingEngine(
        models,
        params=GatingParams(**params),
        scorer=scorer,
        clusterer=clusterer,
        logger=logger,
    )
    return engine.run(adata)


def gate(
    adata: "sc.AnnData",
    model: GatingModel,
    **kwargs: Any,
) -> pd.Series:
    """Gate a single model and return its final Pure/Impure call per cell."""
    result = run_gating(adata, model, **kwargs)
    (only,) = result.model_results.values()
    return only.final
