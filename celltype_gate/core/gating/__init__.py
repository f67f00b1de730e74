"""Hierarchical gating module.

Provides level evaluation, kNN smoothing, multi-level orchestration with
parameter decay, multi-model consensus, and the GatingEngine that ties
them to signature scoring.

Example Usage
-------------
>>> from celltype_gate.core.gating import GatingEngine, GatingParams
>>> engine = GatingEngine({"Bcell": bcell, "Tcell": tcell}, GatingParams(seed=1))
>>> result = engine.run(adata)
>>> adata.obs["gate_multi"].value_counts(dropna=False)
"""

from ..errors import GatingConfigError
from .config import GatingParams
from .consensus import MULTI_LABEL, combine_multiclass, discover_classes, purity_column
from .engine import (
    SINGLE_MODEL_NAME,
    GatingEngine,
    GatingResult,
    gate,
    normalize_models,
    run_gating,
)
from .levels import evaluate_by_cluster, evaluate_per_cell, passes_thresholds
from .metrics import performance_metrics
from .orchestrator import (
    IMPURE,
    PURE,
    PURITY_CATEGORIES,
    LevelParams,
    ModelGatingResult,
    check_signatures,
    decay_schedule,
    gate_model,
)
from .smoothing import build_neighbor_index, knn_smooth, smooth_scores

__all__ = [
    "GatingConfigError",
    "GatingParams",
    "MULTI_LABEL",
    "combine_multiclass",
    "discover_classes",
    "purity_column",
    "SINGLE_MODEL_NAME",
    "GatingEngine",
    "GatingResult",
    "gate",
    "normalize_models",
    "run_gating",
    "evaluate_by_cluster",
    "evaluate_per_cell",
    "passes_thresholds",
    "performance_metrics",
    "IMPURE",
    "PURE",
    "PURITY_CATEGORIES",
    "LevelParams",
    "ModelGatingResult",
    "check_signatures",
    "decay_schedule",
    "gate_model",
    "build_neighbor_index",
    "knn_smooth",
    "smooth_scores",
]
