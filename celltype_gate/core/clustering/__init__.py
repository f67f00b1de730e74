"""Clustering module for gating levels.

Provides variable-feature selection with a gene blacklist, PCA
embeddings for kNN smoothing, and Leiden clustering for
cluster-majority gating.

Example Usage
-------------
>>> from celltype_gate.core.clustering import ClusteringConfig, ClusteringEngine
>>> engine = ClusteringEngine(ClusteringConfig(nfeatures=1000))
>>> result = engine.cluster(adata, adata.obs_names, resolution=1.0, seed=7)
>>> result.cluster_sizes
"""

from .blacklist import DEFAULT_BLACKLIST_PATTERNS, resolve_blacklist
from .config import ClusteringConfig
from .engine import ClusteringEngine, ClusteringResult

__all__ = [
    "DEFAULT_BLACKLIST_PATTERNS",
    "resolve_blacklist",
    "ClusteringConfig",
    "ClusteringEngine",
    "ClusteringResult",
]
