"""Mock AnnData generators and collaborators for testing.

Provides functions to create small single-cell datasets with known
cell populations, plus stub scorers and clusterers so gating can be
tested without real data.
"""

from typing import Dict, List, Optional

import numpy as np
import pandas as pd

from celltype_gate.core.clustering import ClusteringResult
from celltype_gate.core.scoring import ScoreProvider

# Marker genes highly expressed in each mock population
GROUP_MARKERS: Dict[str, List[str]] = {
    "Bcell": ["PTPRC", "MS4A1", "CD79A", "CD19"],
    "Tcell": ["PTPRC", "CD3D", "CD3E", "CD2"],
    "Myeloid": ["PTPRC", "LYZ", "CD14", "CSF1R"],
    "Epithelial": ["EPCAM", "KRT8", "KRT18", "CDH1"],
}

# Genes matched by the default blacklist
BLACKLIST_GENES = ["MT-CO1", "MT-ND1", "RPL3", "RPS6", "HSPA1A", "MKI67"]


def marker_genes() -> List[str]:
    genes = []
    for markers in GROUP_MARKERS.values():
        for g in markers:
            if g not in genes:
                genes.append(g)
    return genes


def create_mock_adata(
    n_cells_per_group: int = 60,
    n_filler_genes: int = 400,
    groups: Optional[List[str]] = None,
    seed: int = 42,
    as_sparse: bool = False,
) -> "AnnData":
    """Create a mock AnnData with well separated populations.

    Parameters
    ----------
    n_cells_per_group : int
        Number of cells in each population
    n_filler_genes : int
        Number of background genes with low, sparse expression
    groups : List[str], optional
        Populations to include (keys of GROUP_MARKERS). Default: all.
    seed : int
        Random seed for reproducibility
    as_sparse : bool
        Store X as a CSR matrix

    Returns
    -------
    AnnData
        Log-scale expression with obs column "true_type"
    """
    import anndata as ad
    from scipy import sparse

    np.random.seed(seed)
    groups = groups or list(GROUP_MARKERS)

    genes = marker_genes() + BLACKLIST_GENES + [f"GENE{i}" for i in range(n_filler_genes)]
    gene_idx = {g: i for i, g in enumerate(genes)}
    n_cells = n_cells_per_group * len(groups)

    # Sparse low background
    X = np.random.exponential(0.3, size=(n_cells, len(genes)))
    X *= np.random.random(size=X.shape) < 0.2

    labels = np.repeat(groups, n_cells_per_group)
    for group in groups:
        mask = labels == group
        for g in GROUP_MARKERS[group]:
            X[mask, gene_idx[g]] = np.random.uniform(3.0, 5.0, size=mask.sum())

    # Blacklisted genes vary a lot but carry no identity
    for g in BLACKLIST_GENES:
        X[:, gene_idx[g]] = np.random.uniform(0.0, 6.0, size=n_cells)

    obs = pd.DataFrame({"true_type": pd.Categorical(labels)})
    obs.index = pd.Index([f"cell_{i}" for i in range(n_cells)], name="cell_id")
    var = pd.DataFrame(index=pd.Index(genes))

    X = X.astype(np.float32)
    adata = ad.AnnData(X=sparse.csr_matrix(X) if as_sparse else X, obs=obs, var=var)
    adata.layers["lognorm"] = X.copy()
    return adata


def create_score_table(
    values: Dict[str, List[float]],
    cell_ids: Optional[List[str]] = None,
) -> pd.DataFrame:
    """Score table (cells x signatures) from column lists."""
    n = len(next(iter(values.values())))
    if cell_ids is None:
        cell_ids = [f"cell_{i}" for i in range(n)]
    return pd.DataFrame(values, index=pd.Index(cell_ids, name="cell_id"))


def create_scored_adata(scores: pd.DataFrame) -> "AnnData":
    """Minimal AnnData whose cells match a score table."""
    import anndata as ad

    X = np.zeros((len(scores), 3), dtype=np.float32)
    return ad.AnnData(
        X=X,
        obs=pd.DataFrame(index=scores.index.copy()),
        var=pd.DataFrame(index=["G1", "G2", "G3"]),
    )


class FixedScorer(ScoreProvider):
    """Score provider returning a precomputed table."""

    def __init__(self, scores: pd.DataFrame):
        self.scores = scores
        self.calls = 0

    def score(self, adata, signatures, max_rank):
        self.calls += 1
        return self.scores[[name for name in signatures if name in self.scores.columns]]


class LabelClusterer:
    """Clusterer returning precomputed labels and recording each call."""

    def __init__(self, labels: pd.Series, embedding: Optional[np.ndarray] = None):
        self.labels = labels.astype(str)
        self.embedding = embedding
        self.calls = []

    def cluster(self, adata, cell_ids, n_features=None, n_components=None,
                resolution=None, blacklist=(), seed=None, k_param=None):
        self.calls.append({
            "n_cells": len(cell_ids),
            "n_features": n_features,
            "n_components": n_components,
            "resolution": resolution,
            "seed": seed,
            "blacklist": set(blacklist),
        })
        labels = self.labels.loc[pd.Index(cell_ids)]
        return ClusteringResult(
            n_clusters=labels.nunique(),
            n_features=n_features or 0,
            n_components=n_components or 0,
            cluster_sizes=labels.value_counts().to_dict(),
            labels=labels,
        )

    def compute_embedding(self, adata, cell_ids=None, n_features=None,
                          n_components=None, blacklist=(), seed=None):
        return self.embedding
