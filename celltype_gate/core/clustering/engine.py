"""Clustering engine for gating levels.

Provides the dimensionality-reduction and clustering primitives used by
gating: variable-feature selection with a gene blacklist, PCA embedding
for the smoothing neighbor graph, and Leiden clustering of the cells
still alive at a given level.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Sequence
import logging
import warnings

import numpy as np
import pandas as pd
from scipy import sparse

from .config import ClusteringConfig


@dataclass
class ClusteringResult:
    """Result from clustering operation.

    Attributes
    ----------
    n_clusters : int
        Number of clusters found
    n_features : int
        Number of genes used as features
    n_components : int
        Number of principal components used
    cluster_sizes : Dict[str, int]
        Map of cluster ID to cell count
    labels : pd.Series
        Cluster ID per cell
    """

    n_clusters: int = 0
    n_features: int = 0
    n_components: int = 0
    cluster_sizes: Dict[str, int] = field(default_factory=dict)
    labels: pd.Series = field(default_factory=lambda: pd.Series(dtype=str))


class ClusteringEngine:
    """Feature selection, PCA and Leiden clustering over a cell subset.

    Pipeline: subset → HVG (minus blacklist) → scale → PCA → neighbors → Leiden.
    Every call takes an explicit seed so that concurrent callers stay
    reproducible.

    Parameters
    ----------
    config : ClusteringConfig, optional
        Clustering configuration. If None, uses defaults.
    logger : logging.Logger, optional
        Logger instance. If None, creates default logger.

    Example
    -------
    >>> engine = ClusteringEngine(ClusteringConfig(resolution=1.0))
    >>> labels = engine.cluster(adata, adata.obs_names, n_features=1000,
    ...                         n_components=20, resolution=1.0, seed=1)
    """

    def __init__(
        self,
        config: Optional[ClusteringConfig] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.config = config or ClusteringConfig()
        self.logger = logger or logging.getLogger(__name__)
        self._check_dependencies()

    def _check_dependencies(self) -> None:
        """Check for required dependencies."""
        try:
            import scanpy
        except ImportError:
            raise RuntimeError(
                "Clustering requires scanpy. Install with: pip install scanpy"
            )

    def subset_adata(
        self,
        adata: Any,  # AnnData
        cell_ids: Optional[Sequence[str]] = None,
    ) -> Any:
        """Copy the selected cells into a standalone AnnData.

        The working matrix (config layer or X) is pinned into X as float32.
        Sparse input stays sparse (CSR) so only the selected features are
        ever densified.

        Raises
        ------
        ValueError
            If no cells are selected
        """
        import anndata as ad

        if cell_ids is None:
            subset = adata
        else:
            cell_ids = pd.Index(cell_ids)
            if len(cell_ids) == 0:
                raise ValueError("Cannot cluster an empty cell population")
            subset = adata[cell_ids]

        layer = self.config.layer
        if layer and layer in subset.layers:
            base = subset.layers[layer]
        else:
            if layer:
                self.logger.warning(
                    "Requested layer '%s' not found; falling back to AnnData.X", layer
                )
            base = subset.X

        if sparse.issparse(base):
            matrix = sparse.csr_matrix(base, dtype=np.float32, copy=True)
        else:
            matrix = np.array(base, dtype=np.float32, copy=True)
        return ad.AnnData(
            X=matrix,
            obs=pd.DataFrame(index=subset.obs_names.copy()),
            var=pd.DataFrame(index=subset.var_names.copy()),
        )

    def select_features(
        self,
        adata: Any,  # AnnData
        n_features: int,
        blacklist: Iterable[str] = (),
    ) -> List[str]:
        """Select highly variable genes, excluding blacklisted genes.

        Parameters
        ----------
        adata : AnnData
            Working AnnData (output of subset_adata)
        n_features : int
            Number of variable genes to select
        blacklist : Iterable[str]
            Genes never used as features

        Returns
        -------
        List[str]
            Selected feature names
        """
        import scanpy as sc

        blacklist = set(blacklist)
        n_genes = adata.n_vars
        if n_genes <= self.config.min_genes_for_hvg or n_features >= n_genes:
            features = list(adata.var_names)
        else:
            with warnings.catch_warnings():
                warnings.simplefilter("ignore")
                sc.pp.highly_variable_genes(
                    adata,
                    n_top_genes=n_features,
                    flavor=self.config.hvg_flavor,
                    subset=False,
                )
            features = list(adata.var_names[adata.var["highly_variable"].to_numpy()])

        kept = [g for g in features if g not in blacklist]
        if len(kept) < len(features):
            self.logger.debug(
                "Removed %d blacklisted genes from %d variable features",
                len(features) - len(kept),
                len(features),
            )
        if not kept:
            raise ValueError("No variable features left after removing blacklisted genes")
        return kept

    def _embed(
        self,
        adata: Any,  # AnnData
        n_features: int,
        n_components: int,
        blacklist: Iterable[str],
        seed: int,
    ) -> Any:
        import scanpy as sc

        features = self.select_features(adata, n_features, blacklist)
        work = adata[:, features].copy()
        if sparse.issparse(work.X):
            work.X = work.X.toarray()
        sc.pp.scale(work, zero_center=True, max_value=self.config.scale_clip)

        use_pcs = min(
            n_components,
            max(len(features) // 2, 1),
            max(work.n_obs - 1, 1),
        )
        if use_pcs < min(work.n_obs, work.n_vars):
            sc.tl.pca(work, n_comps=use_pcs, svd_solver="arpack", random_state=seed)
        else:
            sc.tl.pca(work, n_comps=use_pcs, svd_solver="full", random_state=seed)
        work.uns["n_features_used"] = len(features)
        return work

    def compute_embedding(
        self,
        adata: Any,  # AnnData
        cell_ids: Optional[Sequence[str]] = None,
        n_features: Optional[int] = None,
        n_components: Optional[int] = None,
        blacklist: Iterable[str] = (),
        seed: Optional[int] = None,
    ) -> np.ndarray:
        """Compute a PCA embedding of the selected cells.

        Returns
        -------
        np.ndarray
            Array of shape (n_cells, n_components_used), rows in cell_ids order
        """
        cfg = self.config
        n_features = n_features if n_features is not None else cfg.nfeatures
        n_components = n_components if n_components is not None else cfg.pca_dim
        seed = seed if seed is not None else cfg.random_seed

        subset = self.subset_adata(adata, cell_ids)
        work = self._embed(subset, n_features, n_components, blacklist, seed)
        embedding = np.asarray(work.obsm["X_pca"])
        self.logger.info(
            "Computed PCA embedding: %d cells, %d features, %d components",
            work.n_obs,
            work.uns["n_features_used"],
            embedding.shape[1],
        )
        return embedding

    def cluster(
        self,
        adata: Any,  # AnnData
        cell_ids: Sequence[str],
        n_features: Optional[int] = None,
        n_components: Optional[int] = None,
        resolution: Optional[float] = None,
        blacklist: Iterable[str] = (),
        seed: Optional[int] = None,
        k_param: Optional[int] = None,
    ) -> ClusteringResult:
        """Cluster the selected cells with Leiden.

        Parameters
        ----------
        adata : AnnData
            Full dataset (not modified)
        cell_ids : Sequence[str]
            Cells to cluster
        n_features : int, optional
            Number of variable genes. Uses config default if None.
        n_components : int, optional
            Number of principal components. Uses config default if None.
        resolution : float, optional
            Leiden resolution. Uses config default if None.
        blacklist : Iterable[str]
            Genes excluded from feature selection
        seed : int, optional
            Random seed. Uses config default if None.
        k_param : int, optional
            k for the neighborhood graph. Uses config default if None.

        Returns
        -------
        ClusteringResult
            Cluster labels and statistics
        """
        import scanpy as sc

        cfg = self.config
        n_features = n_features if n_features is not None else cfg.nfeatures
        n_components = n_components if n_components is not None else cfg.pca_dim
        resolution = resolution if resolution is not None else cfg.resolution
        seed = seed if seed is not None else cfg.random_seed
        k_param = k_param if k_param is not None else cfg.k_param

        subset = self.subset_adata(adata, cell_ids)
        work = self._embed(subset, n_features, n_components, blacklist, seed)

        neighbors_k = max(2, min(k_param, work.n_obs - 1))
        sc.pp.neighbors(
            work,
            n_neighbors=neighbors_k,
            use_rep="X_pca",
            random_state=seed,
        )
        sc.tl.leiden(
            work,
            resolution=resolution,
            random_state=seed,
            key_added="cluster",
            flavor="igraph",
            n_iterations=2,
            directed=False,
        )

        labels = work.obs["cluster"].astype(str)
        result = ClusteringResult(
            n_clusters=labels.nunique(),
            n_features=int(work.uns["n_features_used"]),
            n_components=int(work.obsm["X_pca"].shape[1]),
            cluster_sizes=labels.value_counts().to_dict(),
            labels=labels,
        )
        self.logger.info(
            "Computed Leiden clustering: %d cells -> %d clusters "
            "(nfeatures=%d, pcs=%d, resolution=%.3f)",
            work.n_obs,
            result.n_clusters,
            result.n_features,
            result.n_components,
            resolution,
        )
        return result
