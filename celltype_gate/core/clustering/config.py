"""Configuration classes for clustering module.

All clustering parameters are configurable; gating levels override
feature count, components and resolution as they decay.
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

import yaml


@dataclass
class ClusteringConfig:
    """Configuration for feature selection, PCA and Leiden clustering.

    Attributes
    ----------
    nfeatures : int
        Number of highly variable genes used for PCA
    pca_dim : int
        Number of principal components
    k_param : int
        k for the neighborhood graph
    resolution : float
        Leiden resolution for clustering
    scale_clip : float
        Value clipping during scaling
    min_genes_for_hvg : int
        Below this many genes, every gene is used as a feature
    hvg_flavor : str
        Flavor passed to scanpy highly_variable_genes
    random_seed : int
        Random seed for reproducibility
    layer : str, optional
        Expression layer to use. Uses AnnData.X if None.
    """

    nfeatures: int = 2000
    pca_dim: int = 30
    k_param: int = 10
    resolution: float = 3.0
    scale_clip: float = 10.0
    min_genes_for_hvg: int = 200
    hvg_flavor: str = "seurat"
    random_seed: int = 123
    layer: Optional[str] = None

    @classmethod
    def from_yaml(cls, path: Path) -> "ClusteringConfig":
        """Load configuration from YAML file."""
        with open(path) as f:
            data = yaml.safe_load(f) or {}

        if "clustering" in data:
            data = data["clustering"]

        return cls(**data)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "nfeatures": self.nfeatures,
            "pca_dim": self.pca_dim,
            "k_param": self.k_param,
            "resolution": self.resolution,
            "scale_clip": self.scale_clip,
            "min_genes_for_hvg": self.min_genes_for_hvg,
            "hvg_flavor": self.hvg_flavor,
            "random_seed": self.random_seed,
            "layer": self.layer,
        }
