"""Configuration for hierarchical gating.

Every parameter is keyword-level. Defaults follow the reference
settings for droplet-based data: thresholds of 0.2, a rank depth of
1500, and a decay of 25% per level in cluster-majority mode.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Union

import yaml

from ..errors import GatingConfigError


@dataclass
class GatingParams:
    """Parameters for a gating run.

    Attributes
    ----------
    pos_thr : float
        Minimum positive-signature score for a cell to pass a level
    neg_thr : float
        Negative-signature score at or above which a cell is Impure
    max_rank : int
        Rank depth for signature scoring
    nfeatures : int
        Variable genes for clustering at level 1
    pca_dim : int
        Principal components for the embedding at level 1
    resol : float
        Leiden resolution at level 1
    k_param : int
        Neighbors used for score smoothing and the clustering graph
    min_cells : int
        Populations or clusters smaller than this skip clustering,
        and consensus labels rarer than this are reset
    param_decay : float
        Fractional shrinkage of nfeatures, pca_dim and resol per level
    by_knn : bool
        Smooth scores over nearest neighbors (True) or vote by cluster (False)
    genes_blacklist : str, list or None
        "default" for the built-in blacklist, a gene list, or None
    multi_as_na : bool
        Consensus label for cells Pure under several models is NA instead of "Multi"
    save_levels : bool
        Keep the per-level purity columns
    seed : int
        Base random seed; model i is gated with seed + i
    n_workers : int
        Parallel workers for scoring chunks and independent models
    output_col_name : str
        Prefix of the purity columns
    consensus_col : str
        Column for the multi-model consensus label
    reduction : str
        "calculate" to compute a PCA embedding for smoothing, or an
        obsm key holding a precomputed embedding
    layer : str, optional
        Expression layer to score and cluster. Uses AnnData.X if None.
    additional_signatures : dict, optional
        Extra signatures (name -> genes) scored but not gated on
    """

    pos_thr: float = 0.2
    neg_thr: float = 0.2
    max_rank: int = 1500
    nfeatures: int = 2000
    pca_dim: int = 30
    resol: float = 3.0
    k_param: int = 10
    min_cells: int = 30
    param_decay: float = 0.25
    by_knn: bool = True
    genes_blacklist: Optional[Union[str, List[str]]] = "default"
    multi_as_na: bool = False
    save_levels: bool = False
    seed: int = 123
    n_workers: int = 1
    output_col_name: str = "is.pure"
    consensus_col: str = "gate_multi"
    reduction: str = "calculate"
    layer: Optional[str] = None
    additional_signatures: Optional[Dict[str, Union[str, Sequence[str]]]] = None

    def __post_init__(self):
        self.validate()

    def validate(self) -> None:
        """Check parameter ranges.

        Raises
        ------
        GatingConfigError
            Naming the first offending parameter
        """
        positive_ints = {
            "max_rank": self.max_rank,
            "nfeatures": self.nfeatures,
            "pca_dim": self.pca_dim,
            "k_param": self.k_param,
            "n_workers": self.n_workers,
        }
        for name, value in positive_ints.items():
            if int(value) < 1:
                raise GatingConfigError(f"Parameter '{name}' must be >= 1, got {value}")

        if self.resol <= 0:
            raise GatingConfigError(f"Parameter 'resol' must be > 0, got {self.resol}")
        if self.min_cells < 0:
            raise GatingConfigError(
                f"Parameter 'min_cells' must be >= 0, got {self.min_cells}"
            )
        if not 0.0 <= self.param_decay <= 1.0:
            raise GatingConfigError(
                f"Parameter 'param_decay' must be in [0, 1], got {self.param_decay}"
            )
        if not self.output_col_name:
            raise GatingConfigError("Parameter 'output_col_name' must not be empty")
        if not self.reduction:
            raise GatingConfigError("Parameter 'reduction' must not be empty")

    @classmethod
    def from_yaml(cls, path: Union[str, Path]) -> "GatingParams":
        """Load parameters from a YAML file (optionally under a 'gating' key)."""
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")

        with open(path) as f:
            data = yaml.safe_load(f) or {}

        if "gating" in data:
            data = data["gating"] or {}

        unknown = sorted(set(data) - set(cls.__dataclass_fields__))
        if unknown:
            raise GatingConfigError(f"Unknown gating parameters: {unknown}")
        return cls(**data)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return asdict(self)
