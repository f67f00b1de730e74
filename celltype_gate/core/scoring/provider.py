"""Score provider contract and signature collection.

Any scorer that maps (dataset, named signatures, rank depth) to one
numeric score per cell and signature can drive gating. The default is
:class:`~celltype_gate.core.scoring.ucell.UCellScorer`.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Callable, Dict, Mapping, Optional, Sequence, Union

import pandas as pd

try:
    import scanpy as sc
except ImportError:
    sc = None

from ..errors import GatingConfigError
from ..model import GatingModel, Signature, parse_signature

SCORE_SUFFIX = "_score"


class ScoreProvider(ABC):
    """Base class for signature scorers."""

    @abstractmethod
    def score(
        self,
        adata: "sc.AnnData",
        signatures: Mapping[str, Signature],
        max_rank: int,
    ) -> pd.DataFrame:
        """Score cells against signatures.

        Returns:
            DataFrame indexed by cell id with one column per signature name
        """


ScoreFn = Callable[["sc.AnnData", Mapping[str, Signature], int], pd.DataFrame]


def score_column(signature_name: str) -> str:
    return f"{signature_name}{SCORE_SUFFIX}"


def collect_signatures(
    models: Mapping[str, GatingModel],
    additional: Optional[Mapping[str, Union[str, Sequence[str]]]] = None,
) -> Dict[str, Signature]:
    """Collect the union of signatures over all models.

    Args:
        models: Gating models keyed by model name
        additional: Extra signatures (name -> genes) scored but not gated on

    Returns:
        Dict of signature name -> Signature

    Raises:
        GatingConfigError: If one name maps to different gene lists
    """
    result: Dict[str, Signature] = {}
    origin: Dict[str, str] = {}

    def _add(sig: Signature, source: str) -> None:
        existing = result.get(sig.name)
        if existing is not None and existing.genes != sig.genes:
            raise GatingConfigError(
                f"Signature '{sig.name}' has conflicting gene lists in "
                f"{origin[sig.name]} and {source}"
            )
        result.setdefault(sig.name, sig)
        origin.setdefault(sig.name, source)

    for model_name, model in models.items():
        for sig in model.signatures.values():
            _add(sig, f"model '{model_name}'")

    for name, genes in (additional or {}).items():
        _add(Signature(name=name, genes=parse_signature(genes)), "additional signatures")

    return result


def score_signatures(
    adata: "sc.AnnData",
    signatures: Mapping[str, Signature],
    provider: Union[ScoreProvider, ScoreFn],
    max_rank: int,
    logger: Optional[logging.Logger] = None,
) -> pd.DataFrame:
    """Run a score provider and check its output covers every signature.

    Raises:
        GatingConfigError: If a requested signature is missing from the output
    """
    if logger is None:
        logger = logging.getLogger(__name__)

    if isinstance(provider, ScoreProvider):
        scores = provider.score(adata, signatures, max_rank)
    else:
        scores = provider(adata, signatures, max_rank)

    scores = pd.DataFrame(scores)
    missing = [name for name in signatures if name not in scores.columns]
    if missing:
        raise GatingConfigError(f"Signatures missing from score output: {missing}")

    scores = scores.reindex(adata.obs_names)
    if scores[list(signatures)].isna().any().any():
        raise GatingConfigError("Score output does not cover every cell in the dataset")

    logger.debug("Score table: %d cells x %d signatures", *scores.shape)
    return scores[list(signatures)].astype(float)
