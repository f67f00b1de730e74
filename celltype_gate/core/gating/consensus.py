"""Multi-model consensus labels.

Combines the final Pure/Impure columns of independently gated models
into one label per cell: the model name when exactly one model calls
the cell Pure, "Multi" (or NA) when several do, NA when none do.
Labels carried by fewer than ``min_cells`` cells are reset to NA.
"""

from __future__ import annotations

import logging
import re
from typing import List, Optional, Sequence

import numpy as np
import pandas as pd

from ..errors import GatingConfigError
from .orchestrator import PURE

MULTI_LABEL = "Multi"

# Per-level columns written with --save-levels
_LEVEL_SUFFIX = re.compile(r"\.level\d+$")


def purity_column(prefix: str, model_name: str) -> str:
    return f"{prefix}_{model_name}"


def discover_classes(obs: pd.DataFrame, prefix: str = "is.pure") -> List[str]:
    """Model names of all final purity columns named ``<prefix>_<model>``."""
    start = f"{prefix}_"
    return [
        str(col)[len(start):]
        for col in obs.columns
        if str(col).startswith(start)
        and len(str(col)) > len(start)
        and not _LEVEL_SUFFIX.search(str(col))
    ]


def combine_multiclass(
    obs: pd.DataFrame,
    classes: Optional[Sequence[str]] = None,
    prefix: str = "is.pure",
    min_cells: int = 1,
    multi_as_na: bool = False,
    logger: Optional[logging.Logger] = None,
) -> pd.Series:
    """Combine per-model purity columns into a consensus label.

    Args:
        obs: Cell annotations holding ``<prefix>_<class>`` columns
        classes: Model names to combine. Discovered from the
            ``<prefix>_*`` columns of obs if None.
        prefix: Purity column prefix
        min_cells: Labels with fewer cells than this become NA
        multi_as_na: Label cells Pure under several models NA instead of "Multi"
        logger: Logger instance

    Returns:
        Categorical Series of model names / "Multi" / NA indexed like obs

    Raises:
        GatingConfigError: If none of the model columns exist
    """
    if logger is None:
        logger = logging.getLogger(__name__)

    if classes is None:
        classes = discover_classes(obs, prefix)
        logger.info("Combining %d purity columns: %s", len(classes), ", ".join(classes))
    classes = list(classes)
    pure = pd.DataFrame(False, index=obs.index, columns=classes)
    valid = []
    for cls in classes:
        col = purity_column(prefix, cls)
        if col not in obs.columns:
            logger.warning("Column '%s' not found; treating '%s' as Impure", col, cls)
            continue
        pure[cls] = obs[col].astype(object).eq(PURE).to_numpy()
        valid.append(cls)

    if not valid:
        raise GatingConfigError(
            f"No purity columns found for consensus (prefix='{prefix}', "
            f"models={classes})"
        )

    n_pure = pure.sum(axis=1).to_numpy()
    first = pure.to_numpy().argmax(axis=1)

    labels = np.full(len(obs), np.nan, dtype=object)
    single = n_pure == 1
    labels[single] = np.asarray(classes, dtype=object)[first[single]]
    if not multi_as_na:
        labels[n_pure >= 2] = MULTI_LABEL

    result = pd.Series(labels, index=obs.index, dtype=object)

    counts = result.value_counts()
    rare = counts.index[counts < min_cells]
    if len(rare) > 0:
        logger.info(
            "Resetting %d consensus labels below min_cells=%d: %s",
            len(rare),
            min_cells,
            ", ".join(f"{lab} ({counts[lab]})" for lab in rare),
        )
        result[result.isin(rare)] = np.nan

    categories = [c for c in classes + [MULTI_LABEL] if (result == c).any()]
    return pd.Series(
        pd.Categorical(result, categories=categories),
        index=obs.index,
        name="consensus",
    )
