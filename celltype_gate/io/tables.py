"""Tabular outputs of a gating run."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Sequence, Union

import pandas as pd

try:
    import scanpy as sc
except ImportError:
    sc = None

from ..core.gating.orchestrator import PURE

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]


def ensure_output_dir(path: PathLike) -> Path:
    """Create the directory at path if it does not exist and return it."""
    directory = Path(path)
    directory.mkdir(parents=True, exist_ok=True)
    return directory


def write_annotations(
    adata: "sc.AnnData",
    columns: Sequence[str],
    path: PathLike,
) -> Path:
    """Write gating columns of adata.obs as CSV indexed by cell id.

    Raises
    ------
    KeyError
        If a column is missing from adata.obs
    """
    missing = [c for c in columns if c not in adata.obs.columns]
    if missing:
        raise KeyError(f"Columns not found in adata.obs: {missing}")

    output_path = Path(path)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    table = adata.obs[list(columns)].copy()
    table.index.name = "cell_id"
    table.to_csv(output_path)
    logger.info("Wrote %d annotation columns to %s", len(columns), output_path)
    return output_path


def level_summary(model_results) -> pd.DataFrame:
    """Pure counts per model and level.

    Columns: model, level, n_evaluated, n_pure, frac_pure. The final
    call is reported with level "final".
    """
    rows = []
    for name, result in model_results.items():
        for i, level_name in enumerate(result.levels.columns):
            n_evaluated = result.level_sizes[i] if i < len(result.level_sizes) else 0
            n_pure = int((result.levels[level_name] == PURE).sum())
            rows.append(
                {
                    "model": name,
                    "level": level_name,
                    "n_evaluated": int(n_evaluated),
                    "n_pure": n_pure,
                    "frac_pure": n_pure / n_evaluated if n_evaluated else 0.0,
                }
            )
        n_cells = len(result.final)
        n_pure = n_cells - result.n_impure
        rows.append(
            {
                "model": name,
                "level": "final",
                "n_evaluated": n_cells,
                "n_pure": n_pure,
                "frac_pure": n_pure / n_cells if n_cells else 0.0,
            }
        )
    return pd.DataFrame(
        rows, columns=["model", "level", "n_evaluated", "n_pure", "frac_pure"]
    )


def write_level_summary(model_results, path: PathLike) -> Path:
    """Write level_summary(model_results) as CSV."""
    output_path = Path(path)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    level_summary(model_results).to_csv(output_path, index=False)
    return output_path
