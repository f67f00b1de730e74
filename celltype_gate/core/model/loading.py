"""Gating model loading from tab-separated files.

Model files have one row per signature with columns ``levels``
(``level<N>``), ``use_as`` (positive/negative), ``name`` and
``signature`` (semicolon-separated genes). A row whose signature is
``@`` (or empty) is a reference into a master table of named signatures.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, Optional, Union

import pandas as pd

from ..errors import GatingConfigError
from .model import MODEL_COLUMNS, GatingModel

PathLike = Union[str, Path]

MASTER_TABLE_NAME = "master_table.tsv"
MASTER_REFERENCE = "@"
MAX_DB_DEPTH = 3
MODEL_FILE_SUFFIXES = ("_Gate_Model", "_Model")


def model_name_from_path(path: PathLike) -> str:
    """Model name from a file name, e.g. "Bcell_Model.tsv" -> "Bcell"."""
    name = Path(path).stem
    for suffix in MODEL_FILE_SUFFIXES:
        if name.endswith(suffix) and len(name) > len(suffix):
            return name[: -len(suffix)]
    return name


def _read_tsv(path: PathLike) -> pd.DataFrame:
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Model file not found: {path}")
    table = pd.read_csv(path, sep="\t", dtype=str, keep_default_na=False)
    table.columns = [str(c).strip() for c in table.columns]
    for col in table.columns:
        table[col] = table[col].str.strip()
    return table


def load_master_table(path: PathLike) -> Dict[str, str]:
    """Load a master table mapping signature name -> signature string."""
    table = _read_tsv(path)
    missing = [c for c in ("name", "signature") if c not in table.columns]
    if missing:
        raise GatingConfigError(f"Master table {path} missing columns: {missing}")
    return dict(zip(table["name"], table["signature"]))


def use_master_table(
    table: pd.DataFrame,
    master: Dict[str, str],
    source: str = "model",
) -> pd.DataFrame:
    """Expand master-table references in a model table.

    Args:
        table: Raw model table (levels, use_as, name, signature)
        master: Master table mapping name -> signature
        source: Label used in error messages

    Returns:
        Copy of table with references replaced by master signatures

    Raises:
        GatingConfigError: If a referenced name is not in the master table
    """
    table = table.copy()
    is_ref = table["signature"].isin([MASTER_REFERENCE, ""])
    if not is_ref.any():
        return table

    missing = sorted(set(table.loc[is_ref, "name"]) - set(master))
    if missing:
        raise GatingConfigError(
            f"Signatures referenced in {source} not found in master table: {missing}"
        )
    table.loc[is_ref, "signature"] = table.loc[is_ref, "name"].map(master)
    return table


def load_model(
    model_file: PathLike,
    master_table: Optional[Union[PathLike, Dict[str, str]]] = None,
    logger: Optional[logging.Logger] = None,
) -> GatingModel:
    """Load a single gating model from a TSV file.

    Args:
        model_file: Path to the model TSV
        master_table: Master table path or pre-loaded mapping. If None, a
            ``master_table.tsv`` next to the model file is used when present.
        logger: Optional logger

    Returns:
        Validated GatingModel

    Raises:
        FileNotFoundError: If the model or master table does not exist
        GatingConfigError: If the model is malformed
    """
    if logger is None:
        logger = logging.getLogger(__name__)

    model_file = Path(model_file)
    table = _read_tsv(model_file)
    missing = [c for c in MODEL_COLUMNS if c not in table.columns]
    if missing:
        raise GatingConfigError(f"Model file {model_file} missing columns: {missing}")

    table = table[table["name"] != ""]

    if master_table is None:
        candidate = model_file.parent / MASTER_TABLE_NAME
        if candidate.exists() and candidate != model_file:
            master_table = candidate

    if master_table is None:
        master = {}
    elif isinstance(master_table, dict):
        master = master_table
    else:
        master = load_master_table(master_table)
    # Unresolvable references fail here rather than as "@" gene lists
    table = use_master_table(table, master, source=str(model_file))

    model = GatingModel.from_table(table)
    logger.debug(
        "Loaded model %s: %d levels, %d signatures",
        model_file.name,
        model.n_levels,
        len(model.rows),
    )
    return model


def _find_master_table(directory: Path, root: Path) -> Optional[Path]:
    """Find the closest master table in directory or its parents up to root."""
    current = directory
    while True:
        candidate = current / MASTER_TABLE_NAME
        if candidate.exists():
            return candidate
        if current == root or current.parent == current:
            return None
        current = current.parent


def load_model_db(
    directory: PathLike,
    logger: Optional[logging.Logger] = None,
) -> Dict[str, Any]:
    """Load a local model database into a nested dict.

    Every model file below ``directory`` is loaded and stored under its
    sub-directory path, e.g. ``db["human"]["generic"]["Bcell"]``. Models
    directly in ``directory`` are stored at the top level. Folders deeper
    than three levels are skipped.

    Args:
        directory: Root of the model database
        logger: Optional logger

    Returns:
        Nested dict of GatingModel objects keyed by folder and model name
    """
    if logger is None:
        logger = logging.getLogger(__name__)

    root = Path(directory)
    if not root.is_dir():
        raise FileNotFoundError(f"Model database not found: {root}")

    db: Dict[str, Any] = {}
    n_models = 0
    for model_file in sorted(root.rglob("*.tsv")):
        if model_file.name == MASTER_TABLE_NAME:
            continue
        parts = model_file.parent.relative_to(root).parts
        if len(parts) > MAX_DB_DEPTH:
            logger.warning(
                "Max depth for model database is %d. Skipping %s",
                MAX_DB_DEPTH,
                model_file,
            )
            continue

        name = model_name_from_path(model_file)

        node = db
        for part in parts:
            node = node.setdefault(part, {})
        node[name] = load_model(
            model_file,
            master_table=_find_master_table(model_file.parent, root),
            logger=logger,
        )
        n_models += 1

    logger.info("Loaded %d models from %s", n_models, root)
    return db
