"""Logging utilities for gating runs.

Provides the per-run log file and YAML run records.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional, Tuple, Union

import yaml

PathLike = Union[str, Path]

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(message)s"
LOG_DATEFMT = "%Y-%m-%d %H:%M:%S"


def get_timestamped_log_path(log_path: PathLike) -> Path:
    """Generate a timestamped log path from the base log path.

    Example: gating.log -> gating_20251209_080530.log
    """
    log_path = Path(log_path)
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    suffix = log_path.suffix or ".log"
    return log_path.parent / f"{log_path.stem}_{timestamp}{suffix}"


def get_logger(
    name: str,
    log_path: PathLike,
    level: int = logging.INFO,
    timestamped: bool = True,
    propagate: bool = False,
) -> Tuple[logging.Logger, Path]:
    """Return a logger writing to a file.

    Parameters
    ----------
    name : str
        Logger name
    log_path : PathLike
        Base path for the log file
    level : int
        Logging level (default: INFO)
    timestamped : bool
        Add a timestamp to the filename so earlier runs are kept.
        If False, an existing log file is replaced.
    propagate : bool
        Also pass records to parent handlers (e.g. the console handler
        installed by the CLI)

    Returns
    -------
    Tuple[logging.Logger, Path]
        (logger, actual log path)
    """
    log_path = Path(log_path)
    if timestamped:
        actual_log_path = get_timestamped_log_path(log_path)
    else:
        actual_log_path = log_path
        actual_log_path.unlink(missing_ok=True)
    actual_log_path.parent.mkdir(parents=True, exist_ok=True)

    logger = logging.getLogger(name)
    logger.setLevel(level)
    logger.propagate = propagate
    for handler in list(logger.handlers):
        if isinstance(handler, logging.FileHandler):
            handler.close()
        logger.removeHandler(handler)

    handler = logging.FileHandler(actual_log_path, mode="a", encoding="utf-8")
    handler.setFormatter(logging.Formatter(fmt=LOG_FORMAT, datefmt=LOG_DATEFMT))
    logger.addHandler(handler)
    return logger, actual_log_path


def log_yaml(
    log_path: Optional[PathLike],
    record: Dict[str, Any],
    *,
    logger: Optional[logging.Logger] = None,
) -> None:
    """Append a YAML document to log_path, or to logger if given."""
    yaml_text = yaml.safe_dump(record, sort_keys=False).rstrip("\n")
    message = f"{yaml_text}\n---"
    if logger is not None:
        logger.info("%s", message)
        return

    if log_path is None:
        raise ValueError("log_path is required when no logger is given")
    path = Path(log_path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("a", encoding="utf-8") as handle:
        handle.write(message)
        handle.write("\n")


def build_run_record(
    params: Dict[str, Any],
    model_results: Dict[str, Any],
    inputs: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    """Summarize a gating run as a plain dict for log_yaml.

    Parameters
    ----------
    params : dict
        Gating parameters (GatingParams.to_dict())
    model_results : dict
        Model name -> ModelGatingResult
    inputs : dict, optional
        Input file paths and other provenance
    """
    models = {}
    for name, result in model_results.items():
        n_cells = len(result.final)
        models[name] = {
            "n_cells": n_cells,
            "n_pure": n_cells - result.n_impure,
            "n_impure": result.n_impure,
            "alive_per_level": [int(n) for n in result.level_sizes],
            "stopped_at_level": result.stopped_at_level,
        }
    return {
        "timestamp": datetime.now().isoformat(timespec="seconds"),
        "inputs": dict(inputs or {}),
        # JSON round-trip turns tuples into lists so safe_dump accepts them
        "params": json.loads(json.dumps(params, default=str)),
        "models": models,
    }
