"""Classification metrics for gating calls against ground truth."""

from __future__ import annotations

from typing import Dict, Sequence, Tuple, Union

import numpy as np
import pandas as pd
from sklearn.metrics import (
    confusion_matrix,
    matthews_corrcoef,
    precision_score,
    recall_score,
)


def _as_bool(values: Union[Sequence, pd.Series, np.ndarray], label: str) -> np.ndarray:
    arr = np.asarray(values)
    if arr.dtype == bool:
        return arr
    if arr.dtype.kind in "iuf":
        return arr.astype(bool)
    # Purity labels
    text = pd.Series(arr).astype(str).str.lower()
    known = text.isin(["pure", "impure", "true", "false"])
    if not known.all():
        raise ValueError(f"'{label}' must be boolean or Pure/Impure labels")
    return text.isin(["pure", "true"]).to_numpy()


def performance_metrics(
    actual: Union[Sequence, pd.Series, np.ndarray],
    pred: Union[Sequence, pd.Series, np.ndarray],
    return_contingency: bool = False,
) -> Union[Dict[str, float], Tuple[Dict[str, float], pd.DataFrame]]:
    """Precision, recall and Matthews correlation of binary predictions.

    Args:
        actual: Ground truth (bool, 0/1, or Pure/Impure labels)
        pred: Predictions in the same encoding
        return_contingency: Also return the 2x2 contingency table

    Returns:
        Dict with PREC, REC and MCC; with return_contingency, a tuple of
        (metrics, table) where rows are actual and columns are predicted,
        True first.
    """
    actual = _as_bool(actual, "actual")
    pred = _as_bool(pred, "pred")
    if len(actual) != len(pred):
        raise ValueError(
            f"actual and pred differ in length ({len(actual)} vs {len(pred)})"
        )

    # NaN when there are no predicted (or actual) positives
    metrics = {
        "PREC": float(precision_score(actual, pred, zero_division=np.nan)),
        "REC": float(recall_score(actual, pred, zero_division=np.nan)),
        "MCC": float(matthews_corrcoef(actual, pred)),
    }
    if not return_contingency:
        return metrics

    table = pd.DataFrame(
        confusion_matrix(actual, pred, labels=[True, False]),
        index=pd.Index([True, False], name="actual"),
        columns=pd.Index([True, False], name="pred"),
    )
    return metrics, table
