"""Gating model module.

Provides the validated in-memory model (ordered levels of positive and
negative signatures), model editing and TSV loading.
"""

from .loading import (
    load_master_table,
    load_model,
    load_model_db,
    model_name_from_path,
    use_master_table,
)
from .model import (
    MODEL_COLUMNS,
    GatingLevel,
    GatingModel,
    Signature,
    SignatureRole,
    SignatureRow,
    format_signature,
    gating_model,
    parse_level,
    parse_signature,
)

__all__ = [
    "MODEL_COLUMNS",
    "GatingLevel",
    "GatingModel",
    "Signature",
    "SignatureRole",
    "SignatureRow",
    "format_signature",
    "gating_model",
    "parse_level",
    "parse_signature",
    "load_master_table",
    "load_model",
    "load_model_db",
    "model_name_from_path",
    "use_master_table",
]
