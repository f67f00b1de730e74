"""I/O utilities for celltype-gate.

Provides logging, run records, and tabular outputs.
"""

from .logging import (
    build_run_record,
    get_logger,
    get_timestamped_log_path,
    log_yaml,
)
from .tables import (
    ensure_output_dir,
    level_summary,
    write_annotations,
    write_level_summary,
)

__all__ = [
    # Logging
    "build_run_record",
    "get_logger",
    "get_timestamped_log_path",
    "log_yaml",
    # Tables
    "ensure_output_dir",
    "level_summary",
    "write_annotations",
    "write_level_summary",
]
