"""Pytest configuration and shared fixtures for celltype-gate tests."""

import sys
from pathlib import Path

import pytest
import numpy as np
import pandas as pd

# Add package to path
PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from celltype_gate.core.model import GatingModel, gating_model
from tests.fixtures import create_mock_adata, create_score_table


# ============================================================================
# Model Fixtures
# ============================================================================


@pytest.fixture
def bcell_model() -> GatingModel:
    """Two-level B cell model: Immune, then Bcell without Tcell."""
    model = gating_model(level=1, name="Immune", signature="PTPRC")
    model = gating_model(model, level=2, name="Bcell", signature="MS4A1;CD79A")
    return gating_model(model, level=2, name="Tcell", signature="CD3D;CD3E", negative=True)


@pytest.fixture
def tcell_model() -> GatingModel:
    """Two-level T cell model: Immune, then Tcell without Bcell."""
    model = gating_model(level=1, name="Immune", signature="PTPRC")
    model = gating_model(model, level=2, name="Tcell", signature="CD3D;CD3E")
    return gating_model(model, level=2, name="Bcell", signature="MS4A1;CD79A", negative=True)


@pytest.fixture
def three_level_model() -> GatingModel:
    """Three-level model with a negative signature at level 1."""
    model = gating_model(level=1, name="Immune", signature="PTPRC")
    model = gating_model(model, level=1, name="Epithelial", signature="EPCAM", negative=True)
    model = gating_model(model, level=2, name="Lymphoid", signature="CD2;MS4A1")
    return gating_model(model, level=3, name="Bcell", signature="MS4A1;CD79A")


@pytest.fixture
def model_tsv(tmp_path) -> Path:
    """B cell model file referencing a master table."""
    model_dir = tmp_path / "models"
    model_dir.mkdir()
    (model_dir / "master_table.tsv").write_text(
        "name\tsignature\n"
        "Immune\tPTPRC\n"
        "Tcell\tCD3D;CD3E\n"
    )
    path = model_dir / "Bcell_Model.tsv"
    path.write_text(
        "levels\tuse_as\tname\tsignature\n"
        "level1\tpositive\tImmune\t@\n"
        "level2\tpositive\tBcell\tMS4A1;CD79A\n"
        "level2\tnegative\tTcell\t@\n"
    )
    return path


# ============================================================================
# Score Fixtures
# ============================================================================


@pytest.fixture
def bcell_scores() -> pd.DataFrame:
    """Scores for six cells against the B cell model signatures.

    cell_0: B cell (passes both levels)
    cell_1: not immune (fails level 1)
    cell_2: T cell (fails level 2 on the negative signature)
    cell_3: immune, no B cell signal (fails level 2 positive)
    cell_4: exactly at both thresholds (passes level 1, fails level 2 negative)
    cell_5: B cell
    """
    return create_score_table({
        "Immune": [0.5, 0.1, 0.6, 0.4, 0.2, 0.9],
        "Bcell": [0.6, 0.7, 0.5, 0.1, 0.2, 0.8],
        "Tcell": [0.1, 0.0, 0.7, 0.0, 0.2, 0.19],
    })


# ============================================================================
# AnnData Fixtures
# ============================================================================


@pytest.fixture
def mock_adata():
    """AnnData with B, T, myeloid and epithelial cells (60 each)."""
    return create_mock_adata()


@pytest.fixture
def small_adata():
    """Small AnnData for quick tests."""
    return create_mock_adata(n_cells_per_group=20, n_filler_genes=100)


@pytest.fixture
def tmp_output_dir(tmp_path: Path) -> Path:
    """Create a temporary output directory for tests."""
    output_dir = tmp_path / "output"
    output_dir.mkdir(parents=True, exist_ok=True)
    return output_dir


@pytest.fixture
def sample_gating_config(tmp_path) -> Path:
    """Gating parameters YAML under a top-level 'gating' key."""
    import yaml

    config = {
        "gating": {
            "pos_thr": 0.3,
            "neg_thr": 0.25,
            "max_rank": 50,
            "min_cells": 5,
            "seed": 7,
            "save_levels": True,
        },
    }
    path = tmp_path / "gating.yaml"
    with open(path, "w") as f:
        yaml.dump(config, f)
    return path
