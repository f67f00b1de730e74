"""Unit tests for multi-level gating of one model."""

import pytest
import numpy as np
import pandas as pd

from celltype_gate.core.errors import GatingConfigError
from celltype_gate.core.gating import (
    IMPURE,
    PURE,
    PURITY_CATEGORIES,
    decay_schedule,
    gate_model,
)
from celltype_gate.core.model import gating_model
from tests.fixtures import create_score_table


def _random_scores(n_cells=200, seed=0):
    rng = np.random.RandomState(seed)
    return create_score_table({
        "Immune": rng.random_sample(n_cells),
        "Epithelial": rng.random_sample(n_cells) * 0.4,
        "Lymphoid": rng.random_sample(n_cells),
        "Bcell": rng.random_sample(n_cells),
    })


class TestGateModel:
    """Tests for gate_model with the per-cell rule."""

    def test_final_calls(self, bcell_model, bcell_scores):
        result = gate_model(bcell_scores, bcell_model, pos_thr=0.2, neg_thr=0.2)
        assert list(result.final) == [PURE, IMPURE, IMPURE, IMPURE, IMPURE, PURE]
        assert result.n_impure == 4
        assert result.impure_fraction == pytest.approx(4 / 6)
        assert list(result.final.cat.categories) == PURITY_CATEGORIES

    def test_level_trace_propagates_impure(self, bcell_model, bcell_scores):
        result = gate_model(bcell_scores, bcell_model)
        assert list(result.levels.columns) == ["level1", "level2"]
        assert list(result.levels["level1"]) == [PURE, IMPURE, PURE, PURE, PURE, PURE]
        # cell_1 failed level1 and is never re-evaluated
        assert result.levels.loc["cell_1", "level2"] == IMPURE
        assert result.level_sizes == [6, 5]

    def test_two_level_bcell_scenario(self):
        model = gating_model(level=1, name="PTPRC", signature="PTPRC")
        model = gating_model(model, level=2, name="MS4A1", signature="MS4A1")
        model = gating_model(model, level=2, name="CD3D", signature="CD3D", negative=True)
        scores = create_score_table({
            "PTPRC": [0.5, 0.1],
            "MS4A1": [0.6, 0.9],
            "CD3D": [0.1, 0.0],
        })
        result = gate_model(scores, model, pos_thr=0.2, neg_thr=0.2)
        assert list(result.final) == [PURE, IMPURE]
        assert result.levels.loc["cell_1", "level1"] == IMPURE

    def test_monotonic_and_across_levels(self, three_level_model):
        scores = _random_scores()
        result = gate_model(scores, three_level_model, pos_thr=0.3, neg_thr=0.3)
        all_pure = (result.levels == PURE).all(axis=1)
        assert ((result.final == PURE) == all_pure).all()

    @pytest.mark.parametrize("start_level", [1, 2])
    def test_idempotent_on_restricted_population(self, three_level_model, start_level):
        scores = _random_scores(seed=5)
        full = gate_model(scores, three_level_model, pos_thr=0.3, neg_thr=0.3)

        pure_at = full.levels.index[full.levels[f"level{start_level}"] == PURE]
        sub_model = three_level_model.restrict_levels(start_level + 1)
        sub = gate_model(scores.loc[pure_at], sub_model, pos_thr=0.3, neg_thr=0.3)

        pd.testing.assert_series_equal(
            sub.final.astype(str),
            full.final.loc[pure_at].astype(str),
            check_names=False,
        )

    def test_empty_population_stops_early(self, three_level_model):
        scores = _random_scores(n_cells=20)
        scores["Immune"] = 0.0
        result = gate_model(scores, three_level_model)
        assert (result.final == IMPURE).all()
        assert result.stopped_at_level == 2
        assert (result.levels == IMPURE).all().all()
        assert result.level_sizes == [20, 0, 0]

    def test_missing_signature_is_config_error(self, bcell_model, bcell_scores):
        with pytest.raises(GatingConfigError, match="Tcell"):
            gate_model(bcell_scores.drop(columns="Tcell"), bcell_model, name="Bcell")

    def test_cluster_fn_requires_schedule(self, bcell_model, bcell_scores):
        with pytest.raises(GatingConfigError, match="schedule"):
            gate_model(bcell_scores, bcell_model, cluster_fn=lambda ids, p: None)


class TestClusterMode:
    """Tests for gate_model with a clustering callback."""

    @pytest.fixture
    def scores(self):
        n = 40
        return create_score_table({
            "Immune": [0.6] * 30 + [0.0] * 10,
            "Bcell": [0.5] * 20 + [0.1] * 20,
            "Tcell": [0.0] * n,
        })

    def test_clusters_recomputed_per_level(self, bcell_model, scores):
        labels = pd.Series(["A"] * 20 + ["C"] * 10 + ["B"] * 10, index=scores.index)
        calls = []

        def cluster_fn(cell_ids, params):
            calls.append((len(cell_ids), params))
            return labels.loc[cell_ids]

        schedule = decay_schedule(2, 2000, 30, 3.0, 0.25, seed=11)
        result = gate_model(
            scores, bcell_model, min_cells=5, cluster_fn=cluster_fn, schedule=schedule
        )

        assert [n for n, _ in calls] == [40, 30]
        assert calls[1][1].nfeatures == 1500
        assert calls[1][1].seed == 11
        # level1: A and C pass on Immune, B fails; level2: only A passes on Bcell
        assert (result.final.iloc[:20] == PURE).all()
        assert (result.final.iloc[20:] == IMPURE).all()
        assert (result.levels["level1"].iloc[20:30] == PURE).all()

    def test_single_cluster_outvotes_members(self, bcell_model, scores):
        calls = []

        def cluster_fn(cell_ids, params):
            calls.append(len(cell_ids))
            return pd.Series("0", index=cell_ids)

        schedule = decay_schedule(2, 2000, 30, 3.0, 0.0, seed=1)
        result = gate_model(
            scores, bcell_model, min_cells=35, cluster_fn=cluster_fn, schedule=schedule
        )
        # 40 cells cluster at level 1; 40 survive (one cluster, mean Immune 0.45);
        # level 2 still has 40 >= 35 cells and clusters again
        assert calls == [40, 40]
        assert (result.final == PURE).all()

    def test_below_min_cells_uses_per_cell_rule(self, bcell_model, scores):
        calls = []

        def cluster_fn(cell_ids, params):
            calls.append(len(cell_ids))
            return pd.Series("0", index=cell_ids)

        schedule = decay_schedule(2, 2000, 30, 3.0, 0.0, seed=1)
        result = gate_model(
            scores, bcell_model, min_cells=100, cluster_fn=cluster_fn, schedule=schedule
        )
        assert calls == []
        assert (result.final.iloc[:20] == PURE).all()
        assert (result.final.iloc[20:] == IMPURE).all()


class TestDecaySchedule:
    """Tests for per-level parameter decay."""

    def test_values(self):
        schedule = decay_schedule(3, 2000, 30, 3.0, 0.25, seed=5)
        assert [p.nfeatures for p in schedule] == [2000, 1500, 1125]
        assert [p.pca_dim for p in schedule] == [30, 30, 30]
        assert [p.resolution for p in schedule] == pytest.approx([3.0, 2.25, 1.6875])
        assert all(p.seed == 5 for p in schedule)
        assert [p.level for p in schedule] == [1, 2, 3]

    def test_no_decay(self):
        schedule = decay_schedule(4, 100, 10, 1.0, 0.0, seed=1)
        assert {(p.nfeatures, p.pca_dim, p.resolution) for p in schedule} == {(100, 10, 1.0)}

    def test_full_decay_with_levels_remaining(self):
        with pytest.raises(GatingConfigError, match="nfeatures"):
            decay_schedule(2, 2000, 30, 3.0, 1.0, seed=1)

    def test_full_decay_single_level_is_fine(self):
        assert len(decay_schedule(1, 2000, 30, 3.0, 1.0, seed=1)) == 1

    def test_pca_dim_is_not_decayed(self):
        schedule = decay_schedule(6, 2000, 2, 3.0, 0.5, seed=1)
        assert {p.pca_dim for p in schedule} == {2}
