"""Unit tests for kNN score smoothing."""

import pytest
import numpy as np
import pandas as pd

from celltype_gate.core.gating import build_neighbor_index, knn_smooth, smooth_scores


@pytest.fixture
def embedding():
    np.random.seed(0)
    return np.random.normal(size=(40, 5))


@pytest.fixture
def scores():
    np.random.seed(1)
    return pd.DataFrame(
        np.random.random(size=(40, 2)),
        index=[f"cell_{i}" for i in range(40)],
        columns=["Bcell", "Tcell"],
    )


class TestNeighborIndex:
    """Tests for neighbor graph construction."""

    def test_self_is_first_column(self, embedding):
        idx = build_neighbor_index(embedding, k_param=5)
        assert idx.shape == (40, 6)
        np.testing.assert_array_equal(idx[:, 0], np.arange(40))
        assert all(i not in row[1:] for i, row in enumerate(idx))

    def test_duplicate_points_keep_self(self):
        emb = np.zeros((6, 2))
        idx = build_neighbor_index(emb, k_param=3)
        np.testing.assert_array_equal(idx[:, 0], np.arange(6))
        assert all(i not in row[1:] for i, row in enumerate(idx))

    def test_k_capped_at_population(self):
        idx = build_neighbor_index(np.random.normal(size=(4, 2)), k_param=10)
        assert idx.shape == (4, 4)

    def test_single_cell(self):
        idx = build_neighbor_index(np.zeros((1, 3)), k_param=5)
        np.testing.assert_array_equal(idx, [[0]])

    def test_ties_go_to_lowest_cell_id(self):
        emb = np.zeros((4, 2))
        ids = ["cell_3", "cell_1", "cell_2", "cell_0"]
        idx = build_neighbor_index(emb, k_param=1, cell_ids=ids)
        neighbors = [ids[row[1]] for row in idx]
        assert neighbors == ["cell_0", "cell_0", "cell_0", "cell_1"]

    def test_tied_neighbors_beyond_kth_distance(self):
        # cells 1-3 are equidistant from cell 0; cell 4 is further away
        emb = np.array([[0.0, 0.0], [1.0, 0.0], [-1.0, 0.0], [0.0, 1.0], [5.0, 5.0]])
        ids = ["e", "d", "b", "c", "a"]
        idx = build_neighbor_index(emb, k_param=2, cell_ids=ids)
        assert sorted(ids[j] for j in idx[0, 1:]) == ["b", "c"]

    def test_cell_id_length_mismatch(self):
        with pytest.raises(ValueError, match="cell ids"):
            build_neighbor_index(np.zeros((4, 2)), k_param=1, cell_ids=["a", "b"])


class TestSmoothScores:
    """Tests for score averaging."""

    def test_mean_over_self_and_neighbors(self):
        emb = np.array([[0.0], [1.0], [10.0], [11.0]])
        raw = pd.DataFrame({"S": [0.0, 1.0, 0.4, 0.6]}, index=list("abcd"))
        idx = build_neighbor_index(emb, k_param=1)
        out = smooth_scores(raw, idx)
        np.testing.assert_allclose(out["S"], [0.5, 0.5, 0.5, 0.5])
        assert out.index.equals(raw.index)

    def test_order_independent(self, embedding, scores):
        smoothed = smooth_scores(scores, build_neighbor_index(embedding, k_param=7))

        perm = np.random.RandomState(3).permutation(len(scores))
        smoothed_perm = smooth_scores(
            scores.iloc[perm], build_neighbor_index(embedding[perm], k_param=7)
        )
        pd.testing.assert_frame_equal(
            smoothed, smoothed_perm.loc[smoothed.index], check_exact=False, atol=1e-12
        )

    def test_row_mismatch(self, scores):
        with pytest.raises(ValueError):
            smooth_scores(scores, np.zeros((3, 2), dtype=int))


class TestKnnSmooth:
    """Tests for knn_smooth."""

    def test_small_population_unchanged(self, embedding, scores):
        out = knn_smooth(scores, embedding, k_param=5, min_cells=100)
        pd.testing.assert_frame_equal(out, scores)

    def test_smooths(self, embedding, scores):
        out = knn_smooth(scores, embedding, k_param=5, min_cells=10)
        assert not np.allclose(out.values, scores.values)
        assert out.shape == scores.shape

    def test_duplicate_points_order_independent(self):
        emb = np.zeros((4, 3))
        raw = pd.DataFrame(
            {"S": [0.0, 1.0, 0.0, 1.0]}, index=[f"cell_{i}" for i in range(4)]
        )
        out = knn_smooth(raw, emb, k_param=1, min_cells=0)
        np.testing.assert_allclose(out["S"], [0.5, 0.5, 0.0, 0.5])

        perm = [3, 1, 2, 0]
        out_perm = knn_smooth(raw.iloc[perm], emb[perm], k_param=1, min_cells=0)
        pd.testing.assert_frame_equal(out, out_perm.loc[out.index])
