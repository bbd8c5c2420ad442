"""Tests for time grids and seeded noise streams."""

import numpy as np
import pytest

from stochpath.errors import InvalidGrid
from stochpath.grid import TimeGrid, as_grid
from stochpath.noise import IncrementSequence, gaussian_increments
from stochpath.random import DERIVED_SEED_MODULUS, NoiseStream, derive_seed, seed_stream


# ---------------------------------------------------------------------------
# TimeGrid
# ---------------------------------------------------------------------------

class TestTimeGrid:
    def test_uniform_construction(self):
        grid = TimeGrid.uniform(0.0, 2.0, 8)
        assert grid.steps == 8
        assert len(grid) == 9
        assert grid.horizon == pytest.approx(2.0)
        assert grid.is_uniform
        assert grid.step_size == pytest.approx(0.25)
        np.testing.assert_allclose(grid.dt, 0.25)

    def test_explicit_points(self, uneven_grid):
        assert uneven_grid.steps == 5
        assert not uneven_grid.is_uniform
        np.testing.assert_allclose(uneven_grid.dt, [0.1, 0.2, 0.05, 0.35, 0.3])

    @pytest.mark.parametrize("points", [[], [0.0], [0.0, np.nan], [0.0, 1.0, 1.0], [1.0, 0.5]])
    def test_invalid_points_rejected(self, points):
        with pytest.raises(InvalidGrid):
            TimeGrid(points)

    def test_invalid_grid_is_value_error(self):
        with pytest.raises(ValueError):
            TimeGrid([0.0])

    @pytest.mark.parametrize("steps", [0, -3, 2.5])
    def test_uniform_rejects_bad_steps(self, steps):
        with pytest.raises(InvalidGrid):
            TimeGrid.uniform(0.0, 1.0, steps)

    def test_points_are_read_only(self, daily_grid):
        with pytest.raises(ValueError):
            daily_grid.points[0] = 5.0

    def test_step_size_requires_uniform(self, uneven_grid):
        with pytest.raises(InvalidGrid):
            uneven_grid.step_size

    def test_equality_and_hash(self):
        a = TimeGrid.uniform(0.0, 1.0, 4)
        b = TimeGrid([0.0, 0.25, 0.5, 0.75, 1.0])
        assert a == b
        assert hash(a) == hash(b)
        assert a != TimeGrid.uniform(0.0, 1.0, 5)

    def test_as_grid_accepts_arrays(self):
        grid = as_grid([0.0, 1.0, 3.0])
        assert isinstance(grid, TimeGrid)
        with pytest.raises(InvalidGrid):
            as_grid(None)


# ---------------------------------------------------------------------------
# Seeds and streams
# ---------------------------------------------------------------------------

class TestNoiseStream:
    def test_same_seed_same_draws(self):
        a, b = NoiseStream(7), NoiseStream(7)
        np.testing.assert_array_equal(a.normals(100), b.normals(100))
        assert a.next_uniform() == b.next_uniform()

    def test_different_seeds_differ(self):
        assert not np.array_equal(NoiseStream(1).normals(10), NoiseStream(2).normals(10))

    def test_negative_seed_wraps(self):
        assert NoiseStream(-1).seed == 2**64 - 1
        np.testing.assert_array_equal(NoiseStream(-1).normals(5), NoiseStream(2**64 - 1).normals(5))

    def test_string_and_bytes_seeds(self):
        assert NoiseStream("alpha").seed == NoiseStream(b"alpha").seed
        np.testing.assert_array_equal(seed_stream("alpha").normals(3), NoiseStream("alpha").normals(3))

    def test_none_seed_uses_entropy(self):
        assert NoiseStream(None).seed is None

    def test_derive_seed_is_deterministic(self):
        assert derive_seed(42, 3) == derive_seed(42, 3)
        assert derive_seed(42, 3) != derive_seed(42, 4)
        assert derive_seed(42, 0) != derive_seed(43, 0)

    def test_derive_seed_range(self):
        for i in range(50):
            assert 0 <= derive_seed(2**70, i) < DERIVED_SEED_MODULUS


class TestIncrements:
    def test_gaussian_increments_scale(self, stream):
        grid = TimeGrid.uniform(0.0, 100.0, 100_000)
        dw = gaussian_increments(stream, grid)
        assert dw.shape == (100_000,)
        assert np.var(dw) == pytest.approx(grid.step_size, rel=0.02)

    def test_sequence_is_one_shot(self, uneven_grid):
        seq = IncrementSequence(NoiseStream(3), uneven_grid)
        assert len(seq) == 5
        values = list(seq)
        assert len(values) == 5
        assert len(seq) == 0
        assert list(seq) == []

    def test_sequence_matches_vector_draws(self, uneven_grid):
        values = np.array(list(IncrementSequence(NoiseStream(3), uneven_grid)))
        np.testing.assert_allclose(values, gaussian_increments(NoiseStream(3), uneven_grid))
