"""Pytest configuration and shared fixtures."""

import numpy as np
import pytest

from stochpath.grid import TimeGrid
from stochpath.random import NoiseStream


@pytest.fixture
def daily_grid():
    """One year of daily steps."""
    return TimeGrid.uniform(0.0, 1.0, 252)


@pytest.fixture
def uneven_grid():
    """Non-uniform grid with mixed step sizes."""
    return TimeGrid([0.0, 0.1, 0.3, 0.35, 0.7, 1.0])


@pytest.fixture
def stream():
    return NoiseStream(12345)


@pytest.fixture
def gbm_prices():
    """Long GBM price series (sigma = 0.2, daily sampling)."""
    rng = np.random.default_rng(42)
    dt = 1 / 252
    sigma, mu = 0.2, 0.05
    log_steps = (mu - 0.5 * sigma**2) * dt + sigma * np.sqrt(dt) * rng.standard_normal(100_000)
    return 100.0 * np.exp(np.concatenate(([0.0], np.cumsum(log_steps))))
