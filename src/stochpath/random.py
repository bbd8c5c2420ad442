"""Seeded randomness streams.

Every simulation run owns exactly one ``NoiseStream``. There is no
module-level generator: reproducibility comes from passing streams (or
seeds derived with ``derive_seed``) explicitly.
"""

import hashlib
import logging

import numpy as np

logger = logging.getLogger(__name__)

SEED_MODULUS = 2**64
DERIVED_SEED_MODULUS = 2**63


def _normalize_seed(value) -> int | None:
    """Map any integer, string or bytes seed onto a valid PCG64 seed."""
    if value is None:
        return None
    if isinstance(value, (bool, np.bool_)):
        return int(value)
    if isinstance(value, (int, np.integer)):
        return int(value) % SEED_MODULUS
    if isinstance(value, str):
        value = value.encode()
    if isinstance(value, bytes):
        return int(hashlib.sha256(value).hexdigest(), 16) % SEED_MODULUS
    return int(value) % SEED_MODULUS


def derive_seed(base_seed, index: int) -> int:
    """Stable per-path seed, independent of execution order.

    Uses hashlib rather than ``hash()`` so the value is identical across
    interpreter sessions.
    """
    digest = hashlib.sha256(f"{_normalize_seed(base_seed)}:{int(index)}".encode()).hexdigest()
    return int(digest, 16) % DERIVED_SEED_MODULUS


class NoiseStream:
    """Owned, seeded pseudo-random generator state.

    Identical seeds yield identical draw sequences on the same platform.
    A stream must never be shared between concurrently running simulations.
    """

    def __init__(self, seed=None):
        self.seed = _normalize_seed(seed)
        self._rng = np.random.Generator(np.random.PCG64(self.seed))

    def __repr__(self) -> str:
        return f"NoiseStream(seed={self.seed})"

    def next_normal(self) -> float:
        return float(self._rng.standard_normal())

    def next_uniform(self) -> float:
        return float(self._rng.random())

    def normals(self, size) -> np.ndarray:
        return self._rng.standard_normal(size)

    def uniforms(self, size) -> np.ndarray:
        return self._rng.random(size)

    def normal(self, loc, scale, size=None):
        return self._rng.normal(loc, scale, size)

    def poisson(self, lam, size=None):
        return self._rng.poisson(lam, size)

    def exponential(self, scale=1.0, size=None):
        return self._rng.exponential(scale, size)

    def noncentral_chisquare(self, df, nonc, size=None):
        return self._rng.noncentral_chisquare(df, nonc, size)


def seed_stream(value=None) -> NoiseStream:
    """Create a fresh stream; a malformed seed is normalised, never rejected."""
    return NoiseStream(value)
