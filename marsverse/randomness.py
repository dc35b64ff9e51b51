"""Injected, seedable random source.

Every random decision in the core (weighted draws, tie-break shuffles,
probability gates, malfunction rolls) goes through a ``RandomSource`` handed
in by the caller. Tests subclass it to script exact draws.
"""

from __future__ import annotations

import random
from hashlib import sha256
from typing import MutableSequence, TypeVar

T = TypeVar("T")


class RandomSource:
    """Thin wrapper around :class:`random.Random` with the draws the core needs."""

    def __init__(self, seed: int | None = None) -> None:
        self.seed = seed
        self._rng = random.Random(seed)

    def random(self) -> float:
        """Uniform float in [0, 1)."""
        return self._rng.random()

    def uniform(self, upper: float) -> float:
        """Uniform float in [0, upper)."""
        if upper <= 0:
            return 0.0
        return self._rng.random() * upper

    def shuffle(self, items: MutableSequence[T]) -> None:
        """Shuffle ``items`` in place."""
        self._rng.shuffle(items)

    def less_than_rand_percent(self, percent: float) -> bool:
        """Return True with probability ``percent`` / 100."""
        if percent <= 0:
            return False
        if percent >= 100:
            return True
        return self.uniform(100.0) < percent

    def spawn(self, salt: str) -> "RandomSource":
        """Derive an independent child source, stable for a given seed and salt."""
        if self.seed is None:
            return RandomSource(self._rng.getrandbits(64))
        digest = sha256(f"{self.seed}|{salt}".encode()).digest()
        return RandomSource(int.from_bytes(digest[:8], "big"))
