"""Weighted-random selection shared by task and malfunction selection.

The selector makes two independent decisions:

1. Which candidate is drawn, proportionally to its weight among the candidates
   that match the caller's predicate (the aggregate draw).
2. Whether that candidate actually happens, using its own weight as a
   percentage likelihood (the gate).

Malfunction selection uses both stages: a scope may have many applicable
failure modes, but the drawn one must still clear its own occurrence
probability. Task selection normally switches the gate off.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Generic, Iterable, Optional, Sequence, TypeVar

from .logging_utils import log_warning
from .randomness import RandomSource

T = TypeVar("T")


@dataclass(frozen=True)
class WeightedCandidate(Generic[T]):
    """One outcome and its non-negative weight."""

    item: T
    weight: float

    def __post_init__(self) -> None:
        if self.weight < 0:
            raise ValueError(f"Candidate weight must be non-negative, got {self.weight}")


@dataclass(frozen=True)
class SelectionOutcome(Generic[T]):
    """Full trace of one weighted selection.

    ``tentative`` is the candidate drawn by the weighted walk; ``chosen`` is
    the final answer after the gate (``None`` when the gate failed or nothing
    was selectable).
    """

    chosen: Optional[T]
    tentative: Optional[T]
    total: float
    draw: Optional[float]
    gate_passed: Optional[bool]
    fallback: bool = False


def select_weighted(
    candidates: Iterable[WeightedCandidate[T]],
    rng: RandomSource,
    *,
    matches: Optional[Callable[[T], bool]] = None,
    gate: bool = True,
    shuffle: bool = True,
) -> SelectionOutcome[T]:
    """Pick one candidate by weight and return the whole selection trace.

    Args:
        candidates: Weighted outcomes; order matters only when ``shuffle`` is off
        rng: Injected random source used for the draw, shuffle and gate
        matches: Optional predicate restricting which candidates apply
        gate: Apply the independent percentage gate to the drawn candidate
        shuffle: Shuffle iteration order before the walk (tie-break fairness)

    Returns:
        SelectionOutcome; ``chosen`` is ``None`` for an empty or all-zero set
        or when the gate rejects the drawn candidate.
    """
    pool: list[WeightedCandidate[T]] = [
        c for c in candidates if matches is None or matches(c.item)
    ]
    total = sum(c.weight for c in pool)
    if not pool or total <= 0:
        return SelectionOutcome(chosen=None, tentative=None, total=total, draw=None, gate_passed=None)

    draw = rng.uniform(total)
    if shuffle:
        rng.shuffle(pool)

    remaining = draw
    tentative: Optional[WeightedCandidate[T]] = None
    for candidate in pool:
        remaining -= candidate.weight
        if remaining < 0:
            tentative = candidate
            break

    fallback = False
    if tentative is None:
        # Floating point drift let the draw survive the whole walk.
        positive = [c for c in pool if c.weight > 0]
        tentative = positive[-1]
        fallback = True
        log_warning(
            f"Weighted walk exhausted (total={total:.6g}, draw={draw:.6g}); "
            f"falling back to '{tentative.item}'"
        )

    if not gate:
        return SelectionOutcome(
            chosen=tentative.item,
            tentative=tentative.item,
            total=total,
            draw=draw,
            gate_passed=None,
            fallback=fallback,
        )

    passed = rng.less_than_rand_percent(tentative.weight)
    return SelectionOutcome(
        chosen=tentative.item if passed else None,
        tentative=tentative.item,
        total=total,
        draw=draw,
        gate_passed=passed,
        fallback=fallback,
    )


def pick_weighted(
    candidates: Iterable[WeightedCandidate[T]],
    rng: RandomSource,
    *,
    matches: Optional[Callable[[T], bool]] = None,
    gate: bool = True,
    shuffle: bool = True,
) -> Optional[T]:
    """Return the chosen item (or ``None``) from :func:`select_weighted`."""
    return select_weighted(candidates, rng, matches=matches, gate=gate, shuffle=shuffle).chosen


def weigh(items: Sequence[T], weight_of: Callable[[T], float]) -> list[WeightedCandidate[T]]:
    """Wrap ``items`` as weighted candidates using ``weight_of``."""
    return [WeightedCandidate(item, weight_of(item)) for item in items]
