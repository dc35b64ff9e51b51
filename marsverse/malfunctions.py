"""Malfunction catalog and per-pulse failure monitor.

Malfunctions are picked with the same weighted selector used for task
selection, with the probability gate switched on: the draw decides which
failure mode applies to a scope, the gate decides whether it happens.
A malfunction tied to a component part becomes more likely as that part's
reliability decays.
"""

from __future__ import annotations

import math
import re
from collections import deque
from dataclasses import dataclass, field
from typing import Deque, Dict, Iterable, List, Optional, Sequence, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .errors import InvalidScopeError
from .logging_utils import log_debug, log_warning
from .randomness import RandomSource
from .reliability import ReliabilityRegistry
from .selection import WeightedCandidate, select_weighted

_SCOPE_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9 _\-]*$")
RECENT_MALFUNCTIONS = 10


def normalize_scope(scope: object, *, owner: Optional[str] = None) -> str:
    """Validate one scope string and return its canonical (lower-case) form.

    Raises:
        InvalidScopeError: If the scope is not a non-empty word-like string
    """
    if not isinstance(scope, str):
        raise InvalidScopeError(scope, owner=owner)
    text = scope.strip()
    if not text or not _SCOPE_PATTERN.match(text):
        raise InvalidScopeError(scope, owner=owner)
    return text.lower()


def normalize_scopes(scopes: Iterable[object], *, owner: Optional[str] = None) -> frozenset[str]:
    return frozenset(normalize_scope(s, owner=owner) for s in scopes)


class RepairPart(BaseModel):
    """A part that may be consumed repairing a malfunction."""

    model_config = ConfigDict(frozen=True)

    part: str
    number: int = Field(1, ge=1, description="Maximum number of parts needed")
    repair_probability: float = Field(100.0, ge=0, le=100, description="Percent chance the part is needed")


class MalfunctionMeta(BaseModel):
    """Definition of one failure mode."""

    model_config = ConfigDict(frozen=True)

    name: str
    scopes: frozenset[str] = Field(..., description="Scopes this malfunction applies to")
    probability: float = Field(..., ge=0, le=100, description="Base occurrence probability (%)")
    component: Optional[str] = Field(None, description="Part whose reliability drives this malfunction")
    severity: int = Field(5, ge=1, le=10)
    repair_parts: Tuple[RepairPart, ...] = Field(default_factory=tuple)

    @field_validator("scopes", mode="before")
    @classmethod
    def _validate_scopes(cls, value, info):
        if isinstance(value, str):
            value = [value]
        scopes = normalize_scopes(value, owner=info.data.get("name"))
        if not scopes:
            raise InvalidScopeError(value, owner=info.data.get("name"))
        return scopes

    def is_matched(self, scopes: Iterable[str]) -> bool:
        """True when any of ``scopes`` (case-insensitive) is one of this malfunction's scopes."""
        return any(s.lower() in self.scopes for s in scopes)


def _average_of_one_to(n: int) -> float:
    """Mean of a uniform integer draw in [1, n]."""
    return (n + 1) / 2.0


class MalfunctionCatalog:
    """All known malfunctions plus the incident counter."""

    def __init__(self, malfunctions: Sequence[MalfunctionMeta], *, max_reliability: float = 99.99):
        self._malfunctions: Tuple[MalfunctionMeta, ...] = tuple(malfunctions)
        self.max_reliability = max_reliability
        self._incident_counter = 0

    def __iter__(self):
        return iter(self._malfunctions)

    def __len__(self) -> int:
        return len(self._malfunctions)

    def effective_probability(self, malfunction: MalfunctionMeta, reliability: Optional[ReliabilityRegistry]) -> float:
        """Base probability raised by the decay of the component's reliability, capped at 100."""
        if reliability is None or malfunction.component is None:
            return malfunction.probability
        current = max(reliability.reliability_of(malfunction.component), 1.0)
        return min(100.0, malfunction.probability * self.max_reliability / current)

    def pick_malfunction(
        self,
        scopes: Iterable[str],
        rng: RandomSource,
        *,
        reliability: Optional[ReliabilityRegistry] = None,
        shuffle: bool = True,
    ) -> Optional[MalfunctionMeta]:
        """Pick a malfunction applying to ``scopes``, or ``None``.

        Returns ``None`` when nothing matches or the drawn malfunction fails
        its own probability gate.
        """
        wanted = [s.lower() for s in scopes]
        candidates = [
            WeightedCandidate(m, self.effective_probability(m, reliability)) for m in self._malfunctions
        ]
        outcome = select_weighted(
            candidates,
            rng,
            matches=lambda m: m.is_matched(wanted),
            gate=True,
            shuffle=shuffle,
        )
        if outcome.tentative is not None:
            log_debug(
                "DEBUG_MALFUNCTION",
                f"scopes={sorted(wanted)} drew '{outcome.tentative.name}' "
                f"(total={outcome.total:.2f}, gate={'pass' if outcome.gate_passed else 'fail'})",
            )
        return outcome.chosen

    def repair_part_probabilities(self, scopes: Iterable[str]) -> Dict[str, float]:
        """Expected number of each repair part consumed per malfunction for ``scopes``."""
        wanted = [s.lower() for s in scopes]
        expected: Dict[str, float] = {}
        for malfunction in self._malfunctions:
            if not malfunction.is_matched(wanted):
                continue
            malfunction_probability = malfunction.probability / 100.0
            for part in malfunction.repair_parts:
                amount = _average_of_one_to(part.number) * (part.repair_probability / 100.0) * malfunction_probability
                expected[part.part] = expected.get(part.part, 0.0) + amount
        return expected

    def get_by_name(self, name: str) -> Optional[MalfunctionMeta]:
        """Case-insensitive lookup."""
        lowered = name.lower()
        for malfunction in self._malfunctions:
            if malfunction.name.lower() == lowered:
                return malfunction
        return None

    def next_incident_number(self) -> int:
        self._incident_counter += 1
        return self._incident_counter


@dataclass
class Malfunctionable:
    """Something that can break: a building, vehicle or piece of equipment.

    ``malfunctions`` keeps only the most recent malfunction names.
    """

    name: str
    scopes: frozenset[str]
    parts: Tuple[str, ...] = ()
    malfunctions: Deque[str] = field(default_factory=lambda: deque(maxlen=RECENT_MALFUNCTIONS))

    @classmethod
    def build(cls, name: str, scopes: Iterable[str], parts: Iterable[str] = ()) -> "Malfunctionable":
        return cls(name=name, scopes=normalize_scopes(scopes, owner=name), parts=tuple(parts))


@dataclass(frozen=True)
class Incident:
    """A malfunction that occurred during a pulse."""

    number: int
    entity: str
    malfunction: MalfunctionMeta
    sim_time: float


class MalfunctionMonitor:
    """Rolls for failures each pulse and reports them to the reliability queue.

    The monitor only reads reliability; failure counts are queued and folded
    in by the registry's daily maintenance pass.
    """

    def __init__(self, catalog: MalfunctionCatalog, reliability: ReliabilityRegistry, rng: RandomSource):
        self.catalog = catalog
        self.reliability = reliability
        self.rng = rng
        self.entities: Dict[str, Malfunctionable] = {}

    def register(self, entity: Malfunctionable) -> None:
        self.entities[entity.name] = entity

    def failure_chance(self, entity: Malfunctionable, pulse_length: float) -> float:
        """Probability that ``entity`` suffers some failure within one pulse."""
        rate = sum(self.reliability.failure_rate_of(part) for part in entity.parts)
        if rate <= 0:
            return 0.0
        return 1.0 - math.exp(-rate * pulse_length)

    def check(self, sim_time: float, pulse_length: float) -> List[Incident]:
        """Roll every registered entity once, in name order."""
        incidents: List[Incident] = []
        for name in sorted(self.entities):
            entity = self.entities[name]
            if self.rng.random() >= self.failure_chance(entity, pulse_length):
                continue
            malfunction = self.catalog.pick_malfunction(entity.scopes, self.rng, reliability=self.reliability)
            if malfunction is None:
                continue
            entity.malfunctions.append(malfunction.name)
            incident = Incident(
                number=self.catalog.next_incident_number(),
                entity=name,
                malfunction=malfunction,
                sim_time=sim_time,
            )
            incidents.append(incident)
            if malfunction.component in self.reliability:
                self.reliability.report_failure(malfunction.component)
            elif malfunction.component is not None:
                log_warning(f"Malfunction '{malfunction.name}' names untracked component '{malfunction.component}'")
        return incidents
