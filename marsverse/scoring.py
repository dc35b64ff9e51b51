"""Candidate scoring: one agent, one candidate activity, one non-negative number.

Every scorer follows the same composition rule. Start from a nominal weight,
multiply by independent modifiers, then clamp to ``[0, score_ceiling]``.
A zero factor anywhere ends the chain, and factors registered with
``times_lazy`` are never evaluated after that point. Resource queries and
vehicle searches go through ``times_lazy``.

Scoring is pure. It reads a ``ScoringContext`` snapshot and never writes to
agent, settlement or vehicle state.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Dict, FrozenSet, List, Optional, Protocol, runtime_checkable

from pydantic import BaseModel, ConfigDict, Field

from .config import SchedulerConfig
from .logging_utils import log_debug
from .schemas import (
    AgentKind,
    AgentProfile,
    AgentStatus,
    Coordinates,
    JobKind,
    LocationContext,
    SettlementState,
    VehicleState,
    WorldState,
)
from .settlement_rules import SettlementResourceStore, SettlementRules


@dataclass(frozen=True)
class ScoringContext:
    """Read-only inputs for scoring one agent during one pulse."""

    world: WorldState
    profile: AgentProfile
    status: AgentStatus
    settlement: Optional[SettlementState]
    rules: SettlementRules
    config: SchedulerConfig

    @property
    def location(self) -> LocationContext:
        return self.status.context

    @property
    def now(self) -> float:
        return self.world.sim_time


class ScoreChain:
    """Multiplicative score builder with zero short-circuit.

    >>> ScoreChain(10.0, ceiling=100.0).times(2.0).times(0.5).result()
    10.0
    """

    def __init__(self, nominal: float, ceiling: float):
        self.value = max(0.0, float(nominal))
        self.ceiling = ceiling
        self.zeroed_by: Optional[str] = None if self.value > 0 else "nominal"

    @property
    def is_zero(self) -> bool:
        return self.value <= 0

    def times(self, factor: float, label: str = "factor") -> "ScoreChain":
        if self.is_zero:
            return self
        if factor <= 0:
            self.value = 0.0
            self.zeroed_by = label
            return self
        self.value *= factor
        return self

    def times_lazy(self, factor: Callable[[], float], label: str = "factor") -> "ScoreChain":
        """Multiply by ``factor()``; the callable is skipped once the chain is zero."""
        if self.is_zero:
            return self
        return self.times(factor(), label)

    def result(self) -> float:
        return min(self.ceiling, max(0.0, self.value))


# ============================================================================
# Modifiers
# ============================================================================


def settlement_population_modifier(
    settlement: Optional[SettlementState],
    required: int = 0,
    *,
    cap: float = 2.0,
) -> float:
    """Scale by how many people the settlement can spare.

    Returns 0 when fewer than ``required`` people live there (or there is no
    settlement and people are required), 1.0 when nothing is required, and
    otherwise ``population / required`` capped at ``cap``.
    """
    if required <= 0:
        return 1.0
    if settlement is None or settlement.population < required:
        return 0.0
    return min(cap, settlement.population / required)


def job_suitability(profile: AgentProfile, job_factors: Dict[str, float], default: float = 1.0) -> float:
    """Factor for the agent's job; jobs not listed get ``default``."""
    return job_factors.get(profile.job, default)


def role_suitability(profile: AgentProfile, role_factors: Dict[str, float], default: float = 1.0) -> float:
    if profile.role is None:
        return default
    return role_factors.get(profile.role, default)


def crowding_modifier(settlement: Optional[SettlementState], *, group_forming: bool = False) -> float:
    """Crowding factor from excess indoor occupants.

    Ordinary indoor activities lose weight as the settlement overfills
    (``1 / (excess + 1)``). Group-forming activities, and activities that take
    people out of the settlement, gain weight instead (``excess + 1``).
    """
    if settlement is None:
        return 1.0
    excess = settlement.crowding
    if excess <= 0:
        return 1.0
    if group_forming:
        return float(excess + 1)
    return 1.0 / (excess + 1)


def extrovert_offset(trait: float, extrovert_range: float) -> float:
    """Map a 0-100 trait to ``[-range, +range]``, zero at the midpoint."""
    clamped = min(100.0, max(0.0, trait))
    return (clamped - 50.0) / 50.0 * extrovert_range


def extrovert_modifier(trait: float, extrovert_range: float, *, polarity: int = 1) -> float:
    """Multiplicative personality factor, 1.0 at trait 50.

    ``polarity`` is +1 for activities extroverts favour and -1 for solitary
    ones. The result never goes below 0.
    """
    return max(0.0, 1.0 + polarity * extrovert_offset(trait, extrovert_range) / 2.0)


def fitness_gate(
    status: AgentStatus,
    *,
    max_fatigue: Optional[float] = None,
    max_stress: Optional[float] = None,
    min_performance: Optional[float] = None,
) -> float:
    """1.0 when the agent is fit enough for the activity, else 0."""
    if max_fatigue is not None and status.attribute_value("fatigue", 0.0) > max_fatigue:
        return 0.0
    if max_stress is not None and status.attribute_value("stress", 0.0) > max_stress:
        return 0.0
    if min_performance is not None and status.attribute_value("performance", 100.0) < min_performance:
        return 0.0
    return 1.0


# ============================================================================
# Providers
# ============================================================================


@runtime_checkable
class CandidateProvider(Protocol):
    """Anything that can score one kind of activity for an agent."""

    name: str
    kind: JobKind
    contexts: FrozenSet[LocationContext]

    def score(self, ctx: ScoringContext) -> float: ...

    def describe(self, ctx: ScoringContext) -> str: ...


def applies_to(provider: CandidateProvider, context: LocationContext) -> bool:
    return context in provider.contexts


class TaskDefinition(BaseModel):
    """Declarative ordinary task loaded from the colony catalog."""

    model_config = ConfigDict(frozen=True)

    name: str
    description: str = ""
    nominal_weight: float = Field(..., ge=0)
    contexts: FrozenSet[LocationContext] = Field(default_factory=lambda: frozenset({LocationContext.INDOORS}))
    job_factors: Dict[str, float] = Field(default_factory=dict, description="Job name -> multiplier")
    other_job_factor: float = Field(1.0, ge=0, description="Multiplier for jobs not listed")
    robots_allowed: bool = False
    social: int = Field(0, ge=-1, le=1, description="+1 favours extroverts, -1 introverts, 0 neutral")
    group_forming: bool = False
    research_sensitive: bool = False
    tourism_sensitive: bool = False
    min_population: int = Field(0, ge=0)
    max_fatigue: Optional[float] = None
    max_stress: Optional[float] = None

    @property
    def kind(self) -> JobKind:
        return JobKind.TASK

    def score(self, ctx: ScoringContext) -> float:
        settlement = ctx.settlement
        chain = ScoreChain(self.nominal_weight, ctx.config.score_ceiling)
        chain.times(fitness_gate(ctx.status, max_fatigue=self.max_fatigue, max_stress=self.max_stress), "fitness")
        if ctx.profile.kind is AgentKind.ROBOT and not self.robots_allowed:
            chain.times(0.0, "robot")
        chain.times(job_suitability(ctx.profile, self.job_factors, self.other_job_factor), "job")
        chain.times(settlement_population_modifier(settlement, self.min_population), "population")
        chain.times(crowding_modifier(settlement, group_forming=self.group_forming), "crowding")
        if settlement is not None:
            chain.times_lazy(lambda: ctx.rules.population_capacity_factor(settlement), "capacity")
        if self.social:
            chain.times(
                extrovert_modifier(ctx.profile.extroversion, ctx.config.extrovert_range, polarity=self.social),
                "extrovert",
            )
        if self.group_forming:
            chain.times_lazy(lambda: ctx.rules.relationship_modifier(ctx.profile, ctx.status, settlement), "social")
        if settlement is not None and self.research_sensitive:
            chain.times_lazy(lambda: ctx.rules.research_factor(settlement), "research")
        if settlement is not None and self.tourism_sensitive:
            chain.times_lazy(lambda: ctx.rules.tourism_factor(settlement), "tourism")

        if chain.zeroed_by is not None:
            log_debug("DEBUG_SCORING", f"{ctx.profile.agent_id} {self.name}: zeroed by {chain.zeroed_by}")
        return chain.result()

    def describe(self, ctx: ScoringContext) -> str:
        return self.description or self.name


class MissionDefinition(BaseModel):
    """Declarative travel mission: drive a crew to a site, work, come home."""

    model_config = ConfigDict(frozen=True)

    name: str
    description: str = ""
    nominal_weight: float = Field(..., ge=0)
    contexts: FrozenSet[LocationContext] = Field(default_factory=lambda: frozenset({LocationContext.INDOORS}))
    leader_jobs: Dict[str, float] = Field(default_factory=dict, description="Preferred leader jobs")
    leader_roles: Dict[str, float] = Field(default_factory=dict, description="Preferred leader roles")
    other_job_factor: float = Field(0.0, ge=0, description="Multiplier for leaders outside the preferred set")
    crew_size: int = Field(2, ge=1)
    requires_rover: bool = True
    site: Coordinates = Field(..., description="Destination coordinates (km)")
    work_required: float = Field(1.0, ge=0, description="Work pulses at the site")
    economic_blend: bool = Field(True, description="Scale by (tourism + research) / 1.5")
    max_blocked_pulses: Optional[int] = Field(None, ge=1)

    @property
    def kind(self) -> JobKind:
        return JobKind.MISSION

    def distance_from(self, settlement: SettlementState) -> float:
        return settlement.location.distance_to(self.site)

    def eligible_vehicles(self, world: WorldState, settlement: SettlementState) -> List[VehicleState]:
        """Parked, operable, unreserved rovers able to make the round trip."""
        round_trip = 2 * self.distance_from(settlement)
        return [
            v
            for v in world.vehicles_at(settlement.settlement_id)
            if v.vehicle_type == "rover"
            and v.operable
            and v.reserved_for is None
            and v.operator_id is None
            and v.range_km >= round_trip
        ]

    def best_vehicle(self, world: WorldState, settlement: SettlementState) -> Optional[VehicleState]:
        """Eligible rover with the greatest range (ties by id)."""
        vehicles = self.eligible_vehicles(world, settlement)
        if not vehicles:
            return None
        return min(vehicles, key=lambda v: (-v.range_km, v.vehicle_id))

    def _fuel_factor(self, ctx: ScoringContext, settlement: SettlementState) -> float:
        vehicle = self.best_vehicle(ctx.world, settlement)
        if vehicle is None:
            return 0.0
        needed = vehicle.fuel_needed(2 * self.distance_from(settlement))
        store = SettlementResourceStore(settlement)
        return 1.0 if store.amount_available(vehicle.fuel_type) >= needed else 0.0

    def score(self, ctx: ScoringContext) -> float:
        settlement = ctx.settlement
        chain = ScoreChain(self.nominal_weight, ctx.config.score_ceiling)
        if settlement is None or not ctx.profile.can_operate_vehicles():
            return 0.0
        chain.times(fitness_gate(ctx.status, max_fatigue=80.0, max_stress=80.0), "fitness")

        leader = max(
            job_suitability(ctx.profile, self.leader_jobs, self.other_job_factor),
            role_suitability(ctx.profile, self.leader_roles, 0.0),
        )
        chain.times(leader, "leader")
        chain.times(settlement_population_modifier(settlement, self.crew_size), "population")
        chain.times(crowding_modifier(settlement, group_forming=True), "crowding")
        chain.times_lazy(lambda: ctx.rules.population_capacity_factor(settlement), "capacity")
        chain.times(extrovert_modifier(ctx.profile.extroversion, ctx.config.extrovert_range), "extrovert")
        if self.requires_rover:
            chain.times_lazy(lambda: 1.0 if self.eligible_vehicles(ctx.world, settlement) else 0.0, "rover")
            chain.times_lazy(lambda: self._fuel_factor(ctx, settlement), "fuel")
        if self.economic_blend:
            chain.times_lazy(
                lambda: (ctx.rules.tourism_factor(settlement) + ctx.rules.research_factor(settlement)) / 1.5,
                "economy",
            )

        if chain.zeroed_by is not None:
            log_debug("DEBUG_SCORING", f"{ctx.profile.agent_id} {self.name}: zeroed by {chain.zeroed_by}")
        return chain.result()

    def describe(self, ctx: ScoringContext) -> str:
        return self.description or f"Lead {self.name} mission"
