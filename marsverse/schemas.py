"""
Pydantic schemas for the Marsverse colony scheduler.

All data structures shared between the pulse loop and its readers are defined
here.

Design Philosophy:
- Generic `Stat` model for settlement and agent metrics (no hard-coded economy fields)
- Snapshots handed to readers (`CandidateJob`, `CandidateSnapshot`) are frozen;
  the pulse loop replaces them wholesale instead of editing them
- Metadata fields for scenario-specific extensions
"""

from __future__ import annotations

import math
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator


# ============================================================================
# Generic metrics
# ============================================================================

StatValue = Union[int, float, str, bool]


class Stat(BaseModel):
    """Generic metric used for settlement economics, resources and agent condition."""

    value: StatValue = Field(..., description="Current value of the metric")
    unit: Optional[str] = Field(None, description="Optional unit label (%, kg, sols, etc.)")
    label: Optional[str] = Field(None, description="Human-friendly name for reports")
    description: Optional[str] = Field(None, description="Optional explanation of the metric")
    metadata: Dict[str, Any] = Field(default_factory=dict, description="Free-form scenario metadata")


class MetricsBlock(BaseModel):
    """Container for a set of metrics keyed by arbitrary identifiers."""

    metrics: Dict[str, Stat] = Field(default_factory=dict, description="Keyed metrics")
    metadata: Dict[str, Any] = Field(default_factory=dict, description="Scenario-defined metadata")

    def metric_value(self, key: str, default: float) -> float:
        """Read a numeric metric without creating it."""
        stat = self.metrics.get(key)
        if stat is None:
            return default
        return float(stat.value)


# ============================================================================
# Candidate jobs and score snapshots
# ============================================================================


class JobKind(str, Enum):
    """What produced a candidate job."""

    TASK = "task"
    MISSION = "mission"
    PENDING = "pending"


class CandidateJob(BaseModel):
    """One potential activity an agent could take this pulse.

    A score of exactly 0 means "excluded from selection"; caches never store
    zero-score candidates.
    """

    model_config = ConfigDict(frozen=True)

    description: str = Field(..., description="Human-readable description")
    score: float = Field(..., ge=0, description="Desirability score (0 = infeasible)")
    kind: JobKind = Field(JobKind.TASK, description="Ordinary task, mission or injected directive")
    provider: Optional[str] = Field(None, description="Name of the provider that scored it")
    metadata: Dict[str, Any] = Field(default_factory=dict, description="Provider-specific payload")

    def same_activity(self, other: Optional["CandidateJob"]) -> bool:
        """True when ``other`` describes the same activity (score ignored)."""
        if other is None:
            return False
        return (self.provider, self.description, self.kind) == (other.provider, other.description, other.kind)


class CandidateSnapshot(BaseModel):
    """Scored candidate set for one agent, valid for one time bucket.

    Readers on other threads may hold a snapshot while the pulse loop builds
    the next one; a snapshot is never modified after construction.
    """

    model_config = ConfigDict(frozen=True)

    created_at: float = Field(..., description="Simulation time (sols) when built")
    bucket: int = Field(..., description="Time bucket the snapshot is valid for")
    total: float = Field(..., ge=0, description="Sum of all candidate scores")
    jobs: Tuple[CandidateJob, ...] = Field(default_factory=tuple, description="Scored candidates")
    last_selected: Optional[CandidateJob] = Field(None, description="Most recently chosen job")
    context: str = Field("", description="Why this set was computed")

    @model_validator(mode="after")
    def _total_matches_jobs(self) -> "CandidateSnapshot":
        expected = math.fsum(job.score for job in self.jobs)
        if not math.isclose(self.total, expected, rel_tol=1e-9, abs_tol=1e-9):
            raise ValueError(f"Snapshot total {self.total} does not match job scores {expected}")
        return self

    @property
    def is_idle(self) -> bool:
        """No feasible candidate was found."""
        return not self.jobs

    def share_of(self, job: CandidateJob) -> float:
        """Fraction of the total contributed by ``job``."""
        if self.total <= 0:
            return 0.0
        return job.score / self.total


# ============================================================================
# Agents
# ============================================================================


class AgentKind(str, Enum):
    PERSON = "person"
    ROBOT = "robot"


class LocationContext(str, Enum):
    """Where an agent currently is, used to filter candidate providers."""

    INDOORS = "indoors"
    OUTDOORS = "outdoors"
    IN_VEHICLE = "in_vehicle"


class AgentProfile(BaseModel):
    """Static identity of an agent (who the agent IS, not what it is doing)."""

    agent_id: str = Field(..., description="Unique agent identifier")
    name: str = Field(..., description="Display name")
    kind: AgentKind = Field(AgentKind.PERSON, description="Person or robot")
    job: str = Field(..., description="Job (areologist, engineer, botanist, ...)")
    role: Optional[str] = Field(None, description="Settlement role (commander, mission_specialist, ...)")
    # Traits on a 0-100 scale; "extroversion" drives the social modifier
    traits: Dict[str, float] = Field(default_factory=dict, description="Personality traits (0-100)")
    skills: Dict[str, int] = Field(default_factory=dict, description="Skill levels")

    @property
    def extroversion(self) -> float:
        return float(self.traits.get("extroversion", 50.0))

    def can_operate_vehicles(self) -> bool:
        return self.kind is AgentKind.PERSON or self.skills.get("piloting", 0) > 0


class AgentStatus(BaseModel):
    """Dynamic state of an agent, updated every pulse."""

    agent_id: str = Field(..., description="Unique agent identifier")
    settlement_id: Optional[str] = Field(None, description="Settlement the agent is in or belongs to")
    context: LocationContext = Field(LocationContext.INDOORS, description="Indoors/outdoors/in vehicle")
    vehicle_id: Optional[str] = Field(None, description="Vehicle the agent is aboard, if any")
    activity: Optional[str] = Field(None, description="Current activity description")
    attributes: Dict[str, Stat] = Field(default_factory=dict, description="Condition metrics (fatigue, stress)")
    tags: List[str] = Field(default_factory=list)
    metadata: Dict[str, Any] = Field(default_factory=dict)

    def attribute_value(self, key: str, default: float = 0.0) -> float:
        """Read a numeric attribute without creating it."""
        stat = self.attributes.get(key)
        return default if stat is None else float(stat.value)


# ============================================================================
# Settlements and vehicles
# ============================================================================


class Coordinates(BaseModel):
    """Planar surface position in kilometres."""

    model_config = ConfigDict(frozen=True)

    x: float = 0.0
    y: float = 0.0

    def distance_to(self, other: "Coordinates") -> float:
        return math.hypot(self.x - other.x, self.y - other.y)

    def toward(self, other: "Coordinates", distance: float) -> "Coordinates":
        """Point ``distance`` km along the straight line to ``other`` (never overshoots)."""
        total = self.distance_to(other)
        if total <= distance or total == 0:
            return other
        ratio = distance / total
        return Coordinates(x=self.x + (other.x - self.x) * ratio, y=self.y + (other.y - self.y) * ratio)


class SettlementState(MetricsBlock):
    """A settlement's headcount, economy metrics and stores.

    ``metrics`` carries economic modifiers such as ``tourism_factor`` and
    ``research_factor``; ``resources`` and ``capacities`` are the storage
    query surface consumed when checking manifests.
    """

    settlement_id: str = Field(..., description="Unique settlement identifier")
    name: str = Field(..., description="Display name")
    location: Coordinates = Field(default_factory=Coordinates)
    population: int = Field(0, ge=0, description="Associated people")
    population_capacity: int = Field(0, ge=0, description="Beds/life-support capacity")
    indoor_count: int = Field(0, ge=0, description="People currently indoors")
    resources: Dict[str, float] = Field(default_factory=dict, description="Stored amount per resource kind")
    capacities: Dict[str, float] = Field(default_factory=dict, description="Storage capacity per resource kind")

    @property
    def crowding(self) -> int:
        """Excess indoor occupants over capacity (negative when there is room)."""
        return self.indoor_count - self.population_capacity


class VehicleState(BaseModel):
    """A conveyance that missions travel in."""

    vehicle_id: str = Field(..., description="Unique vehicle identifier")
    name: str = Field(..., description="Display name")
    vehicle_type: str = Field("rover", description="rover, light_utility_vehicle, drone, ...")
    home_settlement_id: str = Field(..., description="Associated settlement")
    container_settlement_id: Optional[str] = Field(None, description="Settlement it is parked in, if any")
    position: Coordinates = Field(default_factory=Coordinates)
    speed_kph: float = Field(30.0, gt=0, description="Cruise speed")
    range_km: float = Field(1_000.0, ge=0, description="Maximum trip range")
    fuel_type: str = Field("methane", description="Propulsion resource kind")
    fuel_efficiency: float = Field(2.0, gt=0, description="Kilometres per unit of fuel")
    crew_capacity: int = Field(4, ge=0)
    operator_id: Optional[str] = Field(None, description="Agent currently driving")
    reserved_for: Optional[str] = Field(None, description="Mission holding the vehicle")
    operable: bool = Field(True, description="False when malfunctioning")

    def fuel_needed(self, distance: float) -> float:
        return distance / self.fuel_efficiency


# ============================================================================
# World
# ============================================================================


class WorldEvent(BaseModel):
    """An event emitted by the colony (malfunction, arrival, mission outcome)."""

    event_id: str = Field(..., description="Unique event identifier")
    tick: int = Field(..., ge=0, description="Pulse when the event occurred")
    sim_time: float = Field(0.0, ge=0, description="Simulation time (sols)")
    category: str = Field(..., description="malfunction, transport, mission, ...")
    description: str = Field(..., description="Human-readable description")
    severity: Optional[int] = Field(None, description="Optional severity ranking (1-10)")
    affected_agents: List[str] = Field(default_factory=list)
    metrics: Dict[str, Stat] = Field(default_factory=dict)
    metadata: Dict[str, Any] = Field(default_factory=dict)


class WorldState(BaseModel):
    """Complete colony state at one pulse.

    Scoring reads this as a snapshot for the duration of a pulse; only the
    pulse driver writes to it.
    """

    tick: int = Field(0, ge=0, description="Pulses elapsed")
    sim_time: float = Field(0.0, ge=0, description="Simulation time in sols")
    settlements: Dict[str, SettlementState] = Field(default_factory=dict)
    agents: Dict[str, AgentStatus] = Field(default_factory=dict)
    vehicles: Dict[str, VehicleState] = Field(default_factory=dict)
    recent_events: List[WorldEvent] = Field(default_factory=list)
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @property
    def sol(self) -> int:
        """Whole simulation day."""
        return int(math.floor(self.sim_time))

    def settlement_of(self, status: AgentStatus) -> Optional[SettlementState]:
        if status.settlement_id is None:
            return None
        return self.settlements.get(status.settlement_id)

    def vehicles_at(self, settlement_id: str) -> List[VehicleState]:
        """Vehicles parked at the settlement, in id order."""
        parked = [v for v in self.vehicles.values() if v.container_settlement_id == settlement_id]
        return sorted(parked, key=lambda v: v.vehicle_id)
