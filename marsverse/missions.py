"""Multi-agent missions executed as an ordered list of steps.

A mission is advanced by its members' work contributions: each pulse every
participating agent calls ``Mission.execute(worker, world, store)``. The step
variants are a closed set (travel, rendezvous, work) dispatched by
``execute_step``.

Before a step starts, its resource manifest must be covered by the home
settlement's stores or explicitly waived. A step that cannot proceed is
*blocked*; the mission retries next pulse and only gives up once it has been
blocked for more than ``max_blocked_pulses`` pulses.
"""

from __future__ import annotations

from collections import OrderedDict
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Iterable, Iterator, List, Mapping, Optional, Protocol, Sequence, Set, Union

from .config import SchedulerConfig
from .errors import InvalidTransitionError, UnknownResourceError
from .logging_utils import log_info, log_success, log_warning
from .schemas import (
    AgentKind,
    AgentProfile,
    CandidateJob,
    Coordinates,
    JobKind,
    LocationContext,
    SettlementState,
    VehicleState,
    WorldState,
)
from .scoring import MissionDefinition
from .settlement_rules import ResourceStore

OXIDIZER = "oxygen"
LIFE_SUPPORT = ("oxygen", "water", "food")
HOURS_PER_SOL = 24.0


# ============================================================================
# Manifests
# ============================================================================


class MissionManifest:
    """Mandatory and optional resource quantities, additive per kind."""

    def __init__(self, known_kinds: Optional[Iterable[str]] = None):
        self.known_kinds = frozenset(known_kinds) if known_kinds is not None else None
        self.mandatory: Dict[str, float] = {}
        self.optional: Dict[str, float] = {}

    def __repr__(self) -> str:
        return f"MissionManifest(mandatory={self.mandatory}, optional={self.optional})"

    def _check_kind(self, kind: str) -> None:
        if self.known_kinds is not None and kind not in self.known_kinds:
            raise UnknownResourceError(kind, self.known_kinds)

    def add_resource(self, kind: str, amount: float, mandatory: bool = True) -> "MissionManifest":
        self._check_kind(kind)
        if amount < 0:
            raise ValueError(f"Resource amount for '{kind}' cannot be negative")
        if amount == 0:
            return self
        bucket = self.mandatory if mandatory else self.optional
        bucket[kind] = bucket.get(kind, 0.0) + amount
        return self

    def merge(self, other: "MissionManifest") -> "MissionManifest":
        """Add every quantity of ``other`` into this manifest."""
        for kind, amount in other.mandatory.items():
            self.add_resource(kind, amount, mandatory=True)
        for kind, amount in other.optional.items():
            self.add_resource(kind, amount, mandatory=False)
        return self

    def required(self, include_optional: bool = False) -> Dict[str, float]:
        totals = dict(self.mandatory)
        if include_optional:
            for kind, amount in self.optional.items():
                totals[kind] = totals.get(kind, 0.0) + amount
        return totals

    def shortfall(self, store: ResourceStore, include_optional: bool = False) -> Dict[str, float]:
        """Missing quantity per kind; empty when the store covers the manifest."""
        missing: Dict[str, float] = {}
        for kind, amount in sorted(self.required(include_optional).items()):
            available = store.amount_available(kind)
            if available < amount:
                missing[kind] = amount - available
        return missing

    def is_satisfied_by(self, store: ResourceStore, include_optional: bool = False) -> bool:
        return not self.shortfall(store, include_optional)

    @property
    def is_empty(self) -> bool:
        return not self.mandatory and not self.optional


# ============================================================================
# Steps
# ============================================================================


@dataclass(frozen=True)
class TravelStep:
    destination: Coordinates
    home_settlement_id: Optional[str] = None
    description: str = "Travel"


@dataclass(frozen=True)
class RendezvousStep:
    required_members: int
    description: str = "Gather crew"


@dataclass(frozen=True)
class WorkStep:
    work_required: float
    description: str = "Work on site"


MissionStep = Union[TravelStep, RendezvousStep, WorkStep]


class StepOutcome(str, Enum):
    PROGRESSED = "progressed"
    # In progress, but this worker had nothing to contribute (e.g. a passenger)
    WAITING = "waiting"
    BLOCKED = "blocked"


class MissionStatus(str, Enum):
    PLANNING = "planning"
    ACTIVE = "active"
    COMPLETED = "completed"
    ABORTED = "aborted"

    @property
    def is_terminal(self) -> bool:
        return self in (MissionStatus.COMPLETED, MissionStatus.ABORTED)


class OperatorCallback(Protocol):
    def __call__(self, worker_id: str, vehicle: VehicleState, mission: "Mission", world: WorldState) -> bool: ...


class OperatorAssigner:
    """Makes a worker the vehicle's operator and queues a "Drive" directive."""

    def __init__(self, engine, profiles: Mapping[str, AgentProfile]):
        self.engine = engine
        self.profiles = profiles

    def __call__(self, worker_id: str, vehicle: VehicleState, mission: "Mission", world: WorldState) -> bool:
        profile = self.profiles.get(worker_id)
        if profile is None or not profile.can_operate_vehicles():
            return False
        if vehicle.operator_id is not None:
            return False
        world.vehicles[vehicle.vehicle_id] = vehicle.model_copy(update={"operator_id": worker_id})
        self.engine.add_pending(
            worker_id,
            CandidateJob(
                description=f"Drive {vehicle.name}",
                score=1.0,
                kind=JobKind.PENDING,
                provider=mission.name,
                metadata={"mission": mission.name, "vehicle_id": vehicle.vehicle_id},
            ),
        )
        return True


class Mission:
    """One mission run: crew, vehicle, steps and progress."""

    def __init__(
        self,
        name: str,
        *,
        leader_id: str,
        members: Sequence[str],
        vehicle_id: str,
        home_settlement_id: str,
        steps: Sequence[MissionStep],
        config: SchedulerConfig,
        assign_operator: OperatorCallback,
        known_kinds: Optional[Iterable[str]] = None,
        max_blocked_pulses: Optional[int] = None,
    ):
        if not steps:
            raise ValueError(f"Mission '{name}' needs at least one step")
        self.name = name
        self.leader_id = leader_id
        self.members = tuple(members)
        self.vehicle_id = vehicle_id
        self.home_settlement_id = home_settlement_id
        self.steps = tuple(steps)
        self.config = config
        self.assign_operator = assign_operator
        self.known_kinds = frozenset(known_kinds) if known_kinds is not None else None
        self.max_blocked_pulses = max_blocked_pulses or config.max_blocked_pulses

        self.status = MissionStatus.PLANNING
        self.step_index = 0
        self.step_started = False
        self.manifest_waived = False
        self.work_done = 0.0
        self.checked_in: Set[str] = set()
        self.blocked_pulses = 0
        self._last_blocked_tick: Optional[int] = None
        self.abort_reason: Optional[str] = None

    def __repr__(self) -> str:
        return f"<Mission {self.name!r} {self.status.value} step {self.step_index}/{len(self.steps)}>"

    @property
    def current_step(self) -> Optional[MissionStep]:
        if self.status.is_terminal or self.step_index >= len(self.steps):
            return None
        return self.steps[self.step_index]

    @property
    def phase_description(self) -> str:
        step = self.current_step
        if step is None:
            return self.status.value
        return f"{step.description} ({self.step_index + 1}/{len(self.steps)})"

    # Manifests ---------------------------------------------------------------

    def step_manifest(self, step: MissionStep, world: WorldState, origin: Optional[Coordinates] = None) -> MissionManifest:
        """Resources one step needs, given where the vehicle starts it."""
        manifest = MissionManifest(self.known_kinds)
        vehicle = world.vehicles[self.vehicle_id]
        cfg = self.config
        crew = len(self.members)

        if isinstance(step, TravelStep):
            start = origin or vehicle.position
            distance = start.distance_to(step.destination)
            fuel = vehicle.fuel_needed(distance)
            sols = distance / (vehicle.speed_kph * HOURS_PER_SOL)
            margin = cfg.fuel_margin - 1.0
            manifest.add_resource(vehicle.fuel_type, fuel)
            manifest.add_resource(vehicle.fuel_type, fuel * margin, mandatory=False)
            manifest.add_resource(OXIDIZER, fuel * cfg.oxidizer_fuel_ratio)
            manifest.add_resource(OXIDIZER, fuel * cfg.oxidizer_fuel_ratio * margin, mandatory=False)
            self._add_life_support(manifest, crew * sols, margin)
        elif isinstance(step, WorkStep):
            self._add_life_support(manifest, crew * step.work_required * cfg.pulse_length, cfg.fuel_margin - 1.0)
        elif isinstance(step, RendezvousStep):
            pass
        else:
            raise TypeError(f"Unknown mission step {step!r}")
        return manifest

    def _add_life_support(self, manifest: MissionManifest, person_sols: float, margin: float) -> None:
        rates = {
            "oxygen": self.config.oxygen_per_person_sol,
            "water": self.config.water_per_person_sol,
            "food": self.config.food_per_person_sol,
        }
        for kind in LIFE_SUPPORT:
            amount = rates[kind] * person_sols
            manifest.add_resource(kind, amount)
            manifest.add_resource(kind, amount * margin, mandatory=False)

    def required_resources(self, world: WorldState, include_optional: bool = True) -> MissionManifest:
        """Manifest for every remaining step, following the planned route."""
        total = MissionManifest(self.known_kinds)
        position = world.vehicles[self.vehicle_id].position
        for step in self.steps[self.step_index:]:
            manifest = self.step_manifest(step, world, origin=position)
            if not include_optional:
                manifest.optional.clear()
            total.merge(manifest)
            if isinstance(step, TravelStep):
                position = step.destination
        return total

    def preflight_manifest(self, world: WorldState) -> Optional[MissionManifest]:
        """Manifest checked before the current step starts.

        Departing travel loads for the whole remaining route. Away from home
        there is no store to draw from, so nothing is checked.
        """
        step = self.current_step
        vehicle = world.vehicles[self.vehicle_id]
        if vehicle.container_settlement_id != self.home_settlement_id:
            return None
        if isinstance(step, TravelStep):
            return self.required_resources(world, include_optional=False)
        return self.step_manifest(step, world)

    def waive_manifest(self) -> None:
        """Let the current and later steps start without checking stores."""
        self.manifest_waived = True

    # Execution ---------------------------------------------------------------

    def execute(self, worker_id: str, world: WorldState, store: ResourceStore) -> bool:
        """Contribute ``worker_id``'s work for this pulse. Returns whether it progressed."""
        if self.status.is_terminal:
            raise InvalidTransitionError(f"Mission '{self.name}' is {self.status.value}")
        if worker_id not in self.members:
            raise InvalidTransitionError(f"{worker_id} is not a member of mission '{self.name}'")
        if self.status is MissionStatus.PLANNING:
            self.status = MissionStatus.ACTIVE

        step = self.current_step
        if not self.step_started:
            manifest = self.preflight_manifest(world)
            if manifest is not None and not self.manifest_waived:
                missing = manifest.shortfall(store)
                if missing:
                    self._blocked(world, f"short of {', '.join(sorted(missing))}")
                    return False
            self.step_started = True

        outcome = execute_step(step, self, worker_id, world)
        if outcome is StepOutcome.BLOCKED:
            self._blocked(world, f"{step.description} blocked")
        elif outcome is StepOutcome.PROGRESSED:
            self.blocked_pulses = 0
        return outcome is StepOutcome.PROGRESSED

    def _blocked(self, world: WorldState, reason: str) -> None:
        # Several members may report the same block within one pulse
        if self._last_blocked_tick == world.tick:
            return
        self._last_blocked_tick = world.tick
        self.blocked_pulses += 1
        if self.blocked_pulses > self.max_blocked_pulses:
            self.abort(f"{reason} for {self.blocked_pulses} pulses", world)

    def complete_step(self, world: WorldState) -> None:
        self.step_index += 1
        self.step_started = False
        self.work_done = 0.0
        self.checked_in = set()
        if self.step_index >= len(self.steps):
            self.status = MissionStatus.COMPLETED
            self._release_vehicle(world)
            log_success(f"Mission '{self.name}' completed")

    def abort(self, reason: str, world: Optional[WorldState] = None) -> bool:
        """Abort the mission. Returns False when it had already finished."""
        if self.status.is_terminal:
            return False
        self.status = MissionStatus.ABORTED
        self.abort_reason = reason
        if world is not None:
            self._release_vehicle(world)
        log_warning(f"Mission '{self.name}' aborted: {reason}")
        return True

    def _release_vehicle(self, world: WorldState) -> None:
        vehicle = world.vehicles.get(self.vehicle_id)
        if vehicle is not None:
            world.vehicles[self.vehicle_id] = vehicle.model_copy(update={"operator_id": None, "reserved_for": None})

    # Vehicle motion ----------------------------------------------------------

    def drive(self, world: WorldState, hours: float) -> float:
        """Move the operated vehicle toward the current travel destination; returns km moved."""
        step = self.current_step
        if not isinstance(step, TravelStep) or not self.step_started:
            return 0.0
        vehicle = world.vehicles[self.vehicle_id]
        if vehicle.operator_id is None or not vehicle.operable:
            return 0.0

        if vehicle.container_settlement_id is not None:
            self._depart(world, vehicle)
            vehicle = world.vehicles[self.vehicle_id]

        before = vehicle.position
        after = before.toward(step.destination, vehicle.speed_kph * hours)
        world.vehicles[self.vehicle_id] = vehicle.model_copy(update={"position": after})
        return before.distance_to(after)

    def _depart(self, world: WorldState, vehicle: VehicleState) -> None:
        world.vehicles[vehicle.vehicle_id] = vehicle.model_copy(update={"container_settlement_id": None})
        for member in self.members:
            status = world.agents.get(member)
            if status is not None:
                world.agents[member] = status.model_copy(
                    update={"context": LocationContext.IN_VEHICLE, "vehicle_id": vehicle.vehicle_id}
                )
        log_info(f"Mission '{self.name}' departed in {vehicle.name}")

    def finalize_travel(self, step: TravelStep, world: WorldState) -> None:
        """Bookkeeping on reaching a destination."""
        vehicle = world.vehicles[self.vehicle_id]
        if step.home_settlement_id is None:
            world.vehicles[self.vehicle_id] = vehicle.model_copy(update={"operator_id": None})
            return

        home = world.settlements.get(step.home_settlement_id)
        if vehicle.container_settlement_id not in (None, step.home_settlement_id):
            log_warning(
                f"{vehicle.name} was contained by '{vehicle.container_settlement_id}'; "
                f"forcing containment in '{step.home_settlement_id}'"
            )
        update = {"container_settlement_id": step.home_settlement_id, "operator_id": None}
        if home is not None:
            update["position"] = home.location
        world.vehicles[self.vehicle_id] = vehicle.model_copy(update=update)
        for member in self.members:
            status = world.agents.get(member)
            if status is not None:
                world.agents[member] = status.model_copy(
                    update={
                        "context": LocationContext.INDOORS,
                        "vehicle_id": None,
                        "settlement_id": step.home_settlement_id,
                    }
                )


def _execute_travel(step: TravelStep, mission: Mission, worker_id: str, world: WorldState) -> StepOutcome:
    vehicle = world.vehicles[mission.vehicle_id]
    if vehicle.position.distance_to(step.destination) <= mission.config.arrival_tolerance:
        mission.finalize_travel(step, world)
        mission.complete_step(world)
        return StepOutcome.PROGRESSED
    if vehicle.operator_id is not None:
        return StepOutcome.WAITING
    if mission.assign_operator(worker_id, vehicle, mission, world):
        return StepOutcome.PROGRESSED
    return StepOutcome.BLOCKED


def _execute_rendezvous(step: RendezvousStep, mission: Mission, worker_id: str, world: WorldState) -> StepOutcome:
    if worker_id in mission.checked_in:
        return StepOutcome.WAITING
    mission.checked_in.add(worker_id)
    if len(mission.checked_in) >= step.required_members:
        mission.complete_step(world)
    return StepOutcome.PROGRESSED


def _execute_work(step: WorkStep, mission: Mission, worker_id: str, world: WorldState) -> StepOutcome:
    mission.work_done += 1.0
    if mission.work_done >= step.work_required:
        mission.complete_step(world)
    return StepOutcome.PROGRESSED


def execute_step(step: MissionStep, mission: Mission, worker_id: str, world: WorldState) -> StepOutcome:
    """Dispatch one worker contribution to the step's handler."""
    if isinstance(step, TravelStep):
        return _execute_travel(step, mission, worker_id, world)
    if isinstance(step, RendezvousStep):
        return _execute_rendezvous(step, mission, worker_id, world)
    if isinstance(step, WorkStep):
        return _execute_work(step, mission, worker_id, world)
    raise TypeError(f"Unknown mission step {step!r}")


# ============================================================================
# Planning and ownership
# ============================================================================


def plan_mission(
    definition: MissionDefinition,
    *,
    name: str,
    leader: AgentProfile,
    settlement: SettlementState,
    world: WorldState,
    profiles: Mapping[str, AgentProfile],
    busy: Iterable[str],
    config: SchedulerConfig,
    assign_operator: OperatorCallback,
    known_kinds: Optional[Iterable[str]] = None,
) -> Optional[Mission]:
    """Reserve a rover and a crew for ``definition``; ``None`` if no rover is free."""
    vehicle = definition.best_vehicle(world, settlement)
    if vehicle is None:
        return None

    busy_ids = set(busy)
    seats = min(definition.crew_size, vehicle.crew_capacity) if vehicle.crew_capacity else definition.crew_size
    crew: List[str] = [leader.agent_id]
    for agent_id in sorted(world.agents):
        if len(crew) >= seats:
            break
        status = world.agents[agent_id]
        profile = profiles.get(agent_id)
        if (
            agent_id in crew
            or agent_id in busy_ids
            or profile is None
            or profile.kind is not AgentKind.PERSON
            or status.settlement_id != settlement.settlement_id
            or status.context is not LocationContext.INDOORS
        ):
            continue
        crew.append(agent_id)

    world.vehicles[vehicle.vehicle_id] = vehicle.model_copy(update={"reserved_for": name})
    steps: List[MissionStep] = [
        RendezvousStep(required_members=len(crew)),
        TravelStep(destination=definition.site, description=f"Travel to {definition.name} site"),
        WorkStep(work_required=definition.work_required, description=definition.description or definition.name),
        TravelStep(
            destination=settlement.location,
            home_settlement_id=settlement.settlement_id,
            description=f"Return to {settlement.name}",
        ),
    ]
    return Mission(
        name,
        leader_id=leader.agent_id,
        members=crew,
        vehicle_id=vehicle.vehicle_id,
        home_settlement_id=settlement.settlement_id,
        steps=steps,
        config=config,
        assign_operator=assign_operator,
        known_kinds=known_kinds,
        max_blocked_pulses=definition.max_blocked_pulses,
    )


class MissionDirectory:
    """Owns active missions and a bounded archive of finished ones.

    Only active missions are held as objects. A mission that reaches a
    terminal status is moved to the archive, which keeps just its final
    status for ``get_process_state`` and is never scanned by the pulse loop.
    """

    def __init__(self, archive_limit: int = 200) -> None:
        self._active: Dict[str, Mission] = {}
        self._by_member: Dict[str, str] = {}
        self._archive: "OrderedDict[str, MissionStatus]" = OrderedDict()
        self.archive_limit = archive_limit
        self._counter = 0

    def __iter__(self) -> Iterator[Mission]:
        return iter(self.active_missions())

    def __len__(self) -> int:
        return len(self._active)

    def next_name(self, base: str) -> str:
        self._counter += 1
        return f"{base} #{self._counter}"

    def add(self, mission: Mission) -> Mission:
        if mission.name in self._active or mission.name in self._archive:
            raise ValueError(f"Mission '{mission.name}' already registered")
        self._active[mission.name] = mission
        for member in mission.members:
            self._by_member[member] = mission.name
        return mission

    def get(self, name: str) -> Mission:
        return self._active[name]

    def remove(self, name: str) -> Optional[Mission]:
        mission = self._active.pop(name, None)
        if mission is not None:
            self._forget_members(mission)
        return mission

    def archive(self, mission: Mission) -> bool:
        """Move a finished mission out of the active set. Returns False if it was not active."""
        if self._active.get(mission.name) is not mission:
            return False
        del self._active[mission.name]
        self._forget_members(mission)
        self._archive[mission.name] = mission.status
        while len(self._archive) > self.archive_limit:
            self._archive.popitem(last=False)
        return True

    def archived(self) -> Dict[str, MissionStatus]:
        return dict(self._archive)

    def _forget_members(self, mission: Mission) -> None:
        for member in mission.members:
            if self._by_member.get(member) == mission.name:
                del self._by_member[member]

    def active_missions(self) -> List[Mission]:
        # Missions finished outside the orchestrator are archived here
        for mission in [m for m in self._active.values() if m.status.is_terminal]:
            self.archive(mission)
        return [self._active[name] for name in sorted(self._active)]

    def mission_for(self, agent_id: str) -> Optional[Mission]:
        name = self._by_member.get(agent_id)
        if name is None:
            return None
        mission = self._active[name]
        if mission.status.is_terminal:
            self.archive(mission)
            return None
        return mission

    def get_process_state(self, name: str) -> Optional[MissionStatus]:
        mission = self._active.get(name)
        if mission is not None:
            return mission.status
        return self._archive.get(name)
