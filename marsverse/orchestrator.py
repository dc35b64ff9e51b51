"""
Pulse driver for a Marsverse colony.

Each pulse runs, in order:
0. settlement rules (passive per-pulse changes)
1. scheduled events due by now (transport launches and arrivals)
2. the daily reliability maintenance pass, once per sol
3. the malfunction monitor
4. every agent, in agent id order: task selection, then mission work
5. vehicle motion for missions with an operator

The pulse itself is synchronous. ``run`` is async only so that listeners
(reporting, persistence, dashboards) can await I/O strictly between pulses.
"""

from __future__ import annotations

import inspect
from typing import Any, Callable, Dict, List, Optional, Union
from uuid import UUID, uuid4

from .catalog import ColonyCatalog, TransportSpec
from .config import Config, SchedulerConfig
from .errors import PulseListenerError
from .events import ScheduledEventManager
from .logging_utils import Color, colored, log_deterministic, log_info, log_success, log_warning
from .malfunctions import MalfunctionMonitor
from .missions import HOURS_PER_SOL, Mission, MissionDirectory, MissionStatus, OperatorAssigner, plan_mission
from .randomness import RandomSource
from .reliability import ReliabilityRegistry
from .schemas import (
    AgentProfile,
    CandidateJob,
    CandidateSnapshot,
    JobKind,
    SettlementState,
    WorldEvent,
    WorldState,
)
from .scoring import ScoringContext
from .settlement_rules import MetricSettlementRules, SettlementResourceStore, SettlementRules
from .tasks import TaskSelectionEngine
from .transport import ArrivingSettlement, Resupply, TransitState, TransportDirectory, TransportItem

Choices = Dict[str, Optional[CandidateJob]]
PulseListener = Callable[[int, WorldState, WorldState, Choices], Any]


class Orchestrator:
    """Drives a colony pulse by pulse.

    All collaborators are injected; nothing is read from module-level state.
    """

    def __init__(
        self,
        world_state: WorldState,
        agents: Dict[str, AgentProfile],
        catalog: ColonyCatalog,
        config: Optional[SchedulerConfig] = None,
        rules: Optional[SettlementRules] = None,
        rng: Optional[RandomSource] = None,
        tick_listeners: Optional[List[PulseListener]] = None,
        verbose: bool = True,
    ):
        """Initialize the orchestrator.

        Args:
            world_state: Initial WorldState
            agents: Dict mapping agent_id to AgentProfile
            catalog: Task/mission definitions, malfunctions, parts, transports
            config: Scheduler constants (defaults to ``SchedulerConfig()``)
            rules: Settlement modifier source (defaults to MetricSettlementRules)
            rng: Random source; defaults to one seeded from ``config.random_seed``
            tick_listeners: Callables run after each pulse with
                (tick, previous_state, new_state, choices). Coroutine
                functions are awaited.
            verbose: Print a summary after every pulse
        """
        self.current_state = world_state
        self.agents = agents
        self.catalog = catalog
        self.config = config or SchedulerConfig()
        self.rules = rules or MetricSettlementRules()
        self.rng = rng or RandomSource(self.config.random_seed)
        self.tick_listeners = tick_listeners or []
        self.verbose = verbose
        self.run_id: UUID = uuid4()
        self._start_time = world_state.sim_time
        self._pulse_events: List[WorldEvent] = []
        self._working_state: Optional[WorldState] = None
        self._last_context: Dict[str, str] = {}

        self.events = ScheduledEventManager()
        self.reliability: ReliabilityRegistry = catalog.build_reliability(self.config)
        self.malfunction_monitor = MalfunctionMonitor(
            catalog.build_malfunction_catalog(self.config),
            self.reliability,
            self.rng.spawn("malfunctions"),
        )
        for entity in catalog.build_malfunctionables():
            self.malfunction_monitor.register(entity)

        self.engine = TaskSelectionEngine(catalog.providers(), self.config, self.rng.spawn("tasks"))
        self.missions = MissionDirectory()
        self.operator_assigner = OperatorAssigner(self.engine, self.agents)
        self.transports = TransportDirectory(self.events, on_arrival=self._handle_arrival)
        for spec in catalog.transports:
            self.schedule_transport(spec)

    # Setup -------------------------------------------------------------------

    def schedule_transport(self, spec: TransportSpec) -> TransportItem:
        """Create a transport from its spec and register its first event."""
        common = {"events": self.events, "config": self.config, "cargo": spec.cargo}
        if spec.type == "arriving_settlement":
            item: TransportItem = ArrivingSettlement(
                spec.name,
                spec.landing_site,
                settlement_id=spec.settlement_id or spec.landing_site,
                population=spec.population,
                location=spec.location,
                **common,
            )
        else:
            item = Resupply(spec.name, spec.landing_site, immigrants=spec.immigrants, **common)
        self.transports.add(item)
        item.set_arrival(spec.arrival, self.current_state.sim_time)
        return item

    # Pulse -------------------------------------------------------------------

    def on_pulse(self, sim_time: float) -> Choices:
        """Advance the colony to ``sim_time``; returns each agent's choice."""
        world = self.current_state.model_copy(deep=True)
        world.tick += 1
        world.sim_time = sim_time
        world.recent_events = []
        self._working_state = world
        self._pulse_events = []

        world = self.rules.apply_pulse(world, world.tick)
        self._working_state = world

        self.events.time_pass(sim_time)

        # No-op unless the sol changed
        self.reliability.run_daily_maintenance(world.sol)

        for incident in self.malfunction_monitor.check(sim_time, self.config.pulse_length):
            self._emit(
                world,
                category="malfunction",
                description=f"{incident.malfunction.name} in {incident.entity} (incident #{incident.number})",
                severity=incident.malfunction.severity,
                metadata={"entity": incident.entity, "malfunction": incident.malfunction.name},
            )

        choices: Choices = {}
        for agent_id in sorted(self.agents):
            if agent_id in world.agents:
                choices[agent_id] = self._run_agent(world, agent_id)

        hours = self.config.pulse_length * HOURS_PER_SOL
        for mission in self.missions.active_missions():
            mission.drive(world, hours)

        world.recent_events = list(self._pulse_events)
        self.current_state = world
        self._working_state = None
        return choices

    def _run_agent(self, world: WorldState, agent_id: str) -> Optional[CandidateJob]:
        profile = self.agents[agent_id]
        status = world.agents[agent_id]

        context = status.context.value
        previous = self._last_context.get(agent_id)
        if previous is not None and previous != context:
            self.engine.complete_activity(agent_id, f"moved {previous} -> {context}")
        self._last_context[agent_id] = context

        settlement = world.settlement_of(status)
        ctx = ScoringContext(
            world=world,
            profile=profile,
            status=status,
            settlement=settlement,
            rules=self.rules,
            config=self.config,
        )
        job = self.engine.choose_next(ctx, world.sim_time)

        mission = self.missions.mission_for(agent_id)
        if mission is None and job is not None and job.kind is JobKind.MISSION:
            mission = self._start_mission(job, profile, world, settlement)

        if mission is not None:
            home = world.settlements[mission.home_settlement_id]
            mission.execute(agent_id, world, SettlementResourceStore(home))
            activity = job.description if job is not None and job.kind is JobKind.PENDING else mission.phase_description
            if mission.status.is_terminal:
                self._finish_mission(world, mission)
        else:
            activity = job.description if job is not None else None

        world.agents[agent_id] = world.agents[agent_id].model_copy(update={"activity": activity})
        return job

    # Missions ----------------------------------------------------------------

    def _start_mission(
        self,
        job: CandidateJob,
        profile: AgentProfile,
        world: WorldState,
        settlement: Optional[SettlementState],
    ) -> Optional[Mission]:
        definition = self.catalog.mission_definition(job.provider or "")
        if definition is None or settlement is None:
            return None

        busy = {member for m in self.missions.active_missions() for member in m.members}
        mission = plan_mission(
            definition,
            name=self.missions.next_name(definition.name),
            leader=profile,
            settlement=settlement,
            world=world,
            profiles=self.agents,
            busy=busy,
            config=self.config,
            assign_operator=self.operator_assigner,
            known_kinds=self.catalog.resource_kinds or None,
        )
        if mission is None:
            log_warning(f"{profile.name} chose {definition.name} but no rover is available")
            return None

        self.missions.add(mission)
        for member in mission.members:
            self.engine.complete_activity(member, f"joined {mission.name}")
        self._emit(
            world,
            category="mission",
            description=f"{profile.name} leads {mission.name} with {len(mission.members)} crew",
            affected_agents=list(mission.members),
        )
        return mission

    def _finish_mission(self, world: WorldState, mission: Mission) -> None:
        self.missions.archive(mission)
        for member in mission.members:
            self.engine.drop_pending(member, mission.name)
            self.engine.complete_activity(member, f"{mission.name} {mission.status.value}")
        if mission.status is MissionStatus.COMPLETED:
            description = f"{mission.name} returned home"
        else:
            description = f"{mission.name} aborted: {mission.abort_reason}"
        self._emit(world, category="mission", description=description, affected_agents=list(mission.members))

    # Transports --------------------------------------------------------------

    def _handle_arrival(self, item: TransportItem, now: float) -> None:
        world = self._working_state
        if world is None:
            log_warning(f"{item.name} arrived outside a pulse; ignoring delivery")
            return

        if isinstance(item, ArrivingSettlement):
            world.settlements[item.settlement_id] = SettlementState(
                settlement_id=item.settlement_id,
                name=item.name,
                location=item.location,
                population=item.population,
                population_capacity=item.population,
                indoor_count=item.population,
                resources=dict(item.cargo),
            )
            description = f"New settlement {item.name} founded at {item.landing_site}"
        else:
            settlement = world.settlements.get(item.landing_site)
            if settlement is None:
                log_warning(f"{item.name} landed at unknown settlement '{item.landing_site}'")
                return
            resources = dict(settlement.resources)
            for kind, amount in item.cargo.items():
                total = resources.get(kind, 0.0) + amount
                capacity = settlement.capacities.get(kind)
                resources[kind] = min(total, capacity) if capacity is not None else total
            immigrants = getattr(item, "immigrants", 0)
            world.settlements[settlement.settlement_id] = settlement.model_copy(
                update={
                    "resources": resources,
                    "population": settlement.population + immigrants,
                    "indoor_count": settlement.indoor_count + immigrants,
                }
            )
            description = f"{item.name} delivered to {settlement.name}"
        self._emit(world, category="transport", description=description, metadata={"transport": item.name})

    # Events ------------------------------------------------------------------

    def _emit(self, world: WorldState, *, category: str, description: str, **fields: Any) -> WorldEvent:
        event = WorldEvent(
            event_id=f"{category}-{world.tick}-{len(self._pulse_events) + 1}",
            tick=world.tick,
            sim_time=world.sim_time,
            category=category,
            description=description,
            **fields,
        )
        self._pulse_events.append(event)
        return event

    # Run loop ----------------------------------------------------------------

    async def run(self, num_pulses: Optional[int] = None) -> Dict[str, Any]:
        """Run the colony for ``num_pulses`` pulses.

        Returns:
            Dict with run_id, final_state and the number of pulses run

        Raises:
            PulseListenerError: If any listener failed after a pulse
        """
        pulses = Config.DEFAULT_PULSE_COUNT if num_pulses is None else num_pulses
        if self.verbose:
            log_info(f"Starting colony run {self.run_id}")
            log_info(f"Agents: {len(self.agents)}, Pulses: {pulses}, Pulse length: {self.config.pulse_length} sol")

        for _ in range(pulses):
            previous_state = self.current_state
            tick = previous_state.tick + 1
            sim_time = self._start_time + tick * self.config.pulse_length
            choices = self.on_pulse(sim_time)
            if self.verbose:
                self._print_pulse_summary(choices, self.current_state)
            await self._notify_listeners(tick, previous_state, self.current_state, choices)

        if self.verbose:
            log_success(f"Run complete at sol {self.current_state.sim_time:.2f}")
        return {"run_id": self.run_id, "final_state": self.current_state, "pulses": pulses}

    async def _notify_listeners(
        self, tick: int, previous_state: WorldState, new_state: WorldState, choices: Choices
    ) -> None:
        failures: Dict[str, Exception] = {}
        for listener in self.tick_listeners:
            name = getattr(listener, "__name__", repr(listener))
            try:
                result = listener(tick, previous_state, new_state, choices)
                if inspect.isawaitable(result):
                    await result
            except Exception as exc:
                failures[name] = exc
        if failures:
            raise PulseListenerError(tick=tick, errors=failures)

    def _print_pulse_summary(self, choices: Choices, state: WorldState) -> None:
        print(colored(f"=== Pulse {state.tick} (sol {state.sim_time:.2f}) ===", Color.BLUE, bold=True))
        for settlement in state.settlements.values():
            summary = self.rules.format_resource_summary(settlement)
            if summary:
                print(f"  {settlement.name}: {summary}")
        for agent_id, job in choices.items():
            activity = state.agents[agent_id].activity or "idle"
            marker = " (directive)" if job is not None and job.kind is JobKind.PENDING else ""
            log_deterministic(f"{self.agents[agent_id].name}: {activity}{marker}")
        for event in state.recent_events:
            print(f"  EVENT (severity {event.severity}): {event.description}")

    # Read-only query surface -------------------------------------------------

    def get_pending_jobs(self, agent_id: str):
        return self.engine.get_pending_jobs(agent_id)

    def get_latest_candidate_snapshot(self, agent_id: str) -> Optional[CandidateSnapshot]:
        return self.engine.get_latest_candidate_snapshot(agent_id)

    def get_process_state(self, name: str) -> Optional[Union[TransitState, MissionStatus]]:
        """State of a transport or mission by name."""
        state = self.transports.get_process_state(name)
        if state is not None:
            return state
        return self.missions.get_process_state(name)
