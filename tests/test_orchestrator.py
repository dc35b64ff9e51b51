"""Orchestrator integration tests: pulses, missions, transports and listeners."""

from pathlib import Path

import pytest

from marsverse.catalog import ColonyCatalog, TransportSpec
from marsverse.config import SchedulerConfig
from marsverse.errors import PulseListenerError
from marsverse.missions import MissionStatus
from marsverse.orchestrator import Orchestrator
from marsverse.randomness import RandomSource
from marsverse.scenario import ScenarioLoader
from marsverse.schemas import (
    AgentProfile,
    AgentStatus,
    Coordinates,
    JobKind,
    LocationContext,
    SettlementState,
    VehicleState,
    WorldState,
)
from marsverse.scoring import MissionDefinition, TaskDefinition
from marsverse.transport import TransitState

COLONY_DIR = Path(__file__).resolve().parents[1] / "examples" / "colony"


def load_colony(**kwargs) -> Orchestrator:
    world_state, profiles, catalog = ScenarioLoader(COLONY_DIR).load("schiaparelli")
    return Orchestrator(
        world_state=world_state,
        agents={p.agent_id: p for p in profiles},
        catalog=catalog,
        config=SchedulerConfig(random_seed=7),
        verbose=False,
        **kwargs,
    )


def solo_mission_colony(**catalog_fields) -> Orchestrator:
    """One areologist, one rover and a single-seat mission 7 km away."""
    world_state = WorldState(
        settlements={
            "base": SettlementState(
                settlement_id="base",
                name="Base",
                population=1,
                population_capacity=4,
                indoor_count=1,
                resources={"methane": 500.0, "oxygen": 500.0, "water": 500.0, "food": 500.0},
            )
        },
        vehicles={
            "rover-1": VehicleState(
                vehicle_id="rover-1",
                name="Opportunity II",
                home_settlement_id="base",
                container_settlement_id="base",
                range_km=600.0,
            )
        },
        agents={"ana": AgentStatus(agent_id="ana", settlement_id="base")},
    )
    catalog = ColonyCatalog(
        resource_kinds=frozenset({"methane", "oxygen", "water", "food"}),
        missions=(
            MissionDefinition(
                name="Collect Regolith",
                nominal_weight=10.0,
                leader_jobs={"areologist": 1.0},
                crew_size=1,
                site=Coordinates(x=7.0, y=0.0),
                work_required=1.0,
            ),
        ),
        **catalog_fields,
    )
    return Orchestrator(
        world_state=world_state,
        agents={"ana": AgentProfile(agent_id="ana", name="Ana", job="areologist")},
        catalog=catalog,
        rng=RandomSource(11),
        verbose=False,
    )


@pytest.mark.asyncio
async def test_run_advances_time_and_ticks():
    orchestrator = load_colony()

    result = await orchestrator.run(num_pulses=5)

    final_state = result["final_state"]
    assert result["pulses"] == 5
    assert result["run_id"] == orchestrator.run_id
    assert final_state.tick == 5
    assert final_state.sim_time == pytest.approx(0.05)
    assert set(final_state.agents) == {"ana", "bo", "chidi", "dana", "unit-7"}


@pytest.mark.asyncio
async def test_every_agent_has_a_snapshot_after_a_pulse():
    orchestrator = load_colony()

    await orchestrator.run(num_pulses=1)

    for agent_id in orchestrator.agents:
        assert orchestrator.get_latest_candidate_snapshot(agent_id) is not None
    robot = orchestrator.get_latest_candidate_snapshot("unit-7")
    assert {job.provider for job in robot.jobs} == {"maintenance"}


@pytest.mark.asyncio
async def test_same_seed_gives_the_same_run():
    first = load_colony()
    second = load_colony()

    a = await first.run(num_pulses=20)
    b = await second.run(num_pulses=20)

    activities_a = {k: v.activity for k, v in a["final_state"].agents.items()}
    activities_b = {k: v.activity for k, v in b["final_state"].agents.items()}
    assert activities_a == activities_b


@pytest.mark.asyncio
async def test_resupply_arrives_and_delivers_cargo():
    orchestrator = load_colony()
    arrivals = []

    def watch(tick, previous, current, choices):
        arrivals.extend(e for e in current.recent_events if e.category == "transport")

    orchestrator.tick_listeners.append(watch)
    await orchestrator.run(num_pulses=60)

    assert orchestrator.get_process_state("Resupply 2031-A") is TransitState.ARRIVED
    assert orchestrator.get_process_state("Huygens") is TransitState.PLANNED
    base = orchestrator.current_state.settlements["schiaparelli"]
    assert base.population == 6
    assert base.resources["food"] == 900.0
    assert base.resources["spare_parts"] == 20.0
    assert len(arrivals) == 1
    assert arrivals[0].description == "Resupply 2031-A delivered to Schiaparelli"


@pytest.mark.asyncio
async def test_arriving_settlement_is_founded():
    orchestrator = solo_mission_colony(
        transports=(
            TransportSpec(
                type="arriving_settlement",
                name="Huygens",
                landing_site="huygens",
                settlement_id="huygens",
                arrival=0.02,
                population=8,
                location=Coordinates(x=120.0, y=-40.0),
                cargo={"food": 50.0},
            ),
        )
    )

    await orchestrator.run(num_pulses=3)

    huygens = orchestrator.current_state.settlements["huygens"]
    assert huygens.population == 8
    assert huygens.resources == {"food": 50.0}
    assert orchestrator.get_process_state("Huygens") is TransitState.ARRIVED


@pytest.mark.asyncio
async def test_mission_runs_to_completion():
    orchestrator = solo_mission_colony()
    seen = []

    def record(tick, previous, current, choices):
        seen.append((tick, current.agents["ana"].activity, [e.description for e in current.recent_events]))

    orchestrator.tick_listeners.append(record)

    await orchestrator.run(num_pulses=1)
    assert orchestrator.get_process_state("Collect Regolith #1") is MissionStatus.ACTIVE
    assert orchestrator.current_state.vehicles["rover-1"].reserved_for == "Collect Regolith #1"

    await orchestrator.run(num_pulses=1)
    assert orchestrator.get_pending_jobs("ana")[0].description == "Drive Opportunity II"
    assert orchestrator.current_state.agents["ana"].context is LocationContext.IN_VEHICLE

    await orchestrator.run(num_pulses=4)

    assert orchestrator.get_process_state("Collect Regolith #1") is MissionStatus.COMPLETED
    state = orchestrator.current_state
    rover = state.vehicles["rover-1"]
    assert rover.container_settlement_id == "base"
    assert rover.operator_id is None
    assert state.agents["ana"].context is LocationContext.INDOORS
    assert orchestrator.get_pending_jobs("ana") == ()
    assert any("Collect Regolith #1 returned home" in events for _, _, events in seen[-1:])
    assert seen[2][1] == "Drive Opportunity II"


@pytest.mark.asyncio
async def test_unknown_process_state_is_none():
    orchestrator = solo_mission_colony()

    assert orchestrator.get_process_state("nothing") is None


@pytest.mark.asyncio
async def test_sync_and_async_listeners_are_called():
    orchestrator = solo_mission_colony()
    sync_ticks = []
    async_ticks = []

    def sync_listener(tick, previous, current, choices):
        assert current.tick == previous.tick + 1
        sync_ticks.append(tick)

    async def async_listener(tick, previous, current, choices):
        async_ticks.append((tick, set(choices)))

    orchestrator.tick_listeners.extend([sync_listener, async_listener])
    await orchestrator.run(num_pulses=3)

    assert sync_ticks == [1, 2, 3]
    assert async_ticks == [(1, {"ana"}), (2, {"ana"}), (3, {"ana"})]


@pytest.mark.asyncio
async def test_listener_failures_are_collected():
    orchestrator = solo_mission_colony()
    calls = []

    def broken(tick, previous, current, choices):
        raise RuntimeError("dashboard offline")

    def healthy(tick, previous, current, choices):
        calls.append(tick)

    orchestrator.tick_listeners.extend([broken, healthy])

    with pytest.raises(PulseListenerError) as excinfo:
        await orchestrator.run(num_pulses=3)

    assert excinfo.value.tick == 1
    assert set(excinfo.value.errors) == {"broken"}
    assert calls == [1]
    assert orchestrator.current_state.tick == 1


def test_on_pulse_returns_choices():
    world_state = WorldState(
        settlements={"base": SettlementState(settlement_id="base", name="Base", population=1)},
        agents={"ana": AgentStatus(agent_id="ana", settlement_id="base")},
    )
    catalog = ColonyCatalog(tasks=(TaskDefinition(name="relax", nominal_weight=1.0),))
    orchestrator = Orchestrator(
        world_state=world_state,
        agents={"ana": AgentProfile(agent_id="ana", name="Ana", job="botanist")},
        catalog=catalog,
        verbose=False,
    )

    choices = orchestrator.on_pulse(0.01)

    assert choices["ana"].provider == "relax"
    assert choices["ana"].kind is JobKind.TASK
    assert orchestrator.current_state.agents["ana"].activity == "relax"
    assert world_state.tick == 0
