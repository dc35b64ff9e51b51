"""Tests for score chains, modifiers and the built-in candidate providers."""

import pytest

from marsverse.config import SchedulerConfig
from marsverse.schemas import (
    AgentKind,
    AgentProfile,
    AgentStatus,
    Coordinates,
    LocationContext,
    SettlementState,
    Stat,
    VehicleState,
    WorldState,
)
from marsverse.scoring import (
    CandidateProvider,
    MissionDefinition,
    ScoreChain,
    ScoringContext,
    TaskDefinition,
    crowding_modifier,
    extrovert_modifier,
    fitness_gate,
    settlement_population_modifier,
)
from marsverse.settlement_rules import MetricSettlementRules, SettlementRules


class ExplodingEconomy(SettlementRules):
    """Rules that fail loudly if scoring ever asks for economic factors."""

    def tourism_factor(self, settlement):
        raise AssertionError("tourism_factor should not be evaluated")

    def research_factor(self, settlement):
        raise AssertionError("research_factor should not be evaluated")

    def population_capacity_factor(self, settlement):
        return 1.0


def make_settlement(**overrides) -> SettlementState:
    values = dict(
        settlement_id="schiaparelli",
        name="Schiaparelli",
        population=4,
        population_capacity=4,
        indoor_count=4,
        resources={"methane": 200.0},
    )
    values.update(overrides)
    return SettlementState(**values)


def make_rover(**overrides) -> VehicleState:
    values = dict(
        vehicle_id="rover-1",
        name="Opportunity II",
        home_settlement_id="schiaparelli",
        container_settlement_id="schiaparelli",
        range_km=600.0,
    )
    values.update(overrides)
    return VehicleState(**values)


def make_context(*, settlement=None, vehicles=(), profile=None, status=None, rules=None, config=None):
    settlement = settlement if settlement is not None else make_settlement()
    profile = profile or AgentProfile(agent_id="ana", name="Ana", job="areologist")
    status = status or AgentStatus(agent_id=profile.agent_id, settlement_id=settlement.settlement_id)
    world = WorldState(
        settlements={settlement.settlement_id: settlement},
        agents={status.agent_id: status},
        vehicles={v.vehicle_id: v for v in vehicles},
    )
    return ScoringContext(
        world=world,
        profile=profile,
        status=status,
        settlement=settlement,
        rules=rules or MetricSettlementRules(),
        config=config or SchedulerConfig(),
    )


def regolith_mission(**overrides) -> MissionDefinition:
    values = dict(
        name="Collect Regolith",
        nominal_weight=10.0,
        leader_jobs={"areologist": 1.0},
        crew_size=2,
        site=Coordinates(x=30.0, y=40.0),
    )
    values.update(overrides)
    return MissionDefinition(**values)


# ScoreChain ------------------------------------------------------------------


def test_score_chain_multiplies_and_clamps():
    assert ScoreChain(10.0, ceiling=100.0).times(2.0).times(0.5).result() == 10.0
    assert ScoreChain(10.0, ceiling=15.0).times(3.0).result() == 15.0


def test_score_chain_zero_short_circuits_lazy_factors():
    calls = []
    chain = ScoreChain(10.0, ceiling=100.0).times(0.0, "rover")
    chain.times_lazy(lambda: calls.append("fuel") or 1.0, "fuel")

    assert chain.result() == 0.0
    assert chain.zeroed_by == "rover"
    assert calls == []


def test_score_chain_zero_nominal():
    chain = ScoreChain(0.0, ceiling=100.0)

    assert chain.is_zero
    assert chain.zeroed_by == "nominal"
    assert chain.times(5.0).result() == 0.0


# Modifiers -------------------------------------------------------------------


def test_population_modifier():
    settlement = make_settlement(population=6)

    assert settlement_population_modifier(settlement, 0) == 1.0
    assert settlement_population_modifier(settlement, 4) == 1.5
    assert settlement_population_modifier(settlement, 2) == 2.0
    assert settlement_population_modifier(settlement, 7) == 0.0
    assert settlement_population_modifier(None, 1) == 0.0


def test_crowding_modifier():
    roomy = make_settlement(indoor_count=3, population_capacity=4)
    crowded = make_settlement(indoor_count=6, population_capacity=4)

    assert crowding_modifier(roomy) == 1.0
    assert crowding_modifier(crowded) == pytest.approx(1 / 3)
    assert crowding_modifier(crowded, group_forming=True) == 3.0
    assert crowding_modifier(None) == 1.0


def test_extrovert_modifier_endpoints():
    assert extrovert_modifier(50.0, 2.0) == 1.0
    assert extrovert_modifier(100.0, 2.0) == 2.0
    assert extrovert_modifier(0.0, 2.0) == 0.0
    assert extrovert_modifier(100.0, 2.0, polarity=-1) == 0.0
    assert extrovert_modifier(75.0, 1.0) == 1.25


def test_fitness_gate():
    tired = AgentStatus(agent_id="bo", attributes={"fatigue": Stat(value=90)})

    assert fitness_gate(tired, max_fatigue=80.0) == 0.0
    assert fitness_gate(tired, max_fatigue=95.0) == 1.0
    assert fitness_gate(tired, max_stress=10.0) == 1.0


# Tasks -----------------------------------------------------------------------


def test_neutral_task_scores_its_nominal_weight():
    task = TaskDefinition(name="Socialize", nominal_weight=10.0, social=1)
    ctx = make_context(profile=AgentProfile(agent_id="ana", name="Ana", job="botanist", traits={"extroversion": 50}))

    assert task.score(ctx) == 10.0


def test_task_providers_satisfy_the_protocol():
    task = TaskDefinition(name="Relax", nominal_weight=1.0)

    assert isinstance(task, CandidateProvider)
    assert isinstance(regolith_mission(), CandidateProvider)


def test_task_job_factors():
    task = TaskDefinition(name="Study Soil", nominal_weight=4.0, job_factors={"areologist": 3.0}, other_job_factor=0.5)

    areologist = make_context()
    botanist = make_context(profile=AgentProfile(agent_id="bo", name="Bo", job="botanist"))

    assert task.score(areologist) == 12.0
    assert task.score(botanist) == 2.0


def test_robots_are_excluded_unless_allowed():
    robot = AgentProfile(agent_id="unit-7", name="Unit 7", kind=AgentKind.ROBOT, job="maintenance")
    manual = TaskDefinition(name="Greet Visitors", nominal_weight=5.0)
    chores = TaskDefinition(name="Clean Filters", nominal_weight=5.0, robots_allowed=True)

    assert manual.score(make_context(profile=robot)) == 0.0
    assert chores.score(make_context(profile=robot)) == 5.0


def test_task_economy_factors_read_from_rules():
    settlement = make_settlement(metrics={"research_factor": Stat(value=1.5), "tourism_factor": Stat(value=0.5)})
    task = TaskDefinition(name="Lab Work", nominal_weight=2.0, research_sensitive=True, tourism_sensitive=True)

    assert task.score(make_context(settlement=settlement)) == pytest.approx(1.5)


def test_group_task_uses_relationship_scalar():
    status = AgentStatus(
        agent_id="ana", settlement_id="schiaparelli", attributes={"relationship": Stat(value=75)}
    )
    task = TaskDefinition(name="Team Dinner", nominal_weight=2.0, group_forming=True)

    assert task.score(make_context(status=status)) == 3.0


def test_task_never_reads_rules_once_zeroed():
    task = TaskDefinition(
        name="Tour Guide",
        nominal_weight=5.0,
        min_population=10,
        research_sensitive=True,
        tourism_sensitive=True,
    )

    assert task.score(make_context(rules=ExplodingEconomy())) == 0.0


class FullSettlement(MetricSettlementRules):
    """Rules reporting no spare capacity at all."""

    def population_capacity_factor(self, settlement):
        return 0.0


def test_capacity_factor_scales_tasks():
    settlement = make_settlement(metrics={"population_capacity_factor": Stat(value=0.5)})
    task = TaskDefinition(name="Relax", nominal_weight=2.0)

    assert task.score(make_context(settlement=settlement)) == pytest.approx(1.0)
    assert task.score(make_context(rules=FullSettlement())) == 0.0


def test_capacity_factor_of_zero_zeroes_missions():
    settlement = make_settlement(population=2, indoor_count=2)
    ctx = make_context(settlement=settlement, vehicles=[make_rover()], rules=FullSettlement())

    assert regolith_mission().score(ctx) == 0.0


def test_task_description_falls_back_to_name():
    ctx = make_context()

    assert TaskDefinition(name="Relax", nominal_weight=1.0).describe(ctx) == "Relax"
    assert TaskDefinition(name="Relax", description="Relax in the lounge", nominal_weight=1.0).describe(ctx) == (
        "Relax in the lounge"
    )


# Missions --------------------------------------------------------------------


def test_mission_without_rover_scores_exactly_zero():
    ctx = make_context(rules=ExplodingEconomy())

    assert regolith_mission().score(ctx) == 0.0


def test_mission_with_rover_and_fuel_scores_positive():
    settlement = make_settlement(population=2, indoor_count=2)
    ctx = make_context(settlement=settlement, vehicles=[make_rover()])

    # economy blend with neutral factors: (1 + 1) / 1.5
    assert regolith_mission().score(ctx) == pytest.approx(10.0 * 2.0 / 1.5)


def test_mission_without_fuel_scores_zero():
    settlement = make_settlement(resources={"methane": 10.0})
    ctx = make_context(settlement=settlement, vehicles=[make_rover()], rules=ExplodingEconomy())

    assert regolith_mission().score(ctx) == 0.0


def test_mission_rejects_rovers_that_cannot_make_the_round_trip():
    ctx = make_context(vehicles=[make_rover(range_km=90.0)])

    assert regolith_mission().eligible_vehicles(ctx.world, ctx.settlement) == []
    assert regolith_mission().score(ctx) == 0.0


def test_mission_ignores_reserved_and_away_rovers():
    ctx = make_context(
        vehicles=[
            make_rover(vehicle_id="rover-1", reserved_for="Other #1"),
            make_rover(vehicle_id="rover-2", container_settlement_id=None),
            make_rover(vehicle_id="rover-3", operable=False),
        ]
    )

    assert regolith_mission().best_vehicle(ctx.world, ctx.settlement) is None


def test_best_vehicle_prefers_range_then_id():
    ctx = make_context(
        vehicles=[
            make_rover(vehicle_id="rover-b", range_km=800.0),
            make_rover(vehicle_id="rover-a", range_km=800.0),
            make_rover(vehicle_id="rover-c", range_km=900.0),
        ]
    )

    assert regolith_mission().best_vehicle(ctx.world, ctx.settlement).vehicle_id == "rover-c"
    ctx.world.vehicles.pop("rover-c")
    assert regolith_mission().best_vehicle(ctx.world, ctx.settlement).vehicle_id == "rover-a"


def test_mission_leader_outside_preferred_jobs_scores_zero():
    ctx = make_context(
        vehicles=[make_rover()], profile=AgentProfile(agent_id="bo", name="Bo", job="botanist")
    )

    assert regolith_mission().score(ctx) == 0.0


def test_mission_leader_role_can_qualify():
    settlement = make_settlement(population=2, indoor_count=2)
    ctx = make_context(
        settlement=settlement,
        vehicles=[make_rover()],
        profile=AgentProfile(agent_id="bo", name="Bo", job="botanist", role="commander"),
    )
    mission = regolith_mission(leader_roles={"commander": 0.5}, economic_blend=False)

    assert mission.score(ctx) == 5.0


def test_robot_without_piloting_cannot_lead_missions():
    robot = AgentProfile(agent_id="unit-7", name="Unit 7", kind=AgentKind.ROBOT, job="areologist")
    ctx = make_context(vehicles=[make_rover()], profile=robot)

    assert regolith_mission().score(ctx) == 0.0


def test_crowded_settlement_favours_missions():
    crowded = make_settlement(population=4, population_capacity=2, indoor_count=4)
    ctx = make_context(settlement=crowded, vehicles=[make_rover()])
    mission = regolith_mission(economic_blend=False)

    # population 4 / crew 2 = 2.0, crowding excess 2 -> 3.0
    assert mission.score(ctx) == 60.0
    assert mission.describe(ctx) == "Lead Collect Regolith mission"
