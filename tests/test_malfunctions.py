"""Tests for malfunction definitions, selection and the per-pulse monitor."""

import pytest

from marsverse.config import SchedulerConfig
from marsverse.errors import ConfigurationError, InvalidScopeError
from marsverse.malfunctions import (
    MalfunctionCatalog,
    MalfunctionMeta,
    MalfunctionMonitor,
    Malfunctionable,
    RECENT_MALFUNCTIONS,
    RepairPart,
    normalize_scope,
)
from marsverse.randomness import RandomSource
from marsverse.reliability import ReliabilityModel, ReliabilityRegistry


class ScriptedRandom(RandomSource):
    def __init__(self, draws=(), gate=True, rolls=()):
        super().__init__(seed=0)
        self.draws = list(draws)
        self.rolls = list(rolls)
        self.gate_answer = gate
        self.gate_calls = []

    def random(self):
        return self.rolls.pop(0)

    def uniform(self, upper):
        return self.draws.pop(0)

    def less_than_rand_percent(self, percent):
        self.gate_calls.append(percent)
        return self.gate_answer


class FixedReliability:
    """Registry stand-in reporting one reliability for every part."""

    def __init__(self, value):
        self.value = value

    def reliability_of(self, name):
        return self.value


def water_malfunctions():
    return [
        MalfunctionMeta(name="Seal Leak", scopes=["Water"], probability=30.0),
        MalfunctionMeta(name="Filter Clog", scopes=["water", "air"], probability=70.0),
        MalfunctionMeta(name="Drivetrain Fault", scopes=["rover"], probability=90.0),
    ]


def test_scopes_are_normalized_to_lower_case():
    assert normalize_scope("  Life Support ") == "life support"

    meta = MalfunctionMeta(name="Seal Leak", scopes="Water", probability=10.0)
    assert meta.scopes == frozenset({"water"})
    assert meta.is_matched(["WATER"])


@pytest.mark.parametrize("scope", ["", "   ", "-water", "water!", 42])
def test_malformed_scopes_are_rejected(scope):
    with pytest.raises(InvalidScopeError):
        normalize_scope(scope)


def test_malformed_scope_in_definition_is_a_configuration_error():
    with pytest.raises(ConfigurationError):
        MalfunctionMeta(name="Bad", scopes=["ok", "not/ok"], probability=10.0)

    with pytest.raises(InvalidScopeError):
        MalfunctionMeta(name="Empty", scopes=[], probability=10.0)


def test_pick_malfunction_draws_within_matching_scope():
    catalog = MalfunctionCatalog(water_malfunctions())
    rng = ScriptedRandom(draws=[75.0])

    chosen = catalog.pick_malfunction(["water"], rng, shuffle=False)

    assert chosen.name == "Filter Clog"
    assert rng.gate_calls == [70.0]


def test_pick_malfunction_gate_can_reject():
    catalog = MalfunctionCatalog(water_malfunctions())
    rng = ScriptedRandom(draws=[10.0], gate=False)

    assert catalog.pick_malfunction(["water"], rng, shuffle=False) is None
    assert rng.gate_calls == [30.0]


def test_pick_malfunction_without_match_returns_none():
    catalog = MalfunctionCatalog(water_malfunctions())
    rng = ScriptedRandom()

    assert catalog.pick_malfunction(["greenhouse"], rng) is None
    assert rng.gate_calls == []


def test_effective_probability_rises_as_reliability_decays():
    meta = MalfunctionMeta(name="Pump Wear", scopes=["water"], probability=30.0, component="water_pump")
    catalog = MalfunctionCatalog([meta], max_reliability=99.99)

    assert catalog.effective_probability(meta, None) == 30.0
    assert catalog.effective_probability(meta, FixedReliability(50.0)) == pytest.approx(59.994)
    assert catalog.effective_probability(meta, FixedReliability(99.99)) == pytest.approx(30.0)


def test_effective_probability_is_capped():
    meta = MalfunctionMeta(name="Pump Wear", scopes=["water"], probability=80.0, component="water_pump")
    catalog = MalfunctionCatalog([meta])

    assert catalog.effective_probability(meta, FixedReliability(10.0)) == 100.0
    assert catalog.effective_probability(meta, FixedReliability(0.0)) == 100.0


def test_effective_probability_ignores_components_not_named():
    meta = MalfunctionMeta(name="Seal Leak", scopes=["water"], probability=30.0)
    catalog = MalfunctionCatalog([meta])

    assert catalog.effective_probability(meta, FixedReliability(5.0)) == 30.0


def test_repair_part_expectation():
    meta = MalfunctionMeta(
        name="Seal Leak",
        scopes=["water"],
        probability=50.0,
        repair_parts=[
            RepairPart(part="gasket", number=1, repair_probability=100.0),
            RepairPart(part="pipe", number=3, repair_probability=50.0),
        ],
    )
    other = MalfunctionMeta(
        name="Valve Stuck",
        scopes=["water"],
        probability=100.0,
        repair_parts=[RepairPart(part="gasket", number=1, repair_probability=10.0)],
    )
    catalog = MalfunctionCatalog([meta, other])

    expected = catalog.repair_part_probabilities(["water"])

    assert expected["gasket"] == pytest.approx(0.5 + 0.1)
    assert expected["pipe"] == pytest.approx(2.0 * 0.5 * 0.5)
    assert catalog.repair_part_probabilities(["rover"]) == {}


def test_get_by_name_is_case_insensitive():
    catalog = MalfunctionCatalog(water_malfunctions())

    assert catalog.get_by_name("seal leak").name == "Seal Leak"
    assert catalog.get_by_name("unknown") is None


def test_incident_numbers_increase():
    catalog = MalfunctionCatalog([])

    assert [catalog.next_incident_number() for _ in range(3)] == [1, 2, 3]


def make_registry(failure_rate):
    model = ReliabilityModel(SchedulerConfig())
    record = model.new_record("water_pump").model_copy(update={"failure_rate": failure_rate})
    return ReliabilityRegistry(model, [record])


def test_monitor_reports_failures_to_reliability_queue():
    registry = make_registry(1000.0)
    meta = MalfunctionMeta(name="Pump Wear", scopes=["water"], probability=40.0, component="water_pump")
    catalog = MalfunctionCatalog([meta])
    rng = ScriptedRandom(draws=[1.0], rolls=[0.0])
    monitor = MalfunctionMonitor(catalog, registry, rng)
    monitor.register(Malfunctionable.build("Water Plant", ["Water"], parts=["water_pump"]))

    incidents = monitor.check(sim_time=1.25, pulse_length=0.01)

    assert len(incidents) == 1
    assert incidents[0].entity == "Water Plant"
    assert incidents[0].malfunction.name == "Pump Wear"
    assert incidents[0].number == 1
    assert list(monitor.entities["Water Plant"].malfunctions) == ["Pump Wear"]
    assert registry.pending_failures() == {"water_pump": 1}


def test_entity_keeps_only_recent_malfunctions():
    registry = make_registry(1000.0)
    meta = MalfunctionMeta(name="Pump Wear", scopes=["water"], probability=40.0, component="water_pump")
    rng = ScriptedRandom(draws=[1.0] * 15, rolls=[0.0] * 15)
    monitor = MalfunctionMonitor(MalfunctionCatalog([meta]), registry, rng)
    monitor.register(Malfunctionable.build("Water Plant", ["Water"], parts=["water_pump"]))

    for pulse in range(15):
        monitor.check(sim_time=pulse * 0.01, pulse_length=0.01)

    assert len(monitor.entities["Water Plant"].malfunctions) == RECENT_MALFUNCTIONS
    assert registry.pending_failures() == {"water_pump": 15}


def test_monitor_skips_entities_when_roll_misses():
    registry = make_registry(0.001)
    catalog = MalfunctionCatalog(water_malfunctions())
    rng = ScriptedRandom(rolls=[0.99])
    monitor = MalfunctionMonitor(catalog, registry, rng)
    monitor.register(Malfunctionable.build("Water Plant", ["water"], parts=["water_pump"]))

    assert monitor.check(sim_time=0.0, pulse_length=0.01) == []
    assert registry.pending_failures() == {}


def test_failure_chance_without_tracked_parts_is_zero():
    registry = make_registry(1.0)
    monitor = MalfunctionMonitor(MalfunctionCatalog([]), registry, RandomSource(1))
    entity = Malfunctionable.build("Greenhouse", ["greenhouse"])

    assert monitor.failure_chance(entity, 0.01) == 0.0
    assert 0.0 < monitor.failure_chance(Malfunctionable.build("Plant", ["water"], ["water_pump"]), 0.01) < 1.0
