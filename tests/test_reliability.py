"""Tests for component reliability and the daily maintenance pass."""

import pytest

from marsverse.config import SchedulerConfig
from marsverse.errors import ConfigurationError
from marsverse.reliability import ReliabilityModel, ReliabilityRecord, ReliabilityRegistry


def make_model(**overrides) -> ReliabilityModel:
    return ReliabilityModel(SchedulerConfig(**overrides))


def test_new_record_starts_at_initial_fraction_of_max_mtbf():
    model = make_model()
    record = model.new_record("water_pump", units_in_use=6)

    assert record.mtbf == pytest.approx(0.3 * 669.0)
    assert record.failure_rate == pytest.approx(1.0 / record.mtbf)
    assert record.reliability == 99.99
    assert record.cumulative_failures == 0


def test_reliability_is_non_increasing_and_bounded():
    model = make_model()
    record = model.new_record("air_filter").model_copy(update={"mtbf": 120.0})

    values = [model.compute_reliability(record, sol) for sol in range(0, 1000, 7)]

    assert all(v <= 99.99 for v in values)
    assert all(later <= earlier for earlier, later in zip(values, values[1:]))
    assert values[-1] < values[0]


def test_reliability_never_negative_elapsed():
    model = make_model()
    record = model.new_record("pump", start_sol=50)

    assert model.compute_reliability(record, 10) == 99.99


def test_mtbf_without_failures_is_the_ceiling():
    model = make_model()
    record = model.new_record("pump")

    assert model.compute_mtbf(record, 100) == 669.0


def test_mtbf_blends_field_data_with_the_ceiling():
    model = make_model()
    record = model.record_failure(model.new_record("pump", units_in_use=10), count=2)

    # field = 10 units * 20 sols / 2 failures = 100
    assert model.compute_mtbf(record, 20) == pytest.approx(0.25 * 100 + 0.75 * 669.0)


def test_same_day_failure_uses_one_elapsed_sol():
    model = make_model()
    record = model.record_failure(model.new_record("pump", start_sol=5, units_in_use=1))

    assert model.compute_mtbf(record, 5) == pytest.approx(0.25 * 1 + 0.75 * 669.0)


def test_mtbf_is_clamped_to_the_configured_floor():
    model = make_model(min_mtbf=600.0)
    record = model.record_failure(model.new_record("pump", units_in_use=1), count=50)

    assert model.compute_mtbf(record, 2) == 600.0


def test_record_failure_returns_a_new_record():
    model = make_model()
    record = model.new_record("pump")

    updated = model.record_failure(record, 3)

    assert record.cumulative_failures == 0
    assert updated.cumulative_failures == 3
    with pytest.raises(ValueError):
        model.record_failure(record, -1)


def test_registry_queues_failures_until_maintenance():
    registry = ReliabilityRegistry.from_parts(SchedulerConfig(), {"pump": {"units_in_use": 4}})
    before = registry.get("pump")

    registry.report_failure("pump")
    registry.report_failure("pump", 2)

    assert registry.get("pump") is before
    assert registry.pending_failures() == {"pump": 3}

    assert registry.run_daily_maintenance(10) is True
    after = registry.get("pump")
    assert after.cumulative_failures == 3
    assert after.computed_on_sol == 10
    assert after.mtbf < 669.0
    assert registry.pending_failures() == {}


def test_maintenance_runs_once_per_sol():
    registry = ReliabilityRegistry.from_parts(SchedulerConfig(), {"pump": {}})

    assert registry.run_daily_maintenance(3) is True
    snapshot = registry.snapshot()
    registry.report_failure("pump")

    assert registry.run_daily_maintenance(3) is False
    assert registry.snapshot() is snapshot
    assert registry.pending_failures() == {"pump": 1}


def test_maintenance_swaps_the_table_wholesale():
    registry = ReliabilityRegistry.from_parts(SchedulerConfig(), {"pump": {}, "filter": {}})
    old = registry.snapshot()

    registry.run_daily_maintenance(1)

    assert registry.snapshot() is not old
    assert old["pump"].computed_on_sol is None


def test_units_in_use_callback_updates_records():
    registry = ReliabilityRegistry.from_parts(SchedulerConfig(), {"pump": {"units_in_use": 1}})

    registry.run_daily_maintenance(1, units_in_use=lambda name: 7)

    assert registry.get("pump").units_in_use == 7


def test_registry_reads_for_unknown_parts():
    registry = ReliabilityRegistry.from_parts(SchedulerConfig(), {})

    assert registry.reliability_of("ghost") == 99.99
    assert registry.failure_rate_of("ghost") == 0.0
    with pytest.raises(KeyError):
        registry.get("ghost")
    with pytest.raises(KeyError):
        registry.report_failure("ghost")


def test_duplicate_records_are_a_configuration_error():
    model = make_model()
    record = model.new_record("pump")

    with pytest.raises(ConfigurationError):
        ReliabilityRegistry(model, [record, record])


def test_record_rejects_out_of_range_reliability():
    with pytest.raises(ValueError):
        ReliabilityRecord(name="pump", mtbf=10.0, failure_rate=0.1, reliability=120.0)
