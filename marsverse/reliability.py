"""Time-decaying component reliability.

Each component type (a part such as a pump or a rover drivetrain) carries a
``ReliabilityRecord``. Reliability follows an exponential curve in the number
of sols the type has been in service; the mean time between failures (MTBF)
starts at the nominal design ceiling and is pulled down as field failures are
reported.

Typical order of a maintenance pass:
1. apply queued failure counts
2. recompute MTBF and failure rate
3. recompute reliability

Records are immutable. The registry swaps in a new mapping once per sol, so
readers in the pulse loop (malfunction weighting) and presentation threads see
a consistent table without locks.
"""

from __future__ import annotations

import math
from typing import Callable, Dict, Iterable, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field

from .config import SchedulerConfig
from .errors import ConfigurationError
from .logging_utils import log_debug

UnitsInUse = Callable[[str], int]


class ReliabilityRecord(BaseModel):
    """Reliability bookkeeping for one component type."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(..., description="Component type name")
    start_sol: int = Field(0, ge=0, description="Sol the component type entered service")
    units_in_use: int = Field(1, ge=0, description="Units of this type deployed colony-wide")
    cumulative_failures: int = Field(0, ge=0)
    mtbf: float = Field(..., gt=0, description="Mean time between failures (sols)")
    failure_rate: float = Field(..., ge=0, description="Failures per sol (1 / MTBF)")
    reliability: float = Field(..., ge=0, le=100, description="Percent reliability")
    computed_on_sol: Optional[int] = Field(None, description="Sol of the last maintenance pass")


class ReliabilityModel:
    """Pure reliability arithmetic driven by a :class:`SchedulerConfig`."""

    def __init__(self, config: SchedulerConfig):
        self.config = config

    def new_record(self, name: str, *, start_sol: int = 0, units_in_use: int = 1) -> ReliabilityRecord:
        """Create the cold-start record for a component type."""
        mtbf = self.config.initial_mtbf_fraction * self.config.max_mtbf
        return ReliabilityRecord(
            name=name,
            start_sol=start_sol,
            units_in_use=units_in_use,
            mtbf=mtbf,
            failure_rate=1.0 / mtbf,
            reliability=self.config.max_reliability,
        )

    def compute_reliability(self, record: ReliabilityRecord, current_sol: int) -> float:
        """Percent reliability after ``current_sol - start_sol`` sols in service.

        Non-increasing in elapsed sols for a fixed MTBF and never above the
        configured maximum.
        """
        elapsed = max(0, current_sol - record.start_sol)
        if record.mtbf <= 0:
            return 0.0
        return min(self.config.max_reliability, math.exp(-elapsed / record.mtbf) * 100.0)

    def compute_mtbf(self, record: ReliabilityRecord, current_sol: int, units_in_use: Optional[int] = None) -> float:
        """MTBF blending observed field performance with the design ceiling.

        No recorded failures means the component is assumed to perform at
        the ceiling. Elapsed sols are clamped to at least 1 so a failure on
        the first day of service cannot divide by zero.
        """
        cfg = self.config
        if record.cumulative_failures == 0:
            return cfg.max_mtbf

        elapsed = max(1, current_sol - record.start_sol)
        units = record.units_in_use if units_in_use is None else units_in_use
        field_mtbf = units * elapsed / record.cumulative_failures
        blended = cfg.mtbf_field_weight * field_mtbf + cfg.mtbf_nominal_weight * cfg.max_mtbf
        return min(cfg.max_mtbf, max(cfg.min_mtbf, blended))

    @staticmethod
    def compute_failure_rate(mtbf: float) -> float:
        """Failures per sol."""
        return 1.0 / mtbf

    @staticmethod
    def record_failure(record: ReliabilityRecord, count: int = 1) -> ReliabilityRecord:
        """Return ``record`` with ``count`` more failures (MTBF untouched until the next pass)."""
        if count < 0:
            raise ValueError("Failure count cannot be negative")
        return record.model_copy(update={"cumulative_failures": record.cumulative_failures + count})

    def refresh(self, record: ReliabilityRecord, current_sol: int, units_in_use: Optional[int] = None) -> ReliabilityRecord:
        """Recompute MTBF, failure rate and reliability for ``current_sol``."""
        units = record.units_in_use if units_in_use is None else units_in_use
        mtbf = self.compute_mtbf(record, current_sol, units)
        updated = record.model_copy(
            update={
                "units_in_use": units,
                "mtbf": mtbf,
                "failure_rate": self.compute_failure_rate(mtbf),
                "computed_on_sol": current_sol,
            }
        )
        return updated.model_copy(update={"reliability": self.compute_reliability(updated, current_sol)})


class ReliabilityRegistry:
    """Colony-wide table of reliability records, one per component type.

    Pulse-time code only reads from the registry and queues failure reports.
    ``run_daily_maintenance`` is the single writer.
    """

    def __init__(self, model: ReliabilityModel, records: Iterable[ReliabilityRecord] = ()):
        self.model = model
        self._records: Mapping[str, ReliabilityRecord] = {}
        self._pending_failures: Dict[str, int] = {}
        self.last_maintenance_sol: Optional[int] = None
        table: Dict[str, ReliabilityRecord] = {}
        for record in records:
            if record.name in table:
                raise ConfigurationError(f"Duplicate reliability record for '{record.name}'")
            table[record.name] = record
        self._records = table

    @classmethod
    def from_parts(cls, config: SchedulerConfig, parts: Mapping[str, Mapping[str, int]]) -> "ReliabilityRegistry":
        """Build a registry from ``{part: {"start_sol": .., "units_in_use": ..}}``."""
        model = ReliabilityModel(config)
        records = [
            model.new_record(
                name,
                start_sol=int(spec.get("start_sol", 0)),
                units_in_use=int(spec.get("units_in_use", 1)),
            )
            for name, spec in parts.items()
        ]
        return cls(model, records)

    # Reads -------------------------------------------------------------------

    def __contains__(self, name: object) -> bool:
        return name in self._records

    def __len__(self) -> int:
        return len(self._records)

    def names(self) -> list[str]:
        return sorted(self._records)

    def get(self, name: str) -> ReliabilityRecord:
        try:
            return self._records[name]
        except KeyError:
            raise KeyError(f"No reliability record for component '{name}'") from None

    def reliability_of(self, name: str) -> float:
        """Current percent reliability, or the configured maximum for untracked parts."""
        record = self._records.get(name)
        if record is None:
            return self.model.config.max_reliability
        return record.reliability

    def failure_rate_of(self, name: str) -> float:
        record = self._records.get(name)
        return 0.0 if record is None else record.failure_rate

    def snapshot(self) -> Mapping[str, ReliabilityRecord]:
        """The current table; never mutated after it is published."""
        return self._records

    # Writes ------------------------------------------------------------------

    def report_failure(self, name: str, count: int = 1) -> None:
        """Queue failures for the next maintenance pass."""
        if name not in self._records:
            raise KeyError(f"No reliability record for component '{name}'")
        if count <= 0:
            return
        self._pending_failures[name] = self._pending_failures.get(name, 0) + count

    def pending_failures(self) -> Dict[str, int]:
        return dict(self._pending_failures)

    def run_daily_maintenance(self, current_sol: int, units_in_use: Optional[UnitsInUse] = None) -> bool:
        """Apply queued failures and recompute every record for ``current_sol``.

        Returns False (and changes nothing) when the pass already ran for this sol.
        """
        if self.last_maintenance_sol is not None and current_sol <= self.last_maintenance_sol:
            return False

        pending, self._pending_failures = self._pending_failures, {}
        table: Dict[str, ReliabilityRecord] = {}
        for name, record in self._records.items():
            count = pending.get(name, 0)
            if count:
                record = self.model.record_failure(record, count)
            units = units_in_use(name) if units_in_use is not None else None
            table[name] = self.model.refresh(record, current_sol, units)
            log_debug(
                "DEBUG_RELIABILITY",
                f"sol {current_sol} {name}: failures={table[name].cumulative_failures} "
                f"mtbf={table[name].mtbf:.1f} reliability={table[name].reliability:.2f}%",
            )

        self._records = table
        self.last_maintenance_sol = current_sol
        return True
