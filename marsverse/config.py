"""
Marsverse Configuration

Loads environment-level settings with sensible defaults and defines the
``SchedulerConfig`` object that carries every game-balance constant into the
scheduler. Nothing here is a process-wide registry: callers build a
``SchedulerConfig`` (directly or via ``SchedulerConfig.from_env()``) and inject
it into the orchestrator.
"""

import os
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from .errors import ConfigurationError

# Load .env file if it exists
load_dotenv()


def _optional_int(value: Optional[str]) -> Optional[int]:
    if value is None or value == "":
        return None
    return int(value)


class Config:
    """Application configuration loaded from environment variables."""

    # Simulation Configuration
    RANDOM_SEED: Optional[int] = _optional_int(os.getenv("MARSVERSE_SEED"))
    DEFAULT_PULSE_COUNT: int = int(os.getenv("DEFAULT_PULSE_COUNT", "100"))
    # One pulse and one cache bucket, both in sols
    PULSE_LENGTH_SOLS: float = float(os.getenv("PULSE_LENGTH_SOLS", "0.01"))
    CACHE_BUCKET_SOLS: float = float(os.getenv("CACHE_BUCKET_SOLS", "0.05"))

    # Logging
    LOG_LEVEL: str = os.getenv("MARSVERSE_LOG_LEVEL", "INFO")

    # Project Paths
    PROJECT_ROOT: Path = Path(__file__).parent.parent
    SCENARIOS_DIR: Path = Path(os.getenv("MARSVERSE_SCENARIOS_DIR", str(PROJECT_ROOT / "examples" / "colony")))

    @classmethod
    def validate(cls) -> None:
        """Validate configuration and raise errors if values make no sense."""
        if cls.PULSE_LENGTH_SOLS <= 0:
            raise ValueError("PULSE_LENGTH_SOLS must be positive")

        if cls.CACHE_BUCKET_SOLS <= 0:
            raise ValueError("CACHE_BUCKET_SOLS must be positive")

        if cls.DEFAULT_PULSE_COUNT < 0:
            raise ValueError("DEFAULT_PULSE_COUNT cannot be negative")

    @classmethod
    def display(cls) -> str:
        """Return a formatted string showing current configuration."""
        lines = [
            "Marsverse Configuration:",
            f"  Seed: {cls.RANDOM_SEED if cls.RANDOM_SEED is not None else 'random'}",
            f"  Default Pulses: {cls.DEFAULT_PULSE_COUNT}",
            f"  Pulse Length: {cls.PULSE_LENGTH_SOLS} sol",
            f"  Cache Bucket: {cls.CACHE_BUCKET_SOLS} sol",
            f"  Scenarios: {cls.SCENARIOS_DIR}",
        ]
        return "\n".join(lines)


class SchedulerConfig(BaseModel):
    """Tunable constants for scoring, caching, reliability and missions.

    The MTBF blend and the extrovert mapping are empirically chosen balance
    constants; they are kept configurable rather than derived.
    """

    model_config = ConfigDict(frozen=True)

    # Time --------------------------------------------------------------------
    pulse_length: float = Field(0.01, gt=0, description="Sols advanced by one pulse")
    bucket_length: float = Field(0.05, gt=0, description="Width of one score-cache time bucket (sols)")

    # Scoring -----------------------------------------------------------------
    score_ceiling: float = Field(10_000.0, gt=0, description="Upper clamp applied to every score")
    extrovert_range: float = Field(
        2.0, ge=0, description="Extrovert offset at trait extremes; factor = 1 + offset / 2"
    )
    task_probability_gate: bool = Field(
        False, description="Apply the per-candidate percentage gate during task selection"
    )
    shuffle_candidates: bool = Field(True, description="Shuffle before the weighted walk")

    # Reliability -------------------------------------------------------------
    max_mtbf: float = Field(669.0, gt=0, description="Nominal design ceiling for MTBF (sols)")
    min_mtbf: float = Field(0.001, gt=0, description="Lower clamp for MTBF (sols)")
    initial_mtbf_fraction: float = Field(0.3, gt=0, le=1, description="MTBF before any maintenance pass")
    max_reliability: float = Field(99.99, gt=0, le=100, description="Upper bound for reliability %")
    mtbf_field_weight: float = Field(0.25, ge=0, le=1, description="Weight of observed field MTBF")

    # Transport ---------------------------------------------------------------
    average_transit_time: float = Field(250.0, gt=0, description="Launch-to-arrival duration (sols)")

    # Missions ----------------------------------------------------------------
    arrival_tolerance: float = Field(0.1, gt=0, description="Distance (km) counted as arrived")
    oxidizer_fuel_ratio: float = Field(4.0, ge=0, description="Oxidizer mass per unit of fuel")
    fuel_margin: float = Field(1.5, ge=1, description="Optional fuel multiplier on top of the base need")
    oxygen_per_person_sol: float = Field(0.5, ge=0)
    water_per_person_sol: float = Field(0.5, ge=0)
    food_per_person_sol: float = Field(0.5, ge=0)
    max_blocked_pulses: int = Field(50, ge=1, description="Default blocked-pulse budget for a mission")

    random_seed: Optional[int] = Field(None, description="Seed for the injected RandomSource")

    @model_validator(mode="after")
    def _check_mtbf_bounds(self) -> "SchedulerConfig":
        if self.min_mtbf > self.max_mtbf:
            raise ValueError("min_mtbf must not exceed max_mtbf")
        return self

    @property
    def mtbf_nominal_weight(self) -> float:
        """Weight of the design ceiling in the MTBF blend."""
        return 1.0 - self.mtbf_field_weight

    @classmethod
    def build(cls, **overrides) -> "SchedulerConfig":
        """Construct a config, converting validation failures to ConfigurationError."""
        try:
            return cls(**overrides)
        except ValidationError as exc:
            raise ConfigurationError(f"Invalid scheduler configuration: {exc}") from exc

    @classmethod
    def from_env(cls, **overrides) -> "SchedulerConfig":
        """Build a config seeded from :class:`Config` environment values."""
        Config.validate()
        values = {
            "pulse_length": Config.PULSE_LENGTH_SOLS,
            "bucket_length": Config.CACHE_BUCKET_SOLS,
            "random_seed": Config.RANDOM_SEED,
        }
        values.update(overrides)
        return cls.build(**values)
