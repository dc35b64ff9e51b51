"""Colony catalog: every static definition the scheduler is built from.

The catalog replaces process-wide registries. It is loaded once (normally by
``ScenarioLoader``), validated eagerly, and handed to the ``Orchestrator``.
"""

from __future__ import annotations

from typing import Dict, FrozenSet, Iterable, List, Literal, Optional, Tuple

from pydantic import BaseModel, Field, field_validator

from .config import SchedulerConfig
from .errors import ConfigurationError, UnknownResourceError
from .malfunctions import MalfunctionCatalog, Malfunctionable, MalfunctionMeta, normalize_scopes
from .reliability import ReliabilityRegistry
from .schemas import Coordinates, WorldState
from .scoring import CandidateProvider, MissionDefinition, TaskDefinition


class PartSpec(BaseModel):
    """Deployment of one component type."""

    start_sol: int = Field(0, ge=0)
    units_in_use: int = Field(1, ge=0)


class MalfunctionableSpec(BaseModel):
    name: str
    scopes: FrozenSet[str]
    parts: Tuple[str, ...] = ()

    @field_validator("scopes", mode="before")
    @classmethod
    def _validate_scopes(cls, value, info):
        if isinstance(value, str):
            value = [value]
        return normalize_scopes(value, owner=info.data.get("name"))

    def build(self) -> Malfunctionable:
        return Malfunctionable(name=self.name, scopes=self.scopes, parts=self.parts)


class TransportSpec(BaseModel):
    """A scheduled transport as written in the scenario file."""

    type: Literal["resupply", "arriving_settlement"] = "resupply"
    name: str
    landing_site: str
    arrival: float = Field(..., description="Arrival time (sols)")
    cargo: Dict[str, float] = Field(default_factory=dict)
    immigrants: int = Field(0, ge=0)
    settlement_id: Optional[str] = None
    population: int = Field(0, ge=0)
    location: Optional[Coordinates] = None


class ColonyCatalog(BaseModel):
    """Task and mission definitions, malfunctions, parts and transports."""

    resource_kinds: FrozenSet[str] = Field(default_factory=frozenset)
    tasks: Tuple[TaskDefinition, ...] = ()
    missions: Tuple[MissionDefinition, ...] = ()
    malfunctions: Tuple[MalfunctionMeta, ...] = ()
    parts: Dict[str, PartSpec] = Field(default_factory=dict)
    malfunctionables: Tuple[MalfunctionableSpec, ...] = ()
    transports: Tuple[TransportSpec, ...] = ()

    def providers(self) -> List[CandidateProvider]:
        """Every candidate provider, tasks first, in catalog order."""
        return [*self.tasks, *self.missions]

    def mission_definition(self, name: str) -> Optional[MissionDefinition]:
        for definition in self.missions:
            if definition.name == name:
                return definition
        return None

    def check_resource_kind(self, kind: str) -> None:
        if kind not in self.resource_kinds:
            raise UnknownResourceError(kind, self.resource_kinds)

    def validate_references(self, world: Optional[WorldState] = None) -> None:
        """Cross-check names and resource kinds.

        Raises:
            ConfigurationError: On duplicate provider names or dangling part names
            UnknownResourceError: On any resource kind not declared in ``resource_kinds``
        """
        seen = set()
        for provider in self.providers():
            if provider.name in seen:
                raise ConfigurationError(f"Duplicate candidate provider '{provider.name}'")
            seen.add(provider.name)

        for spec in self.malfunctionables:
            for part in spec.parts:
                if part not in self.parts:
                    raise ConfigurationError(f"'{spec.name}' lists unknown part '{part}'")
        for malfunction in self.malfunctions:
            if malfunction.component is not None and malfunction.component not in self.parts:
                raise ConfigurationError(
                    f"Malfunction '{malfunction.name}' names unknown component '{malfunction.component}'"
                )

        for transport in self.transports:
            for kind in transport.cargo:
                self.check_resource_kind(kind)

        if world is None:
            return
        for settlement in world.settlements.values():
            for kind in (*settlement.resources, *settlement.capacities):
                self.check_resource_kind(kind)
        for vehicle in world.vehicles.values():
            self.check_resource_kind(vehicle.fuel_type)

    def build_reliability(self, config: SchedulerConfig) -> ReliabilityRegistry:
        parts = {name: spec.model_dump() for name, spec in self.parts.items()}
        return ReliabilityRegistry.from_parts(config, parts)

    def build_malfunction_catalog(self, config: SchedulerConfig) -> MalfunctionCatalog:
        return MalfunctionCatalog(self.malfunctions, max_reliability=config.max_reliability)

    def build_malfunctionables(self) -> Iterable[Malfunctionable]:
        return [spec.build() for spec in self.malfunctionables]
