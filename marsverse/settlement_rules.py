"""
SettlementRules interface for the economic and social scalars consumed by scoring.

The scheduler never models the settlement economy or social network itself.
It asks a ``SettlementRules`` object for a handful of scalar modifiers, each a
pure function of the current settlement snapshot, and for a hook to apply
passive per-pulse changes (resource consumption and the like).

Resource storage is likewise external: missions only *query* amounts and
capacities through the ``ResourceStore`` protocol when checking manifests.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Optional, Protocol, runtime_checkable

from .schemas import AgentProfile, AgentStatus, SettlementState, WorldState


def format_settlement_resources(settlement: SettlementState) -> str:
    """Format a settlement's stored resources as a one-line summary.

    Floats >= 10 show one decimal place, smaller ones two. Capacities are shown
    after a slash when known. Returns an empty string when nothing is stored.

    Example output:
    "Methane=120.0/500.0, Oxygen=85.3, Water=4.25"
    """
    if not settlement.resources:
        return ""

    parts: list[str] = []
    for kind in sorted(settlement.resources):
        amount = settlement.resources[kind]
        label = kind.replace("_", " ").title()
        formatted = f"{amount:.1f}" if abs(amount) >= 10 else f"{amount:.2f}"
        capacity = settlement.capacities.get(kind)
        if capacity is not None:
            formatted = f"{formatted}/{capacity:.1f}"
        parts.append(f"{label}={formatted}")
    return ", ".join(parts)


@runtime_checkable
class ResourceStore(Protocol):
    """Query-only view of a settlement's storage."""

    def amount_available(self, kind: str) -> float: ...

    def capacity(self, kind: str) -> float: ...


class SettlementResourceStore:
    """``ResourceStore`` adapter over a :class:`SettlementState` snapshot."""

    def __init__(self, settlement: SettlementState):
        self.settlement = settlement

    def amount_available(self, kind: str) -> float:
        return float(self.settlement.resources.get(kind, 0.0))

    def capacity(self, kind: str) -> float:
        return float(self.settlement.capacities.get(kind, 0.0))


class SettlementRules(ABC):
    """Abstract source of settlement-level scoring modifiers.

    Every query must be a pure function of its arguments: scoring runs many
    times per pulse and may not mutate settlement or agent state. Subclasses
    are dependency-injected into the Orchestrator, so a test can swap in
    fixed modifiers without building a full economy.
    """

    @abstractmethod
    def tourism_factor(self, settlement: SettlementState) -> float:
        """Demand multiplier for tourism-driven activities (1.0 = neutral)."""

    @abstractmethod
    def research_factor(self, settlement: SettlementState) -> float:
        """Demand multiplier for research-driven activities (1.0 = neutral)."""

    @abstractmethod
    def population_capacity_factor(self, settlement: SettlementState) -> float:
        """Population-based capacity multiplier for activities there (1.0 = neutral)."""

    def relationship_modifier(
        self,
        profile: AgentProfile,
        status: AgentStatus,
        settlement: Optional[SettlementState],
    ) -> float:
        """Single social scalar for an agent in a settlement (1.0 = neutral)."""
        return 1.0

    def apply_pulse(self, state: WorldState, tick: int) -> WorldState:
        """Hook for passive per-pulse settlement changes. Default: no change."""
        return state

    def format_resource_summary(self, settlement: SettlementState) -> str:
        return format_settlement_resources(settlement)


class MetricSettlementRules(SettlementRules):
    """Reads modifiers straight from settlement metrics.

    Recognised metrics: ``tourism_factor``, ``research_factor`` and
    ``population_capacity_factor`` (default 1.0). The relationship scalar
    comes from the agent's ``relationship`` attribute on a 0-100 scale,
    mapped so that 50 is neutral.
    """

    def tourism_factor(self, settlement: SettlementState) -> float:
        return max(0.0, settlement.metric_value("tourism_factor", 1.0))

    def research_factor(self, settlement: SettlementState) -> float:
        return max(0.0, settlement.metric_value("research_factor", 1.0))

    def population_capacity_factor(self, settlement: SettlementState) -> float:
        return max(0.0, settlement.metric_value("population_capacity_factor", 1.0))

    def relationship_modifier(self, profile, status, settlement) -> float:
        opinion = status.attribute_value("relationship", 50.0)
        return max(0.0, opinion / 50.0)
