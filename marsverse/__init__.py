"""
Marsverse - colony task selection and staged-process scheduling.

Agents pick one activity per pulse from weighted, cached candidate sets;
missions and transports advance through ordered stages; components fail
according to time-decaying reliability.

All dependencies are injected by the caller. No global registries.
"""

__version__ = "0.1.0"

# Main simulation components
from .orchestrator import Orchestrator
from .tasks import TaskSelectionEngine, AgentTaskState
from .cache import ScoreCache, CacheState

# Core interfaces
from .settlement_rules import (
    SettlementRules,
    MetricSettlementRules,
    ResourceStore,
    SettlementResourceStore,
    format_settlement_resources,
)
from .scoring import (
    CandidateProvider,
    ScoringContext,
    ScoreChain,
    TaskDefinition,
    MissionDefinition,
)
from .selection import WeightedCandidate, SelectionOutcome, select_weighted, pick_weighted
from .randomness import RandomSource

# Reliability and malfunctions
from .reliability import ReliabilityRecord, ReliabilityModel, ReliabilityRegistry
from .malfunctions import (
    MalfunctionMeta,
    RepairPart,
    MalfunctionCatalog,
    MalfunctionMonitor,
    Malfunctionable,
)

# Staged processes
from .events import ScheduledEventManager, DONE, Reschedule
from .transport import TransitState, TransportItem, Resupply, ArrivingSettlement, TransportDirectory
from .missions import (
    Mission,
    MissionManifest,
    MissionStatus,
    MissionDirectory,
    TravelStep,
    RendezvousStep,
    WorkStep,
    OperatorAssigner,
)

# Core schemas
from .schemas import (
    WorldState,
    SettlementState,
    VehicleState,
    AgentStatus,
    AgentProfile,
    WorldEvent,
    CandidateJob,
    CandidateSnapshot,
    JobKind,
    LocationContext,
    Coordinates,
    Stat,
)

# Configuration and errors
from .config import Config, SchedulerConfig
from .errors import (
    MarsverseError,
    ConfigurationError,
    InvalidScopeError,
    UnknownResourceError,
    InvalidTransitionError,
    PulseListenerError,
)

# Scenario loader helpers
from .catalog import ColonyCatalog
from .scenario import load_scenario, ScenarioLoader

__all__ = [
    # Main classes
    "Orchestrator",
    "TaskSelectionEngine",
    "AgentTaskState",
    "ScoreCache",
    "CacheState",
    # Core interfaces
    "SettlementRules",
    "MetricSettlementRules",
    "ResourceStore",
    "SettlementResourceStore",
    "CandidateProvider",
    "ScoringContext",
    "ScoreChain",
    "TaskDefinition",
    "MissionDefinition",
    "WeightedCandidate",
    "SelectionOutcome",
    "select_weighted",
    "pick_weighted",
    "RandomSource",
    # Reliability and malfunctions
    "ReliabilityRecord",
    "ReliabilityModel",
    "ReliabilityRegistry",
    "MalfunctionMeta",
    "RepairPart",
    "MalfunctionCatalog",
    "MalfunctionMonitor",
    "Malfunctionable",
    # Staged processes
    "ScheduledEventManager",
    "DONE",
    "Reschedule",
    "TransitState",
    "TransportItem",
    "Resupply",
    "ArrivingSettlement",
    "TransportDirectory",
    "Mission",
    "MissionManifest",
    "MissionStatus",
    "MissionDirectory",
    "TravelStep",
    "RendezvousStep",
    "WorkStep",
    "OperatorAssigner",
    # Schemas
    "WorldState",
    "SettlementState",
    "VehicleState",
    "AgentStatus",
    "AgentProfile",
    "WorldEvent",
    "CandidateJob",
    "CandidateSnapshot",
    "JobKind",
    "LocationContext",
    "Coordinates",
    "Stat",
    # Configuration and errors
    "Config",
    "SchedulerConfig",
    "MarsverseError",
    "ConfigurationError",
    "InvalidScopeError",
    "UnknownResourceError",
    "InvalidTransitionError",
    "PulseListenerError",
    # Scenario helpers
    "ColonyCatalog",
    "load_scenario",
    "ScenarioLoader",
    # Utilities
    "format_settlement_resources",
]
