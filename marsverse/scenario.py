"""
Scenario loading for JSON-defined colonies.

``ScenarioLoader`` turns a scenario file into the three things an
``Orchestrator`` needs: the initial ``WorldState``, the agent profiles and
the ``ColonyCatalog`` of task/mission definitions, malfunctions, parts and
scheduled transports.

Scenario file structure:
```json
{
  "name": "Schiaparelli Outpost",
  "description": "...",
  "start_time": 0.0,
  "resource_kinds": ["methane", "oxygen", "water", "food"],
  "settlements": [{"settlement_id": "base", "name": "Base", "metrics": {...}, ...}],
  "vehicles": [{"vehicle_id": "rover-1", "home_settlement_id": "base", ...}],
  "agents": [
    {
      "profile": {"agent_id": "ana", "name": "Ana", "job": "areologist", ...},
      "status": {"settlement_id": "base", "attributes": {"fatigue": 10}}
    }
  ],
  "tasks": [...], "missions": [...],
  "parts": {"pump": {"start_sol": 0, "units_in_use": 12}},
  "malfunctions": [...], "malfunctionables": [...],
  "transports": [...],
  "initial_events": [...]
}
```

Validation happens here, at load time: missing fields raise ``ValueError``,
malformed scopes raise ``InvalidScopeError`` and undeclared resource kinds
raise ``UnknownResourceError``. Nothing invalid reaches the pulse loop.

Usage:
    loader = ScenarioLoader()
    world_state, profiles, catalog = loader.load("schiaparelli")
"""

import json
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from .catalog import ColonyCatalog
from .config import Config
from .schemas import (
    AgentProfile,
    AgentStatus,
    SettlementState,
    Stat,
    VehicleState,
    WorldEvent,
    WorldState,
)


class ScenarioLoader:
    """Load and validate colony scenarios from JSON files.

    Scenario files live in ``Config.SCENARIOS_DIR`` unless another directory
    is given, and are named ``{scenario_name}.json``.

    Stat auto-conversion:
    - Simple values (0.8) → Stat(value=0.8)
    - Full Stat objects ({"value": 0.8, "label": "Tourism"}) → Stat model
    """

    REQUIRED_FIELDS = ("name", "description", "agents", "settlements", "tasks")

    def __init__(self, scenarios_dir: Optional[Path] = None):
        self.scenarios_dir = Path(scenarios_dir) if scenarios_dir is not None else Config.SCENARIOS_DIR

    def load(self, scenario_name: str) -> Tuple[WorldState, List[AgentProfile], ColonyCatalog]:
        """Load a scenario by name.

        Returns:
            Tuple of (initial WorldState, agent profiles, colony catalog)

        Raises:
            FileNotFoundError: If the scenario file doesn't exist
            ValueError: If required fields are missing or malformed
            ConfigurationError: If scopes or resource kinds are invalid
        """
        scenario_path = self.scenarios_dir / f"{scenario_name}.json"
        if not scenario_path.exists():
            raise FileNotFoundError(f"Scenario '{scenario_name}' not found at {scenario_path}")

        data = json.loads(scenario_path.read_text())
        return self.load_data(data)

    def load_data(self, data: Dict[str, Any]) -> Tuple[WorldState, List[AgentProfile], ColonyCatalog]:
        """Build a scenario from already-parsed JSON data."""
        self._validate_scenario(data)

        profiles: List[AgentProfile] = []
        statuses: Dict[str, AgentStatus] = {}
        for agent_entry in data["agents"]:
            profile = AgentProfile(**agent_entry["profile"])
            if profile.agent_id in statuses:
                raise ValueError(f"Duplicate agent id '{profile.agent_id}'")
            profiles.append(profile)
            statuses[profile.agent_id] = self._parse_agent_status(agent_entry["status"], profile.agent_id)

        world_state = self._build_world_state(data, statuses)
        catalog = self._build_catalog(data)
        catalog.validate_references(world_state)
        return world_state, profiles, catalog

    def _validate_scenario(self, data: Dict) -> None:
        missing = [field for field in self.REQUIRED_FIELDS if field not in data]
        if missing:
            raise ValueError(f"Scenario missing required fields: {missing}")

        if not data["agents"]:
            raise ValueError("Scenario must have at least one agent")
        if not data["settlements"]:
            raise ValueError("Scenario must have at least one settlement")

        for agent in data["agents"]:
            if "profile" not in agent or "status" not in agent:
                raise ValueError("Each agent entry must include 'profile' and 'status' blocks")

    def _build_world_state(self, data: Dict, statuses: Dict[str, AgentStatus]) -> WorldState:
        settlements: Dict[str, SettlementState] = {}
        for raw in data["settlements"]:
            settlement = self._parse_settlement(raw)
            settlements[settlement.settlement_id] = settlement

        vehicles: Dict[str, VehicleState] = {}
        for raw in data.get("vehicles", []):
            vehicle = VehicleState(**raw)
            if vehicle.home_settlement_id not in settlements:
                raise ValueError(f"Vehicle '{vehicle.vehicle_id}' has unknown home '{vehicle.home_settlement_id}'")
            if vehicle.container_settlement_id is None and "position" not in raw:
                # Parked at home unless the scenario places it elsewhere
                home = settlements[vehicle.home_settlement_id]
                vehicle = vehicle.model_copy(
                    update={"container_settlement_id": home.settlement_id, "position": home.location}
                )
            vehicles[vehicle.vehicle_id] = vehicle

        for status in statuses.values():
            if status.settlement_id is not None and status.settlement_id not in settlements:
                raise ValueError(f"Agent '{status.agent_id}' is in unknown settlement '{status.settlement_id}'")

        initial_events = [self._parse_event(event) for event in data.get("initial_events", [])]
        start_time = float(data.get("start_time", 0.0))

        return WorldState(
            tick=0,
            sim_time=start_time,
            settlements=settlements,
            agents=statuses,
            vehicles=vehicles,
            recent_events=initial_events,
            metadata=data.get("metadata", {}),
        )

    def _build_catalog(self, data: Dict) -> ColonyCatalog:
        return ColonyCatalog(
            resource_kinds=frozenset(data.get("resource_kinds", [])),
            tasks=tuple(data.get("tasks", [])),
            missions=tuple(data.get("missions", [])),
            malfunctions=tuple(data.get("malfunctions", [])),
            parts=data.get("parts", {}),
            malfunctionables=tuple(data.get("malfunctionables", [])),
            transports=tuple(data.get("transports", [])),
        )

    def _parse_metrics(self, raw: Dict[str, Any]) -> Dict[str, Stat]:
        """Convert raw metric dict into Stat objects.

        - Simple: {"tourism_factor": 1.2} → {"tourism_factor": Stat(value=1.2)}
        - Detailed: {"tourism_factor": {"value": 1.2, "label": "Tourism"}} → Stat(value=1.2, label="Tourism")
        """
        metrics: Dict[str, Stat] = {}
        for key, value in raw.items():
            if isinstance(value, dict) and "value" in value:
                metrics[key] = Stat(**value)
            else:
                metrics[key] = Stat(value=value)
        return metrics

    def _parse_settlement(self, data: Dict[str, Any]) -> SettlementState:
        fields = dict(data)
        fields["metrics"] = self._parse_metrics(data.get("metrics", {}))
        return SettlementState(**fields)

    def _parse_agent_status(self, data: Dict[str, Any], fallback_agent_id: str) -> AgentStatus:
        # Per-agent condition metrics (fatigue, stress, ...) become Stat objects
        attributes = self._parse_metrics(data.get("attributes", {}))
        fields = {key: value for key, value in data.items() if key != "attributes"}
        fields.setdefault("agent_id", fallback_agent_id)
        return AgentStatus(attributes=attributes, **fields)

    def _parse_event(self, data: Dict[str, Any]) -> WorldEvent:
        metrics = self._parse_metrics(data.get("metrics", {}))
        return WorldEvent(
            event_id=data["event_id"],
            tick=data.get("tick", 0),
            sim_time=data.get("sim_time", 0.0),
            category=data.get("category", "event"),
            description=data["description"],
            severity=data.get("severity"),
            affected_agents=data.get("affected_agents", []),
            metrics=metrics,
            metadata=data.get("metadata", {}),
        )

    def list_scenarios(self) -> List[str]:
        """Names of the available scenario files (without .json)."""
        if not self.scenarios_dir.exists():
            return []

        return sorted(f.stem for f in self.scenarios_dir.glob("*.json") if not f.name.startswith("_"))

    def get_scenario_info(self, scenario_name: str) -> Dict[str, Any]:
        """Scenario metadata without building the full world."""
        scenario_path = self.scenarios_dir / f"{scenario_name}.json"
        data = json.loads(scenario_path.read_text())

        return {
            "name": data.get("name", scenario_name),
            "description": data.get("description", "No description"),
            "num_agents": len(data.get("agents", [])),
            "num_settlements": len(data.get("settlements", [])),
            "recommended_pulses": data.get("recommended_pulses", Config.DEFAULT_PULSE_COUNT),
        }


def load_scenario(
    scenario_name: str, scenarios_dir: Optional[Path] = None
) -> Tuple[WorldState, List[AgentProfile], ColonyCatalog]:
    """Convenience function to load a scenario."""
    return ScenarioLoader(scenarios_dir).load(scenario_name)
