"""
Colony example: weighted task selection, a rover mission and transports
=======================================================================

WHAT THIS SHOWS:
- Loading a colony from JSON (settlement, rover, crew, catalog)
- Agents choosing activities from cached, weighted candidate sets
- A regolith mission driven stage by stage (rendezvous, travel, work, return)
- A resupply arriving through the scheduled-event manager
- Reliability decay feeding malfunction selection

RUN:
    python -m examples.colony.run --pulses 200 --seed 7
"""

import argparse
import asyncio
from pathlib import Path

from marsverse import Config, Orchestrator, SchedulerConfig, ScenarioLoader
from marsverse.logging_utils import log_info
from marsverse.reporting import format_reliability_table, format_transport_schedule, format_work_report

SCENARIO_DIR = Path(__file__).parent


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run the Schiaparelli colony example")
    parser.add_argument("--scenario", default="schiaparelli", help="Scenario name in examples/colony")
    parser.add_argument("--pulses", type=int, default=Config.DEFAULT_PULSE_COUNT)
    parser.add_argument("--seed", type=int, default=Config.RANDOM_SEED)
    parser.add_argument("--quiet", action="store_true", help="Only print the final reports")
    return parser.parse_args()


async def main() -> None:
    args = parse_args()
    print(Config.display())
    print()

    loader = ScenarioLoader(SCENARIO_DIR)
    world_state, profiles, catalog = loader.load(args.scenario)
    config = SchedulerConfig.from_env(random_seed=args.seed)

    def log_missions(tick, previous_state, new_state, choices):
        for event in new_state.recent_events:
            if event.category in ("mission", "transport"):
                log_info(f"pulse {tick}: {event.description}")

    orchestrator = Orchestrator(
        world_state,
        {profile.agent_id: profile for profile in profiles},
        catalog,
        config=config,
        tick_listeners=[log_missions],
        verbose=not args.quiet,
    )
    await orchestrator.run(args.pulses)

    print()
    for profile in profiles:
        print(format_work_report(orchestrator.engine, profile))
        print()
    print(format_transport_schedule(orchestrator.transports, now=orchestrator.current_state.sim_time))
    print()
    print(format_reliability_table(orchestrator.reliability))


if __name__ == "__main__":
    asyncio.run(main())
