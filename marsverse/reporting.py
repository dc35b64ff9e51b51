"""Plain-text reports over read-only scheduler state.

These helpers only read snapshots and directory listings, so a console or
dashboard can call them between pulses without touching the pulse loop.
"""

from __future__ import annotations

from typing import List, Optional

from .reliability import ReliabilityRegistry
from .schemas import AgentProfile
from .tasks import TaskSelectionEngine
from .transport import TransportDirectory

_DESCRIPTION_WIDTH = 45


def _row(description: str, score: str, extra: str = "") -> str:
    text = description if len(description) <= _DESCRIPTION_WIDTH else description[: _DESCRIPTION_WIDTH - 1] + "…"
    line = f"{text:<{_DESCRIPTION_WIDTH}} {score:>9}"
    if extra:
        line += f" {extra:>6}"
    return line


def format_work_report(engine: TaskSelectionEngine, profile: AgentProfile) -> str:
    """What an agent could do: pending directives, then the scored candidates.

    The last selected candidate is listed first and marked ``active``; every
    cached candidate shows its score and its share of the total.
    """
    lines: List[str] = [f"Agent: {profile.name}", f"Job: {profile.job}"]

    pending = engine.get_pending_jobs(profile.agent_id)
    if pending:
        lines.append(_row("Pending Task", "P Score"))
        for job in pending:
            lines.append(_row(job.description, f"{job.score:.2f}"))
        lines.append("")

    snapshot = engine.get_latest_candidate_snapshot(profile.agent_id)
    if snapshot is None:
        lines.append("No tasks planned yet")
        return "\n".join(lines)

    lines.append(f"Context: {snapshot.context}")
    lines.append(f"Created On: sol {snapshot.created_at:.2f}")
    lines.append(_row("Potential Task", "P Score", "P %"))
    if snapshot.last_selected is not None:
        lines.append(_row(snapshot.last_selected.description, f"{snapshot.last_selected.score:.2f}", "active"))
    for job in snapshot.jobs:
        lines.append(_row(job.description, f"{job.score:.2f}", f"{100.0 * snapshot.share_of(job):.1f}"))
    if snapshot.is_idle:
        lines.append("(idle: no feasible candidates)")
    return "\n".join(lines)


def format_transport_schedule(directory: TransportDirectory, now: Optional[float] = None) -> str:
    """Transports ordered by arrival, with their transit state."""
    if not len(directory):
        return "No transports scheduled"

    lines = [f"{'Transport':<30} {'Type':<20} {'State':<11} {'Launch':>8} {'Arrival':>8}"]
    for item in directory:
        launch = "-" if item.launch_date is None else f"{item.launch_date:.1f}"
        arrival = "-" if item.arrival_date is None else f"{item.arrival_date:.1f}"
        line = f"{item.name:<30} {item.kind:<20} {item.state.value:<11} {launch:>8} {arrival:>8}"
        if now is not None and item.arrival_date is not None and not item.state.is_terminal:
            line += f"  (in {max(0.0, item.arrival_date - now):.1f} sols)"
        lines.append(line)
    return "\n".join(lines)


def format_reliability_table(registry: ReliabilityRegistry) -> str:
    """One row per component type: failures, MTBF, failure rate and reliability."""
    if not len(registry):
        return "No components tracked"

    lines = [f"{'Part':<24} {'Units':>5} {'Fails':>5} {'MTBF':>8} {'Rate':>8} {'Rel %':>7}"]
    table = registry.snapshot()
    for name in sorted(table):
        record = table[name]
        lines.append(
            f"{name:<24} {record.units_in_use:>5} {record.cumulative_failures:>5} "
            f"{record.mtbf:>8.1f} {record.failure_rate:>8.4f} {record.reliability:>7.2f}"
        )
    return "\n".join(lines)
