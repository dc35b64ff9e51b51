"""Per-agent activity selection.

Precedence each pulse:

1. The front of the agent's pending queue, unconditionally. Pending jobs are
   directives injected from outside the scorer (e.g. "drive the rover").
2. A weighted draw over the cached candidate snapshot, using scores as weights.
3. Nothing: the agent is idle this pulse.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Iterable, Optional, Sequence, Tuple

from .cache import ScoreCache
from .config import SchedulerConfig
from .logging_utils import log_debug
from .randomness import RandomSource
from .schemas import CandidateJob, CandidateSnapshot, JobKind
from .scoring import CandidateProvider, ScoringContext
from .selection import select_weighted, weigh


@dataclass
class AgentTaskState:
    """Everything the engine keeps for one agent. Never shared between agents."""

    agent_id: str
    cache: ScoreCache
    pending: Tuple[CandidateJob, ...] = ()
    current: Optional[CandidateJob] = None


class TaskSelectionEngine:
    """Chooses one activity per agent per pulse."""

    def __init__(self, providers: Sequence[CandidateProvider], config: SchedulerConfig, rng: RandomSource):
        self.providers = tuple(providers)
        self.config = config
        self.rng = rng
        self._agents: Dict[str, AgentTaskState] = {}

    def state_for(self, agent_id: str) -> AgentTaskState:
        state = self._agents.get(agent_id)
        if state is None:
            state = AgentTaskState(agent_id=agent_id, cache=ScoreCache(self.providers, self.config, owner=agent_id))
            self._agents[agent_id] = state
        return state

    def agent_ids(self) -> Iterable[str]:
        return sorted(self._agents)

    # Pending directives ------------------------------------------------------

    def add_pending(self, agent_id: str, job: CandidateJob) -> None:
        """Append a directive to the agent's FIFO queue."""
        if job.kind is not JobKind.PENDING:
            job = job.model_copy(update={"kind": JobKind.PENDING})
        state = self.state_for(agent_id)
        state.pending = state.pending + (job,)

    def get_pending_jobs(self, agent_id: str) -> Tuple[CandidateJob, ...]:
        state = self._agents.get(agent_id)
        return () if state is None else state.pending

    def clear_pending(self, agent_id: str) -> None:
        state = self._agents.get(agent_id)
        if state is not None:
            state.pending = ()

    def drop_pending(self, agent_id: str, provider: str) -> int:
        """Remove queued directives issued by ``provider``; returns how many."""
        state = self._agents.get(agent_id)
        if state is None:
            return 0
        kept = tuple(job for job in state.pending if job.provider != provider)
        dropped = len(state.pending) - len(kept)
        state.pending = kept
        return dropped

    # Selection ---------------------------------------------------------------

    def choose_next(self, ctx: ScoringContext, now: Optional[float] = None) -> Optional[CandidateJob]:
        """Return the agent's activity for this pulse, or ``None`` when idle."""
        agent_id = ctx.profile.agent_id
        now = ctx.now if now is None else now
        state = self.state_for(agent_id)

        if state.pending:
            job, state.pending = state.pending[0], state.pending[1:]
            state.current = job
            log_debug("DEBUG_SCORING", f"{agent_id} takes pending directive '{job.description}'")
            return job

        snapshot = state.cache.get_or_rebuild(ctx, now)
        if snapshot.is_idle:
            state.current = None
            return None

        outcome = select_weighted(
            weigh(snapshot.jobs, lambda job: job.score),
            self.rng,
            gate=self.config.task_probability_gate,
            shuffle=self.config.shuffle_candidates,
        )
        if outcome.chosen is None:
            state.current = None
            return None

        state.cache.record_selection(outcome.chosen)
        state.current = outcome.chosen
        return outcome.chosen

    def complete_activity(self, agent_id: str, reason: str = "activity completed") -> None:
        """Mark the current activity done and force a rescore next pulse."""
        state = self.state_for(agent_id)
        state.current = None
        state.cache.invalidate(reason)

    def current_activity(self, agent_id: str) -> Optional[CandidateJob]:
        state = self._agents.get(agent_id)
        return None if state is None else state.current

    def get_latest_candidate_snapshot(self, agent_id: str) -> Optional[CandidateSnapshot]:
        state = self._agents.get(agent_id)
        return None if state is None else state.cache.latest
