"""Per-agent, time-bucketed cache of scored candidates.

State machine::

    EMPTY --get_or_rebuild--> VALID(bucket)
    VALID(b) --bucket change / invalidate()--> EMPTY

A rebuild produces a new frozen ``CandidateSnapshot`` and swaps it in whole,
so a reader holding the previous snapshot never sees a half-built list.
"""

from __future__ import annotations

import math
from enum import Enum
from typing import List, Optional, Sequence

from .config import SchedulerConfig
from .logging_utils import log_debug, log_error
from .schemas import CandidateJob, CandidateSnapshot
from .scoring import CandidateProvider, ScoringContext, applies_to


class CacheState(str, Enum):
    EMPTY = "empty"
    VALID = "valid"


def time_bucket(now: float, bucket_length: float) -> int:
    return int(math.floor(now / bucket_length))


class ScoreCache:
    """Latest candidate snapshot for one agent."""

    def __init__(self, providers: Sequence[CandidateProvider], config: SchedulerConfig, *, owner: str = ""):
        self.providers = tuple(providers)
        self.config = config
        self.owner = owner
        self._snapshot: Optional[CandidateSnapshot] = None
        self._valid_bucket: Optional[int] = None
        self._reason = "initial"
        self._last_selected: Optional[CandidateJob] = None
        self.rebuild_count = 0

    @property
    def state(self) -> CacheState:
        return CacheState.EMPTY if self._valid_bucket is None else CacheState.VALID

    @property
    def latest(self) -> Optional[CandidateSnapshot]:
        """Most recently published snapshot (may be from an earlier bucket)."""
        return self._snapshot

    @property
    def last_selected(self) -> Optional[CandidateJob]:
        return self._last_selected

    def invalidate(self, reason: str) -> None:
        """Force the next ``get_or_rebuild`` to rescore."""
        self._valid_bucket = None
        self._reason = reason

    def get_or_rebuild(self, ctx: ScoringContext, now: float) -> CandidateSnapshot:
        bucket = time_bucket(now, self.config.bucket_length)
        if self._snapshot is not None and self._valid_bucket == bucket:
            return self._snapshot

        if self._valid_bucket is not None:
            self._reason = f"time bucket {self._valid_bucket} -> {bucket}"
        snapshot = self._rebuild(ctx, now, bucket)
        self._snapshot = snapshot
        self._valid_bucket = bucket
        return snapshot

    def record_selection(self, job: CandidateJob) -> None:
        """Remember ``job`` as the last selected candidate without invalidating."""
        self._last_selected = job
        if self._snapshot is not None:
            self._snapshot = self._snapshot.model_copy(update={"last_selected": job})

    def _score_provider(self, provider: CandidateProvider, ctx: ScoringContext) -> Optional[CandidateJob]:
        try:
            score = float(provider.score(ctx))
            description = provider.describe(ctx) if score > 0 else ""
        except Exception as exc:
            log_error(f"Scorer '{provider.name}' failed for {ctx.profile.agent_id}: {exc!r}; scoring 0")
            return None

        if math.isnan(score) or score < 0:
            log_error(f"Scorer '{provider.name}' returned invalid score {score!r} for {ctx.profile.agent_id}; scoring 0")
            return None
        if score == 0:
            return None
        return CandidateJob(
            description=description,
            score=min(score, self.config.score_ceiling),
            kind=provider.kind,
            provider=provider.name,
        )

    def _rebuild(self, ctx: ScoringContext, now: float, bucket: int) -> CandidateSnapshot:
        jobs: List[CandidateJob] = []
        for provider in self.providers:
            if not applies_to(provider, ctx.location):
                continue
            job = self._score_provider(provider, ctx)
            if job is not None:
                jobs.append(job)

        last = self._last_selected
        if last is not None:
            for index, job in enumerate(jobs):
                if job.same_activity(last):
                    jobs.insert(0, jobs.pop(index))
                    break

        self.rebuild_count += 1
        total = math.fsum(job.score for job in jobs)
        log_debug(
            "DEBUG_SCORING",
            f"{self.owner or ctx.profile.agent_id} rebuilt bucket {bucket}: "
            f"{len(jobs)} candidates, total {total:.2f} ({self._reason})",
        )
        return CandidateSnapshot(
            created_at=now,
            bucket=bucket,
            total=total,
            jobs=tuple(jobs),
            last_selected=last,
            context=f"{self._reason} ({ctx.location.value})",
        )
