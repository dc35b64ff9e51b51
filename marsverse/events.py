"""Scheduled-event manager for time-triggered process transitions.

A handler registers for a single future timestamp. When the time comes the
manager calls ``handler.execute(now)``, which answers with either ``DONE`` or
``Reschedule(when)``. The manager owns all re-registration; handlers never
reach back into it while being fired.

Handlers are held by weak reference: the owning directory is responsible for
the process, and a process that has been dropped simply never fires.
"""

from __future__ import annotations

import weakref
from dataclasses import dataclass
from typing import Dict, Protocol, Tuple, Union

from .logging_utils import log_debug


class _Done:
    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "DONE"


DONE = _Done()


@dataclass(frozen=True)
class Reschedule:
    """Fire the same handler again at ``when``."""

    when: float


EventOutcome = Union[_Done, Reschedule]


class ScheduledHandler(Protocol):
    @property
    def event_description(self) -> str: ...

    def execute(self, now: float) -> EventOutcome: ...


@dataclass(frozen=True)
class ScheduledEvent:
    """Read-only view of one outstanding registration."""

    when: float
    sequence: int
    description: str


@dataclass
class _Entry:
    when: float
    sequence: int
    ref: "weakref.ReferenceType[ScheduledHandler]"


class ScheduledEventManager:
    """At most one outstanding event per handler, fired in time order."""

    def __init__(self) -> None:
        self._entries: Dict[int, _Entry] = {}
        self._sequence = 0

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, handler: object) -> bool:
        entry = self._entries.get(id(handler))
        return entry is not None and entry.ref() is handler

    def add_event(self, when: float, handler: ScheduledHandler) -> None:
        """Register ``handler`` for ``when``, replacing any earlier registration."""
        key = id(handler)

        def _forget(ref, key=key):
            entry = self._entries.get(key)
            if entry is not None and entry.ref is ref:
                del self._entries[key]

        self._sequence += 1
        self._entries[key] = _Entry(when=when, sequence=self._sequence, ref=weakref.ref(handler, _forget))

    def remove_event(self, handler: ScheduledHandler) -> bool:
        """Drop ``handler``'s registration. Returns False when none existed."""
        if handler not in self:
            return False
        del self._entries[id(handler)]
        return True

    def next_time(self, handler: ScheduledHandler) -> float | None:
        if handler not in self:
            return None
        return self._entries[id(handler)].when

    def time_pass(self, now: float) -> int:
        """Fire every event due at or before ``now``; returns how many fired.

        Events rescheduled during this call for a time at or before ``now``
        wait for the next call, so each handler fires at most once per call.
        """
        due = sorted(
            ((key, entry) for key, entry in self._entries.items() if entry.when <= now),
            key=lambda item: (item[1].when, item[1].sequence),
        )
        fired = 0
        for key, entry in due:
            if self._entries.get(key) is not entry:
                # Removed or replaced by an earlier handler in this batch
                continue
            del self._entries[key]
            handler = entry.ref()
            if handler is None:
                continue

            outcome = handler.execute(now)
            fired += 1
            if isinstance(outcome, Reschedule):
                self.add_event(outcome.when, handler)
                log_debug("DEBUG_EVENTS", f"{handler.event_description}: rescheduled for {outcome.when:.2f}")
            elif outcome is DONE:
                log_debug("DEBUG_EVENTS", f"{handler.event_description}: done")
            else:
                raise TypeError(f"Handler returned {outcome!r}; expected DONE or Reschedule")
        return fired

    def pending_events(self) -> Tuple[ScheduledEvent, ...]:
        """Outstanding events in firing order."""
        views = []
        for entry in sorted(self._entries.values(), key=lambda e: (e.when, e.sequence)):
            handler = entry.ref()
            if handler is None:
                continue
            views.append(ScheduledEvent(when=entry.when, sequence=entry.sequence, description=handler.event_description))
        return tuple(views)
