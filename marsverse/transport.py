"""Interplanetary transports: resupply shipments and arriving settlements.

Each item follows the transit state machine::

    PLANNED --launch--> IN_TRANSIT --arrival--> ARRIVED
       \\                   |
        `---- cancel() ----+--> CANCELED

Transitions happen only when the scheduled-event manager fires the item, one
transition per firing. Setting an arrival date only decides the *starting*
state; it never marks an item arrived on its own.
"""

from __future__ import annotations

import math
from enum import Enum
from functools import total_ordering
from typing import Callable, Dict, Iterator, List, Optional

from .config import SchedulerConfig
from .errors import InvalidTransitionError
from .events import DONE, EventOutcome, Reschedule, ScheduledEventManager
from .logging_utils import log_info
from .schemas import Coordinates


class TransitState(str, Enum):
    PLANNED = "planned"
    IN_TRANSIT = "in_transit"
    ARRIVED = "arrived"
    CANCELED = "canceled"

    @property
    def is_terminal(self) -> bool:
        return self in (TransitState.ARRIVED, TransitState.CANCELED)


ArrivalHook = Callable[["TransportItem", float], None]


@total_ordering
class TransportItem:
    """A shipment travelling to a landing site."""

    kind = "transport"

    def __init__(
        self,
        name: str,
        landing_site: str,
        *,
        events: ScheduledEventManager,
        config: SchedulerConfig,
        cargo: Optional[Dict[str, float]] = None,
    ):
        self.name = name
        self.landing_site = landing_site
        self.events = events
        self.config = config
        self.cargo: Dict[str, float] = dict(cargo or {})
        self.state = TransitState.PLANNED
        self.launch_date: Optional[float] = None
        self.arrival_date: Optional[float] = None
        self.on_arrival: Optional[ArrivalHook] = None

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.name!r} {self.state.value}>"

    def _sort_key(self):
        arrival = math.inf if self.arrival_date is None else self.arrival_date
        return (arrival, self.name)

    def __eq__(self, other):
        if not isinstance(other, TransportItem):
            return NotImplemented
        return self is other

    def __lt__(self, other):
        if not isinstance(other, TransportItem):
            return NotImplemented
        return self._sort_key() < other._sort_key()

    __hash__ = object.__hash__

    @property
    def event_description(self) -> str:
        if self.state is TransitState.PLANNED:
            return f"{self.kind} '{self.name}' launches"
        return f"{self.kind} '{self.name}' arrives at {self.landing_site}"

    def set_arrival(self, arrival: float, now: float) -> TransitState:
        """Set the arrival date and derive the launch date and current state.

        Works for items created mid-flight (e.g. from a saved schedule): an
        item whose launch has passed starts IN_TRANSIT, and an overdue item
        is fired on the next event pass rather than marked arrived here.
        """
        if self.state.is_terminal:
            raise InvalidTransitionError(f"Cannot reschedule {self.kind} '{self.name}' in state {self.state.value}")

        self.arrival_date = arrival
        self.launch_date = arrival - self.config.average_transit_time
        if now < self.launch_date:
            self.state = TransitState.PLANNED
            self.events.add_event(self.launch_date, self)
        else:
            self.state = TransitState.IN_TRANSIT
            self.events.add_event(max(now, arrival), self)
        return self.state

    def execute(self, now: float) -> EventOutcome:
        """Perform exactly one transition for this firing."""
        if self.state is TransitState.PLANNED:
            self.state = TransitState.IN_TRANSIT
            log_info(f"{self.kind.title()} '{self.name}' launched at {now:.2f}")
            return Reschedule(max(now, self.arrival_date))
        if self.state is TransitState.IN_TRANSIT:
            self.state = TransitState.ARRIVED
            self.perform_arrival(now)
            return DONE
        return DONE

    def perform_arrival(self, now: float) -> None:
        log_info(f"{self.kind.title()} '{self.name}' arrived at {self.landing_site} at {now:.2f}")
        if self.on_arrival is not None:
            self.on_arrival(self, now)

    def cancel(self) -> bool:
        """Cancel the item. Returns False (and does nothing) when already terminal."""
        if self.state.is_terminal:
            return False
        self.events.remove_event(self)
        self.state = TransitState.CANCELED
        log_info(f"{self.kind.title()} '{self.name}' canceled")
        return True


class Resupply(TransportItem):
    """Cargo (and optionally new colonists) for an existing settlement."""

    kind = "resupply"

    def __init__(self, name: str, landing_site: str, *, immigrants: int = 0, **kwargs):
        super().__init__(name, landing_site, **kwargs)
        self.immigrants = immigrants


class ArrivingSettlement(TransportItem):
    """A new settlement founded when the transport lands."""

    kind = "arriving settlement"

    def __init__(
        self,
        name: str,
        landing_site: str,
        *,
        settlement_id: str,
        population: int,
        location: Optional[Coordinates] = None,
        **kwargs,
    ):
        super().__init__(name, landing_site, **kwargs)
        self.settlement_id = settlement_id
        self.population = population
        self.location = location or Coordinates()


class TransportDirectory:
    """Owns every transport item; the event manager only holds weak references."""

    def __init__(self, events: ScheduledEventManager, *, on_arrival: Optional[ArrivalHook] = None):
        self.events = events
        self.on_arrival = on_arrival
        self._items: Dict[str, TransportItem] = {}

    def __iter__(self) -> Iterator[TransportItem]:
        return iter(sorted(self._items.values()))

    def __len__(self) -> int:
        return len(self._items)

    def add(self, item: TransportItem) -> TransportItem:
        if item.name in self._items:
            raise ValueError(f"Transport '{item.name}' already registered")
        if item.on_arrival is None:
            item.on_arrival = self.on_arrival
        self._items[item.name] = item
        return item

    def get(self, name: str) -> TransportItem:
        return self._items[name]

    def remove(self, name: str) -> Optional[TransportItem]:
        """Forget an item and drop any event it still has outstanding."""
        item = self._items.pop(name, None)
        if item is not None:
            self.events.remove_event(item)
        return item

    def items_in_state(self, *states: TransitState) -> List[TransportItem]:
        return sorted(item for item in self._items.values() if item.state in states)

    def get_process_state(self, name: str) -> Optional[TransitState]:
        item = self._items.get(name)
        return None if item is None else item.state
