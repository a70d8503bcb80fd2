"""
Decision History Tracking

Simple in-memory history of engine decisions and relay actions.
"""

import threading
from collections import deque
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta, timezone

from .models import HeatingCommand


@dataclass
class TickRecord:
    """One engine decision."""

    timestamp: str  # ISO format
    state: str
    active_states: list[str]
    circulation: str
    circulation_pump_on: bool
    overrun: bool
    immersion: bool
    working_range_min: float | None
    working_range_max: float | None
    heat_pct: float | None
    temperatures: dict[str, float]  # Sensor name -> reading
    heat_demand: bool | None
    reason: str


@dataclass
class RelayEvent:
    """A relay channel was switched."""

    timestamp: str  # ISO format
    channel: str
    entity_id: str
    on: bool


class DecisionHistory:
    """Tracks engine decisions and relay events."""

    def __init__(self, max_hours: int = 24):
        """Initialize decision history.

        Args:
            max_hours: How many hours of history to keep
        """
        self.max_hours = max_hours
        self.max_age = timedelta(hours=max_hours)

        self.ticks: deque[TickRecord] = deque(maxlen=10000)
        self.relay_events: deque[RelayEvent] = deque(maxlen=1000)

        self.lock = threading.Lock()

    def add_tick(
        self,
        command: HeatingCommand,
        temperatures: dict[str, float],
        heat_demand: bool | None
    ):
        """Record the command produced by a tick.

        Args:
            command: Command returned by the state machine
            temperatures: Sensor name -> reading used for the decision
            heat_demand: Heat demand signal fed into the tick
        """
        record = TickRecord(
            timestamp=command.at.isoformat(),
            state=command.state.value,
            active_states=sorted(s.value for s in command.active_states),
            circulation=command.circulation.value,
            circulation_pump_on=command.circulation_pump_on,
            overrun=command.overrun,
            immersion=command.immersion,
            working_range_min=command.working_range.min if command.working_range else None,
            working_range_max=command.working_range.max if command.working_range else None,
            heat_pct=command.heat_pct,
            temperatures=dict(temperatures),
            heat_demand=heat_demand,
            reason=command.reason,
        )

        with self.lock:
            self.ticks.append(record)
            self._cleanup_old_data()

    def add_relay_event(self, channel: str, entity_id: str, on: bool):
        event = RelayEvent(
            timestamp=datetime.now(timezone.utc).isoformat(),
            channel=channel,
            entity_id=entity_id,
            on=on,
        )

        with self.lock:
            self.relay_events.append(event)
            self._cleanup_old_data()

    def get_history(self, hours: float | None = None) -> list[dict]:
        """Get decision history.

        Args:
            hours: How many hours back (None = all available)

        Returns:
            List of tick records as dicts, oldest first
        """
        with self.lock:
            records = list(self.ticks)
        return [asdict(r) for r in self._since(records, hours)]

    def get_relay_events(self, hours: float | None = None) -> list[dict]:
        with self.lock:
            events = list(self.relay_events)
        return [asdict(e) for e in self._since(events, hours)]

    def latest(self) -> dict | None:
        with self.lock:
            return asdict(self.ticks[-1]) if self.ticks else None

    def clear(self):
        with self.lock:
            self.ticks.clear()
            self.relay_events.clear()

    @staticmethod
    def _since(items: list, hours: float | None) -> list:
        if not hours:
            return items
        cutoff = datetime.now(timezone.utc) - timedelta(hours=hours)
        return [i for i in items if _parse(i.timestamp) > cutoff]

    def _cleanup_old_data(self):
        """Remove data older than max_hours."""
        cutoff = datetime.now(timezone.utc) - self.max_age

        while self.ticks and _parse(self.ticks[0].timestamp) < cutoff:
            self.ticks.popleft()

        while self.relay_events and _parse(self.relay_events[0].timestamp) < cutoff:
            self.relay_events.popleft()


def _parse(timestamp: str) -> datetime:
    """Parse an ISO timestamp, treating naive values as UTC."""
    parsed = datetime.fromisoformat(timestamp)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


# Global instance
history_tracker = DecisionHistory(max_hours=24)
