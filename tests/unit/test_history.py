"""Test decision history."""

from datetime import datetime, timedelta, timezone

from core.heatbrain.history import DecisionHistory
from core.heatbrain.models import CirculationMode, HeatingCommand, HeatingState, WorkingRange


def _command(at: datetime, state: HeatingState = HeatingState.OFF) -> HeatingCommand:
    return HeatingCommand(
        at=at,
        state=state,
        circulation=CirculationMode.NONE,
        circulation_pump_on=False,
        overrun=False,
        immersion=False,
        active_states=frozenset({state}),
        working_range=WorkingRange(42.0, 45.0),
        reason="no heat demand",
    )


class TestDecisionHistory:
    """Test cases for the in-memory history."""

    def setup_method(self) -> None:
        self.history = DecisionHistory(max_hours=24)
        self.now = datetime.now(timezone.utc)

    def test_add_and_get(self) -> None:
        self.history.add_tick(_command(self.now), {"TKTP": 45.0}, True)

        records = self.history.get_history()
        assert len(records) == 1
        assert records[0]["state"] == "off"
        assert records[0]["temperatures"] == {"TKTP": 45.0}
        assert records[0]["working_range_min"] == 42.0
        assert records[0]["heat_demand"] is True

    def test_filter_by_hours(self) -> None:
        self.history.add_tick(_command(self.now - timedelta(hours=3)), {}, None)
        self.history.add_tick(_command(self.now), {}, None)

        assert len(self.history.get_history(hours=1)) == 1
        assert len(self.history.get_history(hours=6)) == 2

    def test_old_data_cleaned_up(self) -> None:
        self.history.add_tick(_command(self.now - timedelta(hours=30)), {}, None)
        self.history.add_tick(_command(self.now), {}, None)

        assert len(self.history.get_history()) == 1

    def test_naive_timestamps_treated_as_utc(self) -> None:
        naive_now = datetime.now(timezone.utc).replace(tzinfo=None)
        self.history.add_tick(_command(naive_now), {}, None)
        assert len(self.history.get_history(hours=1)) == 1

    def test_relay_events(self) -> None:
        self.history.add_relay_event("heat_pump", "switch.heat_pump", True)
        events = self.history.get_relay_events(hours=1)
        assert events[0]["channel"] == "heat_pump"
        assert events[0]["on"] is True

    def test_latest_and_clear(self) -> None:
        assert self.history.latest() is None
        self.history.add_tick(_command(self.now, HeatingState.CIRCULATE_MIXED), {}, True)
        assert self.history.latest()["state"] == "circulate_mixed"

        self.history.clear()
        assert self.history.get_history() == []
