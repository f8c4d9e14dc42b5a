"""
FlightLedger - Departure/arrival state derivation tests
"""

from flightledger.services.flight_states import arrival_state, departure_state, with_derived_states

from conftest import make_snapshot


class TestDepartureState:
    def test_on_time(self):
        assert departure_state(make_snapshot()) == "ONT"

    def test_cancelled(self):
        assert departure_state(make_snapshot(is_canceled=True)) == "CNL"

    def test_delayed_by_estimate(self):
        snapshot = make_snapshot(estimated_departure_utc="2026-10-17T15:20:00Z")
        assert departure_state(snapshot) == "DLY"

    def test_small_estimate_slip_is_on_time(self):
        snapshot = make_snapshot(estimated_departure_utc="2026-10-17T15:10:00Z")
        assert departure_state(snapshot) == "ONT"

    def test_pending_decision(self):
        snapshot = make_snapshot(decision_time_utc="2026-10-17T15:30:00Z")
        assert departure_state(snapshot) == "PND"

    def test_irregular_flags(self):
        assert departure_state(make_snapshot(is_diverted=True)) == "DIV"
        assert departure_state(make_snapshot(is_extra_stop=True)) == "XSP"
        assert departure_state(make_snapshot(is_no_stop=True)) == "NSP"
        assert departure_state(make_snapshot(has_mishap=True)) == "LCK"


class TestArrivalState:
    def test_on_time(self):
        assert arrival_state(make_snapshot()) == "ONT"

    def test_early(self):
        snapshot = make_snapshot(estimated_arrival_utc="2026-10-17T20:00:00Z")
        assert arrival_state(snapshot) == "ERL"

    def test_delayed(self):
        snapshot = make_snapshot(estimated_arrival_utc="2026-10-17T21:00:00Z")
        assert arrival_state(snapshot) == "DLY"

    def test_diverted(self):
        assert arrival_state(make_snapshot(is_diverted=True)) == "DVT"

    def test_cancelled(self):
        assert arrival_state(make_snapshot(is_canceled=True)) == "CNL"


class TestDerivedDelays:
    def test_positive_delays_filled(self):
        snapshot = with_derived_states(
            make_snapshot(
                estimated_departure_utc="2026-10-17T15:45:30Z",
                estimated_arrival_utc="2026-10-17T21:10:00Z",
            )
        )
        assert snapshot.departure_delay_minutes == 45
        assert snapshot.arrival_delay_minutes == 40
        assert snapshot.departure_state == "DLY"
        assert snapshot.arrival_state == "DLY"

    def test_early_does_not_produce_negative_delay(self):
        snapshot = with_derived_states(make_snapshot(estimated_arrival_utc="2026-10-17T20:00:00Z"))
        assert snapshot.arrival_delay_minutes == 0

    def test_unparseable_times_ignored(self):
        snapshot = with_derived_states(make_snapshot(estimated_departure_utc="soon"))
        assert snapshot.departure_delay_minutes == 0
        assert snapshot.departure_state == "ONT"
