"""
FlightLedger - Departure / arrival state derivation

Derives the short departure and arrival state codes carried in the status
array, and fills in positive delay minutes from estimated (or actual) versus
scheduled times.

    ONT on time        DLY delayed         ERL early (arrival only)
    CNL cancelled      PND pending         LCK mishap lock
    DIV / DVT diverted (departure / arrival)
    XSP / XST extra stop   NSP / NST no stop
"""

import math
from datetime import datetime
from typing import Optional

from flightledger.models.flight import FlightSnapshot

DELAY_THRESHOLD_MINUTES = 15


def parse_utc(value: str) -> Optional[datetime]:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None


def _minutes_between(later: datetime, earlier: datetime) -> float:
    if (later.tzinfo is None) != (earlier.tzinfo is None):
        later = later.replace(tzinfo=None)
        earlier = earlier.replace(tzinfo=None)
    return (later - earlier).total_seconds() / 60


def _delay_minutes(scheduled: Optional[datetime], estimated: Optional[datetime], actual: Optional[datetime]) -> int:
    if scheduled is None:
        return 0
    reference = estimated or actual
    if reference is None:
        return 0
    return max(math.floor(_minutes_between(reference, scheduled)), 0)


def departure_state(snapshot: FlightSnapshot) -> str:
    if snapshot.is_canceled:
        return "CNL"

    scheduled = parse_utc(snapshot.scheduled_departure_utc)
    estimated = parse_utc(snapshot.estimated_departure_utc)
    actual = parse_utc(snapshot.actual_departure_utc)

    if scheduled is not None:
        if estimated is not None and _minutes_between(estimated, scheduled) >= DELAY_THRESHOLD_MINUTES:
            return "DLY"
        if actual is not None and _minutes_between(actual, scheduled) > 0:
            return "DLY"
        decision = parse_utc(snapshot.decision_time_utc)
        if decision is not None and _minutes_between(decision, scheduled) > 0:
            return "PND"

    if snapshot.is_diverted:
        return "DIV"
    if snapshot.is_extra_stop:
        return "XSP"
    if snapshot.is_no_stop:
        return "NSP"
    if snapshot.has_mishap:
        return "LCK"
    return "ONT"


def arrival_state(snapshot: FlightSnapshot) -> str:
    if snapshot.is_canceled:
        return "CNL"

    scheduled = parse_utc(snapshot.scheduled_arrival_utc)
    estimated = parse_utc(snapshot.estimated_arrival_utc)
    actual = parse_utc(snapshot.actual_arrival_utc)

    if scheduled is not None:
        if estimated is not None and _minutes_between(scheduled, estimated) >= DELAY_THRESHOLD_MINUTES:
            return "ERL"
        if actual is not None and _minutes_between(scheduled, actual) > 0:
            return "ERL"
        if estimated is not None and _minutes_between(estimated, scheduled) >= DELAY_THRESHOLD_MINUTES:
            return "DLY"
        if actual is not None and _minutes_between(actual, scheduled) > 0:
            return "DLY"

    if snapshot.decision_time_utc:
        return "PND"
    if snapshot.is_diverted:
        return "DVT"
    if snapshot.is_extra_stop:
        return "XST"
    if snapshot.is_no_stop:
        return "NST"
    if snapshot.has_mishap:
        return "LCK"
    return "ONT"


def with_derived_states(snapshot: FlightSnapshot) -> FlightSnapshot:
    """Return a copy with departure/arrival states and delays filled in."""
    updates: dict = {
        "departure_state": departure_state(snapshot),
        "arrival_state": arrival_state(snapshot),
    }

    dep_delay = _delay_minutes(
        parse_utc(snapshot.scheduled_departure_utc),
        parse_utc(snapshot.estimated_departure_utc),
        parse_utc(snapshot.actual_departure_utc),
    )
    if dep_delay > 0:
        updates["departure_delay_minutes"] = dep_delay

    arr_delay = _delay_minutes(
        parse_utc(snapshot.scheduled_arrival_utc),
        parse_utc(snapshot.estimated_arrival_utc),
        parse_utc(snapshot.actual_arrival_utc),
    )
    if arr_delay > 0:
        updates["arrival_delay_minutes"] = arr_delay

    return snapshot.model_copy(update=updates)
