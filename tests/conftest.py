"""
FlightLedger - Shared test fixtures

Fakes stand in for the two external systems (flight-data provider and
ledger gateway) so sync, sweep and API tests run without HTTP. The bridges
themselves are tested against respx-mocked transports.
"""

import base64
from typing import Optional

import pytest

from flightledger.core.config import Settings
from flightledger.core.context import SyncContext
from flightledger.models.flight import (
    CommitReceipt,
    FlightKey,
    FlightRecord,
    FlightSnapshot,
    LedgerPayload,
    MarketingSegment,
)
from flightledger.services.mirror_store import InMemoryMirrorStore

ENCRYPTION_KEY = "0123456789abcdef0123456789abcdef"
SIGNING_KEY_B64 = base64.b64encode(bytes(range(32))).decode("ascii")
LEDGER_URL = "http://ledger.test"
FLIGHT_API_URL = "http://flights.test/flightstatus"


def make_settings(**overrides) -> Settings:
    values = {
        "DATABASE_URL": "sqlite+aiosqlite:///:memory:",
        "FLIGHT_API_URL": FLIGHT_API_URL,
        "LEDGER_BASE_URL": LEDGER_URL,
        "LEDGER_SIGNING_KEY_B64": SIGNING_KEY_B64,
        "LEDGER_CONFIRM_TIMEOUT_SECONDS": 1.0,
        "LEDGER_CONFIRM_POLL_SECONDS": 0.0,
        "ENCRYPTION_KEY": ENCRYPTION_KEY,
        "SCHEDULER_ENABLED": False,
        "POLL_CONCURRENCY": 4,
    }
    values.update(overrides)
    return Settings(**values)


def make_key(**overrides) -> FlightKey:
    values = {
        "carrier_code": "UA",
        "flight_number": "123",
        "departure_date": "2026-10-17",
        "departure_airport": "SFO",
        "arrival_airport": "EWR",
    }
    values.update(overrides)
    return FlightKey(**values)


def make_snapshot(status_code: str = "NDPT", **overrides) -> FlightSnapshot:
    values = {
        "flight_number": "123",
        "carrier_code": "UA",
        "departure_date": "2026-10-17",
        "departure_airport": "SFO",
        "arrival_airport": "EWR",
        "departure_city": "San Francisco",
        "arrival_city": "Newark",
        "operating_airline": "United Airlines",
        "departure_gate": "F12",
        "arrival_gate": "C71",
        "equipment_model": "Boeing 737-900",
        "baggage_claim": "5",
        "status_code": status_code,
        "scheduled_departure_utc": "2026-10-17T15:00:00Z",
        "scheduled_arrival_utc": "2026-10-17T20:30:00Z",
        "marketing_segments": [MarketingSegment(airline_code="LH", flight_number="7601")],
    }
    values.update(overrides)
    return FlightSnapshot(**values)


class FakeAdapter:
    """
    Flight-data provider stand-in. Responses are keyed by departure date, or
    by (flight number, departure date) when one flight needs its own answer.
    """

    def __init__(self, responses: Optional[dict] = None):
        self.responses = responses or {}
        self.calls: list[tuple] = []

    def set(self, departure_date: str, response, flight_number: Optional[str] = None) -> None:
        self.responses[(flight_number, departure_date) if flight_number else departure_date] = response

    async def fetch(self, flight_number, departure_date, departure_airport, arrival_airport=None):
        self.calls.append((flight_number, departure_date, departure_airport, arrival_airport))
        response = self.responses.get((flight_number, departure_date), self.responses.get(departure_date))
        if isinstance(response, Exception):
            raise response
        return response

    async def close(self) -> None:
        pass


class FakeLedger:
    """
    Ledger stand-in. `failures` is a queue of exceptions raised by the next
    commits; once empty, commits succeed with sequential tx refs.
    """

    def __init__(self):
        self.commits: list[LedgerPayload] = []
        self.failures: list[Exception] = []
        self.anchored: dict[FlightKey, str] = {}
        self.subscriptions: list[tuple] = []
        self.removed: list[tuple] = []
        self.history: list[dict] = []
        self.healthy = True

    async def commit(self, payload: LedgerPayload) -> CommitReceipt:
        self.commits.append(payload)
        if self.failures:
            raise self.failures.pop(0)
        if self.anchored.get(payload.key) == payload.status_code:
            return CommitReceipt(operation="none", already_anchored=True)
        operation = "update" if payload.key in self.anchored else "insert"
        self.anchored[payload.key] = payload.status_code
        n = len(self.commits)
        return CommitReceipt(operation=operation, tx_ref=f"tx-{n}", block_number=1000 + n)

    async def add_flight_subscription(self, flight_number, carrier_code, departure_airport):
        if self.failures:
            raise self.failures.pop(0)
        self.subscriptions.append((flight_number, carrier_code, departure_airport))

    async def remove_flight_subscriptions(self, flight_numbers, carrier_codes, departure_airports):
        if not flight_numbers or len(flight_numbers) != len(carrier_codes) or len(flight_numbers) != len(
            departure_airports
        ):
            raise ValueError("Invalid or mismatched input arrays")
        self.removed.append((list(flight_numbers), list(carrier_codes), list(departure_airports)))

    async def get_history(self, key, from_date, to_date):
        return list(self.history)

    async def ping(self) -> bool:
        return self.healthy

    async def close(self) -> None:
        pass


@pytest.fixture
def settings() -> Settings:
    return make_settings()


@pytest.fixture
def context(settings) -> SyncContext:
    return SyncContext(settings=settings)


@pytest.fixture
def store() -> InMemoryMirrorStore:
    return InMemoryMirrorStore()


@pytest.fixture
def adapter() -> FakeAdapter:
    return FakeAdapter()


@pytest.fixture
def ledger() -> FakeLedger:
    return FakeLedger()


@pytest.fixture
def key() -> FlightKey:
    return make_key()


@pytest.fixture
async def tracked_record(store, key) -> FlightRecord:
    """A subscribed, not yet seeded flight."""
    return await store.put(FlightRecord(key=key, tracked=True))


