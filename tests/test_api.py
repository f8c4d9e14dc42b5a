"""
FlightLedger - HTTP surface tests
"""

import pytest
from fastapi.testclient import TestClient

from flightledger.core.errors import InsufficientFunds
from flightledger.main import create_app
from flightledger.runtime import build_memory_runtime

from conftest import FakeAdapter, FakeLedger, make_settings, make_snapshot
from test_history import ledger_entry


@pytest.fixture
def runtime():
    return build_memory_runtime(make_settings(), adapter=FakeAdapter(), ledger=FakeLedger())


@pytest.fixture
def client(runtime):
    app = create_app(settings=runtime.context.settings, runtime=runtime)
    with TestClient(app) as test_client:
        yield test_client


SUBSCRIPTION = {
    "flight_number": "123",
    "carrier_code": "UA",
    "departure_date": "2026-10-17",
    "departure_airport": "SFO",
    "arrival_airport": "EWR",
}


class TestHealth:
    def test_healthy(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "healthy"
        assert body["ledger"] == "connected"
        assert set(body["scheduler"]) == {"poll", "sweep"}

    def test_degraded_when_ledger_unreachable(self, client, runtime):
        runtime.ledger.healthy = False
        assert client.get("/health").json()["status"] == "degraded"


class TestSubscriptions:
    def test_subscribe(self, client, runtime):
        response = client.post("/subscriptions", json=SUBSCRIPTION)

        assert response.status_code == 201
        body = response.json()
        assert body["key"]["flight_number"] == "123"
        assert body["status_code"] is None
        assert runtime.ledger.subscriptions == [("123", "UA", "SFO")]

    def test_subscribe_blank_field(self, client):
        response = client.post("/subscriptions", json={**SUBSCRIPTION, "carrier_code": " "})
        assert response.status_code == 400

    def test_subscribe_missing_field(self, client):
        payload = {k: v for k, v in SUBSCRIPTION.items() if k != "departure_date"}
        assert client.post("/subscriptions", json=payload).status_code == 422

    def test_subscribe_ledger_failure(self, client, runtime):
        runtime.ledger.failures.append(InsufficientFunds("balance too low"))
        response = client.post("/subscriptions", json=SUBSCRIPTION)
        assert response.status_code == 502

    def test_unsubscribe(self, client, runtime):
        client.post("/subscriptions", json=SUBSCRIPTION)

        response = client.request(
            "DELETE",
            "/subscriptions",
            json={"flight_numbers": ["123"], "carrier_codes": ["UA"], "departure_airports": ["SFO"]},
        )

        assert response.status_code == 200
        assert response.json() == {"removed": 1, "untracked_records": 1}

    def test_unsubscribe_mismatched(self, client):
        response = client.request(
            "DELETE",
            "/subscriptions",
            json={"flight_numbers": ["123", "456"], "carrier_codes": ["UA"], "departure_airports": ["SFO"]},
        )
        assert response.status_code == 400


class TestSync:
    def test_manual_poll_and_stats(self, client, runtime):
        client.post("/subscriptions", json=SUBSCRIPTION)
        runtime.adapter.set("2026-10-17", make_snapshot("OUT"))

        summary = client.post("/sync/poll").json()
        assert summary["total"] == 1
        assert summary["committed"] == 1

        stats = client.get("/sync/stats").json()
        assert stats["committed"] == 1
        assert stats["counters"]["subscriptions"] == 1

    def test_manual_sweep(self, client):
        assert client.post("/sync/sweep").json()["total"] == 0

    @pytest.mark.parametrize("job,path", [("poll_job", "/sync/poll"), ("sweep_job", "/sync/sweep")])
    def test_trigger_refused_while_tick_runs(self, client, runtime, job, path):
        getattr(runtime.scheduler, job).running = True

        response = client.post(path)

        assert response.status_code == 409
        assert getattr(runtime.scheduler, job).runs == 0

    def test_manual_tick_counts_as_job_run(self, client, runtime):
        client.post("/sync/poll")
        assert runtime.scheduler.status()["poll"]["runs"] == 1


class TestHistory:
    def test_history(self, client, runtime):
        runtime.ledger.history = [
            ledger_entry(make_snapshot("OUT"), tx_ref="tx-1"),
            ledger_entry(make_snapshot("OFF"), tx_ref="tx-2", compressed_snapshot="broken!"),
        ]

        response = client.get(
            "/flights/ua/123/history", params={"from_date": "2026-10-17", "to_date": "2026-10-17"}
        )

        assert response.status_code == 200
        entries = response.json()
        assert [e["tx_ref"] for e in entries] == ["tx-1", "tx-2"]
        assert entries[0]["snapshot"]["status_code"] == "OUT"
        assert entries[1]["errors"]

    def test_history_requires_range(self, client):
        assert client.get("/flights/UA/123/history").status_code == 422

    def test_history_with_bad_key(self):
        settings = make_settings(ENCRYPTION_KEY="short")
        runtime = build_memory_runtime(settings, adapter=FakeAdapter(), ledger=FakeLedger())
        with TestClient(create_app(settings=settings, runtime=runtime)) as client:
            response = client.get(
                "/flights/UA/123/history", params={"from_date": "2026-10-17", "to_date": "2026-10-17"}
            )
        assert response.status_code == 503
