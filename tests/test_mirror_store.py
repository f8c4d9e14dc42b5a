"""
FlightLedger - Mirror store tests

Both backends run the same contract; the SQL backend uses aiosqlite on a
temporary database file.
"""

from datetime import datetime, timedelta, timezone

import pytest

from flightledger.db.session import create_engine, create_session_maker, init_models
from flightledger.models.flight import FlightRecord
from flightledger.services.mirror_store import InMemoryMirrorStore, RecordFilter, SqlMirrorStore

from conftest import make_key


@pytest.fixture(params=["memory", "sql"])
async def mirror(request, tmp_path):
    if request.param == "memory":
        yield InMemoryMirrorStore()
        return

    engine = create_engine(f"sqlite+aiosqlite:///{tmp_path / 'mirror.db'}")
    await init_models(engine)
    yield SqlMirrorStore(create_session_maker(engine))
    await engine.dispose()


class TestCrud:
    async def test_put_and_get(self, mirror):
        key = make_key()
        stored = await mirror.put(
            FlightRecord(key=key, status_code="OUT", out_utc="2026-10-17T15:04:00Z", snapshot={"status_code": "OUT"})
        )

        assert stored.created_at is not None
        fetched = await mirror.get(key)
        assert fetched.key == key
        assert fetched.status_code == "OUT"
        assert fetched.out_utc == "2026-10-17T15:04:00Z"
        assert fetched.snapshot == {"status_code": "OUT"}
        assert fetched.tracked is True
        assert fetched.committed is False

    async def test_get_missing(self, mirror):
        assert await mirror.get(make_key(flight_number="404")) is None

    async def test_put_overwrites(self, mirror):
        key = make_key()
        await mirror.put(FlightRecord(key=key, status_code="OUT"))
        await mirror.put(FlightRecord(key=key, status_code="OFF", committed=True, tx_ref="tx-1", block_number=9))

        record = await mirror.get(key)
        assert record.status_code == "OFF"
        assert record.tx_ref == "tx-1"
        assert record.block_number == 9

    async def test_arrival_airport_is_part_of_identity(self, mirror):
        await mirror.put(FlightRecord(key=make_key(arrival_airport="EWR"), status_code="OUT"))
        assert await mirror.get(make_key(arrival_airport="ORD")) is None

    async def test_update_fields(self, mirror):
        key = make_key()
        await mirror.put(FlightRecord(key=key))
        retry_at = datetime(2026, 10, 17, 16, 0, tzinfo=timezone.utc)

        updated = await mirror.update_fields(key, commit_attempts=2, next_attempt_at=retry_at, last_error="Reverted")

        assert updated.commit_attempts == 2
        fetched = await mirror.get(key)
        assert fetched.next_attempt_at == retry_at
        assert fetched.last_error == "Reverted"

    async def test_update_fields_rejects_unknown(self, mirror):
        key = make_key()
        await mirror.put(FlightRecord(key=key))
        with pytest.raises(ValueError):
            await mirror.update_fields(key, flight_number="999")

    async def test_update_missing_returns_none(self, mirror):
        assert await mirror.update_fields(make_key(flight_number="404"), tracked=False) is None

    async def test_delete(self, mirror):
        key = make_key()
        await mirror.put(FlightRecord(key=key))
        assert await mirror.delete(key) is True
        assert await mirror.get(key) is None
        assert await mirror.delete(key) is False


class TestScan:
    async def seed(self, mirror):
        now = datetime.now(timezone.utc)
        await mirror.put(FlightRecord(key=make_key(flight_number="1")))
        await mirror.put(FlightRecord(key=make_key(flight_number="2"), status_code="OUT", committed=True))
        await mirror.put(FlightRecord(key=make_key(flight_number="3"), status_code="IN", committed=True))
        await mirror.put(
            FlightRecord(
                key=make_key(flight_number="4"),
                status_code="OFF",
                commit_attempts=1,
                next_attempt_at=now + timedelta(minutes=5),
            )
        )
        await mirror.put(FlightRecord(key=make_key(flight_number="5"), status_code="ON", dead_lettered=True))
        await mirror.put(
            FlightRecord(key=make_key(flight_number="6", departure_date="2026-10-16"), status_code="OUT", tracked=False)
        )
        return now

    @staticmethod
    def numbers(records):
        return sorted(r.key.flight_number for r in records)

    async def test_tracked_non_terminal(self, mirror):
        await self.seed(mirror)
        records = await mirror.scan(RecordFilter(tracked=True, terminal=False))
        assert self.numbers(records) == ["1", "2", "4", "5"]

    async def test_due_for_reconciliation(self, mirror):
        now = await self.seed(mirror)
        flt = RecordFilter(committed=False, dead_lettered=False, seeded=True, due_before=now)
        assert self.numbers(await mirror.scan(flt)) == ["6"]

        flt = flt.model_copy(update={"due_before": now + timedelta(minutes=10)})
        assert self.numbers(await mirror.scan(flt)) == ["4", "6"]

    async def test_by_date_and_flight(self, mirror):
        await self.seed(mirror)
        assert self.numbers(await mirror.scan(RecordFilter(departure_date="2026-10-16"))) == ["6"]
        records = await mirror.scan(RecordFilter(carrier_code="UA", flight_number="3"))
        assert [r.status_code for r in records] == ["IN"]

    async def test_limit(self, mirror):
        await self.seed(mirror)
        assert len(await mirror.scan(RecordFilter(limit=2))) == 2

    async def test_counts(self, mirror):
        await self.seed(mirror)
        assert await mirror.counts() == {
            "total": 6,
            "tracked": 5,
            "committed": 2,
            "pending": 3,
            "dead_lettered": 1,
        }
