"""
FlightLedger - Flight tracking

Subscriptions decide which flights the poller follows. A subscription is
registered on the ledger and mirrored locally as a record with no status;
the first poll that finds the flight seeds it.

Daily rollover: each tracking key covers one departure date. At the start of
every poll tick, flights tracked yesterday get a fresh record for today
(new lifecycle) once the provider knows today's instance. The snapshot
fetched for that check seeds the new record in the same tick.
"""

import logging
from datetime import date, datetime, timedelta, timezone
from typing import Optional

from pydantic import BaseModel, Field

from flightledger.bridges.flight_data import FlightDataAdapter
from flightledger.bridges.ledger import LedgerClient
from flightledger.core.context import SyncContext
from flightledger.core.errors import AdapterError
from flightledger.models.flight import FlightKey, FlightRecord, FlightSnapshot
from flightledger.services.mirror_store import MirrorStore, RecordFilter

logger = logging.getLogger(__name__)


class SubscriptionRequest(BaseModel):
    flight_number: str
    carrier_code: str
    departure_date: str
    departure_airport: str
    arrival_airport: str = ""


class UnsubscribeRequest(BaseModel):
    flight_numbers: list[str]
    carrier_codes: list[str]
    departure_airports: list[str]


class RolloverResult(BaseModel):
    date: str
    created: int = 0
    skipped: int = 0
    failed: int = 0
    # Snapshots fetched for the new records, by str(key); the same tick seeds them
    seeds: dict[str, FlightSnapshot] = Field(default_factory=dict, exclude=True)


def utc_today() -> date:
    return datetime.now(timezone.utc).date()


class TrackingService:
    def __init__(
        self,
        context: SyncContext,
        store: MirrorStore,
        adapter: FlightDataAdapter,
        ledger: LedgerClient,
    ):
        self.context = context
        self.store = store
        self.adapter = adapter
        self.ledger = ledger

    # =========================================================================
    # SUBSCRIPTIONS
    # =========================================================================

    async def subscribe(self, request: SubscriptionRequest) -> FlightRecord:
        """
        Register a flight on the ledger and start tracking it locally.

        Raises:
            ValueError: identity fields missing
            LedgerError: subscription transaction failed (nothing stored)
        """
        flight_number = request.flight_number.strip()
        carrier_code = request.carrier_code.strip().upper()
        departure_airport = request.departure_airport.strip().upper()
        departure_date = request.departure_date.strip()
        if not (flight_number and carrier_code and departure_airport and departure_date):
            raise ValueError("flight_number, carrier_code, departure_date and departure_airport are required")

        key = FlightKey(
            carrier_code=carrier_code,
            flight_number=flight_number,
            departure_date=departure_date,
            departure_airport=departure_airport,
            arrival_airport=request.arrival_airport.strip().upper(),
        )

        await self.ledger.add_flight_subscription(flight_number, carrier_code, departure_airport)

        existing = await self.store.get(key)
        if existing is not None:
            record = await self.store.update_fields(key, tracked=True)
        else:
            record = await self.store.put(FlightRecord(key=key, tracked=True))

        logger.info(f"[TRACKING] Subscribed {key}")
        self.context.incr("subscriptions")
        return record

    async def unsubscribe_batch(self, request: UnsubscribeRequest) -> int:
        """
        Remove subscriptions on the ledger and stop tracking every local
        record for those flights. Returns the number of records untracked.
        """
        flight_numbers = request.flight_numbers
        if (
            not flight_numbers
            or len(flight_numbers) != len(request.carrier_codes)
            or len(flight_numbers) != len(request.departure_airports)
        ):
            raise ValueError("Invalid or mismatched input arrays")

        await self.ledger.remove_flight_subscriptions(
            flight_numbers, request.carrier_codes, request.departure_airports
        )

        untracked = 0
        for flight_number, carrier_code, departure_airport in zip(
            flight_numbers, request.carrier_codes, request.departure_airports
        ):
            records = await self.store.scan(
                RecordFilter(tracked=True, flight_number=flight_number, carrier_code=carrier_code)
            )
            for record in records:
                if record.key.departure_airport != departure_airport:
                    continue
                await self.store.update_fields(record.key, tracked=False)
                untracked += 1

        logger.info(f"[TRACKING] Unsubscribed {len(flight_numbers)} flights ({untracked} records untracked)")
        return untracked

    # =========================================================================
    # ROLLOVER
    # =========================================================================

    async def rollover(self, today: Optional[date] = None) -> RolloverResult:
        """Create today's records for flights tracked yesterday."""
        today = today or utc_today()
        today_str = today.isoformat()
        yesterday_str = (today - timedelta(days=1)).isoformat()
        result = RolloverResult(date=today_str)

        previous = await self.store.scan(RecordFilter(tracked=True, departure_date=yesterday_str))
        if not previous:
            return result

        logger.info(f"[ROLLOVER] Checking {len(previous)} flights from {yesterday_str} for {today_str}")

        for record in previous:
            try:
                await self._rollover_one(record, today_str, result)
            except Exception as e:
                logger.exception(f"[ROLLOVER] Failed for {record.key}: {e}")
                result.failed += 1

        if result.created:
            self.context.incr("rollover_created", result.created)
        logger.info(
            f"[ROLLOVER] {today_str}: {result.created} created, {result.skipped} skipped, {result.failed} failed"
        )
        return result

    async def _rollover_one(self, record: FlightRecord, today_str: str, result: RolloverResult) -> None:
        key = record.key
        today_key = key.model_copy(update={"departure_date": today_str})

        if await self.store.get(today_key) is not None:
            result.skipped += 1
            return

        try:
            snapshot = await self.adapter.fetch(
                key.flight_number, today_str, key.departure_airport, key.arrival_airport or None
            )
        except AdapterError as e:
            logger.warning(f"[ROLLOVER] Provider error for {key.carrier_code}{key.flight_number}: {e}")
            result.failed += 1
            return

        if snapshot is None:
            logger.warning(f"[ROLLOVER] No data for {key.carrier_code}{key.flight_number} on {today_str}")
            result.skipped += 1
            return

        await self.store.put(FlightRecord(key=today_key, tracked=True))
        # Yesterday's instance stops being polled once today's exists
        await self.store.update_fields(key, tracked=False)
        result.seeds[str(today_key)] = snapshot
        result.created += 1
        logger.info(f"[ROLLOVER] Created {today_key}")
