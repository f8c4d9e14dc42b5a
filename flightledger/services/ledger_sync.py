"""
FlightLedger - Flight status sync

Poll-and-commit cycle for tracked flights:

1. Fetch the current snapshot from the flight-data provider
2. Validate the status change against the transition graph
3. Stamp phase timestamps / irregular-operation flags, derive states
4. Prepare the selectively-encrypted ledger payload
5. Commit to the ledger (insert, update, or already anchored)
6. Write the mirror record once: new status, snapshot, commit bookkeeping

A failed ledger commit still advances the mirror (status + snapshot) with
committed=False; the reconciliation sweeper re-derives the payload from the
stored snapshot and retries it.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Optional, TYPE_CHECKING

from flightledger.bridges.flight_data import FlightDataAdapter
from flightledger.bridges.ledger import LedgerClient
from flightledger.core.context import SyncContext
from flightledger.core.errors import (
    AdapterError,
    EncryptionConfigError,
    LedgerError,
    SnapshotValidationError,
)
from flightledger.models.flight import (
    FlightRecord,
    FlightSnapshot,
    OutcomeKind,
    SyncOutcome,
    TickSummary,
)
from flightledger.services.flight_states import with_derived_states
from flightledger.services.mirror_store import MirrorStore, RecordFilter
from flightledger.services.retry import RetryPolicy
from flightledger.services.transform import apply_status_effects, prepare_ledger_payload
from flightledger.services.transitions import validate_transition

if TYPE_CHECKING:
    from flightledger.services.tracking import TrackingService

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _snapshot_fields(snapshot: FlightSnapshot) -> dict[str, Any]:
    """Mirror columns carried over from a processed snapshot."""
    return {
        "status_code": snapshot.status_code,
        "out_utc": snapshot.out_utc,
        "off_utc": snapshot.off_utc,
        "on_utc": snapshot.on_utc,
        "in_utc": snapshot.in_utc,
        "departure_delay_minutes": snapshot.departure_delay_minutes,
        "arrival_delay_minutes": snapshot.arrival_delay_minutes,
        "snapshot": snapshot.model_dump(mode="json"),
    }


class LedgerSyncService:
    """
    Per-flight sync engine shared by the poller and the reconciliation
    sweeper. All work on one flight key runs under that key's lock.
    """

    def __init__(
        self,
        context: SyncContext,
        store: MirrorStore,
        adapter: FlightDataAdapter,
        ledger: LedgerClient,
        tracking: Optional["TrackingService"] = None,
        policy: Optional[RetryPolicy] = None,
    ):
        self.context = context
        self.settings = context.settings
        self.store = store
        self.adapter = adapter
        self.ledger = ledger
        self.tracking = tracking
        self.policy = policy or RetryPolicy.from_settings(context.settings)

    # =========================================================================
    # POLL
    # =========================================================================

    async def poll_all(self) -> list[SyncOutcome]:
        """One poll tick over every tracked, non-terminal flight."""
        seeds: dict[str, FlightSnapshot] = {}
        if self.tracking is not None:
            try:
                seeds = (await self.tracking.rollover()).seeds
            except Exception as e:
                logger.exception(f"[POLL] Daily rollover failed, polling existing flights: {e}")
                self.context.incr("rollover_errors")

        records = await self.store.scan(RecordFilter(tracked=True, terminal=False))
        if not records:
            logger.info("[POLL] No tracked flights to poll")
            return []

        semaphore = asyncio.Semaphore(max(1, self.settings.POLL_CONCURRENCY))

        async def bounded(record: FlightRecord) -> SyncOutcome:
            async with semaphore:
                return await self.sync_flight(record, snapshot=seeds.get(str(record.key)))

        outcomes = list(await asyncio.gather(*(bounded(r) for r in records)))
        summary = TickSummary.from_outcomes(outcomes)
        logger.info(
            f"[POLL] Tick complete: {summary.total} flights, {summary.committed} committed, "
            f"{summary.commit_failed} commit failures, {summary.denied} denied, "
            f"{summary.skipped} skipped, {summary.failed} failed"
        )
        return outcomes

    async def sync_flight(self, record: FlightRecord, snapshot: Optional[FlightSnapshot] = None) -> SyncOutcome:
        """
        Poll one flight. Never raises; every failure becomes an outcome.

        `snapshot` skips the provider call when the caller already fetched it
        (daily rollover seeds today's record this way).
        """
        key = record.key
        try:
            async with self.context.key_locks.hold(key):
                return await self._sync_locked(record, snapshot)
        except Exception as e:
            logger.exception(f"[POLL] Unexpected error syncing {key}: {e}")
            self.context.incr("poll_unexpected_errors")
            return SyncOutcome(key=str(key), kind=OutcomeKind.UNEXPECTED_ERROR, reason=str(e))

    async def _sync_locked(self, record: FlightRecord, snapshot: Optional[FlightSnapshot]) -> SyncOutcome:
        key = record.key
        current = await self.store.get(key) or record
        previous = current.status_code

        if current.is_terminal:
            return SyncOutcome(
                key=str(key),
                kind=OutcomeKind.SKIPPED_TERMINAL,
                previous_status=previous,
                reason=f"terminal status {previous}",
            )

        if snapshot is None:
            try:
                snapshot = await self.adapter.fetch(
                    key.flight_number,
                    key.departure_date,
                    key.departure_airport,
                    key.arrival_airport or None,
                )
            except AdapterError as e:
                logger.warning(f"[POLL] Provider error for {key}: {e}")
                self.context.incr("adapter_errors")
                return SyncOutcome(
                    key=str(key), kind=OutcomeKind.ADAPTER_ERROR, previous_status=previous, reason=str(e)
                )

        if snapshot is None:
            return SyncOutcome(key=str(key), kind=OutcomeKind.NOT_FOUND, previous_status=previous)

        decision = validate_transition(previous, snapshot.status_code)
        if not decision.allowed:
            self.context.incr("transitions_denied")
            return SyncOutcome(
                key=str(key),
                kind=OutcomeKind.DENIED,
                previous_status=previous,
                new_status=snapshot.status_code,
                reason=decision.reason,
            )

        snapshot = with_derived_states(apply_status_effects(snapshot))
        logger.info(f"[POLL] {key}: {previous or '-'} -> {snapshot.status_code} ({decision.reason})")

        # A new status starts a fresh commit cycle
        fresh = current.model_copy(update={"commit_attempts": 0, "dead_lettered": False})
        return await self._commit(fresh, snapshot, previous=previous)

    # =========================================================================
    # COMMIT
    # =========================================================================

    async def commit_record(self, record: FlightRecord, now: Optional[datetime] = None) -> SyncOutcome:
        """
        Retry the ledger commit for a record from its stored snapshot.
        Used by the reconciliation sweeper; nothing is re-fetched.
        """
        key = record.key
        try:
            async with self.context.key_locks.hold(key):
                current = await self.store.get(key) or record
                if current.committed:
                    return SyncOutcome(
                        key=str(key),
                        kind=OutcomeKind.COMMITTED,
                        new_status=current.status_code,
                        tx_ref=current.tx_ref,
                        reason="already committed",
                    )
                if not current.snapshot:
                    return SyncOutcome(key=str(key), kind=OutcomeKind.INVALID_SNAPSHOT, reason="no stored snapshot")
                snapshot = FlightSnapshot.model_validate(current.snapshot)
                return await self._commit(current, snapshot, previous=current.status_code, now=now)
        except Exception as e:
            logger.exception(f"[SWEEP] Unexpected error committing {key}: {e}")
            self.context.incr("sweep_unexpected_errors")
            return SyncOutcome(key=str(key), kind=OutcomeKind.UNEXPECTED_ERROR, reason=str(e))

    async def _commit(
        self,
        record: FlightRecord,
        snapshot: FlightSnapshot,
        previous: Optional[str],
        now: Optional[datetime] = None,
    ) -> SyncOutcome:
        key = record.key
        new_status = snapshot.status_code

        try:
            payload = prepare_ledger_payload(snapshot, self.settings.ENCRYPTION_KEY, key=key)
        except EncryptionConfigError as e:
            logger.error(f"[LEDGER] Encryption misconfigured, not committing {key}: {e}")
            self.context.incr("config_errors")
            return SyncOutcome(
                key=str(key), kind=OutcomeKind.CONFIG_ERROR, previous_status=previous, new_status=new_status, reason=str(e)
            )
        except SnapshotValidationError as e:
            logger.warning(f"[LEDGER] Rejected snapshot for {key}: {e}")
            self.context.incr("invalid_snapshots")
            return SyncOutcome(
                key=str(key),
                kind=OutcomeKind.INVALID_SNAPSHOT,
                previous_status=previous,
                new_status=new_status,
                reason=str(e),
            )

        state = _snapshot_fields(snapshot)

        try:
            receipt = await self.ledger.commit(payload)
        except LedgerError as e:
            retry = self.policy.after_failure(record.commit_attempts, now=now or _utcnow(), retryable=e.retryable)
            await self.store.put(
                record.model_copy(
                    update={
                        **state,
                        "committed": False,
                        "last_error": f"{type(e).__name__}: {e}",
                        "commit_attempts": retry.commit_attempts,
                        "next_attempt_at": retry.next_attempt_at,
                        "dead_lettered": retry.dead_lettered,
                    }
                )
            )
            self.context.incr("commit_failures")
            if retry.dead_lettered:
                logger.error(
                    f"[LEDGER] Dead-lettered {key} after {retry.commit_attempts} failed commits: "
                    f"{type(e).__name__}: {e}"
                )
                self.context.incr("dead_lettered")
                kind = OutcomeKind.DEAD_LETTERED
            else:
                logger.warning(
                    f"[LEDGER] Commit failed for {key} (attempt {retry.commit_attempts}, "
                    f"next at {retry.next_attempt_at.isoformat()}): {type(e).__name__}: {e}"
                )
                kind = OutcomeKind.COMMIT_FAILED
            return SyncOutcome(
                key=str(key),
                kind=kind,
                previous_status=previous,
                new_status=new_status,
                reason=str(e),
                tx_ref=e.tx_ref,
            )

        await self.store.put(
            record.model_copy(
                update={
                    **state,
                    "committed": True,
                    "tx_ref": receipt.tx_ref or record.tx_ref,
                    "block_number": receipt.block_number if receipt.tx_ref else record.block_number,
                    "last_error": None,
                    "commit_attempts": 0,
                    "next_attempt_at": None,
                    "dead_lettered": False,
                }
            )
        )

        if receipt.already_anchored:
            self.context.incr("already_anchored")
            kind = OutcomeKind.ALREADY_ANCHORED
        else:
            self.context.incr("commits")
            kind = OutcomeKind.COMMITTED

        return SyncOutcome(
            key=str(key),
            kind=kind,
            previous_status=previous,
            new_status=new_status,
            tx_ref=receipt.tx_ref or record.tx_ref,
        )

    # =========================================================================
    # STATS
    # =========================================================================

    async def get_sync_stats(self) -> dict:
        """Mirror totals plus the context's counters."""
        counts = await self.store.counts()
        return {
            **counts,
            "counters": self.context.snapshot_counters(),
        }
