"""
FlightLedger - Reconciliation sweeper (bounded)

Rules:
- select committed = false, not dead-lettered, next_attempt_at <= now
- oldest first, at most SWEEP_BATCH_SIZE per sweep
- re-derive the payload from the stored snapshot (no re-fetch) and commit
- success: committed = true, tx_ref stored, attempts reset
- failure: attempts + 1, next_attempt_at = now + min(base * 2^(attempts-1), cap)
- after SWEEP_MAX_ATTEMPTS failures: dead-lettered, no longer swept
"""

import logging
from datetime import datetime, timezone
from typing import Optional

from flightledger.core.context import SyncContext
from flightledger.models.flight import OutcomeKind, SyncOutcome, TickSummary
from flightledger.services.ledger_sync import LedgerSyncService
from flightledger.services.mirror_store import MirrorStore, RecordFilter

logger = logging.getLogger(__name__)


class ReconciliationSweeper:
    """Retries ledger commits that did not make it the first time."""

    def __init__(self, context: SyncContext, store: MirrorStore, sync: LedgerSyncService):
        self.context = context
        self.store = store
        self.sync = sync

    async def sweep(self, now: Optional[datetime] = None) -> list[SyncOutcome]:
        now = now or datetime.now(timezone.utc)
        due = await self.store.scan(
            RecordFilter(
                committed=False,
                dead_lettered=False,
                seeded=True,
                due_before=now,
                limit=self.context.settings.SWEEP_BATCH_SIZE,
            )
        )
        if not due:
            logger.debug("[SWEEP] Nothing to reconcile")
            return []

        logger.info(f"[SWEEP] Reconciling {len(due)} uncommitted flights")

        # Sequential: every commit goes through the one signer anyway
        outcomes = []
        for record in due:
            outcome = await self.sync.commit_record(record, now=now)
            if outcome.kind in (OutcomeKind.COMMITTED, OutcomeKind.ALREADY_ANCHORED):
                logger.info(f"[SWEEP] Reconciled {outcome.key} tx={outcome.tx_ref}")
                self.context.incr("sweep_reconciled")
            outcomes.append(outcome)

        summary = TickSummary.from_outcomes(outcomes)
        logger.info(
            f"[SWEEP] Sweep complete: {summary.committed}/{summary.total} reconciled, "
            f"{summary.commit_failed} still failing, {summary.failed} errors"
        )
        return outcomes
