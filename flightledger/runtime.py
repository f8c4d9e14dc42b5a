"""
FlightLedger - Runtime assembly

Builds the context, store, bridges and services from settings. One Runtime
per process; the FastAPI lifespan owns it.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncEngine

from flightledger.bridges.flight_data import FlightDataAdapter
from flightledger.bridges.ledger import LedgerClient
from flightledger.core.config import Settings
from flightledger.core.context import SyncContext
from flightledger.db.session import create_engine, create_session_maker, init_models
from flightledger.services.history import HistoryService
from flightledger.services.ledger_sync import LedgerSyncService
from flightledger.services.mirror_store import InMemoryMirrorStore, MirrorStore, SqlMirrorStore
from flightledger.services.reconciler import ReconciliationSweeper
from flightledger.services.scheduler import Scheduler
from flightledger.services.tracking import TrackingService

logger = logging.getLogger(__name__)


@dataclass
class Runtime:
    context: SyncContext
    store: MirrorStore
    adapter: FlightDataAdapter
    ledger: LedgerClient
    tracking: TrackingService
    sync: LedgerSyncService
    sweeper: ReconciliationSweeper
    scheduler: Scheduler
    history: HistoryService
    engine: Optional[AsyncEngine] = None

    async def close(self) -> None:
        await self.scheduler.stop()
        await self.adapter.close()
        await self.ledger.close()
        if self.engine is not None:
            await self.engine.dispose()


def build_runtime(
    settings: Settings,
    store: Optional[MirrorStore] = None,
    adapter: Optional[FlightDataAdapter] = None,
    ledger: Optional[LedgerClient] = None,
    context: Optional[SyncContext] = None,
) -> Runtime:
    """Wire every component. Injected parts replace the defaults (tests)."""
    context = context or SyncContext(settings=settings)
    engine = None
    if store is None:
        engine = create_engine(settings.DATABASE_URL)
        store = SqlMirrorStore(create_session_maker(engine))

    adapter = adapter or FlightDataAdapter(settings)
    ledger = ledger or LedgerClient(context)
    tracking = TrackingService(context, store, adapter, ledger)
    sync = LedgerSyncService(context, store, adapter, ledger, tracking=tracking)
    sweeper = ReconciliationSweeper(context, store, sync)

    return Runtime(
        context=context,
        store=store,
        adapter=adapter,
        ledger=ledger,
        tracking=tracking,
        sync=sync,
        sweeper=sweeper,
        scheduler=Scheduler(context, sync, sweeper),
        history=HistoryService(ledger, settings.ENCRYPTION_KEY),
        engine=engine,
    )


async def start_runtime(runtime: Runtime) -> None:
    settings = runtime.context.settings
    if runtime.engine is not None:
        await init_models(runtime.engine)
    if settings.SCHEDULER_ENABLED:
        runtime.scheduler.start()
    else:
        logger.info("[SCHEDULER] Disabled by configuration")


def build_memory_runtime(settings: Settings, **overrides) -> Runtime:
    return build_runtime(settings, store=InMemoryMirrorStore(), **overrides)
