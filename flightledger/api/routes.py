"""
FlightLedger - HTTP surface

Thin routes over the runtime. No sync logic lives here.
"""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status

from flightledger.core.errors import EncryptionConfigError, LedgerConfigError, LedgerError, TickInProgress
from flightledger.models.flight import FlightKey, FlightRecord, TickSummary
from flightledger.runtime import Runtime
from flightledger.services.history import HistoryEntry
from flightledger.services.tracking import SubscriptionRequest, UnsubscribeRequest

router = APIRouter()


def get_runtime(request: Request) -> Runtime:
    return request.app.state.runtime


@router.get("/health")
async def health(runtime: Runtime = Depends(get_runtime)):
    """Service, ledger and scheduler health."""
    ledger_ok = await runtime.ledger.ping()
    return {
        "status": "healthy" if ledger_ok else "degraded",
        "service": runtime.context.settings.APP_NAME,
        "ledger": "connected" if ledger_ok else "unreachable",
        "scheduler": runtime.scheduler.status(),
    }


@router.get("/sync/stats")
async def sync_stats(runtime: Runtime = Depends(get_runtime)):
    return await runtime.sync.get_sync_stats()


@router.post("/sync/poll", response_model=TickSummary)
async def trigger_poll(runtime: Runtime = Depends(get_runtime)):
    """Run one poll tick now; 409 if a poll tick is already running."""
    try:
        outcomes = await runtime.scheduler.trigger_poll()
    except TickInProgress as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    return TickSummary.from_outcomes(outcomes)


@router.post("/sync/sweep", response_model=TickSummary)
async def trigger_sweep(runtime: Runtime = Depends(get_runtime)):
    """Run one reconciliation sweep now; 409 if a sweep is already running."""
    try:
        outcomes = await runtime.scheduler.trigger_sweep()
    except TickInProgress as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    return TickSummary.from_outcomes(outcomes)


# =============================================================================
# SUBSCRIPTIONS
# =============================================================================


def _ledger_http_error(e: LedgerError) -> HTTPException:
    if isinstance(e, LedgerConfigError):
        return HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(e))
    return HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=f"Ledger error: {e}")


@router.post("/subscriptions", response_model=FlightRecord, status_code=status.HTTP_201_CREATED)
async def subscribe(payload: SubscriptionRequest, runtime: Runtime = Depends(get_runtime)):
    try:
        return await runtime.tracking.subscribe(payload)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except LedgerError as e:
        raise _ledger_http_error(e)


@router.delete("/subscriptions")
async def unsubscribe(payload: UnsubscribeRequest, runtime: Runtime = Depends(get_runtime)):
    try:
        untracked = await runtime.tracking.unsubscribe_batch(payload)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except LedgerError as e:
        raise _ledger_http_error(e)
    return {"removed": len(payload.flight_numbers), "untracked_records": untracked}


# =============================================================================
# HISTORY
# =============================================================================


@router.get("/flights/{carrier_code}/{flight_number}/history", response_model=list[HistoryEntry])
async def flight_history(
    carrier_code: str,
    flight_number: str,
    from_date: str = Query(..., description="YYYY-MM-DD"),
    to_date: str = Query(..., description="YYYY-MM-DD"),
    departure_airport: Optional[str] = Query(default=""),
    runtime: Runtime = Depends(get_runtime),
):
    key = FlightKey(
        carrier_code=carrier_code.upper(),
        flight_number=flight_number,
        departure_date=from_date,
        departure_airport=(departure_airport or "").upper(),
    )
    try:
        return await runtime.history.get_history(key, from_date, to_date)
    except EncryptionConfigError as e:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(e))
    except LedgerError as e:
        raise _ledger_http_error(e)
