from flightledger.models.flight import (
    CommitReceipt,
    FlightKey,
    FlightRecord,
    FlightSnapshot,
    FlightStatus,
    LedgerPayload,
    OutcomeKind,
    SyncOutcome,
    TickSummary,
    TransitionDecision,
)
