"""
FlightLedger - Flight domain schemas

The external provider's loosely-typed response is parsed into FlightSnapshot
exactly once, at the adapter boundary. Everything downstream consumes these
models only.
"""

from datetime import datetime
from enum import Enum
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class FlightStatus(str, Enum):
    """Status codes that participate in the transition graph."""
    NDPT = "NDPT"
    OUT = "OUT"
    OFF = "OFF"
    ON = "ON"
    IN = "IN"
    CNCL = "CNCL"
    RTBL = "RTBL"
    RTFL = "RTFL"
    DVRT = "DVRT"


STATUS_DESCRIPTIONS: dict[str, str] = {
    "NDPT": "Not Departed",
    "OUT": "Departed Gate",
    "OFF": "In Flight",
    "ON": "Landed",
    "IN": "Arrived at Gate",
    "CNCL": "Cancelled",
    "RTBL": "Returned to Gate",
    "RTFL": "Returned to Airport",
    "DVRT": "Diverted",
}

TERMINAL_STATUSES = frozenset({FlightStatus.IN.value, FlightStatus.CNCL.value})


class FlightKey(BaseModel):
    """Tracking key. A new departure date starts a new lifecycle."""
    model_config = ConfigDict(frozen=True)

    carrier_code: str
    flight_number: str
    departure_date: str
    departure_airport: str
    arrival_airport: str = ""

    def ledger_key(self) -> dict[str, str]:
        """Cleartext identity fields used for on-ledger lookup."""
        return {
            "flight_number": self.flight_number,
            "departure_date": self.departure_date,
            "carrier_code": self.carrier_code,
            "departure_airport": self.departure_airport,
        }

    def __str__(self) -> str:
        route = self.departure_airport
        if self.arrival_airport:
            route = f"{route}-{self.arrival_airport}"
        return f"{self.carrier_code}{self.flight_number}@{self.departure_date}/{route}"


class MarketingSegment(BaseModel):
    """Codeshare marketing segment."""
    airline_code: str = ""
    flight_number: str = ""


class FlightSnapshot(BaseModel):
    """Normalized status snapshot from the external provider."""

    # Identity
    flight_number: str = ""
    carrier_code: str = ""
    departure_date: str = ""
    departure_airport: str = ""
    arrival_airport: str = ""

    # Route / equipment
    departure_city: str = ""
    arrival_city: str = ""
    operating_airline: str = ""
    departure_gate: str = ""
    arrival_gate: str = ""
    equipment_model: str = ""
    baggage_claim: str = ""

    # Status
    status_code: str = ""
    status_description: str = ""
    departure_state: str = ""
    arrival_state: str = ""

    # UTC times
    actual_arrival_utc: str = ""
    actual_departure_utc: str = ""
    estimated_arrival_utc: str = ""
    estimated_departure_utc: str = ""
    scheduled_arrival_utc: str = ""
    scheduled_departure_utc: str = ""
    decision_time_utc: str = ""
    out_utc: str = ""
    off_utc: str = ""
    on_utc: str = ""
    in_utc: str = ""

    arrival_delay_minutes: int = 0
    departure_delay_minutes: int = 0

    # Irregular operations
    is_canceled: bool = False
    is_diverted: bool = False
    diverted_to: str = ""
    is_returned_to_gate: bool = False
    is_returned_to_airport: bool = False
    is_extra_stop: bool = False
    is_no_stop: bool = False
    has_mishap: bool = False

    marketing_segments: list[MarketingSegment] = Field(default_factory=list)

    @field_validator("status_code")
    @classmethod
    def _normalize_status(cls, v: str) -> str:
        return v.strip().upper()


class FlightRecord(BaseModel):
    """Mirror-store record of a tracked flight's current state."""

    key: FlightKey
    status_code: Optional[str] = None

    out_utc: str = ""
    off_utc: str = ""
    on_utc: str = ""
    in_utc: str = ""
    departure_delay_minutes: int = 0
    arrival_delay_minutes: int = 0

    committed: bool = False
    tx_ref: Optional[str] = None
    block_number: Optional[int] = None
    snapshot: Optional[dict] = None

    tracked: bool = True
    commit_attempts: int = 0
    next_attempt_at: Optional[datetime] = None
    dead_lettered: bool = False
    last_error: Optional[str] = None

    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def is_terminal(self) -> bool:
        return (self.status_code or "") in TERMINAL_STATUSES


class TransitionDecision(BaseModel):
    """Result of validating a status change."""
    allowed: bool
    reason: str
    previous: Optional[str] = None
    new: str


class LedgerPayload(BaseModel):
    """Prepared, selectively-encrypted ledger write."""

    key: FlightKey
    flight_data: list[str]
    utc_times: list[str]
    status_data: list[str]
    marketing_airline_codes: list[str] = Field(default_factory=list)
    marketing_flight_numbers: list[str] = Field(default_factory=list)
    compressed_snapshot: str

    # Encrypted time of the latest phase event, sent with status updates
    event_time: str = ""

    # Cleartext status code, used locally only (never sent)
    status_code: str

    @field_validator("flight_data")
    @classmethod
    def _flight_data_len(cls, v: list[str]) -> list[str]:
        if len(v) != 12:
            raise ValueError(f"flight_data must have 12 elements, got {len(v)}")
        return v

    @field_validator("utc_times")
    @classmethod
    def _utc_times_len(cls, v: list[str]) -> list[str]:
        if len(v) != 9:
            raise ValueError(f"utc_times must have 9 elements, got {len(v)}")
        return v

    @field_validator("status_data")
    @classmethod
    def _status_data_len(cls, v: list[str]) -> list[str]:
        if len(v) != 8:
            raise ValueError(f"status_data must have 8 elements, got {len(v)}")
        return v


class CommitReceipt(BaseModel):
    """Result of a ledger commit."""
    operation: Literal["insert", "update", "none"]
    tx_ref: Optional[str] = None
    block_number: Optional[int] = None
    already_anchored: bool = False


class OutcomeKind(str, Enum):
    """Per-flight result of a poll or sweep step."""
    COMMITTED = "COMMITTED"
    ALREADY_ANCHORED = "ALREADY_ANCHORED"
    COMMIT_FAILED = "COMMIT_FAILED"
    DENIED = "DENIED"
    NOT_FOUND = "NOT_FOUND"
    SKIPPED_TERMINAL = "SKIPPED_TERMINAL"
    ADAPTER_ERROR = "ADAPTER_ERROR"
    INVALID_SNAPSHOT = "INVALID_SNAPSHOT"
    CONFIG_ERROR = "CONFIG_ERROR"
    DEAD_LETTERED = "DEAD_LETTERED"
    UNEXPECTED_ERROR = "UNEXPECTED_ERROR"


class SyncOutcome(BaseModel):
    """Outcome of processing one flight."""
    key: str
    kind: OutcomeKind
    previous_status: Optional[str] = None
    new_status: Optional[str] = None
    reason: Optional[str] = None
    tx_ref: Optional[str] = None


class TickSummary(BaseModel):
    """Aggregate of one scheduler tick."""
    total: int = 0
    committed: int = 0
    commit_failed: int = 0
    denied: int = 0
    skipped: int = 0
    failed: int = 0

    @classmethod
    def from_outcomes(cls, outcomes: list[SyncOutcome]) -> "TickSummary":
        summary = cls(total=len(outcomes))
        for outcome in outcomes:
            if outcome.kind in (OutcomeKind.COMMITTED, OutcomeKind.ALREADY_ANCHORED):
                summary.committed += 1
            elif outcome.kind in (OutcomeKind.COMMIT_FAILED, OutcomeKind.DEAD_LETTERED):
                summary.commit_failed += 1
            elif outcome.kind == OutcomeKind.DENIED:
                summary.denied += 1
            elif outcome.kind in (OutcomeKind.NOT_FOUND, OutcomeKind.SKIPPED_TERMINAL):
                summary.skipped += 1
            else:
                summary.failed += 1
        return summary
