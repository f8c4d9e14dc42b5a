"""
FlightLedger - Ledger payload preparation

Turns a typed FlightSnapshot into the fixed-shape string arrays the ledger
accepts, selectively encrypting everything except the identity fields needed
for cleartext lookup, and attaches a compressed copy of the full snapshot
for history queries.

Identity / route array (12):
    0 flight number*   1 departure date*   2 carrier code*   3 arrival city
    4 departure city   5 arrival airport*  6 departure airport*
    7 operating airline  8 arrival gate  9 departure gate
    10 status code  11 equipment model
UTC times array (9):
    actual arr, actual dep, estimated arr, estimated dep, scheduled arr,
    scheduled dep, arrival delay min, departure delay min, baggage claim
Status array (8):
    status code, description, arrival state, departure state, OUT, OFF, ON, IN

(* = cleartext)
"""

import logging
from datetime import datetime, timezone
from typing import Optional

from flightledger.core.errors import SnapshotValidationError
from flightledger.models.flight import (
    STATUS_DESCRIPTIONS,
    FlightKey,
    FlightSnapshot,
    FlightStatus,
    LedgerPayload,
)
from flightledger.services.crypto import (
    compress_snapshot,
    encrypt_string,
    encryption_key_bytes,
    selective_encrypt,
)

logger = logging.getLogger(__name__)

IDENTITY_CLEARTEXT_INDICES = (0, 1, 2, 5, 6)

REQUIRED_FIELDS = ("flight_number", "carrier_code", "departure_date")

PHASE_TIMESTAMP_FIELDS = {
    FlightStatus.OUT.value: "out_utc",
    FlightStatus.OFF.value: "off_utc",
    FlightStatus.ON.value: "on_utc",
    FlightStatus.IN.value: "in_utc",
}


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def validate_snapshot(snapshot: FlightSnapshot) -> None:
    missing = [name for name in REQUIRED_FIELDS if not getattr(snapshot, name)]
    if missing:
        raise SnapshotValidationError(missing)


def apply_status_effects(snapshot: FlightSnapshot, now_iso: Optional[str] = None) -> FlightSnapshot:
    """
    Stamp the phase timestamp for the snapshot's status and apply the
    irregular-operation flags that status implies.

    OUT/OFF/ON/IN timestamps default to the current UTC time when the
    provider did not report them.
    """
    now_iso = now_iso or utc_now_iso()
    code = snapshot.status_code
    updates: dict = {}

    ts_field = PHASE_TIMESTAMP_FIELDS.get(code)
    if ts_field and not getattr(snapshot, ts_field):
        updates[ts_field] = now_iso

    if code == FlightStatus.OUT.value and not snapshot.actual_departure_utc:
        updates["actual_departure_utc"] = snapshot.out_utc or now_iso
    elif code == FlightStatus.IN.value and not snapshot.actual_arrival_utc:
        updates["actual_arrival_utc"] = snapshot.in_utc or now_iso
    elif code == FlightStatus.CNCL.value:
        updates["is_canceled"] = True
    elif code == FlightStatus.RTBL.value:
        updates["is_returned_to_gate"] = True
    elif code == FlightStatus.RTFL.value:
        updates["is_returned_to_airport"] = True
    elif code == FlightStatus.DVRT.value:
        updates["is_diverted"] = True
        if snapshot.diverted_to:
            updates["arrival_airport"] = snapshot.diverted_to

    if not snapshot.status_description:
        updates["status_description"] = STATUS_DESCRIPTIONS.get(code, "Scheduled")

    if not updates:
        return snapshot
    return snapshot.model_copy(update=updates)


def build_flight_data(snapshot: FlightSnapshot) -> list[str]:
    return [
        snapshot.flight_number,
        snapshot.departure_date,
        snapshot.carrier_code,
        snapshot.arrival_city,
        snapshot.departure_city,
        snapshot.arrival_airport,
        snapshot.departure_airport,
        snapshot.operating_airline or snapshot.carrier_code,
        snapshot.arrival_gate,
        snapshot.departure_gate,
        snapshot.status_code.upper(),
        snapshot.equipment_model,
    ]


def build_utc_times(snapshot: FlightSnapshot) -> list[str]:
    return [
        snapshot.actual_arrival_utc,
        snapshot.actual_departure_utc,
        snapshot.estimated_arrival_utc,
        snapshot.estimated_departure_utc,
        snapshot.scheduled_arrival_utc,
        snapshot.scheduled_departure_utc,
        str(snapshot.arrival_delay_minutes or 0),
        str(snapshot.departure_delay_minutes or 0),
        snapshot.baggage_claim,
    ]


def build_status_data(snapshot: FlightSnapshot) -> list[str]:
    return [
        snapshot.status_code,
        snapshot.status_description,
        snapshot.arrival_state,
        snapshot.departure_state,
        snapshot.out_utc,
        snapshot.off_utc,
        snapshot.on_utc,
        snapshot.in_utc,
    ]


def build_marketing_arrays(snapshot: FlightSnapshot) -> tuple[list[str], list[str]]:
    codes = [segment.airline_code or "" for segment in snapshot.marketing_segments]
    numbers = [segment.flight_number or "" for segment in snapshot.marketing_segments]
    return codes, numbers


def key_for_snapshot(snapshot: FlightSnapshot, arrival_airport: Optional[str] = None) -> FlightKey:
    return FlightKey(
        carrier_code=snapshot.carrier_code,
        flight_number=snapshot.flight_number,
        departure_date=snapshot.departure_date,
        departure_airport=snapshot.departure_airport,
        arrival_airport=snapshot.arrival_airport if arrival_airport is None else arrival_airport,
    )


def prepare_ledger_payload(
    snapshot: FlightSnapshot,
    encryption_key: Optional[str | bytes],
    key: Optional[FlightKey] = None,
) -> LedgerPayload:
    """
    Build the selectively-encrypted ledger payload for a snapshot.

    Raises:
        EncryptionConfigError: key absent or not 32 bytes (checked first)
        SnapshotValidationError: identity fields missing
    """
    raw_key = encryption_key_bytes(encryption_key)
    validate_snapshot(snapshot)

    flight_data = build_flight_data(snapshot)
    utc_times = build_utc_times(snapshot)
    status_data = build_status_data(snapshot)
    marketing_codes, marketing_numbers = build_marketing_arrays(snapshot)
    event_time = (
        snapshot.in_utc or snapshot.on_utc or snapshot.off_utc or snapshot.out_utc or utc_now_iso()
    )

    payload = LedgerPayload(
        key=key or key_for_snapshot(snapshot),
        flight_data=selective_encrypt(flight_data, raw_key, IDENTITY_CLEARTEXT_INDICES),
        utc_times=selective_encrypt(utc_times, raw_key),
        status_data=selective_encrypt(status_data, raw_key),
        marketing_airline_codes=selective_encrypt(marketing_codes, raw_key),
        marketing_flight_numbers=selective_encrypt(marketing_numbers, raw_key),
        compressed_snapshot=compress_snapshot(snapshot.model_dump(mode="json")),
        event_time=encrypt_string(event_time, raw_key),
        status_code=snapshot.status_code,
    )
    logger.debug(f"[TRANSFORM] Prepared ledger payload for {payload.key} ({snapshot.status_code})")
    return payload
