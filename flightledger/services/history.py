"""
FlightLedger - Ledger history reads

Ledger entries come back with encrypted arrays and a compressed snapshot.
Each entry is decoded independently: a corrupt blob or an undecryptable
field is reported on that entry instead of failing the whole query.
"""

import logging
from typing import Any, Optional

from pydantic import BaseModel, Field

from flightledger.bridges.ledger import LedgerClient
from flightledger.core.errors import CorruptSnapshotError
from flightledger.models.flight import FlightKey
from flightledger.services.crypto import (
    FieldDecryptionError,
    decompress_snapshot,
    decrypt_values,
    encryption_key_bytes,
)

logger = logging.getLogger(__name__)

ARRAY_FIELDS = (
    "flight_data",
    "utc_times",
    "status_data",
    "marketing_airline_codes",
    "marketing_flight_numbers",
)


class HistoryEntry(BaseModel):
    """One decoded ledger entry."""
    tx_ref: Optional[str] = None
    block_number: Optional[int] = None
    timestamp: Optional[str] = None
    arrays: dict[str, list[Optional[str]]] = Field(default_factory=dict)
    snapshot: Optional[dict] = None
    errors: list[str] = Field(default_factory=list)


def decode_history_entry(entry: dict[str, Any], encryption_key: str) -> HistoryEntry:
    decoded = HistoryEntry(
        tx_ref=entry.get("tx_ref"),
        block_number=entry.get("block_number"),
        timestamp=entry.get("timestamp"),
    )

    for name in ARRAY_FIELDS:
        values = entry.get(name)
        if values is None:
            continue
        try:
            decoded.arrays[name] = decrypt_values([str(v) if v is not None else "" for v in values], encryption_key)
        except FieldDecryptionError as e:
            decoded.errors.append(f"{name}: {e}")

    blob = entry.get("compressed_snapshot")
    if blob:
        try:
            decoded.snapshot = decompress_snapshot(blob)
        except CorruptSnapshotError as e:
            decoded.errors.append(f"compressed_snapshot: {e}")

    return decoded


class HistoryService:
    def __init__(self, ledger: LedgerClient, encryption_key: str):
        self.ledger = ledger
        self.encryption_key = encryption_key

    async def get_history(self, key: FlightKey, from_date: str, to_date: str) -> list[HistoryEntry]:
        """
        Ledger history for a flight between two departure dates, decoded.

        Raises:
            EncryptionConfigError: key absent or not 32 bytes
            LedgerError: gateway read failed
        """
        encryption_key_bytes(self.encryption_key)
        entries = await self.ledger.get_history(key, from_date, to_date)
        decoded = [decode_history_entry(entry, self.encryption_key) for entry in entries]
        corrupt = sum(1 for entry in decoded if entry.errors)
        if corrupt:
            logger.warning(f"[HISTORY] {corrupt}/{len(decoded)} entries for {key} could not be fully decoded")
        return decoded
