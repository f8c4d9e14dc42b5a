"""
FlightLedger - Error taxonomy

Every failure in the sync core is per-flight and isolated. Callers map these
exceptions onto an OutcomeKind at the call site; nothing here is allowed to
terminate the process.
"""

from typing import Optional


class FlightLedgerError(Exception):
    """Base class for all core errors."""


class SnapshotValidationError(FlightLedgerError):
    """Snapshot is missing a field required to build a ledger payload."""

    def __init__(self, missing: list[str]):
        self.missing = missing
        super().__init__(f"Missing required snapshot fields: {', '.join(missing)}")


class EncryptionConfigError(FlightLedgerError):
    """Encryption key is absent or not exactly 32 bytes."""


class CorruptSnapshotError(FlightLedgerError):
    """Compressed snapshot blob could not be decoded."""


class AdapterError(FlightLedgerError):
    """External flight-data provider unreachable or returned an error."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


# =============================================================================
# LEDGER
# =============================================================================


class LedgerError(FlightLedgerError):
    """Base class for ledger commit failures."""

    retryable: bool = True

    def __init__(self, message: str, tx_ref: Optional[str] = None):
        self.tx_ref = tx_ref
        super().__init__(message)


class InsufficientFunds(LedgerError):
    """Signer balance cannot cover the transaction cost."""


class NoncesOutOfOrder(LedgerError):
    """Submitted nonce was stale or skipped ahead."""


class Underpriced(LedgerError):
    """Offered price is below what the ledger currently accepts."""


class EstimationFailed(LedgerError):
    """Pre-flight cost estimation failed; the transaction was never submitted."""


class Reverted(LedgerError):
    """Ledger rejected the payload (duplicate, malformed, unauthorized signer)."""


class LedgerNetworkError(LedgerError):
    """Transport failure or timeout talking to the ledger gateway."""


class LedgerConfigError(LedgerError):
    """Signing credential missing or unreadable."""

    retryable = False


# =============================================================================
# SCHEDULER
# =============================================================================


class TickInProgress(FlightLedgerError):
    """A manual trigger arrived while the same job's tick was still running."""
