"""
FlightLedger - Ledger Bridge

Client for the append-only flight ledger gateway.

Write path (insert / update / subscriptions):
1. Estimate the transaction cost (failure is a hard stop, nothing submitted)
2. Apply the ×1.2 safety margin to get the cost limit
3. Sign the transaction body with the Ed25519 signer and submit
4. Poll the receipt until the ledger confirms inclusion

Submissions share one signing credential, so steps 1-3 run under the
context's signer lock and nonces are issued strictly in order.
"""

import asyncio
import logging
import math
import time
from typing import Any, Optional

import httpx
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey
from pydantic import BaseModel

from flightledger.core.context import SyncContext
from flightledger.core.errors import (
    EstimationFailed,
    InsufficientFunds,
    LedgerConfigError,
    LedgerError,
    LedgerNetworkError,
    NoncesOutOfOrder,
    Reverted,
    Underpriced,
)
from flightledger.models.flight import CommitReceipt, FlightKey, LedgerPayload
from flightledger.services.crypto import (
    FieldDecryptionError,
    canonical_json_bytes,
    decrypt_string,
    load_ed25519_private_key_from_b64,
    public_key_b64,
    sign_ed25519_b64,
)

logger = logging.getLogger(__name__)

COST_SAFETY_MARGIN = 1.2

API_PREFIX = "/api/v1"

# Gateway error codes → taxonomy
ERROR_CODES: dict[str, type[LedgerError]] = {
    "INSUFFICIENT_FUNDS": InsufficientFunds,
    "NONCE_TOO_LOW": NoncesOutOfOrder,
    "NONCE_TOO_HIGH": NoncesOutOfOrder,
    "NONCE_EXPIRED": NoncesOutOfOrder,
    "UNDERPRICED": Underpriced,
    "REPLACEMENT_UNDERPRICED": Underpriced,
    "UNPREDICTABLE_COST": EstimationFailed,
    "REVERTED": Reverted,
    "CALL_EXCEPTION": Reverted,
    "DUPLICATE_FLIGHT": Reverted,
    "INVALID_ARRAY_LENGTH": Reverted,
    "UNAUTHORIZED_SIGNER": Reverted,
}


class TransactionReceipt(BaseModel):
    """Inclusion confirmation for a submitted transaction."""
    tx_ref: str
    block_number: Optional[int] = None


class LedgerClient:
    """Signed read/write access to the flight ledger."""

    def __init__(
        self,
        context: SyncContext,
        client: Optional[httpx.AsyncClient] = None,
        signing_key_b64: Optional[str] = None,
    ):
        settings = context.settings
        self.context = context
        self.base_url = settings.LEDGER_BASE_URL.rstrip("/")
        self.client = client or httpx.AsyncClient(timeout=settings.LEDGER_TIMEOUT_SECONDS)
        self._signing_key_b64 = signing_key_b64 or settings.LEDGER_SIGNING_KEY_B64
        self._private_key: Optional[Ed25519PrivateKey] = None
        self._sender: Optional[str] = None

    # =========================================================================
    # TRANSPORT
    # =========================================================================

    def _url(self, path: str) -> str:
        return f"{self.base_url}{API_PREFIX}{path}"

    async def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        try:
            return await self.client.request(method, self._url(path), **kwargs)
        except httpx.TimeoutException as e:
            self.context.incr("ledger_timeouts")
            raise LedgerNetworkError(f"Ledger request timed out: {method} {path}") from e
        except httpx.RequestError as e:
            raise LedgerNetworkError(f"Ledger unavailable: {e}") from e

    @staticmethod
    def _json(response: httpx.Response, what: str, tx_ref: Optional[str] = None) -> dict:
        """Gateway body as a JSON object; any other body is a transport failure."""
        try:
            body = response.json()
        except ValueError as e:
            raise LedgerNetworkError(
                f"Ledger returned a non-JSON {what} response ({response.status_code})", tx_ref=tx_ref
            ) from e
        if not isinstance(body, dict):
            raise LedgerNetworkError(
                f"Ledger returned an unexpected {what} response ({response.status_code})", tx_ref=tx_ref
            )
        return body

    @staticmethod
    def _error_from_response(response: httpx.Response, default: type[LedgerError] = Reverted) -> LedgerError:
        code = ""
        message = response.text
        try:
            body = response.json()
            error = (body.get("error") if isinstance(body, dict) else None) or {}
            if isinstance(error, dict):
                code = str(error.get("code") or "").upper()
                message = error.get("message") or message
            elif isinstance(error, str):
                message = error
        except ValueError:
            pass

        if response.status_code >= 500 and code not in ERROR_CODES:
            return LedgerNetworkError(f"Ledger returned {response.status_code}: {message}")

        exc_type = ERROR_CODES.get(code, default)
        label = f"{response.status_code} {code}" if code else str(response.status_code)
        return exc_type(f"Ledger returned {label}: {message}")

    def _signer(self) -> tuple[Ed25519PrivateKey, str]:
        if self._private_key is None:
            if not self._signing_key_b64:
                raise LedgerConfigError("LEDGER_SIGNING_KEY_B64 is not configured")
            try:
                self._private_key = load_ed25519_private_key_from_b64(self._signing_key_b64)
            except ValueError as e:
                raise LedgerConfigError(f"Invalid ledger signing key: {e}") from e
            self._sender = public_key_b64(self._private_key)
        return self._private_key, self._sender

    # =========================================================================
    # READS
    # =========================================================================

    async def ping(self) -> bool:
        """Connectivity check against the gateway."""
        try:
            response = await self._request("GET", "/health")
        except LedgerNetworkError as e:
            logger.error(f"[LEDGER] Connectivity check failed: {e}")
            return False
        return response.status_code == 200

    async def exists(self, key: FlightKey) -> bool:
        response = await self._request("GET", "/flights/exists", params=key.ledger_key())
        if response.status_code != 200:
            raise self._error_from_response(response, default=LedgerError)
        return bool(self._json(response, "exists").get("exists"))

    async def get_current_status(self, key: FlightKey) -> Optional[str]:
        """Status code as stored on the ledger (possibly encrypted), or None."""
        response = await self._request("GET", "/flights/status", params=key.ledger_key())
        if response.status_code == 404:
            return None
        if response.status_code != 200:
            raise self._error_from_response(response, default=LedgerError)
        status_code = self._json(response, "status").get("status_code")
        if status_code is not None and not isinstance(status_code, str):
            raise LedgerNetworkError(f"Ledger returned a non-string status for {key}")
        return status_code

    async def get_history(self, key: FlightKey, from_date: str, to_date: str) -> list[dict]:
        """Ledger entries for a flight between two departure dates."""
        params = {
            "flight_number": key.flight_number,
            "carrier_code": key.carrier_code,
            "from_date": from_date,
            "to_date": to_date,
        }
        response = await self._request("GET", "/flights/history", params=params)
        if response.status_code == 404:
            return []
        if response.status_code != 200:
            raise self._error_from_response(response, default=LedgerError)
        entries = self._json(response, "history").get("entries") or []
        if not isinstance(entries, list) or not all(isinstance(e, dict) for e in entries):
            raise LedgerNetworkError(f"Ledger returned malformed history entries for {key}")
        return entries

    # =========================================================================
    # TRANSACTIONS
    # =========================================================================

    async def _estimate(self, method: str, args: dict, sender: str) -> int:
        response = await self._request(
            "POST",
            "/transactions/estimate",
            json={"method": method, "args": args, "sender": sender},
        )

        if response.status_code != 200:
            error = self._error_from_response(response, default=EstimationFailed)
            if isinstance(error, InsufficientFunds):
                raise error
            raise EstimationFailed(f"Cost estimation failed for {method}: {error}") from error

        body = self._json(response, "estimate")
        try:
            return int(body["cost"])
        except (KeyError, TypeError, ValueError) as e:
            raise EstimationFailed(f"Cost estimation returned no usable cost for {method}") from e

    async def _next_nonce(self, sender: str) -> int:
        signer = self.context.signer
        if signer.nonce is None:
            response = await self._request("GET", "/accounts/nonce", params={"address": sender})
            if response.status_code != 200:
                raise self._error_from_response(response, default=LedgerError)
            body = self._json(response, "nonce")
            try:
                signer.nonce = int(body["nonce"])
            except (KeyError, TypeError, ValueError) as e:
                raise LedgerNetworkError(f"Ledger returned no usable nonce for {sender}") from e
        return signer.nonce

    async def _submit(self, method: str, args: dict) -> str:
        private_key, sender = self._signer()
        signer = self.context.signer

        async with signer.lock:
            cost = await self._estimate(method, args, sender)
            cost_limit = math.ceil(cost * COST_SAFETY_MARGIN)
            nonce = await self._next_nonce(sender)

            body = {
                "method": method,
                "args": args,
                "sender": sender,
                "nonce": nonce,
                "cost_limit": cost_limit,
            }
            signature = sign_ed25519_b64(private_key, canonical_json_bytes(body))

            try:
                response = await self._request("POST", "/transactions", json={**body, "signature": signature})
            except LedgerNetworkError:
                # Unknown whether the gateway accepted it; refetch next time
                signer.invalidate_nonce()
                raise

            if response.status_code not in (200, 201, 202):
                error = self._error_from_response(response)
                if isinstance(error, NoncesOutOfOrder):
                    signer.invalidate_nonce()
                raise error

            signer.nonce = nonce + 1

        tx_ref = self._json(response, "submit").get("tx_ref")
        if not tx_ref or not isinstance(tx_ref, str):
            raise LedgerError(f"Ledger accepted {method} without a transaction reference")

        logger.info(f"[LEDGER] Submitted {method} tx={tx_ref} nonce={nonce} cost_limit={cost_limit}")
        return tx_ref

    async def _wait_for_inclusion(self, tx_ref: str) -> TransactionReceipt:
        settings = self.context.settings
        deadline = time.monotonic() + settings.LEDGER_CONFIRM_TIMEOUT_SECONDS

        while True:
            response = await self._request("GET", f"/transactions/{tx_ref}/receipt")

            if response.status_code == 200:
                data = self._json(response, "receipt", tx_ref=tx_ref)
                status = str(data.get("status", "")).lower()
                if status == "included":
                    try:
                        return TransactionReceipt(tx_ref=tx_ref, block_number=data.get("block_number"))
                    except ValueError as e:
                        raise LedgerNetworkError(
                            f"Ledger returned a malformed receipt for {tx_ref}", tx_ref=tx_ref
                        ) from e
                if status == "reverted":
                    raise Reverted(f"Transaction {tx_ref} reverted: {data.get('reason', 'unknown')}", tx_ref=tx_ref)
            elif response.status_code != 404:
                raise self._error_from_response(response, default=LedgerError)

            if time.monotonic() >= deadline:
                raise LedgerNetworkError(
                    f"Transaction {tx_ref} not confirmed within {settings.LEDGER_CONFIRM_TIMEOUT_SECONDS}s",
                    tx_ref=tx_ref,
                )
            await asyncio.sleep(settings.LEDGER_CONFIRM_POLL_SECONDS)

    async def transact(self, method: str, args: dict) -> TransactionReceipt:
        """Submit a signed transaction and block until it is included."""
        try:
            tx_ref = await self._submit(method, args)
        except NoncesOutOfOrder:
            logger.warning(f"[LEDGER] Nonce out of order for {method}, retrying with fresh nonce")
            self.context.incr("ledger_nonce_retries")
            tx_ref = await self._submit(method, args)

        receipt = await self._wait_for_inclusion(tx_ref)
        self.context.incr("ledger_transactions")
        logger.info(f"[LEDGER] {method} included tx={receipt.tx_ref} block={receipt.block_number}")
        return receipt

    # =========================================================================
    # FLIGHT OPERATIONS
    # =========================================================================

    async def insert_flight_details(self, payload: LedgerPayload) -> TransactionReceipt:
        return await self.transact(
            "insert_flight_details",
            {
                "flight_data": payload.flight_data,
                "utc_times": payload.utc_times,
                "status_data": payload.status_data,
                "marketing_airline_codes": payload.marketing_airline_codes,
                "marketing_flight_numbers": payload.marketing_flight_numbers,
                "compressed_snapshot": payload.compressed_snapshot,
            },
        )

    async def update_flight_status(self, payload: LedgerPayload) -> TransactionReceipt:
        return await self.transact(
            "update_flight_status",
            {
                **payload.key.ledger_key(),
                "current_time": payload.event_time,
                "flight_status": payload.status_data[1],
                "flight_status_code": payload.status_data[0],
                "status_data": payload.status_data,
                "compressed_snapshot": payload.compressed_snapshot,
            },
        )

    async def add_flight_subscription(
        self,
        flight_number: str,
        carrier_code: str,
        departure_airport: str,
    ) -> TransactionReceipt:
        if not flight_number or not carrier_code or not departure_airport:
            raise ValueError("flight_number, carrier_code and departure_airport are required")
        return await self.transact(
            "add_flight_subscription",
            {
                "flight_number": flight_number,
                "carrier_code": carrier_code,
                "departure_airport": departure_airport,
            },
        )

    async def remove_flight_subscriptions(
        self,
        flight_numbers: list[str],
        carrier_codes: list[str],
        departure_airports: list[str],
    ) -> TransactionReceipt:
        if (
            not flight_numbers
            or len(flight_numbers) != len(carrier_codes)
            or len(flight_numbers) != len(departure_airports)
        ):
            raise ValueError("Invalid or mismatched input arrays")
        return await self.transact(
            "remove_flight_subscriptions",
            {
                "flight_numbers": [str(v or "") for v in flight_numbers],
                "carrier_codes": [str(v or "") for v in carrier_codes],
                "departure_airports": [str(v or "") for v in departure_airports],
            },
        )

    async def commit(self, payload: LedgerPayload) -> CommitReceipt:
        """
        Anchor a prepared payload.

        Absent on the ledger → insert. Present with the same status → already
        anchored, nothing written. Present with another status → update.

        The existence check is best-effort: a concurrent submitter can still
        win the race, which surfaces here as Reverted.
        """
        key = payload.key

        if not await self.exists(key):
            receipt = await self.insert_flight_details(payload)
            return CommitReceipt(operation="insert", tx_ref=receipt.tx_ref, block_number=receipt.block_number)

        anchored = await self.get_current_status(key)
        if anchored is not None:
            try:
                anchored_code = decrypt_string(anchored, self.context.settings.ENCRYPTION_KEY)
            except FieldDecryptionError as e:
                logger.warning(f"[LEDGER] Could not decrypt anchored status for {key}: {e}")
                anchored_code = None
            if anchored_code and anchored_code.strip().upper() == payload.status_code:
                logger.info(f"[LEDGER] {key} already anchored with status {payload.status_code}")
                self.context.incr("ledger_already_anchored")
                return CommitReceipt(operation="none", already_anchored=True)

        receipt = await self.update_flight_status(payload)
        return CommitReceipt(operation="update", tx_ref=receipt.tx_ref, block_number=receipt.block_number)

    async def close(self) -> None:
        await self.client.aclose()
