"""
FlightLedger - Field encryption and signing

AES-256-CBC field cipher (`hex(iv):base64(ct)`), gzip+base64 snapshot blobs
and Ed25519 signatures over canonical JSON.
"""

import base64
import binascii
import gzip
import json
import os
import zlib
from typing import Any, Iterable, Optional, Sequence

from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes
from cryptography.hazmat.primitives.serialization import Encoding, PublicFormat

from flightledger.core.errors import CorruptSnapshotError, EncryptionConfigError, FlightLedgerError

KEY_LENGTH = 32
IV_LENGTH = 16


class FieldDecryptionError(FlightLedgerError):
    """Encrypted field could not be decrypted with the supplied key."""


def canonical_json_bytes(value: Any) -> bytes:
    return json.dumps(value, sort_keys=True, separators=(",", ":"), ensure_ascii=False).encode("utf-8")


# =============================================================================
# FIELD ENCRYPTION (AES-256-CBC)
# =============================================================================


def encryption_key_bytes(key: Optional[str | bytes]) -> bytes:
    if key is None:
        raise EncryptionConfigError("Encryption key is not configured")
    raw = key.encode("utf-8") if isinstance(key, str) else bytes(key)
    if len(raw) != KEY_LENGTH:
        raise EncryptionConfigError(f"Encryption key must be {KEY_LENGTH} bytes, got {len(raw)}")
    return raw


def encrypt_string(value: Optional[str], key: str | bytes) -> str:
    """Encrypt to `hex(iv):base64(ciphertext)`. Empty input stays empty."""
    data = "" if value is None else str(value)
    if not data:
        return ""

    raw_key = encryption_key_bytes(key)
    iv = os.urandom(IV_LENGTH)

    padder = padding.PKCS7(algorithms.AES.block_size).padder()
    padded = padder.update(data.encode("utf-8")) + padder.finalize()

    encryptor = Cipher(algorithms.AES(raw_key), modes.CBC(iv)).encryptor()
    ciphertext = encryptor.update(padded) + encryptor.finalize()

    return iv.hex() + ":" + base64.b64encode(ciphertext).decode("ascii")


def decrypt_string(value: Optional[str], key: str | bytes) -> Optional[str]:
    """Reverse encrypt_string. Values without ':' are treated as cleartext."""
    if not value or ":" not in value:
        return value

    raw_key = encryption_key_bytes(key)
    iv_hex, ciphertext_b64 = value.split(":", 1)

    try:
        iv = bytes.fromhex(iv_hex)
        ciphertext = base64.b64decode(ciphertext_b64, validate=True)
        if len(iv) != IV_LENGTH:
            raise ValueError(f"IV must be {IV_LENGTH} bytes")

        decryptor = Cipher(algorithms.AES(raw_key), modes.CBC(iv)).decryptor()
        padded = decryptor.update(ciphertext) + decryptor.finalize()

        unpadder = padding.PKCS7(algorithms.AES.block_size).unpadder()
        plain = unpadder.update(padded) + unpadder.finalize()
        return plain.decode("utf-8")
    except (ValueError, binascii.Error, UnicodeDecodeError) as e:
        raise FieldDecryptionError(f"Field decryption failed: {e}") from e


def selective_encrypt(
    values: Sequence[str],
    key: str | bytes,
    skip_indices: Iterable[int] = (),
) -> list[str]:
    """Encrypt every element except those at `skip_indices`."""
    skip = set(skip_indices)
    return [value if i in skip else encrypt_string(value, key) for i, value in enumerate(values)]


def decrypt_values(values: Sequence[str], key: str | bytes) -> list[Optional[str]]:
    return [decrypt_string(value, key) for value in values]


# =============================================================================
# SNAPSHOT COMPRESSION
# =============================================================================


def compress_snapshot(data: dict) -> str:
    """gzip + base64 of the JSON snapshot."""
    compressed = gzip.compress(canonical_json_bytes(data))
    return base64.b64encode(compressed).decode("ascii")


def decompress_snapshot(blob: Optional[str]) -> dict:
    if not blob:
        raise CorruptSnapshotError("No compressed snapshot provided")

    try:
        compressed = base64.b64decode(blob, validate=True)
        raw = gzip.decompress(compressed)
        data = json.loads(raw.decode("utf-8"))
    except (binascii.Error, ValueError, EOFError, OSError, zlib.error) as e:
        # gzip.BadGzipFile is an OSError; json.JSONDecodeError and
        # UnicodeDecodeError are ValueErrors
        raise CorruptSnapshotError(f"Snapshot blob is truncated or corrupt: {e}") from e

    if not isinstance(data, dict):
        raise CorruptSnapshotError("Snapshot blob does not contain an object")
    return data


# =============================================================================
# LEDGER SIGNING (Ed25519)
# =============================================================================


def load_ed25519_private_key_from_b64(private_key_b64: str) -> Ed25519PrivateKey:
    raw = base64.b64decode(private_key_b64)
    if len(raw) != 32:
        raise ValueError("Invalid Ed25519 private key length")
    return Ed25519PrivateKey.from_private_bytes(raw)


def public_key_b64(private_key: Ed25519PrivateKey) -> str:
    raw = private_key.public_key().public_bytes(Encoding.Raw, PublicFormat.Raw)
    return base64.b64encode(raw).decode("ascii")


def sign_ed25519_b64(private_key: Ed25519PrivateKey, message: bytes) -> str:
    sig = private_key.sign(message)
    return "ed25519:" + base64.b64encode(sig).decode("ascii")
