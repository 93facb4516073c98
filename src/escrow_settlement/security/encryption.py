"""Field-level authenticated encryption (AES-256-GCM).

Each sensitive value is stored as a self-describing envelope
``{"nonce": ..., "ciphertext": ..., "tag": ...}`` with base64 members and a
fresh 128-bit random nonce per value. The key is process-wide and is
validated once when the FieldCipher is built: a missing or wrong-length key
raises EncryptionKeyError and nothing is ever written in plaintext.

Usage:
    cipher = FieldCipher.from_hex(settings.encryption_key.get_secret_value())
    envelope = cipher.encrypt("ship to 12 Main St")
    cipher.decrypt(envelope)        # "ship to 12 Main St"
    cipher.open(tampered_envelope)  # DECRYPTION_ERROR sentinel
"""

from __future__ import annotations

import base64
import binascii
import json
import os
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Final

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from escrow_settlement.domain.exceptions import DecryptionFailure, EncryptionKeyError
from escrow_settlement.logging_config import get_logger

logger = get_logger(__name__)

KEY_BYTES: Final = 32
NONCE_BYTES: Final = 16
TAG_BYTES: Final = 16


class UnreadableField:
    """Sentinel surfaced in place of a value that failed to decrypt.

    Falsy, never equal to any real value, and rendered as a fixed marker.
    """

    _instance: UnreadableField | None = None

    def __new__(cls) -> UnreadableField:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "<decryption error>"

    __str__ = __repr__


DECRYPTION_ERROR: Final = UnreadableField()


def is_unreadable(value: object) -> bool:
    return value is DECRYPTION_ERROR


@dataclass(frozen=True)
class Envelope:
    """Stored form of one encrypted value."""

    nonce: bytes
    ciphertext: bytes
    tag: bytes

    def to_dict(self) -> dict[str, str]:
        return {
            "nonce": _b64(self.nonce),
            "ciphertext": _b64(self.ciphertext),
            "tag": _b64(self.tag),
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), sort_keys=True)

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> Envelope:
        try:
            nonce = _unb64(raw["nonce"])
            ciphertext = _unb64(raw["ciphertext"])
            tag = _unb64(raw["tag"])
        except (KeyError, TypeError, ValueError, binascii.Error) as err:
            raise DecryptionFailure("malformed envelope") from err
        if len(nonce) != NONCE_BYTES or len(tag) != TAG_BYTES:
            raise DecryptionFailure("malformed envelope")
        return cls(nonce=nonce, ciphertext=ciphertext, tag=tag)

    @classmethod
    def from_json(cls, raw: str) -> Envelope:
        try:
            parsed = json.loads(raw)
        except (TypeError, ValueError) as err:
            raise DecryptionFailure("malformed envelope") from err
        if not isinstance(parsed, dict):
            raise DecryptionFailure("malformed envelope")
        return cls.from_dict(parsed)


def _b64(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def _unb64(value: Any) -> bytes:
    if not isinstance(value, str):
        raise TypeError("envelope members must be base64 strings")
    return base64.b64decode(value.encode("ascii"), validate=True)


class FieldCipher:
    """Encrypts and decrypts individual field values with one process-wide key."""

    def __init__(self, key: bytes) -> None:
        if len(key) != KEY_BYTES:
            raise EncryptionKeyError(f"expected {KEY_BYTES} bytes, got {len(key)}")
        self._aead = AESGCM(key)

    @classmethod
    def from_hex(cls, hex_key: str | None) -> FieldCipher:
        """Build a cipher from a 64-character hex key."""
        if not hex_key:
            raise EncryptionKeyError("ENCRYPTION_KEY is not set")
        if len(hex_key) != KEY_BYTES * 2:
            raise EncryptionKeyError(f"expected {KEY_BYTES * 2} hex characters, got {len(hex_key)}")
        try:
            key = bytes.fromhex(hex_key)
        except ValueError as err:
            raise EncryptionKeyError("key is not valid hex") from err
        return cls(key)

    def encrypt(self, plaintext: str) -> Envelope:
        nonce = os.urandom(NONCE_BYTES)
        sealed = self._aead.encrypt(nonce, plaintext.encode("utf-8"), None)
        return Envelope(nonce=nonce, ciphertext=sealed[:-TAG_BYTES], tag=sealed[-TAG_BYTES:])

    def decrypt(self, envelope: Envelope | Mapping[str, Any] | str) -> str:
        """Return the plaintext or raise DecryptionFailure.

        Accepts an Envelope, its dict form, or its JSON text.
        """
        if isinstance(envelope, str):
            envelope = Envelope.from_json(envelope)
        elif not isinstance(envelope, Envelope):
            envelope = Envelope.from_dict(envelope)
        try:
            plaintext = self._aead.decrypt(envelope.nonce, envelope.ciphertext + envelope.tag, None)
        except InvalidTag as err:
            raise DecryptionFailure("authentication tag mismatch") from err
        try:
            return plaintext.decode("utf-8")
        except UnicodeDecodeError as err:
            raise DecryptionFailure("plaintext is not utf-8") from err

    def open(self, envelope: Envelope | Mapping[str, Any] | str) -> str | UnreadableField:
        """Like decrypt, but returns DECRYPTION_ERROR instead of raising."""
        try:
            return self.decrypt(envelope)
        except DecryptionFailure as err:
            logger.warning("encryption.field_unreadable", reason=err.reason)
            return DECRYPTION_ERROR


def generate_key() -> str:
    """Return a fresh 256-bit key as 64 hex characters."""
    return AESGCM.generate_key(bit_length=KEY_BYTES * 8).hex()
