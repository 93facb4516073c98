"""Custom column types.

EncryptedText / EncryptedDocument encrypt on write and decrypt on read.
The stored form is the envelope dict produced by FieldCipher, kept in a
JSON column (JSONB on PostgreSQL). A value that fails to decrypt loads as
the DECRYPTION_ERROR sentinel so the rest of the row stays usable.

Each engine gets its own cipher via bind_field_cipher(engine, cipher). The
column types look it up through the dialect they are handed, so two cores
with different keys never read through each other's cipher.
"""

from __future__ import annotations

import json
import weakref
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any

from sqlalchemy import JSON
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.types import TypeDecorator

from escrow_settlement.domain.exceptions import EncryptionKeyError
from escrow_settlement.security.encryption import DECRYPTION_ERROR, FieldCipher, UnreadableField

if TYPE_CHECKING:
    from sqlalchemy.engine import Dialect, Engine
    from sqlalchemy.ext.asyncio import AsyncEngine

JSONDocument = JSON().with_variant(JSONB(), "postgresql")

_ciphers: weakref.WeakKeyDictionary[Dialect, FieldCipher] = weakref.WeakKeyDictionary()


def bind_field_cipher(engine: AsyncEngine | Engine, cipher: FieldCipher | None) -> None:
    """Install (or clear, with None) the cipher used by ``engine``'s encrypted columns."""
    dialect = getattr(engine, "sync_engine", engine).dialect
    if cipher is None:
        _ciphers.pop(dialect, None)
    else:
        _ciphers[dialect] = cipher


def _require_cipher(dialect: Dialect) -> FieldCipher:
    cipher = _ciphers.get(dialect)
    if cipher is None:
        raise EncryptionKeyError("no field cipher bound to this engine")
    return cipher


class EncryptedText(TypeDecorator):
    """A text attribute persisted as an encrypted envelope."""

    impl = JSON
    cache_ok = True

    def load_dialect_impl(self, dialect):  # noqa: ANN001, ANN201
        if dialect.name == "postgresql":
            return dialect.type_descriptor(JSONB())
        return dialect.type_descriptor(JSON())

    def process_bind_param(self, value: Any, dialect) -> dict[str, str] | None:  # noqa: ANN001
        if value is None:
            return None
        if isinstance(value, UnreadableField):
            raise ValueError("refusing to persist an unreadable field")
        return _require_cipher(dialect).encrypt(self._serialize(value)).to_dict()

    def process_result_value(self, value: Any, dialect) -> Any:  # noqa: ANN001
        if value is None:
            return None
        plaintext = _require_cipher(dialect).open(value)
        if isinstance(plaintext, UnreadableField):
            return DECRYPTION_ERROR
        return self._deserialize(plaintext)

    def _serialize(self, value: Any) -> str:
        if not isinstance(value, str):
            raise TypeError(f"EncryptedText expects str, got {type(value).__name__}")
        return value

    def _deserialize(self, plaintext: str) -> Any:
        return plaintext


class EncryptedDocument(EncryptedText):
    """A JSON object attribute persisted as an encrypted envelope."""

    cache_ok = True

    def _serialize(self, value: Any) -> str:
        if isinstance(value, Mapping):
            value = dict(value)
        return json.dumps(value, sort_keys=True, separators=(",", ":"), default=str)

    def _deserialize(self, plaintext: str) -> Any:
        try:
            return json.loads(plaintext)
        except ValueError:
            return DECRYPTION_ERROR
