"""Tests for the AES-256-GCM field cipher."""

from __future__ import annotations

import base64
import json

import pytest

from escrow_settlement.domain.exceptions import DecryptionFailure, EncryptionKeyError
from escrow_settlement.security.encryption import (
    DECRYPTION_ERROR,
    NONCE_BYTES,
    TAG_BYTES,
    Envelope,
    FieldCipher,
    generate_key,
    is_unreadable,
)


def _flip_first_byte(value: str) -> str:
    raw = bytearray(base64.b64decode(value))
    raw[0] ^= 0x01
    return base64.b64encode(bytes(raw)).decode("ascii")


class TestRoundTrip:
    @pytest.mark.parametrize("plaintext", ["", "ship to 12 Main St", "ünïcødé ✓", "x" * 10_000])
    def test_decrypt_returns_plaintext(self, cipher: FieldCipher, plaintext: str) -> None:
        assert cipher.decrypt(cipher.encrypt(plaintext)) == plaintext

    def test_structured_value_via_json(self, cipher: FieldCipher) -> None:
        terms = {"deliverables": ["logo", "palette"], "deadline_days": 14}
        envelope = cipher.encrypt(json.dumps(terms))
        assert json.loads(cipher.decrypt(envelope.to_json())) == terms

    def test_envelope_shape(self, cipher: FieldCipher) -> None:
        stored = cipher.encrypt("secret").to_dict()
        assert set(stored) == {"nonce", "ciphertext", "tag"}
        assert len(base64.b64decode(stored["nonce"])) == NONCE_BYTES
        assert len(base64.b64decode(stored["tag"])) == TAG_BYTES
        assert "secret" not in json.dumps(stored)

    def test_fresh_nonce_per_value(self, cipher: FieldCipher) -> None:
        first = cipher.encrypt("same").to_dict()
        second = cipher.encrypt("same").to_dict()
        assert first["nonce"] != second["nonce"]
        assert first["ciphertext"] != second["ciphertext"]


class TestTampering:
    @pytest.mark.parametrize("member", ["ciphertext", "tag", "nonce"])
    def test_modified_member_fails(self, cipher: FieldCipher, member: str) -> None:
        stored = cipher.encrypt("do not touch").to_dict()
        stored[member] = _flip_first_byte(stored[member])
        with pytest.raises(DecryptionFailure):
            cipher.decrypt(stored)

    def test_wrong_key_fails(self, cipher: FieldCipher) -> None:
        other = FieldCipher.from_hex(generate_key())
        with pytest.raises(DecryptionFailure, match="tag mismatch"):
            other.decrypt(cipher.encrypt("secret"))

    @pytest.mark.parametrize(
        "envelope",
        ["not json", "[]", {"nonce": "AAAA"}, {"nonce": 1, "ciphertext": "", "tag": ""}],
    )
    def test_malformed_envelope(self, cipher: FieldCipher, envelope: object) -> None:
        with pytest.raises(DecryptionFailure, match="malformed"):
            cipher.decrypt(envelope)  # type: ignore[arg-type]

    def test_open_returns_sentinel(self, cipher: FieldCipher) -> None:
        stored = cipher.encrypt("x").to_dict()
        stored["tag"] = _flip_first_byte(stored["tag"])
        value = cipher.open(stored)
        assert value is DECRYPTION_ERROR
        assert is_unreadable(value)
        assert not value
        assert value != ""


class TestKeys:
    @pytest.mark.parametrize("key", [None, "", "abcd", "zz" * 32])
    def test_bad_hex_key_rejected(self, key: str | None) -> None:
        with pytest.raises(EncryptionKeyError):
            FieldCipher.from_hex(key)

    def test_raw_key_length_checked(self) -> None:
        with pytest.raises(EncryptionKeyError):
            FieldCipher(b"short")

    def test_generated_key_is_usable(self) -> None:
        key = generate_key()
        assert len(key) == 64
        cipher = FieldCipher.from_hex(key)
        assert cipher.decrypt(cipher.encrypt("ok")) == "ok"

    def test_envelope_from_json_round_trip(self, cipher: FieldCipher) -> None:
        envelope = cipher.encrypt("v")
        assert Envelope.from_json(envelope.to_json()) == envelope
