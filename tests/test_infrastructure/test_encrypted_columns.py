"""Tests for the encrypted column types and the append-only audit table."""

from __future__ import annotations

import json

import pytest
from pydantic import SecretStr
from sqlalchemy import select, text

from conftest import BUYER, OTHER_KEY, SELLER, TEST_KEY
from escrow_settlement.bootstrap import SettlementCore
from escrow_settlement.domain.exceptions import EncryptionKeyError
from escrow_settlement.infrastructure.database import bind_field_cipher, session_scope
from escrow_settlement.infrastructure.database.orm_models import (
    AppendOnlyViolation,
    Escrow,
    TransactionLog,
)
from escrow_settlement.security.encryption import DECRYPTION_ERROR, FieldCipher


async def _raw_column(core, table: str, column: str, row_id) -> object:  # noqa: ANN001
    async with core.engine.connect() as conn:
        result = await conn.execute(
            text(f"SELECT {column} FROM {table} WHERE id = :id"), {"id": row_id.hex}
        )
        return result.scalar_one()


class TestEncryptedColumns:
    @pytest.mark.asyncio
    async def test_plaintext_never_stored(self, core) -> None:  # noqa: ANN001
        escrow = await core.create_escrow(
            BUYER,
            SELLER,
            "100.00",
            description="deliver to 12 Main St",
            terms={"deliverable": "logo", "revisions": 2},
        )

        stored = await _raw_column(core, "escrows", "description", escrow.id)
        envelope = json.loads(stored) if isinstance(stored, str) else stored
        assert set(envelope) == {"nonce", "ciphertext", "tag"}
        assert "Main St" not in json.dumps(envelope)

        async with core.unit_of_work() as uow:
            loaded = await uow.escrows.get_escrow(escrow.id)
            assert loaded.description == "deliver to 12 Main St"
            assert loaded.terms == {"deliverable": "logo", "revisions": 2}

    @pytest.mark.asyncio
    async def test_wrong_key_yields_sentinel_per_field(self, core) -> None:  # noqa: ANN001
        escrow = await core.create_escrow(BUYER, SELLER, "100.00", description="secret")

        bind_field_cipher(core.engine, FieldCipher.from_hex(OTHER_KEY))
        try:
            async with session_scope(core.session_factory) as session:
                loaded = (
                    await session.execute(select(Escrow).where(Escrow.id == escrow.id))
                ).scalar_one()
                assert loaded.description is DECRYPTION_ERROR
                # The rest of the row stays usable.
                assert loaded.buyer_id == BUYER
                assert loaded.status == "PENDING"
        finally:
            bind_field_cipher(core.engine, FieldCipher.from_hex(TEST_KEY))

    @pytest.mark.asyncio
    async def test_unbound_cipher_refuses_to_write(self, core) -> None:  # noqa: ANN001
        bind_field_cipher(core.engine, None)
        try:
            with pytest.raises(Exception) as exc_info:
                await core.create_escrow(BUYER, SELLER, "100.00", description="secret")
            chain = [exc_info.value, exc_info.value.__cause__, exc_info.value.__context__]
            assert any(isinstance(err, EncryptionKeyError) for err in chain)
        finally:
            bind_field_cipher(core.engine, FieldCipher.from_hex(TEST_KEY))

    @pytest.mark.asyncio
    async def test_second_core_keeps_its_own_key(self, core, settings, tmp_path) -> None:  # noqa: ANN001
        escrow = await core.create_escrow(BUYER, SELLER, "100.00", description="secret")

        other = SettlementCore.from_settings(
            settings.model_copy(
                update={
                    "database_url": f"sqlite+aiosqlite:///{tmp_path / 'other.db'}",
                    "encryption_key": SecretStr(OTHER_KEY),
                }
            )
        )
        try:
            await other.init_db()
            created = await other.create_escrow(BUYER, SELLER, "5.00", description="other secret")
            async with other.unit_of_work() as uow:
                assert (await uow.escrows.get_escrow(created.id)).description == "other secret"
        finally:
            await other.aclose()

        async with core.unit_of_work() as uow:
            assert (await uow.escrows.get_escrow(escrow.id)).description == "secret"


class TestAppendOnlyLog:
    @pytest.mark.asyncio
    async def test_update_rejected(self, core) -> None:  # noqa: ANN001
        escrow = await core.create_escrow(BUYER, SELLER, "100.00")
        with pytest.raises(AppendOnlyViolation):
            async with core.unit_of_work() as uow:
                entry = (await uow.audit.for_entity(escrow.id))[0]
                entry.user_id = "tampered"
                await uow.session.flush()

    @pytest.mark.asyncio
    async def test_delete_rejected(self, core) -> None:  # noqa: ANN001
        escrow = await core.create_escrow(BUYER, SELLER, "100.00")
        with pytest.raises(AppendOnlyViolation):
            async with core.unit_of_work() as uow:
                entry = (await uow.audit.for_entity(escrow.id))[0]
                await uow.session.delete(entry)
                await uow.session.flush()

        async with core.unit_of_work() as uow:
            entries = await uow.audit.for_entity(escrow.id)
            assert [e.type for e in entries] == ["ESCROW_CREATED"]
            assert all(isinstance(e, TransactionLog) for e in entries)
