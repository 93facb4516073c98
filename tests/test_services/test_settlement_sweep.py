"""Scheduled sweep: auto-release, expiry and evidence-window escalation."""

from __future__ import annotations

from datetime import timedelta

import pytest

from conftest import BUYER, SELLER, RecordingGateway, create_funded
from escrow_settlement.bootstrap import SettlementCore
from escrow_settlement.domain.enums import (
    SYSTEM_ACTOR,
    DisputeStatus,
    EscrowStatus,
    TransactionType,
)
from escrow_settlement.services.sweep import EXPIRED_REASON, SettlementSweeper
from escrow_settlement.utils.time import utcnow


def days_ahead(days: int):  # noqa: ANN201
    return utcnow() + timedelta(days=days)


class TestAutoRelease:
    @pytest.mark.asyncio
    async def test_releases_due_escrow(
        self, core: SettlementCore, gateway: RecordingGateway
    ) -> None:
        escrow_id = await create_funded(core)

        report = await core.sweep_once(days_ahead(4))

        assert report.as_dict() == {
            "released": 1,
            "deferred": 0,
            "expired": 0,
            "escalated": 0,
            "failed": 0,
        }
        async with core.unit_of_work() as uow:
            escrow = await uow.escrows.get_escrow(escrow_id)
            entries = await uow.escrows.history(escrow_id)
        assert escrow.status == EscrowStatus.RELEASED.value
        assert entries[-1].type == TransactionType.FUNDS_RELEASED.value
        assert entries[-1].user_id == SYSTEM_ACTOR
        assert gateway.disbursements[0]["payee_id"] == SELLER

    @pytest.mark.asyncio
    async def test_not_due_yet(self, core: SettlementCore) -> None:
        escrow_id = await create_funded(core)
        report = await core.sweep_once(days_ahead(1))
        assert report.released == 0
        async with core.unit_of_work() as uow:
            escrow = await uow.escrows.get_escrow(escrow_id)
        assert escrow.status == EscrowStatus.FUNDED.value

    @pytest.mark.asyncio
    async def test_repeated_sweeps_release_once(
        self, core: SettlementCore, gateway: RecordingGateway
    ) -> None:
        escrow_id = await create_funded(core)
        first = await core.sweep_once(days_ahead(4))
        second = await core.sweep_once(days_ahead(5))
        assert (first.released, second.released) == (1, 0)
        async with core.unit_of_work() as uow:
            assert await uow.audit.count(escrow_id, TransactionType.FUNDS_RELEASED) == 1
        assert len(gateway.disbursements) == 1

    @pytest.mark.asyncio
    async def test_manual_release_then_sweep(
        self, core: SettlementCore, gateway: RecordingGateway
    ) -> None:
        escrow_id = await create_funded(core)
        async with core.unit_of_work() as uow:
            await uow.escrows.release(escrow_id, BUYER)
        report = await core.sweep_once(days_ahead(4))
        assert report.released == 0
        assert len(gateway.disbursements) == 1

    @pytest.mark.asyncio
    async def test_open_milestones_defer_release(self, core: SettlementCore) -> None:
        escrow_id = await create_funded(
            core, milestones=[{"amount": "60.00"}, {"amount": "40.00"}]
        )
        report = await core.sweep_once(days_ahead(4))
        assert (report.released, report.deferred) == (0, 0)
        async with core.unit_of_work() as uow:
            escrow = await uow.escrows.get_escrow(escrow_id)
        assert escrow.status == EscrowStatus.FUNDED.value

    @pytest.mark.asyncio
    async def test_milestone_escrows_do_not_starve_due_releases(
        self, core: SettlementCore, gateway: RecordingGateway
    ) -> None:
        blocked_ids = [
            await create_funded(core, milestones=[{"amount": "60.00"}, {"amount": "40.00"}])
            for _ in range(2)
        ]
        plain_id = await create_funded(core)
        async with core.unit_of_work() as uow:
            for offset, escrow_id in enumerate(blocked_ids):
                await uow.escrows.schedule_release(
                    escrow_id, utcnow() - timedelta(days=10 - offset), actor=BUYER
                )

        sweeper = SettlementSweeper(core.session_factory, core.context, batch_size=1)
        report = await sweeper.run_once(days_ahead(4))

        assert (report.released, report.deferred) == (1, 0)
        async with core.unit_of_work() as uow:
            plain = await uow.escrows.get_escrow(plain_id)
        assert plain.status == EscrowStatus.RELEASED.value
        assert [d["escrow_id"] for d in gateway.disbursements] == [plain_id]

    @pytest.mark.asyncio
    async def test_disputed_escrow_is_skipped(
        self, core: SettlementCore, gateway: RecordingGateway
    ) -> None:
        escrow_id = await create_funded(core)
        async with core.unit_of_work() as uow:
            await uow.disputes.file_dispute(escrow_id, BUYER, {"reason": "QUALITY_ISSUES"})
        report = await core.sweep_once(days_ahead(4))
        assert report.released == 0
        assert report.deferred == 0
        assert gateway.disbursements == []

    @pytest.mark.asyncio
    async def test_cleared_schedule_is_never_released(self, core: SettlementCore) -> None:
        escrow_id = await create_funded(core)
        async with core.unit_of_work() as uow:
            await uow.escrows.schedule_release(escrow_id, None, actor=BUYER)
        report = await core.sweep_once(days_ahead(60))
        assert report.released == 0

    @pytest.mark.asyncio
    async def test_gateway_failure_is_counted_and_retried(
        self, core: SettlementCore, gateway: RecordingGateway
    ) -> None:
        escrow_id = await create_funded(core)
        gateway.fail_times = 1

        failed = await core.sweep_once(days_ahead(4))
        assert (failed.released, failed.failed) == (0, 1)
        async with core.unit_of_work() as uow:
            escrow = await uow.escrows.get_escrow(escrow_id)
        assert escrow.status == EscrowStatus.FUNDED.value

        retried = await core.sweep_once(days_ahead(4))
        assert retried.released == 1


class TestExpiry:
    @pytest.mark.asyncio
    async def test_expired_pending_is_cancelled(self, core: SettlementCore) -> None:
        escrow = await core.create_escrow(BUYER, SELLER, "100.00")
        report = await core.sweep_once(days_ahead(31))
        assert report.expired == 1
        async with core.unit_of_work() as uow:
            stored = await uow.escrows.get_escrow(escrow.id)
        assert stored.status == EscrowStatus.CANCELLED.value
        assert stored.cancellation_reason == EXPIRED_REASON

    @pytest.mark.asyncio
    async def test_custom_expiry(self, core: SettlementCore) -> None:
        await core.create_escrow(BUYER, SELLER, "100.00", expiration_days=2)
        await core.create_escrow(BUYER, SELLER, "100.00", expiration_days=10)
        report = await core.sweep_once(days_ahead(3))
        assert report.expired == 1


class TestEvidenceWindow:
    @pytest.mark.asyncio
    async def test_overdue_dispute_is_escalated(self, core: SettlementCore) -> None:
        escrow_id = await create_funded(core)
        async with core.unit_of_work() as uow:
            dispute = await uow.disputes.file_dispute(
                escrow_id, BUYER, {"reason": "PRODUCT_NOT_RECEIVED"}
            )

        early = await core.sweep_once(days_ahead(2))
        assert early.escalated == 0

        report = await core.sweep_once(days_ahead(6))
        assert report.escalated == 1
        async with core.unit_of_work() as uow:
            stored = await uow.disputes.get_dispute(dispute.id)
            escrow = await uow.escrows.get_escrow(escrow_id)
            entries = await uow.audit.for_entity(dispute.id)
        assert stored.status == DisputeStatus.ESCALATED.value
        # Escalation hands the dispute to an arbiter; funds stay put.
        assert escrow.status == EscrowStatus.DISPUTED.value
        assert entries[-1].user_id == SYSTEM_ACTOR

        again = await core.sweep_once(days_ahead(7))
        assert again.escalated == 0
