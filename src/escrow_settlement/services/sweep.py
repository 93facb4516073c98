"""Scheduled sweep: time-triggered transitions.

One pass:
    1. Release FUNDED escrows whose scheduled release has elapsed and that
       have no open dispute.
    2. Cancel PENDING escrows past their expiry.
    3. Escalate OPEN disputes whose evidence window has closed.

Each item runs in its own transaction, so one failure neither blocks nor
rolls back the others. A failed item is left as it was and is picked up
again on the next pass. Every action is gated by a conditional status
update, so passes from several instances may overlap safely.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import TYPE_CHECKING

from escrow_settlement.domain.enums import SYSTEM_ACTOR
from escrow_settlement.domain.exceptions import InvalidEscrowState, SettlementError
from escrow_settlement.infrastructure.database.engine import session_scope
from escrow_settlement.infrastructure.database.repositories import (
    DisputeRepository,
    EscrowRepository,
)
from escrow_settlement.logging_config import get_logger
from escrow_settlement.services.unit_of_work import build_services

if TYPE_CHECKING:
    import uuid
    from datetime import datetime

    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from escrow_settlement.services.context import ServiceContext

logger = get_logger(__name__)

EXPIRED_REASON = "expired"


@dataclass
class SweepReport:
    released: int = 0
    deferred: int = 0
    expired: int = 0
    escalated: int = 0
    failed: int = 0

    def as_dict(self) -> dict[str, int]:
        return {
            "released": self.released,
            "deferred": self.deferred,
            "expired": self.expired,
            "escalated": self.escalated,
            "failed": self.failed,
        }


class SettlementSweeper:
    """Runs one sweep pass over due escrows and disputes."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        context: ServiceContext,
        batch_size: int = 100,
    ) -> None:
        self._factory = session_factory
        self._ctx = context
        self._batch_size = batch_size

    async def run_once(self, now: datetime | None = None) -> SweepReport:
        """Sweep everything due at ``now`` (defaults to the context clock)."""
        now = now or self._ctx.now()
        # Services inside the pass see the sweep's notion of "now".
        context = replace(self._ctx, clock=lambda: now)
        report = SweepReport()

        async with session_scope(self._factory) as session:
            due = await EscrowRepository(session).due_for_release(now, limit=self._batch_size)
            expired = await EscrowRepository(session).expired_pending(now, limit=self._batch_size)
            overdue = await DisputeRepository(session).past_evidence_deadline(
                now, limit=self._batch_size
            )

        for escrow_id in due:
            await self._release_one(escrow_id, context, report)
        for escrow_id in expired:
            await self._expire_one(escrow_id, context, report)
        for dispute_id in overdue:
            await self._escalate_one(dispute_id, context, report)

        logger.info("sweep.completed", at=now.isoformat(), **report.as_dict())
        return report

    async def _release_one(
        self, escrow_id: uuid.UUID, context: ServiceContext, report: SweepReport
    ) -> None:
        try:
            async with session_scope(self._factory) as session:
                services = build_services(session, context)
                escrow = await services.escrows.release(escrow_id, SYSTEM_ACTOR)
        except InvalidEscrowState as exc:
            # Lost a concurrent transition; retried next pass.
            report.deferred += 1
            logger.info("sweep.release_deferred", escrow_id=str(escrow_id), reason=exc.message)
            return
        except Exception:
            report.failed += 1
            logger.exception("sweep.release_failed", escrow_id=str(escrow_id))
            return
        report.released += 1
        logger.info("sweep.released", escrow_id=str(escrow_id), status=escrow.status)

    async def _expire_one(
        self, escrow_id: uuid.UUID, context: ServiceContext, report: SweepReport
    ) -> None:
        try:
            async with session_scope(self._factory) as session:
                services = build_services(session, context)
                await services.escrows.cancel(escrow_id, SYSTEM_ACTOR, EXPIRED_REASON)
        except SettlementError as exc:
            logger.info("sweep.expiry_skipped", escrow_id=str(escrow_id), reason=exc.message)
            return
        except Exception:
            report.failed += 1
            logger.exception("sweep.expiry_failed", escrow_id=str(escrow_id))
            return
        report.expired += 1

    async def _escalate_one(
        self, dispute_id: uuid.UUID, context: ServiceContext, report: SweepReport
    ) -> None:
        try:
            async with session_scope(self._factory) as session:
                services = build_services(session, context)
                dispute = await services.disputes.expire_evidence_window(dispute_id)
        except SettlementError as exc:
            logger.info("sweep.escalation_skipped", dispute_id=str(dispute_id), reason=exc.message)
            return
        except Exception:
            report.failed += 1
            logger.exception("sweep.escalation_failed", dispute_id=str(dispute_id))
            return
        if dispute is not None:
            report.escalated += 1
