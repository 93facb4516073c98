"""Dispute subsystem: filing, evidence, arbitration and deadline expiry.

A dispute freezes its escrow in DISPUTED. Resolution is terminal: the
outcome drives exactly one escrow settlement (release to the seller,
refund to the buyer, or a two-way split) and then closes the dispute.

Dispute status path:
    OPEN -> UNDER_REVIEW -> {RESOLVED_FOR_MERCHANT | RESOLVED_FOR_CUSTOMER | ESCALATED} -> CLOSED

A split settlement closes through ESCALATED. So does a dispute whose
evidence window expired: the sweep escalates it for administrative review
and a later resolve() closes it with any outcome.
"""

from __future__ import annotations

from datetime import timedelta
from decimal import Decimal
from typing import TYPE_CHECKING, Any

from pydantic import ValidationError as PydanticValidationError

from escrow_settlement.domain.enums import (
    SYSTEM_ACTOR,
    DisputeOutcome,
    DisputeStatus,
    EscrowStatus,
    TransactionType,
)
from escrow_settlement.domain.exceptions import (
    EntityNotFound,
    InvalidDisputeState,
    InvalidEscrowState,
    ValidationFailure,
)
from escrow_settlement.domain.guards import assert_not_party, assert_party
from escrow_settlement.domain.state_machine import next_dispute_status
from escrow_settlement.infrastructure.database.orm_models import Dispute, DisputeEvidence
from escrow_settlement.infrastructure.database.repositories import DisputeRepository
from escrow_settlement.logging_config import get_logger
from escrow_settlement.schemas.escrow import DisputeInput, EvidenceInput, SplitAllocation
from escrow_settlement.services.audit import AuditTrail
from escrow_settlement.services.notifications import publish_safely

if TYPE_CHECKING:
    import uuid
    from collections.abc import Mapping

    from sqlalchemy.ext.asyncio import AsyncSession

    from escrow_settlement.infrastructure.database.orm_models import Escrow
    from escrow_settlement.schemas.context import RequestMetadata
    from escrow_settlement.services.context import ServiceContext
    from escrow_settlement.services.escrow_service import EscrowService

logger = get_logger(__name__)

_DECISION_EVENTS = {
    DisputeOutcome.MERCHANT: "favor_merchant",
    DisputeOutcome.CUSTOMER: "favor_customer",
    DisputeOutcome.SPLIT: "escalate",
}


class DisputeService:
    """File, review, resolve and expire disputes."""

    def __init__(
        self,
        session: AsyncSession,
        context: ServiceContext,
        escrows: EscrowService,
    ) -> None:
        self._ctx = context
        self._repo = DisputeRepository(session)
        self._escrows = escrows
        self._audit = AuditTrail(session, context)

    # ------------------------------------------------------------------
    # Filing and evidence
    # ------------------------------------------------------------------

    async def file_dispute(
        self,
        escrow_id: uuid.UUID,
        filer: str,
        dispute: DisputeInput | Mapping[str, Any],
        request: RequestMetadata | None = None,
    ) -> Dispute:
        """Open a dispute on a FUNDED escrow and move the escrow to DISPUTED.

        Raises:
            NotCounterparty: ``filer`` is neither buyer nor seller.
            InvalidEscrowState: Escrow not FUNDED (including a concurrent transition).
        """
        if not isinstance(dispute, DisputeInput):
            dispute = DisputeInput.model_validate(dispute)
        escrow = await self._escrows.get_escrow(escrow_id)
        assert_party(escrow, filer, "file dispute")
        if escrow.status != EscrowStatus.FUNDED.value:
            raise InvalidEscrowState(escrow.status, "dispute", "only funded escrows can be disputed")

        now = self._ctx.now()
        window = self._ctx.escrow_policy.dispute_evidence_window_days
        record = Dispute(
            escrow_id=escrow.id,
            filed_by=filer,
            reason=dispute.reason.value,
            description=dispute.description,
            evidence=list(dispute.evidence) or None,
            status=DisputeStatus.OPEN.value,
            evidence_deadline=now + timedelta(days=window) if window > 0 else None,
            created_at=now,
            updated_at=now,
        )
        record = await self._repo.create(record)
        await self._escrows.mark_disputed(escrow, filer, record.id, request=request)

        await self._audit.record(
            TransactionType.DISPUTE_CREATED,
            entity_id=record.id,
            entity_type="dispute",
            user_id=filer,
            data={
                "escrow_id": escrow.id,
                "reason": record.reason,
                "evidence": len(dispute.evidence),
                "evidence_deadline": record.evidence_deadline,
            },
            sensitive={"description": dispute.description} if dispute.description else None,
            request=request,
        )
        logger.info(
            "dispute.filed",
            dispute_id=str(record.id),
            escrow_id=str(escrow.id),
            filer=filer,
            reason=record.reason,
        )
        await publish_safely(
            self._ctx.notifier,
            "dispute.filed",
            {"dispute_id": str(record.id), "escrow_id": str(escrow.id)},
        )
        return record

    async def submit_evidence(
        self,
        dispute_id: uuid.UUID,
        submitter: str,
        evidence: EvidenceInput | Mapping[str, Any],
        request: RequestMetadata | None = None,
    ) -> DisputeEvidence:
        """Attach evidence while the dispute is OPEN and its window has not closed."""
        if not isinstance(evidence, EvidenceInput):
            evidence = EvidenceInput.model_validate(evidence)
        dispute = await self.get_dispute(dispute_id)
        escrow = await self._escrows.get_escrow(dispute.escrow_id)
        assert_party(escrow, submitter, "submit dispute evidence")
        if dispute.status != DisputeStatus.OPEN.value:
            raise InvalidDisputeState(dispute.status, "submit_evidence")
        if dispute.deadline_passed(self._ctx.now()):
            raise InvalidDisputeState(dispute.status, "submit_evidence", "evidence window closed")

        item = DisputeEvidence(
            dispute_id=dispute.id,
            submitted_by=submitter,
            evidence_type=evidence.evidence_type.value,
            description=evidence.description,
            files=list(evidence.files) or None,
            created_at=self._ctx.now(),
        )
        item = await self._repo.add_evidence(item)
        await self._audit.record(
            TransactionType.DISPUTE_EVIDENCE_SUBMITTED,
            entity_id=dispute.id,
            entity_type="dispute",
            user_id=submitter,
            data={"evidence_id": item.id, "evidence_type": item.evidence_type},
            request=request,
        )
        logger.info(
            "dispute.evidence_submitted",
            dispute_id=str(dispute.id),
            evidence_id=str(item.id),
            submitter=submitter,
        )
        return item

    # ------------------------------------------------------------------
    # Administrative transitions
    # ------------------------------------------------------------------

    async def begin_review(
        self,
        dispute_id: uuid.UUID,
        reviewer: str,
        request: RequestMetadata | None = None,
    ) -> Dispute:
        """OPEN -> UNDER_REVIEW. Arbiters and the sweep only."""
        dispute = await self.get_dispute(dispute_id)
        escrow = await self._escrows.get_escrow(dispute.escrow_id)
        if reviewer != SYSTEM_ACTOR:
            assert_not_party(escrow, reviewer, "review dispute")
        await self._advance(dispute, "begin_review", reviewer, request)
        return dispute

    async def escalate(
        self,
        dispute_id: uuid.UUID,
        actor: str,
        request: RequestMetadata | None = None,
    ) -> Dispute:
        """Hand the dispute to administrative review (OPEN disputes are reviewed first)."""
        dispute = await self.get_dispute(dispute_id)
        escrow = await self._escrows.get_escrow(dispute.escrow_id)
        if actor != SYSTEM_ACTOR:
            assert_not_party(escrow, actor, "escalate dispute")
        if dispute.status == DisputeStatus.OPEN.value:
            await self._advance(dispute, "begin_review", actor, request)
        await self._advance(dispute, "escalate", actor, request)
        return dispute

    async def expire_evidence_window(self, dispute_id: uuid.UUID) -> Dispute | None:
        """Sweep step: escalate an OPEN dispute whose evidence deadline passed.

        Returns None when there is nothing to do (already moved on, or the
        deadline is still ahead), so repeated sweeps are harmless.
        """
        dispute = await self.get_dispute(dispute_id)
        if dispute.status != DisputeStatus.OPEN.value or not dispute.deadline_passed(
            self._ctx.now()
        ):
            return None
        logger.info("dispute.evidence_window_expired", dispute_id=str(dispute.id))
        return await self.escalate(dispute.id, SYSTEM_ACTOR)

    # ------------------------------------------------------------------
    # Resolution
    # ------------------------------------------------------------------

    async def resolve(
        self,
        dispute_id: uuid.UUID,
        resolver: str,
        outcome: DisputeOutcome | str,
        notes: str | None = None,
        split: SplitAllocation | Mapping[str, Any] | None = None,
        request: RequestMetadata | None = None,
    ) -> Dispute:
        """Settle the escrow according to ``outcome`` and close the dispute.

        merchant: outstanding milestones are completed and funds released to the seller.
        customer: funds refunded to the buyer.
        split: two sub-payments given by ``split``, which must sum to the escrow amount.

        Raises:
            NotCounterparty: ``resolver`` is a party to the escrow, or the system actor.
            InvalidDisputeState: The dispute is already CLOSED.
            ValidationFailure: Missing, mismatched or misplaced split allocation.
        """
        outcome = DisputeOutcome(outcome)
        dispute = await self.get_dispute(dispute_id)
        escrow = await self._escrows.get_escrow(dispute.escrow_id)
        assert_not_party(escrow, resolver, "resolve dispute")
        if dispute.status == DisputeStatus.CLOSED.value:
            raise InvalidDisputeState(dispute.status, "resolve", "dispute already closed")
        allocation = self._validate_split(escrow, outcome, split)
        if escrow.status != EscrowStatus.DISPUTED.value:
            raise InvalidEscrowState(escrow.status, "resolve", "escrow is not disputed")

        if dispute.status == DisputeStatus.OPEN.value:
            await self._advance(dispute, "begin_review", resolver, request)
        if dispute.status == DisputeStatus.UNDER_REVIEW.value:
            await self._advance(dispute, _DECISION_EVENTS[outcome], resolver, request, audit=False)

        if outcome is DisputeOutcome.MERCHANT:
            await self._escrows.complete_open_milestones(escrow, resolver, request=request)
            await self._escrows.release_for_dispute(escrow, resolver, request=request)
        elif outcome is DisputeOutcome.CUSTOMER:
            await self._escrows.refund_for_dispute(
                escrow, resolver, reason=f"dispute {dispute.id} resolved for customer", request=request
            )
        else:
            await self._escrows.settle_split(
                escrow,
                resolver,
                allocation.buyer_amount,
                allocation.seller_amount,
                request=request,
            )

        await self._close(
            dispute,
            outcome=outcome.value,
            resolved_by=resolver,
            resolved_at=self._ctx.now(),
            buyer_amount=allocation.buyer_amount if allocation else None,
            seller_amount=allocation.seller_amount if allocation else None,
        )
        if notes:
            await self._repo.set_fields(dispute, resolution_notes=notes)

        await self._audit.record(
            TransactionType.DISPUTE_RESOLVED,
            entity_id=dispute.id,
            entity_type="dispute",
            user_id=resolver,
            data={
                "escrow_id": escrow.id,
                "outcome": outcome.value,
                "escrow_status": escrow.status,
                "buyer_amount": allocation.buyer_amount if allocation else None,
                "seller_amount": allocation.seller_amount if allocation else None,
            },
            sensitive={"notes": notes} if notes else None,
            request=request,
        )
        logger.info(
            "dispute.resolved",
            dispute_id=str(dispute.id),
            escrow_id=str(escrow.id),
            outcome=outcome.value,
            escrow_status=escrow.status,
        )
        await publish_safely(
            self._ctx.notifier,
            "dispute.resolved",
            {"dispute_id": str(dispute.id), "outcome": outcome.value},
        )
        return dispute

    # ------------------------------------------------------------------
    # Read helpers
    # ------------------------------------------------------------------

    async def get_dispute(self, dispute_id: uuid.UUID) -> Dispute:
        dispute = await self._repo.get_by_id(dispute_id)
        if dispute is None:
            raise EntityNotFound("Dispute", dispute_id)
        return dispute

    async def active_for_escrow(self, escrow_id: uuid.UUID) -> Dispute | None:
        return await self._repo.get_active_for_escrow(escrow_id)

    async def list_evidence(self, dispute_id: uuid.UUID) -> list[DisputeEvidence]:
        await self.get_dispute(dispute_id)
        return await self._repo.list_evidence(dispute_id)

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    async def _advance(
        self,
        dispute: Dispute,
        event_name: str,
        actor: str,
        request: RequestMetadata | None,
        *,
        audit: bool = True,
    ) -> None:
        expected = DisputeStatus(dispute.status)
        new_status = DisputeStatus(next_dispute_status(dispute.status, event_name))
        won = await self._repo.compare_and_set_status(dispute, expected, new_status)
        if not won:
            raise InvalidDisputeState(dispute.status, event_name, "concurrent update")
        if not audit:
            return
        entry_type = (
            TransactionType.DISPUTE_ESCALATED
            if new_status is DisputeStatus.ESCALATED
            else TransactionType.DISPUTE_UNDER_REVIEW
        )
        await self._audit.record(
            entry_type,
            entity_id=dispute.id,
            entity_type="dispute",
            user_id=actor,
            data={"from": expected.value, "to": new_status.value},
            request=request,
        )
        logger.info(
            "dispute.transitioned",
            dispute_id=str(dispute.id),
            from_status=expected.value,
            to_status=new_status.value,
        )

    async def _close(self, dispute: Dispute, **values: Any) -> None:
        expected = DisputeStatus(dispute.status)
        next_dispute_status(dispute.status, "close")
        won = await self._repo.compare_and_set_status(
            dispute, expected, DisputeStatus.CLOSED, **values
        )
        if not won:
            raise InvalidDisputeState(dispute.status, "close", "concurrent update")

    @staticmethod
    def _validate_split(
        escrow: Escrow,
        outcome: DisputeOutcome,
        split: SplitAllocation | Mapping[str, Any] | None,
    ) -> SplitAllocation | None:
        if outcome is not DisputeOutcome.SPLIT:
            if split is not None:
                raise ValidationFailure("a split is only valid with the split outcome", field="split")
            return None
        if split is None:
            raise ValidationFailure("the split outcome requires an allocation", field="split")
        try:
            allocation = (
                split if isinstance(split, SplitAllocation) else SplitAllocation.model_validate(split)
            )
        except PydanticValidationError as err:
            raise ValidationFailure("malformed split allocation", field="split") from err
        if allocation.total != Decimal(escrow.amount):
            raise ValidationFailure(
                f"split {allocation.total} does not equal escrow amount {escrow.amount}",
                field="split",
            )
        return allocation
