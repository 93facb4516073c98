"""Repository classes for database access.

Repositories encapsulate all SQL queries and provide a clean interface
to the service layer. They accept an AsyncSession and never manage
their own transactions (that's the caller's responsibility).

Status changes on escrows and disputes go through compare_and_set_status:
a single ``UPDATE ... WHERE id = :id AND status = :expected``. Of two
concurrent attempts on the same row exactly one sees rowcount == 1.
"""

from __future__ import annotations

from datetime import datetime  # noqa: TC003
from decimal import Decimal
from typing import TYPE_CHECKING, Any

from sqlalchemy import and_, exists, func, or_, select, update

from escrow_settlement.domain.enums import DisputeStatus, EscrowStatus, MilestoneStatus
from escrow_settlement.infrastructure.database.orm_models import (
    DeliveryProof,
    Dispute,
    DisputeEvidence,
    Escrow,
    EscrowMilestone,
    RiskAssessment,
    TransactionLog,
)
from escrow_settlement.utils.time import utcnow

if TYPE_CHECKING:
    import uuid

    from sqlalchemy.ext.asyncio import AsyncSession

OPEN_DISPUTE_STATUSES = (DisputeStatus.OPEN.value, DisputeStatus.UNDER_REVIEW.value)


class EscrowRepository:
    """Data access for escrows and their milestones."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(self, escrow: Escrow) -> Escrow:
        """Insert a new escrow (milestones cascade)."""
        self._session.add(escrow)
        await self._session.flush()
        return escrow

    async def get_by_id(self, escrow_id: uuid.UUID) -> Escrow | None:
        """Fetch an escrow by its UUID."""
        result = await self._session.execute(select(Escrow).where(Escrow.id == escrow_id))
        return result.scalar_one_or_none()

    async def list_for_party(
        self,
        user_id: str,
        status: EscrowStatus | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[Escrow]:
        """Escrows where ``user_id`` is buyer or seller, newest first."""
        stmt = select(Escrow).where(or_(Escrow.buyer_id == user_id, Escrow.seller_id == user_id))
        if status is not None:
            stmt = stmt.where(Escrow.status == status.value)
        stmt = stmt.order_by(Escrow.created_at.desc()).limit(limit).offset(offset)
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def compare_and_set_status(
        self,
        escrow: Escrow,
        expected: EscrowStatus,
        new_status: EscrowStatus,
        **values: Any,
    ) -> bool:
        """Move ``escrow`` from ``expected`` to ``new_status`` if nobody beat us to it.

        Extra column ``values`` are written in the same statement. On success
        the instance is refreshed from the row; on failure it is refreshed too,
        so the caller sees whatever status won.
        """
        result = await self._session.execute(
            update(Escrow)
            .where(Escrow.id == escrow.id, Escrow.status == expected.value)
            .values(status=new_status.value, updated_at=utcnow(), **values)
            .execution_options(synchronize_session=False)
        )
        await self._session.refresh(escrow)
        return result.rowcount == 1

    async def set_fields(self, escrow: Escrow, **values: Any) -> Escrow:
        """Write non-status columns (schedule, terms) and flush."""
        for key, value in values.items():
            setattr(escrow, key, value)
        await self._session.flush()
        return escrow

    async def uses_assessment(self, assessment_id: uuid.UUID) -> bool:
        """Whether some escrow is already gated by this risk assessment."""
        result = await self._session.execute(
            select(exists().where(Escrow.risk_assessment_id == assessment_id))
        )
        return bool(result.scalar())

    async def due_for_release(self, now: datetime, limit: int = 100) -> list[uuid.UUID]:
        """FUNDED escrows whose scheduled release has elapsed.

        Escrows with an open dispute or an uncompleted milestone are left out,
        so they cannot crowd releasable escrows out of the batch.
        """
        open_dispute = exists().where(
            and_(Dispute.escrow_id == Escrow.id, Dispute.status.in_(OPEN_DISPUTE_STATUSES))
        )
        open_milestone = exists().where(
            and_(
                EscrowMilestone.escrow_id == Escrow.id,
                EscrowMilestone.status != MilestoneStatus.COMPLETED.value,
            )
        )
        result = await self._session.execute(
            select(Escrow.id)
            .where(
                Escrow.status == EscrowStatus.FUNDED.value,
                Escrow.schedule_release_at.is_not(None),
                Escrow.schedule_release_at <= now,
                ~open_dispute,
                ~open_milestone,
            )
            .order_by(Escrow.schedule_release_at.asc())
            .limit(limit)
        )
        return list(result.scalars().all())

    async def expired_pending(self, now: datetime, limit: int = 100) -> list[uuid.UUID]:
        """PENDING escrows whose expiry has passed."""
        result = await self._session.execute(
            select(Escrow.id)
            .where(
                Escrow.status == EscrowStatus.PENDING.value,
                Escrow.expires_at.is_not(None),
                Escrow.expires_at <= now,
            )
            .order_by(Escrow.expires_at.asc())
            .limit(limit)
        )
        return list(result.scalars().all())

    # --- Milestones ---

    async def get_milestone(self, milestone_id: uuid.UUID) -> EscrowMilestone | None:
        result = await self._session.execute(
            select(EscrowMilestone).where(EscrowMilestone.id == milestone_id)
        )
        return result.scalar_one_or_none()

    async def update_milestone(
        self,
        milestone: EscrowMilestone,
        status: str,
        completed_at: datetime | None = None,
    ) -> EscrowMilestone:
        milestone.status = status
        milestone.completed_at = completed_at
        await self._session.flush()
        return milestone


class ProofRepository:
    """Data access for delivery proofs."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(self, proof: DeliveryProof) -> DeliveryProof:
        self._session.add(proof)
        await self._session.flush()
        return proof

    async def get_by_id(self, proof_id: uuid.UUID) -> DeliveryProof | None:
        result = await self._session.execute(
            select(DeliveryProof).where(DeliveryProof.id == proof_id)
        )
        return result.scalar_one_or_none()

    async def get_by_escrow(self, escrow_id: uuid.UUID) -> list[DeliveryProof]:
        """Fetch all proofs for an escrow, newest first."""
        result = await self._session.execute(
            select(DeliveryProof)
            .where(DeliveryProof.escrow_id == escrow_id)
            .order_by(DeliveryProof.created_at.desc())
        )
        return list(result.scalars().all())

    async def compare_and_set_review(
        self,
        proof: DeliveryProof,
        expected: str,
        new_status: str,
        **values: Any,
    ) -> bool:
        """Exactly-once review: only a row still in ``expected`` is updated.

        Encrypted values must be passed through the ORM (see record_rejection_reason).
        """
        result = await self._session.execute(
            update(DeliveryProof)
            .where(DeliveryProof.id == proof.id, DeliveryProof.status == expected)
            .values(status=new_status, **values)
            .execution_options(synchronize_session=False)
        )
        await self._session.refresh(proof)
        return result.rowcount == 1

    async def record_rejection_reason(self, proof: DeliveryProof, reason: str | None) -> None:
        proof.rejection_reason = reason
        await self._session.flush()


class DisputeRepository:
    """Data access for disputes and their evidence."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(self, dispute: Dispute) -> Dispute:
        self._session.add(dispute)
        await self._session.flush()
        return dispute

    async def get_by_id(self, dispute_id: uuid.UUID) -> Dispute | None:
        result = await self._session.execute(select(Dispute).where(Dispute.id == dispute_id))
        return result.scalar_one_or_none()

    async def get_active_for_escrow(self, escrow_id: uuid.UUID) -> Dispute | None:
        result = await self._session.execute(
            select(Dispute)
            .where(Dispute.escrow_id == escrow_id, Dispute.status != DisputeStatus.CLOSED.value)
            .order_by(Dispute.created_at.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def compare_and_set_status(
        self,
        dispute: Dispute,
        expected: DisputeStatus,
        new_status: DisputeStatus,
        **values: Any,
    ) -> bool:
        result = await self._session.execute(
            update(Dispute)
            .where(Dispute.id == dispute.id, Dispute.status == expected.value)
            .values(status=new_status.value, updated_at=utcnow(), **values)
            .execution_options(synchronize_session=False)
        )
        await self._session.refresh(dispute)
        return result.rowcount == 1

    async def set_fields(self, dispute: Dispute, **values: Any) -> Dispute:
        for key, value in values.items():
            setattr(dispute, key, value)
        await self._session.flush()
        return dispute

    async def past_evidence_deadline(self, now: datetime, limit: int = 100) -> list[uuid.UUID]:
        """OPEN disputes whose evidence window has closed."""
        result = await self._session.execute(
            select(Dispute.id)
            .where(
                Dispute.status == DisputeStatus.OPEN.value,
                Dispute.evidence_deadline.is_not(None),
                Dispute.evidence_deadline <= now,
            )
            .order_by(Dispute.evidence_deadline.asc())
            .limit(limit)
        )
        return list(result.scalars().all())

    async def add_evidence(self, evidence: DisputeEvidence) -> DisputeEvidence:
        self._session.add(evidence)
        await self._session.flush()
        return evidence

    async def list_evidence(self, dispute_id: uuid.UUID) -> list[DisputeEvidence]:
        result = await self._session.execute(
            select(DisputeEvidence)
            .where(DisputeEvidence.dispute_id == dispute_id)
            .order_by(DisputeEvidence.created_at.asc())
        )
        return list(result.scalars().all())


class RiskAssessmentRepository:
    """Data access for risk assessments."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(self, assessment: RiskAssessment) -> RiskAssessment:
        self._session.add(assessment)
        await self._session.flush()
        return assessment

    async def get_by_id(self, assessment_id: uuid.UUID) -> RiskAssessment | None:
        result = await self._session.execute(
            select(RiskAssessment).where(RiskAssessment.id == assessment_id)
        )
        return result.scalar_one_or_none()

    async def average_amount(self, user_id: str) -> Decimal | None:
        result = await self._session.execute(
            select(func.avg(RiskAssessment.amount)).where(
                RiskAssessment.user_id == user_id, RiskAssessment.amount.is_not(None)
            )
        )
        average = result.scalar_one_or_none()
        return Decimal(str(average)) if average is not None else None

    async def count_since(self, user_id: str, since: datetime) -> int:
        result = await self._session.execute(
            select(func.count(RiskAssessment.id)).where(
                RiskAssessment.user_id == user_id, RiskAssessment.created_at >= since
            )
        )
        return int(result.scalar_one())

    async def latest_location(self, user_id: str) -> str | None:
        result = await self._session.execute(
            select(RiskAssessment.location)
            .where(RiskAssessment.user_id == user_id, RiskAssessment.location.is_not(None))
            .order_by(RiskAssessment.created_at.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def known_fingerprints(self, user_id: str) -> frozenset[str]:
        result = await self._session.execute(
            select(RiskAssessment.fingerprint)
            .where(RiskAssessment.user_id == user_id, RiskAssessment.fingerprint.is_not(None))
            .distinct()
        )
        return frozenset(result.scalars().all())

    async def compare_and_set_review(self, assessment: RiskAssessment, **values: Any) -> bool:
        """One-shot review: only an unreviewed row is updated."""
        result = await self._session.execute(
            update(RiskAssessment)
            .where(RiskAssessment.id == assessment.id, RiskAssessment.reviewed_at.is_(None))
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        await self._session.refresh(assessment)
        return result.rowcount == 1

    async def record_review_notes(self, assessment: RiskAssessment, notes: str | None) -> None:
        assessment.review_notes = notes
        await self._session.flush()

    async def pending_reviews(self, limit: int = 100) -> list[RiskAssessment]:
        """Assessments still awaiting a reviewer, oldest first."""
        result = await self._session.execute(
            select(RiskAssessment)
            .where(RiskAssessment.review_required.is_(True), RiskAssessment.reviewed_at.is_(None))
            .order_by(RiskAssessment.created_at.asc())
            .limit(limit)
        )
        return list(result.scalars().all())


class TransactionLogRepository:
    """Data access for the append-only audit log."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def record(self, entry: TransactionLog) -> TransactionLog:
        """Append a new audit entry. This is the ONLY write operation allowed."""
        self._session.add(entry)
        await self._session.flush()
        return entry

    async def get_by_entity(self, entity_id: str) -> list[TransactionLog]:
        """Fetch all entries for an entity in chronological order."""
        result = await self._session.execute(
            select(TransactionLog)
            .where(TransactionLog.entity_id == entity_id)
            .order_by(TransactionLog.created_at.asc(), TransactionLog.id.asc())
        )
        return list(result.scalars().all())

    async def count_by_type(self, entity_id: str, entry_type: str) -> int:
        result = await self._session.execute(
            select(func.count(TransactionLog.id)).where(
                TransactionLog.entity_id == entity_id, TransactionLog.type == entry_type
            )
        )
        return int(result.scalar_one())
