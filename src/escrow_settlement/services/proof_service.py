"""Delivery-proof workflow.

The seller submits evidence of delivery; the buyer reviews it exactly once.
Accepting a milestone proof completes that milestone. Once nothing is left
outstanding the escrow is stamped release-authorized; the funds themselves
move on an explicit release or when the sweep reaches the schedule.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from escrow_settlement.domain.enums import (
    EscrowStatus,
    MilestoneStatus,
    ProofDecision,
    ProofStatus,
    TransactionType,
)
from escrow_settlement.domain.exceptions import (
    AlreadyReviewed,
    EntityNotFound,
    InvalidEscrowState,
    ValidationFailure,
)
from escrow_settlement.domain.guards import assert_counterparty, assert_obligated_deliverer
from escrow_settlement.infrastructure.database.orm_models import DeliveryProof
from escrow_settlement.infrastructure.database.repositories import ProofRepository
from escrow_settlement.logging_config import get_logger
from escrow_settlement.schemas.escrow import DeliveryProofInput
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


@dataclass(frozen=True)
class ProofReviewOutcome:
    proof: DeliveryProof
    release_authorized: bool


class ProofService:
    """Submit, review and list delivery proofs."""

    def __init__(
        self,
        session: AsyncSession,
        context: ServiceContext,
        escrows: EscrowService,
    ) -> None:
        self._ctx = context
        self._repo = ProofRepository(session)
        self._escrows = escrows
        self._audit = AuditTrail(session, context)

    async def submit_proof(
        self,
        escrow_id: uuid.UUID,
        submitter: str,
        proof: DeliveryProofInput | Mapping[str, Any],
        request: RequestMetadata | None = None,
    ) -> DeliveryProof:
        """Record a PENDING proof for a FUNDED escrow.

        Raises:
            NotCounterparty: ``submitter`` is not the seller.
            InvalidEscrowState: Escrow not FUNDED, or the milestone is already completed.
            EntityNotFound: The milestone does not belong to this escrow.
        """
        if not isinstance(proof, DeliveryProofInput):
            proof = DeliveryProofInput.model_validate(proof)
        escrow = await self._escrows.get_escrow(escrow_id)
        assert_obligated_deliverer(escrow, submitter)
        if escrow.status != EscrowStatus.FUNDED.value:
            raise InvalidEscrowState(escrow.status, "submit_proof", "escrow must be funded")

        if proof.milestone_id is not None:
            milestone = next((m for m in escrow.milestones if m.id == proof.milestone_id), None)
            if milestone is None:
                raise EntityNotFound("EscrowMilestone", proof.milestone_id)
            if milestone.status == MilestoneStatus.COMPLETED.value:
                raise InvalidEscrowState(milestone.status, "submit_proof", "milestone completed")

        record = DeliveryProof(
            escrow_id=escrow.id,
            milestone_id=proof.milestone_id,
            submitter_id=submitter,
            proof_type=proof.proof_type.value,
            description=proof.description,
            files=list(proof.files) or None,
            status=ProofStatus.PENDING.value,
            metadata_json=proof.metadata.to_dict() if proof.metadata is not None else None,
            created_at=self._ctx.now(),
        )
        record = await self._repo.create(record)

        await self._audit.record(
            TransactionType.PROOF_SUBMITTED,
            entity_id=escrow.id,
            entity_type="escrow",
            user_id=submitter,
            data={
                "proof_id": record.id,
                "proof_type": record.proof_type,
                "milestone_id": record.milestone_id,
                "files": len(proof.files),
            },
            request=request,
        )
        logger.info(
            "proof.submitted",
            escrow_id=str(escrow.id),
            proof_id=str(record.id),
            proof_type=record.proof_type,
        )
        await publish_safely(
            self._ctx.notifier,
            "proof.submitted",
            {"escrow_id": str(escrow.id), "proof_id": str(record.id)},
        )
        return record

    async def review_proof(
        self,
        proof_id: uuid.UUID,
        reviewer: str,
        decision: ProofDecision | str,
        reason: str | None = None,
        request: RequestMetadata | None = None,
    ) -> ProofReviewOutcome:
        """Accept or reject a PENDING proof. A proof is reviewed at most once.

        Raises:
            NotCounterparty: ``reviewer`` is the submitter or not a party.
            AlreadyReviewed: The proof was already decided (including by a concurrent call).
            ValidationFailure: Rejection without a reason.
        """
        decision = ProofDecision(decision)
        proof = await self.get_proof(proof_id)
        escrow = await self._escrows.get_escrow(proof.escrow_id)
        assert_counterparty(escrow, proof.submitter_id, reviewer, "review delivery proof")
        if proof.status != ProofStatus.PENDING.value:
            raise AlreadyReviewed("DeliveryProof", proof_id)
        if escrow.status != EscrowStatus.FUNDED.value:
            raise InvalidEscrowState(escrow.status, "review_proof", "escrow must be funded")
        if decision is ProofDecision.REJECT and not (reason and reason.strip()):
            raise ValidationFailure("a rejection requires a reason", field="reason")

        new_status = (
            ProofStatus.ACCEPTED if decision is ProofDecision.ACCEPT else ProofStatus.REJECTED
        )
        won = await self._repo.compare_and_set_review(
            proof,
            ProofStatus.PENDING.value,
            new_status.value,
            reviewer_id=reviewer,
            reviewed_at=self._ctx.now(),
        )
        if not won:
            raise AlreadyReviewed("DeliveryProof", proof_id)

        release_authorized = False
        if decision is ProofDecision.REJECT:
            await self._repo.record_rejection_reason(proof, reason)
        else:
            release_authorized = await self._apply_acceptance(escrow, proof, reviewer, request)

        await self._audit.record(
            TransactionType.PROOF_REVIEWED,
            entity_id=escrow.id,
            entity_type="escrow",
            user_id=reviewer,
            data={
                "proof_id": proof.id,
                "decision": decision.value,
                "release_authorized": release_authorized,
            },
            sensitive={"reason": reason} if reason else None,
            request=request,
        )
        logger.info(
            "proof.reviewed",
            escrow_id=str(escrow.id),
            proof_id=str(proof.id),
            decision=decision.value,
            release_authorized=release_authorized,
        )
        await publish_safely(
            self._ctx.notifier,
            "proof.reviewed",
            {"escrow_id": str(escrow.id), "proof_id": str(proof.id), "decision": decision.value},
        )
        return ProofReviewOutcome(proof=proof, release_authorized=release_authorized)

    async def _apply_acceptance(
        self,
        escrow: Escrow,
        proof: DeliveryProof,
        reviewer: str,
        request: RequestMetadata | None,
    ) -> bool:
        if proof.milestone_id is not None:
            milestone = next((m for m in escrow.milestones if m.id == proof.milestone_id), None)
            if milestone is not None and milestone.status != MilestoneStatus.COMPLETED.value:
                await self._escrows.complete_milestone(
                    escrow.id, milestone.id, reviewer, request=request
                )
        if escrow.open_milestones:
            return False
        if escrow.release_authorized_at is None:
            await self._escrows.mark_release_authorized(escrow, proof.id, reviewer)
        return True

    async def list_proofs(self, escrow_id: uuid.UUID) -> list[DeliveryProof]:
        """Proofs for an escrow, newest first."""
        await self._escrows.get_escrow(escrow_id)
        return await self._repo.get_by_escrow(escrow_id)

    async def get_proof(self, proof_id: uuid.UUID) -> DeliveryProof:
        proof = await self._repo.get_by_id(proof_id)
        if proof is None:
            raise EntityNotFound("DeliveryProof", proof_id)
        return proof
