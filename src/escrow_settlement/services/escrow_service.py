"""Escrow Service: core business logic for the escrow lifecycle.

This is the application layer that coordinates between:
    - Domain state machine (transition guard)
    - Authorization guards
    - Risk assessment (pre-check on creation, re-check on funding)
    - Repositories (data access, conditional status updates)
    - Audit trail, payment gateway and notifier

Every status change is validated by EscrowStateMachine first and then
written with EscrowRepository.compare_and_set_status. Money moves through
the gateway only after the conditional update succeeded, inside the same
transaction; a gateway error rolls the transition back.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from datetime import timedelta
from decimal import Decimal, InvalidOperation
from typing import TYPE_CHECKING, Any

from escrow_settlement.domain.documents import Document
from escrow_settlement.domain.enums import (
    SYSTEM_ACTOR,
    EscrowStatus,
    MilestoneStatus,
    TransactionType,
)
from escrow_settlement.domain.exceptions import (
    EntityNotFound,
    InvalidEscrowState,
    RiskBlocked,
    ValidationFailure,
)
from escrow_settlement.domain.guards import assert_buyer, assert_party, assert_seller
from escrow_settlement.domain.state_machine import EscrowStateMachine, next_escrow_status
from escrow_settlement.infrastructure.database.orm_models import Escrow, EscrowMilestone
from escrow_settlement.infrastructure.database.repositories import EscrowRepository
from escrow_settlement.logging_config import get_logger
from escrow_settlement.schemas.escrow import MilestoneSpec
from escrow_settlement.services.audit import AuditTrail
from escrow_settlement.services.notifications import publish_safely
from escrow_settlement.services.risk_service import RiskService

if TYPE_CHECKING:
    import uuid
    from datetime import datetime

    from sqlalchemy.ext.asyncio import AsyncSession

    from escrow_settlement.infrastructure.database.orm_models import RiskAssessment, TransactionLog
    from escrow_settlement.schemas.context import RequestMetadata, RiskContext
    from escrow_settlement.services.context import ServiceContext

logger = get_logger(__name__)

_CENTS = Decimal("0.01")


def validate_amount(value: Any, field: str, *, allow_zero: bool = False) -> Decimal:
    """Coerce to Decimal and enforce positivity and at most two decimal places."""
    try:
        amount = value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, ValueError) as err:
        raise ValidationFailure(f"{field} is not a decimal amount", field=field) from err
    if not amount.is_finite():
        raise ValidationFailure(f"{field} must be finite", field=field)
    if amount < 0 or (amount == 0 and not allow_zero):
        raise ValidationFailure(f"{field} must be greater than zero", field=field)
    if amount != amount.quantize(_CENTS):
        raise ValidationFailure(f"{field} has more than two decimal places", field=field)
    return amount.quantize(_CENTS)


class EscrowService:
    """Manages the escrow lifecycle."""

    def __init__(self, session: AsyncSession, context: ServiceContext) -> None:
        self._session = session
        self._ctx = context
        self._repo = EscrowRepository(session)
        self._audit = AuditTrail(session, context)
        self._risk = RiskService(session, context)

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    async def create(
        self,
        buyer_id: str,
        seller_id: str,
        amount: Decimal | str,
        *,
        terms: Mapping[str, Any] | None = None,
        milestones: Sequence[MilestoneSpec | Mapping[str, Any]] = (),
        title: str | None = None,
        description: str | None = None,
        documents: Sequence[str] = (),
        expiration_days: int | None = None,
        risk_context: RiskContext | None = None,
        assessment_id: uuid.UUID | None = None,
        request: RequestMetadata | None = None,
    ) -> Escrow:
        """Create an escrow in PENDING after the risk pre-check.

        When ``assessment_id`` is given, that (already persisted) assessment is
        used as the pre-check; otherwise one is run in this transaction.

        Raises:
            ValidationFailure: Bad amount, milestone sum or sequence numbers.
            RiskBlocked: The pre-check assessment is blocked.
        """
        if not buyer_id or not seller_id:
            raise ValidationFailure("buyer and seller are required", field="buyer_id")
        if buyer_id == seller_id:
            raise ValidationFailure("buyer and seller must differ", field="seller_id")
        total = validate_amount(amount, "amount")
        specs = self._validate_milestones(total, milestones)
        terms_doc = Document.coerce(terms) if terms is not None else None
        days = self._ctx.escrow_policy.default_expiration_days if expiration_days is None else expiration_days
        if days <= 0:
            raise ValidationFailure("expiration_days must be positive", field="expiration_days")

        if assessment_id is not None:
            assessment = await self._risk.get(assessment_id)
            await self._check_assessment(assessment, buyer_id, total)
        else:
            assessment = await self._risk.assess(
                buyer_id,
                amount=total,
                ip=risk_context.ip if risk_context else None,
                device=risk_context.device if risk_context else None,
                location=risk_context.location if risk_context else None,
                endpoint=risk_context.endpoint if risk_context else "/escrows",
                request=request,
            )
        if assessment.blocked:
            logger.warning(
                "escrow.creation_blocked",
                buyer_id=buyer_id,
                assessment_id=str(assessment.id),
                level=assessment.risk_level,
            )
            raise RiskBlocked(str(assessment.id), assessment.risk_level)

        now = self._ctx.now()
        release_days = self._ctx.escrow_policy.auto_release_after_days
        escrow = Escrow(
            buyer_id=buyer_id,
            seller_id=seller_id,
            amount=total,
            status=EscrowStatus.PENDING.value,
            title=title,
            description=description,
            terms=terms_doc.to_dict() if terms_doc is not None else None,
            documents=list(documents) or None,
            risk_assessment_id=assessment.id,
            expires_at=now + timedelta(days=days),
            schedule_release_at=now + timedelta(days=release_days) if release_days is not None else None,
            created_at=now,
            updated_at=now,
            milestones=[
                EscrowMilestone(
                    amount=spec.amount,
                    description=spec.description,
                    sequence=spec.sequence,
                    status=MilestoneStatus.PENDING.value,
                    created_at=now,
                )
                for spec in specs
            ],
        )
        escrow = await self._repo.create(escrow)

        await self._audit.record(
            TransactionType.ESCROW_CREATED,
            entity_id=escrow.id,
            entity_type="escrow",
            user_id=buyer_id,
            data={
                "amount": total,
                "buyer_id": buyer_id,
                "seller_id": seller_id,
                "milestones": len(specs),
                "risk_assessment_id": assessment.id,
                "risk_level": assessment.risk_level,
            },
            request=request,
        )
        logger.info(
            "escrow.created", escrow_id=str(escrow.id), amount=str(total), milestones=len(specs)
        )
        await publish_safely(
            self._ctx.notifier, "escrow.created", {"escrow_id": str(escrow.id), "amount": str(total)}
        )
        return escrow

    # ------------------------------------------------------------------
    # Funding
    # ------------------------------------------------------------------

    async def fund(
        self,
        escrow_id: uuid.UUID,
        payment_ref: str,
        actor: str | None = None,
        request: RequestMetadata | None = None,
    ) -> Escrow:
        """Link the payment and move PENDING -> FUNDED."""
        escrow = await self.get_escrow(escrow_id)
        if actor is not None:
            assert_buyer(escrow, actor, "fund escrow")
        if not payment_ref:
            raise ValidationFailure("payment_ref is required", field="payment_ref")
        next_escrow_status(escrow.status, "fund")

        if escrow.risk_assessment_id is not None:
            assessment = await self._risk.get(escrow.risk_assessment_id)
            if assessment.blocked:
                raise RiskBlocked(str(assessment.id), assessment.risk_level)

        await self._transition(
            escrow, EscrowStatus.PENDING, EscrowStatus.FUNDED, "fund", payment_ref=payment_ref
        )
        await self._audit.record(
            TransactionType.ESCROW_FUNDED,
            entity_id=escrow.id,
            entity_type="escrow",
            user_id=actor or escrow.buyer_id,
            data={"payment_ref": payment_ref, "amount": escrow.amount},
            request=request,
        )
        logger.info("escrow.funded", escrow_id=str(escrow.id), payment_ref=payment_ref)
        await publish_safely(self._ctx.notifier, "escrow.funded", {"escrow_id": str(escrow.id)})
        return escrow

    # ------------------------------------------------------------------
    # Release / refund / cancel
    # ------------------------------------------------------------------

    async def release(
        self,
        escrow_id: uuid.UUID,
        actor: str,
        request: RequestMetadata | None = None,
    ) -> Escrow:
        """Release held funds to the seller.

        Idempotent: an escrow that is already RELEASED is returned unchanged,
        including when a concurrent release won the conditional update.
        Releasing a DISPUTED escrow goes through dispute resolution.
        """
        escrow = await self.get_escrow(escrow_id)
        if escrow.status == EscrowStatus.RELEASED.value:
            logger.info("escrow.release_noop", escrow_id=str(escrow.id), actor=actor)
            return escrow
        assert_buyer(escrow, actor, "release escrow", allow_system=True)
        if escrow.status == EscrowStatus.DISPUTED.value:
            raise InvalidEscrowState(escrow.status, "release", "resolve the dispute instead")
        return await self._release(escrow, actor, request)

    async def release_for_dispute(
        self,
        escrow: Escrow,
        resolver: str,
        request: RequestMetadata | None = None,
    ) -> Escrow:
        """DISPUTED -> RELEASED on a merchant-favour resolution (DisputeService only)."""
        if escrow.status != EscrowStatus.DISPUTED.value:
            raise InvalidEscrowState(escrow.status, "release", "escrow is not disputed")
        return await self._release(escrow, resolver, request)

    async def _release(
        self, escrow: Escrow, actor: str, request: RequestMetadata | None
    ) -> Escrow:
        expected = EscrowStatus(escrow.status)
        next_escrow_status(escrow.status, "release")
        pending = escrow.open_milestones
        if pending:
            raise InvalidEscrowState(
                escrow.status, "release", f"{len(pending)} milestone(s) not completed"
            )

        won = await self._repo.compare_and_set_status(
            escrow, expected, EscrowStatus.RELEASED, completed_at=self._ctx.now()
        )
        if not won:
            if escrow.status == EscrowStatus.RELEASED.value:
                logger.info("escrow.release_lost_race", escrow_id=str(escrow.id), actor=actor)
                return escrow
            raise InvalidEscrowState(escrow.status, "release", "concurrent update")

        reference = await self._ctx.gateway.disburse(
            escrow.id, escrow.seller_id, escrow.amount, "release"
        )
        await self._repo.set_fields(escrow, settlement_ref=reference)

        await self._audit.record(
            TransactionType.FUNDS_RELEASED,
            entity_id=escrow.id,
            entity_type="escrow",
            user_id=actor,
            data={
                "amount": escrow.amount,
                "payee_id": escrow.seller_id,
                "settlement_ref": reference,
                "previous_status": expected.value,
            },
            request=request,
        )
        logger.info("escrow.released", escrow_id=str(escrow.id), actor=actor, reference=reference)
        await publish_safely(
            self._ctx.notifier, "escrow.released", {"escrow_id": str(escrow.id), "actor": actor}
        )
        return escrow

    async def refund(
        self,
        escrow_id: uuid.UUID,
        actor: str,
        reason: str,
        request: RequestMetadata | None = None,
    ) -> Escrow:
        """Return held funds to the buyer (seller-initiated or system). FUNDED only."""
        escrow = await self.get_escrow(escrow_id)
        assert_seller(escrow, actor, "refund escrow", allow_system=True)
        if escrow.status == EscrowStatus.DISPUTED.value:
            raise InvalidEscrowState(escrow.status, "refund", "resolve the dispute instead")
        return await self._refund(escrow, actor, reason, request)

    async def refund_for_dispute(
        self,
        escrow: Escrow,
        resolver: str,
        reason: str,
        request: RequestMetadata | None = None,
    ) -> Escrow:
        """DISPUTED -> REFUNDED on a customer-favour resolution (DisputeService only)."""
        if escrow.status != EscrowStatus.DISPUTED.value:
            raise InvalidEscrowState(escrow.status, "refund", "escrow is not disputed")
        return await self._refund(escrow, resolver, reason, request)

    async def _refund(
        self, escrow: Escrow, actor: str, reason: str, request: RequestMetadata | None
    ) -> Escrow:
        expected = EscrowStatus(escrow.status)
        next_escrow_status(escrow.status, "refund")
        await self._transition(
            escrow, expected, EscrowStatus.REFUNDED, "refund", completed_at=self._ctx.now()
        )
        reference = await self._ctx.gateway.disburse(
            escrow.id, escrow.buyer_id, escrow.amount, "refund"
        )
        await self._repo.set_fields(escrow, settlement_ref=reference)

        await self._audit.record(
            TransactionType.ESCROW_REFUNDED,
            entity_id=escrow.id,
            entity_type="escrow",
            user_id=actor,
            data={
                "amount": escrow.amount,
                "payee_id": escrow.buyer_id,
                "settlement_ref": reference,
                "previous_status": expected.value,
            },
            sensitive={"reason": reason} if reason else None,
            request=request,
        )
        logger.info("escrow.refunded", escrow_id=str(escrow.id), actor=actor, reference=reference)
        await publish_safely(
            self._ctx.notifier, "escrow.refunded", {"escrow_id": str(escrow.id), "actor": actor}
        )
        return escrow

    async def settle_split(
        self,
        escrow: Escrow,
        resolver: str,
        buyer_amount: Decimal,
        seller_amount: Decimal,
        request: RequestMetadata | None = None,
    ) -> Escrow:
        """DISPUTED -> COMPLETED with two sub-payments (DisputeService only)."""
        if buyer_amount + seller_amount != escrow.amount:
            raise ValidationFailure("split must sum to the escrow amount", field="split")
        next_escrow_status(escrow.status, "settle_split")
        await self._transition(
            escrow,
            EscrowStatus.DISPUTED,
            EscrowStatus.COMPLETED,
            "settle_split",
            completed_at=self._ctx.now(),
        )
        references: list[str] = []
        for payee, share, purpose in (
            (escrow.buyer_id, buyer_amount, "split_refund"),
            (escrow.seller_id, seller_amount, "split_release"),
        ):
            if share > 0:
                references.append(
                    await self._ctx.gateway.disburse(escrow.id, payee, share, purpose)
                )
        await self._repo.set_fields(escrow, settlement_ref=",".join(references) or None)

        await self._audit.record(
            TransactionType.ESCROW_COMPLETED,
            entity_id=escrow.id,
            entity_type="escrow",
            user_id=resolver,
            data={
                "buyer_amount": buyer_amount,
                "seller_amount": seller_amount,
                "settlement_refs": references,
            },
            request=request,
        )
        logger.info(
            "escrow.split_settled",
            escrow_id=str(escrow.id),
            buyer_amount=str(buyer_amount),
            seller_amount=str(seller_amount),
        )
        await publish_safely(
            self._ctx.notifier, "escrow.completed", {"escrow_id": str(escrow.id)}
        )
        return escrow

    async def cancel(
        self,
        escrow_id: uuid.UUID,
        actor: str,
        reason: str,
        request: RequestMetadata | None = None,
    ) -> Escrow:
        """PENDING -> CANCELLED. Either party, or the sweep on expiry."""
        escrow = await self.get_escrow(escrow_id)
        assert_party(escrow, actor, "cancel escrow", allow_system=True)
        next_escrow_status(escrow.status, "cancel")
        await self._transition(
            escrow,
            EscrowStatus.PENDING,
            EscrowStatus.CANCELLED,
            "cancel",
            cancelled_at=self._ctx.now(),
            cancellation_reason=(reason or None) and reason[:200],
        )
        await self._audit.record(
            TransactionType.ESCROW_CANCELLED,
            entity_id=escrow.id,
            entity_type="escrow",
            user_id=actor,
            sensitive={"reason": reason} if reason else None,
            request=request,
        )
        logger.info("escrow.cancelled", escrow_id=str(escrow.id), actor=actor)
        await publish_safely(
            self._ctx.notifier, "escrow.cancelled", {"escrow_id": str(escrow.id), "actor": actor}
        )
        return escrow

    # ------------------------------------------------------------------
    # Disputed state (entered by DisputeService.file_dispute)
    # ------------------------------------------------------------------

    async def mark_disputed(
        self,
        escrow: Escrow,
        filer: str,
        dispute_id: uuid.UUID,
        request: RequestMetadata | None = None,
    ) -> Escrow:
        next_escrow_status(escrow.status, "dispute")
        await self._transition(escrow, EscrowStatus.FUNDED, EscrowStatus.DISPUTED, "dispute")
        await self._audit.record(
            TransactionType.ESCROW_DISPUTED,
            entity_id=escrow.id,
            entity_type="escrow",
            user_id=filer,
            data={"dispute_id": dispute_id},
            request=request,
        )
        return escrow

    # ------------------------------------------------------------------
    # Scheduling, terms and milestones
    # ------------------------------------------------------------------

    async def schedule_release(
        self,
        escrow_id: uuid.UUID,
        at: datetime | None,
        actor: str = SYSTEM_ACTOR,
        request: RequestMetadata | None = None,
    ) -> Escrow:
        """Set (or clear, with None) the scheduled-release time. Status is unchanged."""
        escrow = await self.get_escrow(escrow_id)
        assert_party(escrow, actor, "schedule release", allow_system=True)
        if escrow.status_enum.is_terminal:
            raise InvalidEscrowState(escrow.status, "schedule_release")
        await self._repo.set_fields(escrow, schedule_release_at=at)
        await self._audit.record(
            TransactionType.ESCROW_RELEASE_SCHEDULED,
            entity_id=escrow.id,
            entity_type="escrow",
            user_id=actor,
            data={"schedule_release_at": at},
            request=request,
        )
        logger.info(
            "escrow.release_scheduled",
            escrow_id=str(escrow.id),
            at=at.isoformat() if at else None,
        )
        return escrow

    async def mark_release_authorized(
        self, escrow: Escrow, proof_id: uuid.UUID, reviewer: str
    ) -> Escrow:
        """Record that accepted proofs now cover the whole escrow (ProofService only)."""
        await self._repo.set_fields(escrow, release_authorized_at=self._ctx.now())
        await self._audit.record(
            TransactionType.ESCROW_RELEASE_AUTHORIZED,
            entity_id=escrow.id,
            entity_type="escrow",
            user_id=reviewer,
            data={"proof_id": proof_id},
        )
        logger.info("escrow.release_authorized", escrow_id=str(escrow.id), proof_id=str(proof_id))
        await publish_safely(
            self._ctx.notifier, "escrow.release_authorized", {"escrow_id": str(escrow.id)}
        )
        return escrow

    async def update_terms(
        self,
        escrow_id: uuid.UUID,
        actor: str,
        terms: Mapping[str, Any],
        request: RequestMetadata | None = None,
    ) -> Escrow:
        """Replace the terms document. PENDING only."""
        escrow = await self.get_escrow(escrow_id)
        assert_party(escrow, actor, "update terms")
        if escrow.status != EscrowStatus.PENDING.value:
            raise InvalidEscrowState(escrow.status, "update_terms", "terms are fixed once funded")
        document = Document.coerce(terms)
        await self._repo.set_fields(escrow, terms=document.to_dict())
        await self._audit.record(
            TransactionType.ESCROW_TERMS_UPDATED,
            entity_id=escrow.id,
            entity_type="escrow",
            user_id=actor,
            data={"keys": sorted(document)},
            request=request,
        )
        logger.info("escrow.terms_updated", escrow_id=str(escrow.id), actor=actor)
        return escrow

    async def complete_milestone(
        self,
        escrow_id: uuid.UUID,
        milestone_id: uuid.UUID,
        actor: str,
        request: RequestMetadata | None = None,
    ) -> EscrowMilestone:
        """Buyer marks a milestone COMPLETED (from PENDING or DISPUTED)."""
        escrow = await self.get_escrow(escrow_id)
        assert_buyer(escrow, actor, "complete milestone")
        milestone = self._milestone_of(escrow, milestone_id)
        if escrow.status != EscrowStatus.FUNDED.value:
            raise InvalidEscrowState(escrow.status, "complete_milestone")
        if milestone.status == MilestoneStatus.COMPLETED.value:
            raise InvalidEscrowState(milestone.status, "complete_milestone", "milestone")
        return await self._set_milestone(
            escrow, milestone, MilestoneStatus.COMPLETED, actor, request
        )

    async def dispute_milestone(
        self,
        escrow_id: uuid.UUID,
        milestone_id: uuid.UUID,
        actor: str,
        request: RequestMetadata | None = None,
    ) -> EscrowMilestone:
        """Either party flags a PENDING milestone as DISPUTED."""
        escrow = await self.get_escrow(escrow_id)
        assert_party(escrow, actor, "dispute milestone")
        milestone = self._milestone_of(escrow, milestone_id)
        if escrow.status != EscrowStatus.FUNDED.value:
            raise InvalidEscrowState(escrow.status, "dispute_milestone")
        if milestone.status != MilestoneStatus.PENDING.value:
            raise InvalidEscrowState(milestone.status, "dispute_milestone", "milestone")
        return await self._set_milestone(
            escrow, milestone, MilestoneStatus.DISPUTED, actor, request
        )

    async def complete_open_milestones(
        self, escrow: Escrow, actor: str, request: RequestMetadata | None = None
    ) -> list[EscrowMilestone]:
        """Complete every outstanding milestone (merchant-favour dispute resolution)."""
        completed = []
        for milestone in escrow.open_milestones:
            completed.append(
                await self._set_milestone(
                    escrow, milestone, MilestoneStatus.COMPLETED, actor, request
                )
            )
        return completed

    async def _set_milestone(
        self,
        escrow: Escrow,
        milestone: EscrowMilestone,
        status: MilestoneStatus,
        actor: str,
        request: RequestMetadata | None,
    ) -> EscrowMilestone:
        previous = milestone.status
        completed_at = self._ctx.now() if status is MilestoneStatus.COMPLETED else None
        await self._repo.update_milestone(milestone, status.value, completed_at)
        await self._audit.record(
            TransactionType.MILESTONE_UPDATED,
            entity_id=escrow.id,
            entity_type="escrow",
            user_id=actor,
            data={
                "milestone_id": milestone.id,
                "sequence": milestone.sequence,
                "from": previous,
                "to": status.value,
            },
            request=request,
        )
        logger.info(
            "escrow.milestone_updated",
            escrow_id=str(escrow.id),
            sequence=milestone.sequence,
            status=status.value,
        )
        return milestone

    # ------------------------------------------------------------------
    # Read helpers
    # ------------------------------------------------------------------

    async def get_escrow(self, escrow_id: uuid.UUID) -> Escrow:
        escrow = await self._repo.get_by_id(escrow_id)
        if escrow is None:
            raise EntityNotFound("Escrow", escrow_id)
        return escrow

    async def list_for_party(
        self,
        user_id: str,
        status: EscrowStatus | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[Escrow]:
        return await self._repo.list_for_party(user_id, status=status, limit=limit, offset=offset)

    async def get_status(self, escrow_id: uuid.UUID) -> dict:
        """Get escrow status with allowed events."""
        escrow = await self.get_escrow(escrow_id)
        sm = EscrowStateMachine(current_status=escrow.status)
        return {
            "escrow_id": str(escrow.id),
            "status": escrow.status,
            "allowed_events": sm.get_allowed_events(),
            "open_milestones": len(escrow.open_milestones),
            "release_authorized": escrow.release_authorized_at is not None,
            "schedule_release_at": escrow.schedule_release_at,
        }

    async def history(self, escrow_id: uuid.UUID) -> list[TransactionLog]:
        """Get audit trail."""
        return await self._audit.for_entity(escrow_id)

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    async def _transition(
        self,
        escrow: Escrow,
        expected: EscrowStatus,
        new_status: EscrowStatus,
        event_name: str,
        **values: Any,
    ) -> None:
        won = await self._repo.compare_and_set_status(escrow, expected, new_status, **values)
        if not won:
            logger.info(
                "escrow.transition_conflict",
                escrow_id=str(escrow.id),
                expected=expected.value,
                actual=escrow.status,
                event_name=event_name,
            )
            raise InvalidEscrowState(escrow.status, event_name, "concurrent update")

    async def _check_assessment(
        self, assessment: RiskAssessment, buyer_id: str, total: Decimal
    ) -> None:
        """A supplied pre-check must be the buyer's own, cover ``total`` and be unused."""
        if assessment.user_id != buyer_id:
            raise ValidationFailure("risk assessment belongs to another user", field="assessment_id")
        if assessment.amount is None or assessment.amount < total:
            raise ValidationFailure(
                "risk assessment does not cover the escrow amount", field="assessment_id"
            )
        if await self._repo.uses_assessment(assessment.id):
            raise ValidationFailure("risk assessment already gates an escrow", field="assessment_id")

    @staticmethod
    def _milestone_of(escrow: Escrow, milestone_id: uuid.UUID) -> EscrowMilestone:
        for milestone in escrow.milestones:
            if milestone.id == milestone_id:
                return milestone
        raise EntityNotFound("EscrowMilestone", milestone_id)

    @staticmethod
    def _validate_milestones(
        total: Decimal, milestones: Sequence[MilestoneSpec | Mapping[str, Any]]
    ) -> list[MilestoneSpec]:
        specs: list[MilestoneSpec] = []
        for index, raw in enumerate(milestones):
            if isinstance(raw, MilestoneSpec):
                spec = raw
            else:
                amount = validate_amount(raw.get("amount"), f"milestones[{index}].amount")
                sequence = raw.get("sequence", index + 1)
                if not isinstance(sequence, int) or isinstance(sequence, bool) or sequence < 1:
                    raise ValidationFailure(
                        "sequence must be a positive integer", field=f"milestones[{index}].sequence"
                    )
                spec = MilestoneSpec(
                    amount=amount, description=raw.get("description"), sequence=sequence
                )
            validate_amount(spec.amount, f"milestones[{index}].amount")
            specs.append(spec)

        sequences = [spec.sequence for spec in specs]
        if len(set(sequences)) != len(sequences):
            raise ValidationFailure("milestone sequence numbers must be unique", field="milestones")
        if sum((spec.amount for spec in specs), Decimal("0")) > total:
            raise ValidationFailure("milestone amounts exceed the escrow amount", field="milestones")
        return sorted(specs, key=lambda spec: spec.sequence)
