"""Risk Service: scores transaction attempts and records reviews.

Signals come from the user's own assessment history plus one proxy/IP
reputation lookup. The lookup is the only external call and is bounded by
the context's reputation timeout. Any failure or timeout there degrades to
ProxyCheck.unknown() and is noted in ``details``; assess() never raises
because of it.
"""

from __future__ import annotations

import asyncio
from datetime import timedelta
from decimal import Decimal
from typing import TYPE_CHECKING

from escrow_settlement.domain.collaborators import ProxyCheck
from escrow_settlement.domain.enums import TransactionType
from escrow_settlement.domain.exceptions import (
    AlreadyReviewed,
    EntityNotFound,
    ExternalSignalUnavailable,
    ValidationFailure,
)
from escrow_settlement.domain.risk_rules import RiskSignals, evaluate
from escrow_settlement.infrastructure.database.orm_models import RiskAssessment
from escrow_settlement.infrastructure.database.repositories import RiskAssessmentRepository
from escrow_settlement.logging_config import get_logger
from escrow_settlement.services.audit import AuditTrail

if TYPE_CHECKING:
    import uuid

    from sqlalchemy.ext.asyncio import AsyncSession

    from escrow_settlement.schemas.context import DeviceInfo, RequestMetadata
    from escrow_settlement.services.context import ServiceContext

logger = get_logger(__name__)

DEGRADED_SIGNAL_NOTE = "reputation signal unavailable"


class RiskService:
    """Risk assessment engine: assess, review, pending_reviews."""

    def __init__(self, session: AsyncSession, context: ServiceContext) -> None:
        self._ctx = context
        self._repo = RiskAssessmentRepository(session)
        self._audit = AuditTrail(session, context)

    async def assess(
        self,
        user_id: str,
        *,
        payment_id: str | None = None,
        amount: Decimal | None = None,
        ip: str | None = None,
        device: DeviceInfo | None = None,
        location: str | None = None,
        endpoint: str = "/escrows",
        request: RequestMetadata | None = None,
    ) -> RiskAssessment:
        """Score one transaction attempt and persist the assessment."""
        if amount is not None and amount < 0:
            raise ValidationFailure("amount must not be negative", field="amount")

        now = self._ctx.now()
        policy = self._ctx.risk_policy
        fingerprint = device.fingerprint if device else None

        # History is read before the new row exists.
        average = await self._repo.average_amount(user_id)
        recent = await self._repo.count_since(
            user_id, now - timedelta(minutes=policy.velocity_window_minutes)
        )
        last_location = await self._repo.latest_location(user_id)
        known = await self._repo.known_fingerprints(user_id)

        notes: list[str] = []
        check = ProxyCheck.unknown()
        if ip:
            try:
                check = await asyncio.wait_for(
                    self._ctx.reputation.detect_proxy(ip, endpoint),
                    timeout=self._ctx.reputation_timeout_seconds,
                )
            except ExternalSignalUnavailable as exc:
                logger.warning(
                    "risk.signal_degraded", source=exc.source, reason=exc.reason, user_id=user_id
                )
                notes.append(DEGRADED_SIGNAL_NOTE)
            except TimeoutError:
                logger.warning(
                    "risk.signal_degraded",
                    reason="timeout",
                    timeout=self._ctx.reputation_timeout_seconds,
                    user_id=user_id,
                )
                notes.append(DEGRADED_SIGNAL_NOTE)
            except Exception as exc:
                logger.warning("risk.signal_degraded", reason=type(exc).__name__, user_id=user_id)
                notes.append(DEGRADED_SIGNAL_NOTE)

        signals = RiskSignals(
            amount=amount,
            historical_average=average,
            recent_attempts=recent,
            claimed_location=location,
            last_known_location=last_location,
            device_fingerprint=fingerprint,
            known_fingerprints=known,
            hour=now.hour,
            ip_region=check.region if check.region_known else None,
            is_proxy=check.is_proxy,
            proxy_confidence=check.confidence,
        )
        decision = evaluate(signals, policy)
        if check.is_proxy:
            notes.append(f"proxy confidence {check.confidence:g}")

        assessment = RiskAssessment(
            user_id=user_id,
            payment_id=payment_id,
            amount=amount,
            risk_level=decision.level.value,
            risk_flags=decision.sorted_flags(),
            risk_score=decision.score,
            details="; ".join(notes) or None,
            device_fingerprint=device.model_dump(mode="json") if device else None,
            fingerprint=fingerprint,
            ip_address=self._ctx.ip_masker.mask(ip),
            region=check.region,
            location=location,
            requires_3ds=decision.requires_3ds,
            requires_mfa=decision.requires_mfa,
            blocked=decision.blocked,
            review_required=decision.review_required,
            created_at=now,
        )
        assessment = await self._repo.create(assessment)

        await self._audit.record(
            TransactionType.RISK_ASSESSED,
            entity_id=assessment.id,
            entity_type="risk_assessment",
            user_id=user_id,
            data={
                "level": decision.level.value,
                "score": decision.score,
                "flags": decision.sorted_flags(),
                "blocked": decision.blocked,
                "payment_id": payment_id,
            },
            request=request,
        )
        logger.info(
            "risk.assessed",
            assessment_id=str(assessment.id),
            user_id=user_id,
            level=decision.level.value,
            score=str(decision.score),
            blocked=decision.blocked,
        )
        return assessment

    async def review(
        self,
        assessment_id: uuid.UUID,
        reviewer: str,
        approve: bool,
        notes: str | None = None,
        request: RequestMetadata | None = None,
    ) -> RiskAssessment:
        """One-shot reviewer decision.

        Rejecting marks the assessment blocked; cancelling or refunding the
        associated transaction is left to the caller.
        """
        assessment = await self.get(assessment_id)
        if assessment.reviewed_at is not None:
            raise AlreadyReviewed("RiskAssessment", assessment_id)

        won = await self._repo.compare_and_set_review(
            assessment,
            review_required=False,
            approved=approve,
            blocked=not approve,
            reviewed_by=reviewer,
            reviewed_at=self._ctx.now(),
        )
        if not won:
            raise AlreadyReviewed("RiskAssessment", assessment_id)
        if notes:
            await self._repo.record_review_notes(assessment, notes)

        await self._audit.record(
            TransactionType.RISK_REVIEWED,
            entity_id=assessment.id,
            entity_type="risk_assessment",
            user_id=reviewer,
            data={"approved": approve, "subject_user_id": assessment.user_id},
            sensitive={"notes": notes} if notes else None,
            request=request,
        )
        logger.info(
            "risk.reviewed", assessment_id=str(assessment.id), reviewer=reviewer, approved=approve
        )
        return assessment

    async def pending_reviews(self, limit: int = 100) -> list[RiskAssessment]:
        return await self._repo.pending_reviews(limit=limit)

    async def get(self, assessment_id: uuid.UUID) -> RiskAssessment:
        assessment = await self._repo.get_by_id(assessment_id)
        if assessment is None:
            raise EntityNotFound("RiskAssessment", assessment_id)
        return assessment
