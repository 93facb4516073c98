"""Services bound to one session, i.e. one transaction."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from escrow_settlement.services.audit import AuditTrail
from escrow_settlement.services.dispute_service import DisputeService
from escrow_settlement.services.escrow_service import EscrowService
from escrow_settlement.services.proof_service import ProofService
from escrow_settlement.services.risk_service import RiskService

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from escrow_settlement.services.context import ServiceContext


@dataclass(frozen=True)
class Services:
    session: AsyncSession
    escrows: EscrowService
    proofs: ProofService
    disputes: DisputeService
    risk: RiskService
    audit: AuditTrail


def build_services(session: AsyncSession, context: ServiceContext) -> Services:
    escrows = EscrowService(session, context)
    return Services(
        session=session,
        escrows=escrows,
        proofs=ProofService(session, context, escrows),
        disputes=DisputeService(session, context, escrows),
        risk=RiskService(session, context),
        audit=AuditTrail(session, context),
    )
