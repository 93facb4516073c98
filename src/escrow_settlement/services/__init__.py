"""Application services: use case orchestration."""

from escrow_settlement.services.audit import AuditTrail
from escrow_settlement.services.context import EscrowPolicy, ServiceContext
from escrow_settlement.services.dispute_service import DisputeService
from escrow_settlement.services.escrow_service import EscrowService
from escrow_settlement.services.proof_service import ProofReviewOutcome, ProofService
from escrow_settlement.services.risk_service import RiskService
from escrow_settlement.services.sweep import SettlementSweeper, SweepReport
from escrow_settlement.services.unit_of_work import Services, build_services

__all__ = [
    "AuditTrail",
    "DisputeService",
    "EscrowPolicy",
    "EscrowService",
    "ProofReviewOutcome",
    "ProofService",
    "RiskService",
    "Services",
    "ServiceContext",
    "SettlementSweeper",
    "SweepReport",
    "build_services",
]
