"""Database infrastructure: engine, ORM models, and repositories."""

from escrow_settlement.infrastructure.database.engine import (
    create_engine_from_settings,
    create_session_factory,
    create_tables,
    session_scope,
)
from escrow_settlement.infrastructure.database.orm_models import (
    AppendOnlyViolation,
    Base,
    DeliveryProof,
    Dispute,
    DisputeEvidence,
    Escrow,
    EscrowMilestone,
    RiskAssessment,
    TransactionLog,
)
from escrow_settlement.infrastructure.database.repositories import (
    DisputeRepository,
    EscrowRepository,
    ProofRepository,
    RiskAssessmentRepository,
    TransactionLogRepository,
)
from escrow_settlement.infrastructure.database.types import bind_field_cipher

__all__ = [
    "AppendOnlyViolation",
    "Base",
    "DeliveryProof",
    "Dispute",
    "DisputeEvidence",
    "Escrow",
    "EscrowMilestone",
    "RiskAssessment",
    "TransactionLog",
    "DisputeRepository",
    "EscrowRepository",
    "ProofRepository",
    "RiskAssessmentRepository",
    "TransactionLogRepository",
    "bind_field_cipher",
    "create_engine_from_settings",
    "create_session_factory",
    "create_tables",
    "session_scope",
]
