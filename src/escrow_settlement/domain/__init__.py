"""Domain layer: pure business logic with zero framework dependencies."""

from escrow_settlement.domain.collaborators import (
    Notifier,
    PaymentGateway,
    ProxyCheck,
    ProxyReputation,
)
from escrow_settlement.domain.enums import (
    SYSTEM_ACTOR,
    DisputeOutcome,
    DisputeStatus,
    EscrowStatus,
    ProofStatus,
    RiskFlag,
    RiskLevel,
    TransactionType,
)
from escrow_settlement.domain.exceptions import (
    AlreadyReviewed,
    DecryptionFailure,
    EntityNotFound,
    ExternalSignalUnavailable,
    InvalidDisputeState,
    InvalidEscrowState,
    NotCounterparty,
    RiskBlocked,
    SettlementError,
    ValidationFailure,
)
from escrow_settlement.domain.state_machine import (
    DisputeStateMachine,
    EscrowStateMachine,
    next_dispute_status,
    next_escrow_status,
)

__all__ = [
    "SYSTEM_ACTOR",
    "DisputeOutcome",
    "DisputeStatus",
    "EscrowStatus",
    "ProofStatus",
    "RiskFlag",
    "RiskLevel",
    "TransactionType",
    "AlreadyReviewed",
    "DecryptionFailure",
    "EntityNotFound",
    "ExternalSignalUnavailable",
    "InvalidDisputeState",
    "InvalidEscrowState",
    "NotCounterparty",
    "RiskBlocked",
    "SettlementError",
    "ValidationFailure",
    "DisputeStateMachine",
    "EscrowStateMachine",
    "next_dispute_status",
    "next_escrow_status",
    "Notifier",
    "PaymentGateway",
    "ProxyCheck",
    "ProxyReputation",
]
