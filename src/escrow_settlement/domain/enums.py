"""Domain enumerations for the escrow settlement core.

These enums define the canonical states and types used throughout the system.
They are framework-agnostic (no SQLAlchemy imports).
"""

import enum


class EscrowStatus(enum.StrEnum):
    """Lifecycle states of an escrow.

    Transitions are enforced by EscrowStateMachine (domain/state_machine.py).
    """

    PENDING = "PENDING"
    FUNDED = "FUNDED"
    DISPUTED = "DISPUTED"
    RELEASED = "RELEASED"
    REFUNDED = "REFUNDED"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_ESCROW_STATUSES

    @property
    def is_settled(self) -> bool:
        """True for the states that carry a ``completed_at`` timestamp."""
        return self in SETTLED_ESCROW_STATUSES


TERMINAL_ESCROW_STATUSES = frozenset(
    {
        EscrowStatus.RELEASED,
        EscrowStatus.REFUNDED,
        EscrowStatus.COMPLETED,
        EscrowStatus.CANCELLED,
    }
)

SETTLED_ESCROW_STATUSES = frozenset(
    {EscrowStatus.RELEASED, EscrowStatus.REFUNDED, EscrowStatus.COMPLETED}
)


class MilestoneStatus(enum.StrEnum):
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    DISPUTED = "DISPUTED"


class ProofType(enum.StrEnum):
    IMAGE = "image"
    DOCUMENT = "document"
    VIDEO = "video"
    LINK = "link"
    TEXT = "text"


class ProofStatus(enum.StrEnum):
    PENDING = "PENDING"
    ACCEPTED = "ACCEPTED"
    REJECTED = "REJECTED"


class ProofDecision(enum.StrEnum):
    ACCEPT = "accept"
    REJECT = "reject"


class DisputeStatus(enum.StrEnum):
    """Lifecycle states of a dispute.

    OPEN -> UNDER_REVIEW -> {RESOLVED_FOR_MERCHANT, RESOLVED_FOR_CUSTOMER, ESCALATED} -> CLOSED
    """

    OPEN = "OPEN"
    UNDER_REVIEW = "UNDER_REVIEW"
    RESOLVED_FOR_MERCHANT = "RESOLVED_FOR_MERCHANT"
    RESOLVED_FOR_CUSTOMER = "RESOLVED_FOR_CUSTOMER"
    ESCALATED = "ESCALATED"
    CLOSED = "CLOSED"


class DisputeOutcome(enum.StrEnum):
    """How a dispute settles the escrow's funds."""

    MERCHANT = "merchant"
    CUSTOMER = "customer"
    SPLIT = "split"


class DisputeReason(enum.StrEnum):
    PRODUCT_NOT_RECEIVED = "PRODUCT_NOT_RECEIVED"
    PRODUCT_NOT_AS_DESCRIBED = "PRODUCT_NOT_AS_DESCRIBED"
    SERVICES_NOT_PROVIDED = "SERVICES_NOT_PROVIDED"
    QUALITY_ISSUES = "QUALITY_ISSUES"
    UNAUTHORIZED_CHARGE = "UNAUTHORIZED_CHARGE"
    DUPLICATE_CHARGE = "DUPLICATE_CHARGE"
    OTHER = "OTHER"


class EvidenceType(enum.StrEnum):
    TEXT = "TEXT"
    IMAGE = "IMAGE"
    DOCUMENT = "DOCUMENT"
    VIDEO = "VIDEO"
    OTHER = "OTHER"


class RiskLevel(enum.StrEnum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"

    @property
    def rank(self) -> int:
        return _RISK_RANK[self]


_RISK_RANK = {
    RiskLevel.LOW: 0,
    RiskLevel.MEDIUM: 1,
    RiskLevel.HIGH: 2,
    RiskLevel.CRITICAL: 3,
}


class RiskFlag(enum.StrEnum):
    """Reasons a risk rule fired. Stored as a JSON list on the assessment."""

    UNUSUAL_LOCATION = "UNUSUAL_LOCATION"
    RAPID_SUCCESSION_PAYMENTS = "RAPID_SUCCESSION_PAYMENTS"
    LARGE_TRANSACTION = "LARGE_TRANSACTION"
    UNUSUAL_TIME = "UNUSUAL_TIME"
    IP_MISMATCH = "IP_MISMATCH"
    DEVICE_CHANGE = "DEVICE_CHANGE"
    PROXY_DETECTED = "PROXY_DETECTED"


class TransactionType(enum.StrEnum):
    """Types of audit entries recorded in the transaction_logs table.

    Every state transition produces exactly one entry of the matching type.
    """

    # Escrow lifecycle
    ESCROW_CREATED = "ESCROW_CREATED"
    ESCROW_FUNDED = "ESCROW_FUNDED"
    ESCROW_TERMS_UPDATED = "ESCROW_TERMS_UPDATED"
    ESCROW_RELEASE_SCHEDULED = "ESCROW_RELEASE_SCHEDULED"
    ESCROW_RELEASE_AUTHORIZED = "ESCROW_RELEASE_AUTHORIZED"
    FUNDS_RELEASED = "FUNDS_RELEASED"
    ESCROW_COMPLETED = "ESCROW_COMPLETED"
    ESCROW_REFUNDED = "ESCROW_REFUNDED"
    ESCROW_CANCELLED = "ESCROW_CANCELLED"
    ESCROW_DISPUTED = "ESCROW_DISPUTED"
    MILESTONE_UPDATED = "MILESTONE_UPDATED"

    # Delivery proofs
    PROOF_SUBMITTED = "PROOF_SUBMITTED"
    PROOF_REVIEWED = "PROOF_REVIEWED"

    # Disputes
    DISPUTE_CREATED = "DISPUTE_CREATED"
    DISPUTE_EVIDENCE_SUBMITTED = "DISPUTE_EVIDENCE_SUBMITTED"
    DISPUTE_UNDER_REVIEW = "DISPUTE_UNDER_REVIEW"
    DISPUTE_ESCALATED = "DISPUTE_ESCALATED"
    DISPUTE_RESOLVED = "DISPUTE_RESOLVED"

    # Risk
    RISK_ASSESSED = "RISK_ASSESSED"
    RISK_REVIEWED = "RISK_REVIEWED"


SYSTEM_ACTOR = "SYSTEM"
