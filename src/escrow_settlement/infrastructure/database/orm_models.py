"""SQLAlchemy 2.0 ORM models for the escrow settlement core.

Seven tables:
    1. escrows            : Held funds between a buyer and a seller.
    2. escrow_milestones  : Independently completable sub-amounts of an escrow.
    3. delivery_proofs    : Evidence submitted by the seller to justify release.
    4. disputes           : Formal contests over an escrow's outcome.
    5. dispute_evidence   : Supporting material submitted while a dispute is open.
    6. risk_assessments   : Scored evaluations gating creation and funding.
    7. transaction_logs   : Append-only audit log of every state transition.

Design decisions:
    - UUID primary keys via the portable Uuid type (native on PostgreSQL).
    - Numeric(18, 2) for amounts; no floating point.
    - Sensitive free text and terms are EncryptedText / EncryptedDocument columns.
    - CHECK constraints on statuses and amounts at DB level.
    - transaction_logs is append-only: an ORM listener rejects UPDATE and DELETE.
"""

from __future__ import annotations

import uuid
from datetime import datetime  # noqa: TC003 - needed at runtime by SQLAlchemy Mapped[]
from decimal import Decimal  # noqa: TC003 - needed at runtime by SQLAlchemy Mapped[]
from typing import Any

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    Uuid,
    event,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from escrow_settlement.domain.enums import (
    DisputeStatus,
    EscrowStatus,
    MilestoneStatus,
    ProofStatus,
    RiskLevel,
)
from escrow_settlement.infrastructure.database.types import (
    EncryptedDocument,
    EncryptedText,
    JSONDocument,
)
from escrow_settlement.utils.time import as_utc, utcnow


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


def _in_clause(values: type) -> str:
    return ", ".join(f"'{member.value}'" for member in values)  # type: ignore[attr-defined]


# ---------------------------------------------------------------------------
# Helper: auto-set updated_at on flush
# ---------------------------------------------------------------------------
def _set_updated_at(mapper, connection, target):  # noqa: ANN001
    """SQLAlchemy event listener that updates `updated_at` before flush."""
    if hasattr(target, "updated_at"):
        target.updated_at = utcnow()


# ---------------------------------------------------------------------------
# 1. escrows
# ---------------------------------------------------------------------------
class Escrow(Base):
    """Held funds between a buyer and a seller."""

    __tablename__ = "escrows"

    # --- Primary Key ---
    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)

    # --- Participants ---
    buyer_id: Mapped[str] = mapped_column(String(64), nullable=False)
    seller_id: Mapped[str] = mapped_column(String(64), nullable=False)

    # --- Financials ---
    amount: Mapped[Decimal] = mapped_column(
        Numeric(18, 2),
        nullable=False,
        comment="Total held amount (2 decimal places)",
    )
    payment_ref: Mapped[str | None] = mapped_column(
        String(128),
        nullable=True,
        default=None,
        comment="Payment reference linked at funding time",
    )
    settlement_ref: Mapped[str | None] = mapped_column(
        String(256),
        nullable=True,
        default=None,
        comment="Gateway reference(s) returned when funds moved out",
    )

    # --- Status (Enum-guarded) ---
    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=EscrowStatus.PENDING.value,
        comment="Current lifecycle state (guarded by EscrowStateMachine)",
    )

    # --- Content ---
    title: Mapped[str | None] = mapped_column(String(200), nullable=True)
    description: Mapped[Any] = mapped_column(EncryptedText, nullable=True)
    terms: Mapped[Any] = mapped_column(
        EncryptedDocument,
        nullable=True,
        comment="Free-form structured terms, encrypted",
    )
    documents: Mapped[list | None] = mapped_column(
        JSONDocument,
        nullable=True,
        default=None,
        comment="Evidence file references",
    )
    risk_assessment_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid,
        ForeignKey("risk_assessments.id", ondelete="SET NULL"),
        nullable=True,
    )

    # --- Schedule ---
    expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    schedule_release_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    release_authorized_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    cancellation_reason: Mapped[str | None] = mapped_column(String(200), nullable=True)

    # --- Timestamps ---
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )

    # --- Relationships ---
    milestones: Mapped[list[EscrowMilestone]] = relationship(
        "EscrowMilestone",
        back_populates="escrow",
        cascade="all, delete-orphan",
        order_by="EscrowMilestone.sequence.asc()",
        lazy="selectin",
    )

    # --- Table Constraints & Indexes ---
    __table_args__ = (
        CheckConstraint(f"status IN ({_in_clause(EscrowStatus)})", name="ck_escrow_valid_status"),
        CheckConstraint("amount > 0", name="ck_escrow_positive_amount"),
        CheckConstraint(
            "(status IN ('RELEASED', 'REFUNDED', 'COMPLETED')) = (completed_at IS NOT NULL)",
            name="ck_escrow_completed_at",
        ),
        Index("idx_escrow_status", "status"),
        Index("idx_escrow_buyer", "buyer_id"),
        Index("idx_escrow_seller", "seller_id"),
        Index("idx_escrow_release_due", "status", "schedule_release_at"),
        Index("idx_escrow_created_at", "created_at"),
    )

    @property
    def status_enum(self) -> EscrowStatus:
        return EscrowStatus(self.status)

    @property
    def open_milestones(self) -> list[EscrowMilestone]:
        return [m for m in self.milestones if m.status != MilestoneStatus.COMPLETED.value]

    def __repr__(self) -> str:
        return f"<Escrow id={self.id} status={self.status} amount={self.amount}>"


# ---------------------------------------------------------------------------
# 2. escrow_milestones
# ---------------------------------------------------------------------------
class EscrowMilestone(Base):
    """A sub-amount of an escrow, completed in sequence order."""

    __tablename__ = "escrow_milestones"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    escrow_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("escrows.id", ondelete="CASCADE"),
        nullable=False,
    )
    amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    sequence: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=MilestoneStatus.PENDING.value
    )
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )

    escrow: Mapped[Escrow] = relationship("Escrow", back_populates="milestones")

    __table_args__ = (
        UniqueConstraint("escrow_id", "sequence", name="uq_milestone_sequence"),
        CheckConstraint(
            f"status IN ({_in_clause(MilestoneStatus)})", name="ck_milestone_valid_status"
        ),
        CheckConstraint("amount > 0", name="ck_milestone_positive_amount"),
        Index("idx_milestone_escrow", "escrow_id"),
    )

    def __repr__(self) -> str:
        return f"<EscrowMilestone id={self.id} seq={self.sequence} status={self.status}>"


# ---------------------------------------------------------------------------
# 3. delivery_proofs
# ---------------------------------------------------------------------------
class DeliveryProof(Base):
    """Evidence of delivery submitted by the seller."""

    __tablename__ = "delivery_proofs"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    escrow_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("escrows.id", ondelete="CASCADE"),
        nullable=False,
    )
    milestone_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid,
        ForeignKey("escrow_milestones.id", ondelete="SET NULL"),
        nullable=True,
    )
    submitter_id: Mapped[str] = mapped_column(String(64), nullable=False)
    proof_type: Mapped[str] = mapped_column(String(20), nullable=False)
    description: Mapped[Any] = mapped_column(EncryptedText, nullable=True)
    files: Mapped[list | None] = mapped_column(JSONDocument, nullable=True, default=None)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=ProofStatus.PENDING.value
    )
    reviewer_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    rejection_reason: Mapped[Any] = mapped_column(EncryptedText, nullable=True)
    reviewed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    metadata_json: Mapped[dict | None] = mapped_column(
        "metadata", JSONDocument, nullable=True, default=None
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )

    __table_args__ = (
        CheckConstraint(f"status IN ({_in_clause(ProofStatus)})", name="ck_proof_valid_status"),
        Index("idx_proof_escrow", "escrow_id"),
        Index("idx_proof_created_at", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<DeliveryProof id={self.id} escrow={self.escrow_id} status={self.status}>"


# ---------------------------------------------------------------------------
# 4. disputes
# ---------------------------------------------------------------------------
class Dispute(Base):
    """A formal contest over an escrow, arbitrated to a resolution."""

    __tablename__ = "disputes"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    escrow_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("escrows.id", ondelete="CASCADE"),
        nullable=False,
    )
    filed_by: Mapped[str] = mapped_column(String(64), nullable=False)
    reason: Mapped[str] = mapped_column(String(40), nullable=False)
    description: Mapped[Any] = mapped_column(EncryptedText, nullable=True)
    evidence: Mapped[list | None] = mapped_column(
        JSONDocument,
        nullable=True,
        default=None,
        comment="File references supplied when the dispute was filed",
    )
    status: Mapped[str] = mapped_column(
        String(30), nullable=False, default=DisputeStatus.OPEN.value
    )
    evidence_deadline: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    # --- Resolution ---
    outcome: Mapped[str | None] = mapped_column(String(20), nullable=True)
    resolved_by: Mapped[str | None] = mapped_column(String(64), nullable=True)
    resolution_notes: Mapped[Any] = mapped_column(EncryptedText, nullable=True)
    buyer_amount: Mapped[Decimal | None] = mapped_column(Numeric(18, 2), nullable=True)
    seller_amount: Mapped[Decimal | None] = mapped_column(Numeric(18, 2), nullable=True)
    resolved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )

    __table_args__ = (
        CheckConstraint(
            f"status IN ({_in_clause(DisputeStatus)})", name="ck_dispute_valid_status"
        ),
        Index("idx_dispute_escrow", "escrow_id"),
        Index("idx_dispute_deadline", "status", "evidence_deadline"),
    )

    def deadline_passed(self, now: datetime) -> bool:
        deadline = as_utc(self.evidence_deadline)
        return deadline is not None and deadline <= now

    def __repr__(self) -> str:
        return f"<Dispute id={self.id} escrow={self.escrow_id} status={self.status}>"


# ---------------------------------------------------------------------------
# 5. dispute_evidence
# ---------------------------------------------------------------------------
class DisputeEvidence(Base):
    """Supporting material submitted by either party while a dispute is open."""

    __tablename__ = "dispute_evidence"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    dispute_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("disputes.id", ondelete="CASCADE"),
        nullable=False,
    )
    submitted_by: Mapped[str] = mapped_column(String(64), nullable=False)
    evidence_type: Mapped[str] = mapped_column(String(20), nullable=False)
    description: Mapped[Any] = mapped_column(EncryptedText, nullable=True)
    files: Mapped[list | None] = mapped_column(JSONDocument, nullable=True, default=None)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )

    __table_args__ = (Index("idx_evidence_dispute", "dispute_id"),)


# ---------------------------------------------------------------------------
# 6. risk_assessments
# ---------------------------------------------------------------------------
class RiskAssessment(Base):
    """Scored evaluation of one transaction attempt."""

    __tablename__ = "risk_assessments"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    payment_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    amount: Mapped[Decimal | None] = mapped_column(Numeric(18, 2), nullable=True)

    # --- Score ---
    risk_level: Mapped[str] = mapped_column(String(10), nullable=False)
    risk_flags: Mapped[list] = mapped_column(JSONDocument, nullable=False, default=list)
    risk_score: Mapped[Decimal] = mapped_column(Numeric(5, 2), nullable=False)
    details: Mapped[str | None] = mapped_column(Text, nullable=True)

    # --- Signals ---
    device_fingerprint: Mapped[dict | None] = mapped_column(JSONDocument, nullable=True)
    fingerprint: Mapped[str | None] = mapped_column(
        String(128),
        nullable=True,
        comment="Device fingerprint id, denormalized for novelty lookups",
    )
    ip_address: Mapped[str | None] = mapped_column(
        String(80),
        nullable=True,
        comment="Masked unless store_raw_ip is enabled",
    )
    region: Mapped[str | None] = mapped_column(String(64), nullable=True)
    location: Mapped[str | None] = mapped_column(String(128), nullable=True)

    # --- Gating ---
    requires_3ds: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    requires_mfa: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    blocked: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    review_required: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    # --- Review ---
    approved: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    reviewed_by: Mapped[str | None] = mapped_column(String(64), nullable=True)
    review_notes: Mapped[Any] = mapped_column(EncryptedText, nullable=True)
    reviewed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )

    __table_args__ = (
        CheckConstraint(f"risk_level IN ({_in_clause(RiskLevel)})", name="ck_risk_valid_level"),
        CheckConstraint("risk_score >= 0 AND risk_score <= 100", name="ck_risk_score_range"),
        Index("idx_risk_user_created", "user_id", "created_at"),
        Index("idx_risk_pending", "review_required", "reviewed_at"),
    )

    def __repr__(self) -> str:
        return f"<RiskAssessment id={self.id} level={self.risk_level} blocked={self.blocked}>"


# ---------------------------------------------------------------------------
# 7. transaction_logs (Append-Only Audit Log)
# ---------------------------------------------------------------------------
class TransactionLog(Base):
    """Immutable audit record of one meaningful state transition.

    This table is APPEND-ONLY. No UPDATE or DELETE operations are permitted
    at the application level. Every row represents a single atomic event.
    """

    __tablename__ = "transaction_logs"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    type: Mapped[str] = mapped_column(
        String(40),
        nullable=False,
        comment="TransactionType enum value (e.g., ESCROW_FUNDED, DISPUTE_RESOLVED)",
    )
    user_id: Mapped[str | None] = mapped_column(
        String(64),
        nullable=True,
        comment="Who triggered this event (party id or SYSTEM)",
    )
    entity_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    entity_type: Mapped[str | None] = mapped_column(String(40), nullable=True)
    data: Mapped[dict | None] = mapped_column(JSONDocument, nullable=True, default=None)
    sensitive: Mapped[Any] = mapped_column(
        EncryptedDocument,
        nullable=True,
        comment="Encrypted payload for reasons and notes",
    )
    ip_address: Mapped[str | None] = mapped_column(String(80), nullable=True)
    user_agent: Mapped[str | None] = mapped_column(String(512), nullable=True)
    metadata_json: Mapped[dict | None] = mapped_column(
        "metadata", JSONDocument, nullable=True, default=None
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )

    __table_args__ = (
        Index("idx_txlog_entity", "entity_id", "created_at"),
        Index("idx_txlog_type", "type"),
        Index("idx_txlog_user", "user_id"),
    )

    def __repr__(self) -> str:
        return f"<TransactionLog id={self.id} type={self.type} entity={self.entity_id}>"


class AppendOnlyViolation(RuntimeError):
    """Raised when application code tries to mutate an audit row."""


def _reject_mutation(mapper, connection, target):  # noqa: ANN001
    raise AppendOnlyViolation(f"transaction_logs is append-only (row {target.id})")


# ---------------------------------------------------------------------------
# Register listeners
# ---------------------------------------------------------------------------
event.listen(Escrow, "before_update", _set_updated_at)
event.listen(Dispute, "before_update", _set_updated_at)
event.listen(TransactionLog, "before_update", _reject_mutation)
event.listen(TransactionLog, "before_delete", _reject_mutation)
