"""Pydantic input schemas for escrow, proof and dispute operations.

These are the shapes an HTTP layer validates requests into before
calling the services. They are separate from the ORM models to maintain
clean boundaries between callers and the database layer. Semantic checks
that need more than one field (milestone sums, split totals against the
escrow) stay in the services and raise ValidationFailure.
"""

from __future__ import annotations

import uuid
from decimal import Decimal
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from escrow_settlement.domain.documents import Document
from escrow_settlement.domain.enums import DisputeReason, EvidenceType, ProofType


class MilestoneSpec(BaseModel):
    """One milestone supplied at escrow creation."""

    model_config = ConfigDict(frozen=True)

    amount: Decimal = Field(..., gt=0, decimal_places=2, examples=["60.00"])
    description: str | None = Field(default=None, max_length=2000)
    sequence: int = Field(..., ge=1, description="Defines completion order; unique per escrow")


class DeliveryProofInput(BaseModel):
    """Evidence of delivery submitted by the seller."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    proof_type: ProofType
    description: str = Field(default="", max_length=5000)
    files: list[str] = Field(default_factory=list, description="File references (URLs or keys)")
    milestone_id: uuid.UUID | None = None
    metadata: Document | None = None

    @field_validator("metadata", mode="before")
    @classmethod
    def _as_document(cls, value: Any) -> Document | None:
        return None if value is None else Document.coerce(value)


class SplitAllocation(BaseModel):
    """Custom dispute settlement: two sub-payments summing to the escrow total."""

    model_config = ConfigDict(frozen=True)

    buyer_amount: Decimal = Field(..., ge=0, decimal_places=2)
    seller_amount: Decimal = Field(..., ge=0, decimal_places=2)

    @property
    def total(self) -> Decimal:
        return self.buyer_amount + self.seller_amount


class DisputeInput(BaseModel):
    reason: DisputeReason
    description: str = Field(default="", max_length=5000)
    evidence: list[str] = Field(default_factory=list)


class EvidenceInput(BaseModel):
    evidence_type: EvidenceType
    description: str = Field(default="", max_length=5000)
    files: list[str] = Field(default_factory=list)
