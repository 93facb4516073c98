"""Pydantic input schemas."""

from escrow_settlement.schemas.context import DeviceInfo, RequestMetadata, RiskContext
from escrow_settlement.schemas.escrow import (
    DeliveryProofInput,
    DisputeInput,
    EvidenceInput,
    MilestoneSpec,
    SplitAllocation,
)

__all__ = [
    "DeliveryProofInput",
    "DeviceInfo",
    "DisputeInput",
    "EvidenceInput",
    "MilestoneSpec",
    "RequestMetadata",
    "RiskContext",
    "SplitAllocation",
]
