"""Request context carried into the core: client metadata and risk signals."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class DeviceInfo(BaseModel):
    """Device fingerprint document. Unknown keys are kept as-is."""

    model_config = ConfigDict(extra="allow", frozen=True)

    fingerprint: str | None = Field(default=None, max_length=128)
    platform: str | None = None
    user_agent: str | None = None


class RequestMetadata(BaseModel):
    """Client metadata attached to audit entries. The IP is masked before storage."""

    model_config = ConfigDict(frozen=True)

    ip: str | None = None
    user_agent: str | None = Field(default=None, max_length=512)
    device: DeviceInfo | None = None


class RiskContext(BaseModel):
    """Signals forwarded to the risk pre-check on creation and funding."""

    model_config = ConfigDict(frozen=True)

    ip: str | None = None
    device: DeviceInfo | None = None
    location: str | None = Field(default=None, max_length=128)
    endpoint: str = "/escrows"

    def as_request(self) -> RequestMetadata:
        return RequestMetadata(
            ip=self.ip,
            user_agent=self.device.user_agent if self.device else None,
            device=self.device,
        )
