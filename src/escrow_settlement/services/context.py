"""Per-process dependencies handed to every service constructor.

Built once by the composition root from Settings; services never read
configuration themselves.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING

from escrow_settlement.utils.time import utcnow

if TYPE_CHECKING:
    from escrow_settlement.config import Settings
    from escrow_settlement.domain.collaborators import Notifier, PaymentGateway, ProxyReputation
    from escrow_settlement.domain.risk_rules import RiskPolicy
    from escrow_settlement.security.ip_masking import IpMasker


@dataclass(frozen=True)
class EscrowPolicy:
    """Time windows applied to new escrows and disputes."""

    default_expiration_days: int = 30
    auto_release_after_days: int | None = 3
    dispute_evidence_window_days: int = 5

    @classmethod
    def from_settings(cls, settings: Settings) -> EscrowPolicy:
        return cls(
            default_expiration_days=settings.default_expiration_days,
            auto_release_after_days=settings.auto_release_after_days,
            dispute_evidence_window_days=settings.dispute_evidence_window_days,
        )


@dataclass(frozen=True)
class ServiceContext:
    risk_policy: RiskPolicy
    escrow_policy: EscrowPolicy
    ip_masker: IpMasker
    gateway: PaymentGateway
    notifier: Notifier
    reputation: ProxyReputation
    reputation_timeout_seconds: float = 2.0
    clock: Callable[[], datetime] = field(default=utcnow)

    def now(self) -> datetime:
        return self.clock()
