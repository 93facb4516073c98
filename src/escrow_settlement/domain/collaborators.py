"""Outbound collaborator protocols.

The core calls into three external collaborators: a payment gateway that
moves real money, a notifier for fire-and-forget events, and a proxy/IP
reputation lookup used by the risk engine. These are Protocols (structural
subtyping) so concrete adapters don't need to inherit from a base class.

The domain layer has ZERO imports from httpx or any payment rail SDK.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    import uuid
    from decimal import Decimal

UNKNOWN_REGION = "UNKNOWN"


@dataclass(frozen=True)
class ProxyCheck:
    """Result of a proxy/IP reputation lookup.

    Attributes:
        is_proxy: Whether the IP looks like a proxy, VPN or hosting exit.
        confidence: 0-100 confidence attached to ``is_proxy``.
        region: Region derived from the IP (``UNKNOWN`` when not resolved).
    """

    is_proxy: bool
    confidence: float
    region: str = UNKNOWN_REGION

    @classmethod
    def unknown(cls) -> ProxyCheck:
        """The degraded signal: not a proxy, region unknown."""
        return cls(is_proxy=False, confidence=0.0, region=UNKNOWN_REGION)

    @property
    def region_known(self) -> bool:
        return bool(self.region) and self.region != UNKNOWN_REGION


@runtime_checkable
class ProxyReputation(Protocol):
    """Proxy/VPN detection for an IP address.

    Implementations raise ExternalSignalUnavailable on any failure. The risk
    engine absorbs it and proceeds with ProxyCheck.unknown().
    """

    async def detect_proxy(self, ip: str, endpoint: str) -> ProxyCheck: ...


@runtime_checkable
class PaymentGateway(Protocol):
    """Moves real money for a settlement and returns the rail's reference."""

    async def disburse(
        self,
        escrow_id: uuid.UUID,
        payee_id: str,
        amount: Decimal,
        purpose: str,
    ) -> str: ...


@runtime_checkable
class Notifier(Protocol):
    """Fire-and-forget event sink. Failures never roll back a transition."""

    async def publish(self, event: str, payload: dict[str, Any]) -> None: ...
