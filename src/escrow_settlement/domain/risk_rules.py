"""Pure risk scoring rules.

No I/O happens here: the risk service gathers signals (history, device,
reputation lookup) and hands them over as a RiskSignals value. The
resulting RiskDecision is persisted by the service.

Scoring is additive over triggered flags with non-negative weights, so
adding a flag never lowers the score or the level.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal

from escrow_settlement.domain.enums import RiskFlag, RiskLevel

_TWO_PLACES = Decimal("0.01")
_MAX_SCORE = Decimal("100")


@dataclass(frozen=True)
class RiskPolicy:
    """Thresholds and weights used by the scorer.

    Bucket boundaries are inclusive lower bounds:
    LOW [0, medium), MEDIUM [medium, high), HIGH [high, critical), CRITICAL [critical, 100].
    """

    medium_threshold: float = 25
    high_threshold: float = 60
    critical_threshold: float = 85
    proxy_flag_confidence: float = 75
    proxy_block_confidence: float = 90
    weight_large_transaction: float = 20
    weight_rapid_succession: float = 15
    weight_unusual_location: float = 15
    weight_device_change: float = 10
    weight_unusual_time: float = 10
    weight_ip_mismatch: float = 15
    weight_proxy: float = 40
    weight_high_confidence_proxy: float = 45
    large_transaction_multiplier: float = 2
    large_transaction_floor: float = 100
    velocity_window_minutes: int = 60
    velocity_count: int = 3
    unusual_hours_start: int = 1
    unusual_hours_end: int = 5

    def __post_init__(self) -> None:
        if not 0 <= self.medium_threshold <= self.high_threshold <= self.critical_threshold <= 100:
            raise ValueError("risk thresholds must satisfy 0 <= medium <= high <= critical <= 100")
        negative = [name for name, value in self.weights().items() if value < 0]
        if negative:
            raise ValueError(f"risk weights must be non-negative: {', '.join(sorted(negative))}")
        if not 0 <= self.unusual_hours_start <= 24 or not 0 <= self.unusual_hours_end <= 24:
            raise ValueError("unusual hours must be within 0..24")

    def weights(self) -> dict[str, float]:
        return {
            "weight_large_transaction": self.weight_large_transaction,
            "weight_rapid_succession": self.weight_rapid_succession,
            "weight_unusual_location": self.weight_unusual_location,
            "weight_device_change": self.weight_device_change,
            "weight_unusual_time": self.weight_unusual_time,
            "weight_ip_mismatch": self.weight_ip_mismatch,
            "weight_proxy": self.weight_proxy,
            "weight_high_confidence_proxy": self.weight_high_confidence_proxy,
        }

    def weight_for(self, flag: RiskFlag) -> float:
        return {
            RiskFlag.LARGE_TRANSACTION: self.weight_large_transaction,
            RiskFlag.RAPID_SUCCESSION_PAYMENTS: self.weight_rapid_succession,
            RiskFlag.UNUSUAL_LOCATION: self.weight_unusual_location,
            RiskFlag.DEVICE_CHANGE: self.weight_device_change,
            RiskFlag.UNUSUAL_TIME: self.weight_unusual_time,
            RiskFlag.IP_MISMATCH: self.weight_ip_mismatch,
            RiskFlag.PROXY_DETECTED: self.weight_proxy,
        }[flag]


@dataclass(frozen=True)
class RiskSignals:
    """Everything the rules look at for one transaction attempt.

    Attributes:
        amount: Amount being attempted, or None when unknown.
        historical_average: Mean amount of the user's prior assessments (None: no history).
        recent_attempts: Prior assessments for the user inside the velocity window.
        claimed_location: Location reported by the client, if any.
        last_known_location: Location on the user's most recent prior assessment.
        device_fingerprint: Fingerprint of the current device, if any.
        known_fingerprints: Fingerprints seen on the user's prior assessments.
        hour: Hour of day (UTC) of the attempt.
        ip_region: Region derived from the IP reputation lookup (None: unknown).
        is_proxy: Whether the reputation lookup reported a proxy/VPN.
        proxy_confidence: Confidence (0-100) attached to ``is_proxy``.
    """

    amount: Decimal | None = None
    historical_average: Decimal | None = None
    recent_attempts: int = 0
    claimed_location: str | None = None
    last_known_location: str | None = None
    device_fingerprint: str | None = None
    known_fingerprints: frozenset[str] = field(default_factory=frozenset)
    hour: int = 12
    ip_region: str | None = None
    is_proxy: bool = False
    proxy_confidence: float = 0


@dataclass(frozen=True)
class RiskDecision:
    """Outcome of scoring one RiskSignals value."""

    flags: frozenset[RiskFlag]
    score: Decimal
    level: RiskLevel
    requires_3ds: bool
    requires_mfa: bool
    blocked: bool
    review_required: bool

    def sorted_flags(self) -> list[str]:
        return sorted(flag.value for flag in self.flags)


def _same_place(a: str, b: str) -> bool:
    return a.strip().casefold() == b.strip().casefold()


def detect_flags(signals: RiskSignals, policy: RiskPolicy) -> frozenset[RiskFlag]:
    """Return the set of rules triggered by ``signals``."""
    flags: set[RiskFlag] = set()

    if signals.amount is not None:
        average = signals.historical_average or Decimal("0")
        multiplier = Decimal(str(policy.large_transaction_multiplier))
        floor = Decimal(str(policy.large_transaction_floor))
        if signals.amount > average * multiplier and signals.amount > floor:
            flags.add(RiskFlag.LARGE_TRANSACTION)

    if signals.recent_attempts >= policy.velocity_count:
        flags.add(RiskFlag.RAPID_SUCCESSION_PAYMENTS)

    if (
        signals.claimed_location
        and signals.last_known_location
        and not _same_place(signals.claimed_location, signals.last_known_location)
    ):
        flags.add(RiskFlag.UNUSUAL_LOCATION)

    # A first-ever device is not a change.
    if (
        signals.device_fingerprint
        and signals.known_fingerprints
        and signals.device_fingerprint not in signals.known_fingerprints
    ):
        flags.add(RiskFlag.DEVICE_CHANGE)

    if _in_quiet_hours(signals.hour, policy):
        flags.add(RiskFlag.UNUSUAL_TIME)

    if (
        signals.ip_region
        and signals.claimed_location
        and not _same_place(signals.ip_region, signals.claimed_location)
    ):
        flags.add(RiskFlag.IP_MISMATCH)

    if signals.is_proxy and signals.proxy_confidence >= policy.proxy_flag_confidence:
        flags.add(RiskFlag.PROXY_DETECTED)

    return frozenset(flags)


def _in_quiet_hours(hour: int, policy: RiskPolicy) -> bool:
    start, end = policy.unusual_hours_start, policy.unusual_hours_end
    if start == end:
        return False
    if start < end:
        return start <= hour < end
    # Window wraps midnight, e.g. 22 -> 4.
    return hour >= start or hour < end


def score_flags(
    flags: frozenset[RiskFlag], proxy_confidence: float, policy: RiskPolicy
) -> Decimal:
    """Sum the weights of ``flags``, capped at 100 and quantized to 2 places."""
    total = sum((Decimal(str(policy.weight_for(flag))) for flag in flags), Decimal("0"))
    if RiskFlag.PROXY_DETECTED in flags and proxy_confidence >= policy.proxy_block_confidence:
        total += Decimal(str(policy.weight_high_confidence_proxy))
    return min(total, _MAX_SCORE).quantize(_TWO_PLACES, rounding=ROUND_HALF_UP)


def level_for(score: Decimal, policy: RiskPolicy) -> RiskLevel:
    if score >= Decimal(str(policy.critical_threshold)):
        return RiskLevel.CRITICAL
    if score >= Decimal(str(policy.high_threshold)):
        return RiskLevel.HIGH
    if score >= Decimal(str(policy.medium_threshold)):
        return RiskLevel.MEDIUM
    return RiskLevel.LOW


def evaluate(signals: RiskSignals, policy: RiskPolicy) -> RiskDecision:
    """Score ``signals`` and derive the gating booleans."""
    flags = detect_flags(signals, policy)
    score = score_flags(flags, signals.proxy_confidence, policy)
    level = level_for(score, policy)
    high_confidence_proxy = (
        RiskFlag.PROXY_DETECTED in flags
        and signals.proxy_confidence >= policy.proxy_block_confidence
    )
    return RiskDecision(
        flags=flags,
        score=score,
        level=level,
        requires_3ds=level.rank >= RiskLevel.MEDIUM.rank,
        requires_mfa=level.rank >= RiskLevel.HIGH.rank,
        blocked=level is RiskLevel.CRITICAL and high_confidence_proxy,
        review_required=level is not RiskLevel.LOW,
    )
