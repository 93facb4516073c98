"""Tests for the pure risk scoring rules."""

from __future__ import annotations

import itertools
from decimal import Decimal

import pytest

from escrow_settlement.domain.enums import RiskFlag, RiskLevel
from escrow_settlement.domain.risk_rules import (
    RiskPolicy,
    RiskSignals,
    detect_flags,
    evaluate,
    level_for,
    score_flags,
)


class TestBuckets:
    @pytest.mark.parametrize(
        ("score", "level"),
        [
            ("0", RiskLevel.LOW),
            ("24.99", RiskLevel.LOW),
            ("25", RiskLevel.MEDIUM),
            ("59.99", RiskLevel.MEDIUM),
            ("60", RiskLevel.HIGH),
            ("84.99", RiskLevel.HIGH),
            ("85", RiskLevel.CRITICAL),
            ("100", RiskLevel.CRITICAL),
        ],
    )
    def test_boundaries(self, policy: RiskPolicy, score: str, level: RiskLevel) -> None:
        assert level_for(Decimal(score), policy) is level

    def test_thresholds_are_configurable(self) -> None:
        strict = RiskPolicy(medium_threshold=5, high_threshold=10, critical_threshold=15)
        assert level_for(Decimal("12"), strict) is RiskLevel.HIGH

    def test_rejects_unordered_thresholds(self) -> None:
        with pytest.raises(ValueError, match="thresholds"):
            RiskPolicy(medium_threshold=70, high_threshold=60)

    def test_rejects_negative_weight(self) -> None:
        with pytest.raises(ValueError, match="weight_proxy"):
            RiskPolicy(weight_proxy=-1)


class TestFlags:
    def test_large_transaction_against_history(self, policy: RiskPolicy) -> None:
        signals = RiskSignals(amount=Decimal("1000"), historical_average=Decimal("100"))
        assert RiskFlag.LARGE_TRANSACTION in detect_flags(signals, policy)

    def test_small_amount_never_large(self, policy: RiskPolicy) -> None:
        signals = RiskSignals(amount=Decimal("90"), historical_average=Decimal("10"))
        assert RiskFlag.LARGE_TRANSACTION not in detect_flags(signals, policy)

    def test_rapid_succession(self, policy: RiskPolicy) -> None:
        assert RiskFlag.RAPID_SUCCESSION_PAYMENTS in detect_flags(
            RiskSignals(recent_attempts=3), policy
        )
        assert not detect_flags(RiskSignals(recent_attempts=2), policy)

    def test_location_comparison_ignores_case(self, policy: RiskPolicy) -> None:
        signals = RiskSignals(claimed_location="Berlin", last_known_location=" berlin ")
        assert RiskFlag.UNUSUAL_LOCATION not in detect_flags(signals, policy)

    def test_first_device_is_not_a_change(self, policy: RiskPolicy) -> None:
        signals = RiskSignals(device_fingerprint="dev-1")
        assert RiskFlag.DEVICE_CHANGE not in detect_flags(signals, policy)

    def test_new_device_is_a_change(self, policy: RiskPolicy) -> None:
        signals = RiskSignals(device_fingerprint="dev-2", known_fingerprints=frozenset({"dev-1"}))
        assert RiskFlag.DEVICE_CHANGE in detect_flags(signals, policy)

    def test_ip_mismatch(self, policy: RiskPolicy) -> None:
        signals = RiskSignals(ip_region="FR", claimed_location="DE")
        assert RiskFlag.IP_MISMATCH in detect_flags(signals, policy)

    def test_proxy_below_flag_confidence(self, policy: RiskPolicy) -> None:
        signals = RiskSignals(is_proxy=True, proxy_confidence=50)
        assert RiskFlag.PROXY_DETECTED not in detect_flags(signals, policy)


class TestQuietHours:
    def test_window(self) -> None:
        policy = RiskPolicy(unusual_hours_start=1, unusual_hours_end=5)
        assert RiskFlag.UNUSUAL_TIME in detect_flags(RiskSignals(hour=3), policy)
        assert RiskFlag.UNUSUAL_TIME not in detect_flags(RiskSignals(hour=5), policy)

    def test_window_wrapping_midnight(self) -> None:
        policy = RiskPolicy(unusual_hours_start=22, unusual_hours_end=4)
        assert RiskFlag.UNUSUAL_TIME in detect_flags(RiskSignals(hour=23), policy)
        assert RiskFlag.UNUSUAL_TIME in detect_flags(RiskSignals(hour=1), policy)
        assert RiskFlag.UNUSUAL_TIME not in detect_flags(RiskSignals(hour=12), policy)

    def test_disabled_when_start_equals_end(self, policy: RiskPolicy) -> None:
        assert not detect_flags(RiskSignals(hour=0), policy)


class TestScoring:
    def test_adding_a_flag_never_lowers_the_level(self, policy: RiskPolicy) -> None:
        flags = [flag for flag in RiskFlag if flag is not RiskFlag.PROXY_DETECTED]
        for size in range(len(flags)):
            for subset in itertools.combinations(flags, size):
                base = frozenset(subset)
                for extra in set(flags) - base:
                    before = level_for(score_flags(base, 0, policy), policy)
                    after = level_for(score_flags(base | {extra}, 0, policy), policy)
                    assert after.rank >= before.rank

    def test_score_is_capped(self, policy: RiskPolicy) -> None:
        assert score_flags(frozenset(RiskFlag), 100, policy) == Decimal("100.00")

    def test_score_has_two_decimals(self) -> None:
        policy = RiskPolicy(weight_device_change=10.005)
        score = score_flags(frozenset({RiskFlag.DEVICE_CHANGE}), 0, policy)
        assert score == Decimal("10.01")


class TestDecisions:
    def test_clean_attempt(self, policy: RiskPolicy) -> None:
        decision = evaluate(
            RiskSignals(amount=Decimal("10000"), historical_average=Decimal("9000")), policy
        )
        assert decision.level is RiskLevel.LOW
        assert not decision.blocked
        assert not decision.review_required
        assert not decision.requires_3ds

    def test_high_confidence_proxy_blocks(self, policy: RiskPolicy) -> None:
        decision = evaluate(
            RiskSignals(
                amount=Decimal("10000"),
                historical_average=Decimal("9000"),
                is_proxy=True,
                proxy_confidence=95,
            ),
            policy,
        )
        assert decision.level is RiskLevel.CRITICAL
        assert decision.blocked
        assert decision.requires_mfa
        assert decision.sorted_flags() == ["PROXY_DETECTED"]

    def test_critical_without_proxy_is_not_blocked(self) -> None:
        decision = evaluate(
            RiskSignals(
                amount=Decimal("10000"),
                hour=3,
                recent_attempts=5,
                claimed_location="DE",
                last_known_location="FR",
                ip_region="US",
                device_fingerprint="new",
                known_fingerprints=frozenset({"old"}),
            ),
            RiskPolicy(),
        )
        assert decision.level is RiskLevel.CRITICAL
        assert not decision.blocked
        assert decision.review_required

    def test_medium_requires_3ds_only(self, policy: RiskPolicy) -> None:
        decision = evaluate(
            RiskSignals(recent_attempts=3, claimed_location="DE", last_known_location="FR"),
            policy,
        )
        assert decision.level is RiskLevel.MEDIUM
        assert decision.requires_3ds
        assert not decision.requires_mfa
