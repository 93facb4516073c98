"""Tests for domain enumerations."""

from __future__ import annotations

from escrow_settlement.domain.enums import (
    SETTLED_ESCROW_STATUSES,
    TERMINAL_ESCROW_STATUSES,
    DisputeStatus,
    EscrowStatus,
    RiskLevel,
    TransactionType,
)


class TestEscrowStatus:
    def test_all_statuses_exist(self) -> None:
        expected = {
            "PENDING", "FUNDED", "DISPUTED", "RELEASED",
            "REFUNDED", "COMPLETED", "CANCELLED",
        }
        actual = {s.value for s in EscrowStatus}
        assert actual == expected

    def test_status_is_str_enum(self) -> None:
        assert isinstance(EscrowStatus.PENDING, str)
        assert EscrowStatus.PENDING == "PENDING"

    def test_terminal_statuses(self) -> None:
        assert {s.value for s in TERMINAL_ESCROW_STATUSES} == {
            "RELEASED", "REFUNDED", "COMPLETED", "CANCELLED",
        }
        assert EscrowStatus.CANCELLED.is_terminal
        assert not EscrowStatus.DISPUTED.is_terminal

    def test_cancelled_is_not_settled(self) -> None:
        assert EscrowStatus.RELEASED in SETTLED_ESCROW_STATUSES
        assert not EscrowStatus.CANCELLED.is_settled


class TestDisputeStatus:
    def test_all_statuses_exist(self) -> None:
        assert {s.value for s in DisputeStatus} == {
            "OPEN", "UNDER_REVIEW", "RESOLVED_FOR_MERCHANT",
            "RESOLVED_FOR_CUSTOMER", "ESCALATED", "CLOSED",
        }


class TestRiskLevel:
    def test_rank_is_ordered(self) -> None:
        ranks = [level.rank for level in (RiskLevel.LOW, RiskLevel.MEDIUM, RiskLevel.HIGH, RiskLevel.CRITICAL)]
        assert ranks == sorted(ranks)
        assert len(set(ranks)) == 4


class TestTransactionType:
    def test_release_entries(self) -> None:
        assert TransactionType.FUNDS_RELEASED == "FUNDS_RELEASED"
        assert TransactionType.ESCROW_RELEASE_AUTHORIZED == "ESCROW_RELEASE_AUTHORIZED"

    def test_values_are_unique(self) -> None:
        values = [t.value for t in TransactionType]
        assert len(values) == len(set(values))
