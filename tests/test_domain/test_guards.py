"""Tests for the authorization guards."""

from __future__ import annotations

from dataclasses import dataclass

import pytest

from escrow_settlement.domain.enums import SYSTEM_ACTOR
from escrow_settlement.domain.exceptions import NotCounterparty
from escrow_settlement.domain.guards import (
    assert_buyer,
    assert_counterparty,
    assert_not_party,
    assert_obligated_deliverer,
    assert_party,
    is_party,
)


@dataclass
class Parties:
    buyer_id: str = "buyer"
    seller_id: str = "seller"


class TestPartyGuards:
    def test_is_party(self) -> None:
        assert is_party(Parties(), "buyer")
        assert is_party(Parties(), "seller")
        assert not is_party(Parties(), "stranger")

    def test_system_needs_explicit_permission(self) -> None:
        with pytest.raises(NotCounterparty):
            assert_party(Parties(), SYSTEM_ACTOR, "cancel escrow")
        assert_party(Parties(), SYSTEM_ACTOR, "cancel escrow", allow_system=True)

    def test_seller_is_not_buyer(self) -> None:
        with pytest.raises(NotCounterparty) as exc_info:
            assert_buyer(Parties(), "seller", "release escrow")
        assert exc_info.value.actor == "seller"
        assert exc_info.value.code == "NOT_COUNTERPARTY"


class TestProofGuards:
    def test_only_seller_delivers(self) -> None:
        assert_obligated_deliverer(Parties(), "seller")
        with pytest.raises(NotCounterparty):
            assert_obligated_deliverer(Parties(), "buyer")

    def test_reviewer_must_be_the_other_party(self) -> None:
        assert_counterparty(Parties(), "seller", "buyer", "review")
        with pytest.raises(NotCounterparty):
            assert_counterparty(Parties(), "seller", "seller", "review")
        with pytest.raises(NotCounterparty):
            assert_counterparty(Parties(), "seller", "stranger", "review")


class TestArbiterGuard:
    @pytest.mark.parametrize("actor", ["buyer", "seller", SYSTEM_ACTOR])
    def test_parties_and_system_cannot_arbitrate(self, actor: str) -> None:
        with pytest.raises(NotCounterparty):
            assert_not_party(Parties(), actor, "resolve dispute")

    def test_independent_arbiter(self) -> None:
        assert_not_party(Parties(), "arbiter", "resolve dispute")
