"""Authorization predicates checked at the start of each core operation.

Each guard raises NotCounterparty; none of them depends on a request
framework. ``SYSTEM_ACTOR`` is the sweep's identity and is only accepted
where a guard says so.
"""

from __future__ import annotations

from typing import Protocol

from escrow_settlement.domain.enums import SYSTEM_ACTOR
from escrow_settlement.domain.exceptions import NotCounterparty


class HasParties(Protocol):
    buyer_id: str
    seller_id: str


def is_party(escrow: HasParties, actor: str) -> bool:
    return actor in (escrow.buyer_id, escrow.seller_id)


def assert_party(escrow: HasParties, actor: str, action: str, *, allow_system: bool = False) -> None:
    """Actor must be the buyer or the seller."""
    if allow_system and actor == SYSTEM_ACTOR:
        return
    if not is_party(escrow, actor):
        raise NotCounterparty(actor, action)


def assert_buyer(escrow: HasParties, actor: str, action: str, *, allow_system: bool = False) -> None:
    if allow_system and actor == SYSTEM_ACTOR:
        return
    if actor != escrow.buyer_id:
        raise NotCounterparty(actor, action)


def assert_seller(escrow: HasParties, actor: str, action: str, *, allow_system: bool = False) -> None:
    if allow_system and actor == SYSTEM_ACTOR:
        return
    if actor != escrow.seller_id:
        raise NotCounterparty(actor, action)


def assert_obligated_deliverer(escrow: HasParties, actor: str) -> None:
    """Only the seller delivers. A buyer is never the deliverer of their own escrow."""
    if actor == escrow.buyer_id or actor != escrow.seller_id:
        raise NotCounterparty(actor, "submit delivery proof")


def assert_counterparty(escrow: HasParties, submitter: str, reviewer: str, action: str) -> None:
    """Reviewer must be the escrow party that is not the submitter."""
    if reviewer == submitter or not is_party(escrow, reviewer):
        raise NotCounterparty(reviewer, action)


def assert_not_party(escrow: HasParties, actor: str, action: str) -> None:
    """Arbiters (dispute resolvers) must be independent of both sides."""
    if is_party(escrow, actor) or actor == SYSTEM_ACTOR:
        raise NotCounterparty(actor, action)
