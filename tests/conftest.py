"""Shared test fixtures for the escrow settlement test suite.

Provides:
    - Settings pointing at a throwaway SQLite file per test
    - Recording fakes for the payment gateway, notifier and reputation lookup
    - A wired SettlementCore with tables created
    - Helpers that drive an escrow to FUNDED
"""

from __future__ import annotations

import asyncio
import uuid
from collections.abc import AsyncIterator
from decimal import Decimal
from typing import Any

import pytest
import pytest_asyncio

from escrow_settlement.bootstrap import SettlementCore
from escrow_settlement.config import Settings
from escrow_settlement.domain.collaborators import ProxyCheck
from escrow_settlement.domain.risk_rules import RiskPolicy
from escrow_settlement.security.encryption import FieldCipher

TEST_KEY = "00112233445566778899aabbccddeeff00112233445566778899aabbccddeeff"
OTHER_KEY = "ffeeddccbbaa99887766554433221100ffeeddccbbaa99887766554433221100"

BUYER = "buyer-1"
SELLER = "seller-1"
ARBITER = "arbiter-1"


# ---------------------------------------------------------------------------
# Collaborator fakes
# ---------------------------------------------------------------------------


class RecordingGateway:
    """Payment gateway that records every disbursement."""

    def __init__(self) -> None:
        self.disbursements: list[dict[str, Any]] = []
        self.fail_times = 0

    async def disburse(
        self, escrow_id: uuid.UUID, payee_id: str, amount: Decimal, purpose: str
    ) -> str:
        if self.fail_times > 0:
            self.fail_times -= 1
            raise RuntimeError("gateway unavailable")
        reference = f"ref-{len(self.disbursements) + 1}"
        self.disbursements.append(
            {
                "escrow_id": escrow_id,
                "payee_id": payee_id,
                "amount": amount,
                "purpose": purpose,
                "reference": reference,
            }
        )
        return reference


class RecordingNotifier:
    def __init__(self, fail: bool = False) -> None:
        self.events: list[tuple[str, dict[str, Any]]] = []
        self.fail = fail

    async def publish(self, event: str, payload: dict[str, Any]) -> None:
        if self.fail:
            raise RuntimeError("notifier down")
        self.events.append((event, payload))

    def names(self) -> list[str]:
        return [name for name, _ in self.events]


class FakeReputation:
    """Reputation lookup returning a fixed result, or failing on demand."""

    def __init__(self, result: ProxyCheck | None = None) -> None:
        self.result = result or ProxyCheck.unknown()
        self.error: Exception | None = None
        self.delay = 0.0
        self.calls: list[tuple[str, str]] = []

    async def detect_proxy(self, ip: str, endpoint: str) -> ProxyCheck:
        self.calls.append((ip, endpoint))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.result


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


@pytest.fixture
def settings(tmp_path) -> Settings:  # noqa: ANN001
    """Settings for one test. Quiet hours are disabled so results don't depend on the clock."""
    return Settings(
        _env_file=None,
        app_env="development",
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'settlement.db'}",
        encryption_key=TEST_KEY,
        ip_mask_salt="test-salt",
        proxy_detection_api_key="",
        risk_unusual_hours_start=0,
        risk_unusual_hours_end=0,
    )


@pytest.fixture
def policy() -> RiskPolicy:
    return RiskPolicy(unusual_hours_start=0, unusual_hours_end=0)


@pytest.fixture
def cipher() -> FieldCipher:
    return FieldCipher.from_hex(TEST_KEY)


@pytest.fixture
def gateway() -> RecordingGateway:
    return RecordingGateway()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def reputation() -> FakeReputation:
    return FakeReputation()


# ---------------------------------------------------------------------------
# Wired core
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture
async def core(
    settings: Settings,
    gateway: RecordingGateway,
    notifier: RecordingNotifier,
    reputation: FakeReputation,
) -> AsyncIterator[SettlementCore]:
    settlement = SettlementCore.from_settings(
        settings, gateway=gateway, notifier=notifier, reputation=reputation
    )
    await settlement.init_db()
    yield settlement
    await settlement.aclose()


async def create_funded(
    core: SettlementCore,
    amount: str = "100.00",
    milestones: list[dict[str, Any]] | None = None,
    **options: Any,
) -> uuid.UUID:
    """Create and fund an escrow between BUYER and SELLER; return its id."""
    escrow = await core.create_escrow(
        BUYER, SELLER, amount, milestones=milestones or [], **options
    )
    async with core.unit_of_work() as uow:
        await uow.escrows.fund(escrow.id, "pay-1", actor=BUYER)
    return escrow.id
