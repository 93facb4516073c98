"""SettlementCore construction from Settings."""

from __future__ import annotations

import pytest

from escrow_settlement.bootstrap import SettlementCore
from escrow_settlement.config import Settings
from escrow_settlement.domain.exceptions import EncryptionKeyError
from escrow_settlement.infrastructure.reputation_client import (
    HttpProxyReputation,
    InertProxyReputation,
)
from escrow_settlement.services.notifications import LoggingNotifier
from escrow_settlement.services.payment_gateway import SimulatedPaymentGateway


class TestFromSettings:
    def test_missing_key_is_rejected(self, settings: Settings) -> None:
        with pytest.raises(EncryptionKeyError):
            SettlementCore.from_settings(settings.model_copy(update={"encryption_key": None}))

    @pytest.mark.asyncio
    async def test_defaults_without_api_key(self, settings: Settings) -> None:
        core = SettlementCore.from_settings(settings)
        try:
            assert isinstance(core.context.reputation, InertProxyReputation)
            assert isinstance(core.context.gateway, SimulatedPaymentGateway)
            assert isinstance(core.context.notifier, LoggingNotifier)
            assert core.context.escrow_policy.auto_release_after_days == 3
            assert core.context.reputation_timeout_seconds == settings.proxy_detection_timeout_seconds
        finally:
            await core.aclose()

    @pytest.mark.asyncio
    async def test_http_reputation_with_api_key(self, settings: Settings) -> None:
        configured = settings.model_copy(update={"proxy_detection_api_key": "secret"})
        core = SettlementCore.from_settings(configured)
        try:
            assert isinstance(core.context.reputation, HttpProxyReputation)
        finally:
            await core.aclose()

    @pytest.mark.asyncio
    async def test_quiet_hours_flow_into_policy(self, settings: Settings) -> None:
        core = SettlementCore.from_settings(settings)
        try:
            policy = core.context.risk_policy
            assert (policy.unusual_hours_start, policy.unusual_hours_end) == (0, 0)
        finally:
            await core.aclose()


class TestUnitOfWork:
    @pytest.mark.asyncio
    async def test_rolls_back_on_error(self, core: SettlementCore) -> None:
        with pytest.raises(RuntimeError, match="boom"):
            async with core.unit_of_work() as uow:
                await uow.escrows.create("buyer-9", "seller-9", "10.00")
                raise RuntimeError("boom")

        async with core.unit_of_work() as uow:
            assert await uow.escrows.list_for_party("buyer-9") == []
