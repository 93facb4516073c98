"""Composition root.

Builds every process-wide dependency from Settings exactly once: the field
cipher (bound to this core's engine), the IP masker, the risk and
escrow policies, the collaborators and the database engine. Callers then
open one unit of work per operation.

Usage:
    core = SettlementCore.from_settings(get_settings())
    await core.init_db()
    async with core.unit_of_work() as uow:
        escrow = await uow.escrows.create("buyer-1", "seller-1", "100.00")
    await core.aclose()
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any

from escrow_settlement.domain.exceptions import ValidationFailure
from escrow_settlement.infrastructure.database.engine import (
    create_engine_from_settings,
    create_session_factory,
    create_tables,
    session_scope,
)
from escrow_settlement.infrastructure.database.types import bind_field_cipher
from escrow_settlement.infrastructure.reputation_client import (
    HttpProxyReputation,
    InertProxyReputation,
)
from escrow_settlement.logging_config import get_logger
from escrow_settlement.security.encryption import FieldCipher
from escrow_settlement.security.ip_masking import IpMasker
from escrow_settlement.services.context import EscrowPolicy, ServiceContext
from escrow_settlement.services.escrow_service import validate_amount
from escrow_settlement.services.notifications import LoggingNotifier
from escrow_settlement.services.payment_gateway import SimulatedPaymentGateway
from escrow_settlement.services.sweep import SettlementSweeper
from escrow_settlement.services.unit_of_work import Services, build_services
from escrow_settlement.utils.time import utcnow

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Callable
    from datetime import datetime
    from decimal import Decimal

    from sqlalchemy.ext.asyncio import AsyncEngine

    from escrow_settlement.config import Settings
    from escrow_settlement.domain.collaborators import Notifier, PaymentGateway, ProxyReputation
    from escrow_settlement.infrastructure.database.orm_models import Escrow
    from escrow_settlement.schemas.context import RequestMetadata, RiskContext
    from escrow_settlement.services.sweep import SweepReport

logger = get_logger(__name__)


class SettlementCore:
    """Process-wide handle on the escrow settlement core."""

    def __init__(self, engine: AsyncEngine, context: ServiceContext) -> None:
        self.engine = engine
        self.context = context
        self.session_factory = create_session_factory(engine)
        self.sweeper = SettlementSweeper(self.session_factory, context)

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        *,
        gateway: PaymentGateway | None = None,
        notifier: Notifier | None = None,
        reputation: ProxyReputation | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> SettlementCore:
        """Wire the core. Raises EncryptionKeyError if the key is missing or malformed."""
        key = settings.encryption_key.get_secret_value() if settings.encryption_key else None
        cipher = FieldCipher.from_hex(key)

        if reputation is None:
            if settings.proxy_detection_api_key:
                reputation = HttpProxyReputation(
                    settings.proxy_detection_url,
                    settings.proxy_detection_api_key,
                    timeout_seconds=settings.proxy_detection_timeout_seconds,
                    attempts=settings.proxy_detection_attempts,
                )
            else:
                reputation = InertProxyReputation()

        context = ServiceContext(
            risk_policy=settings.risk_policy(),
            escrow_policy=EscrowPolicy.from_settings(settings),
            ip_masker=IpMasker(settings.ip_mask_salt.get_secret_value(), settings.store_raw_ip),
            gateway=gateway or SimulatedPaymentGateway(),
            notifier=notifier or LoggingNotifier(),
            reputation=reputation,
            reputation_timeout_seconds=settings.proxy_detection_timeout_seconds,
            clock=clock,
        )
        logger.info(
            "core.configured",
            env=settings.app_env,
            reputation=type(reputation).__name__,
            gateway=type(context.gateway).__name__,
        )
        engine = create_engine_from_settings(settings)
        bind_field_cipher(engine, cipher)
        return cls(engine, context)

    async def init_db(self) -> None:
        await create_tables(self.engine)

    @asynccontextmanager
    async def unit_of_work(self) -> AsyncIterator[Services]:
        """One transaction: committed when the block exits cleanly, rolled back otherwise."""
        async with session_scope(self.session_factory) as session:
            yield build_services(session, self.context)

    async def create_escrow(
        self,
        buyer_id: str,
        seller_id: str,
        amount: Decimal | str,
        *,
        risk_context: RiskContext | None = None,
        request: RequestMetadata | None = None,
        **options: Any,
    ) -> Escrow:
        """Risk pre-check, then creation, in two transactions.

        The assessment is committed first so a blocked attempt stays on
        record (and in the review queue) even though creation fails with
        RiskBlocked.
        """
        if buyer_id == seller_id:
            raise ValidationFailure("buyer and seller must differ", field="seller_id")
        async with self.unit_of_work() as uow:
            assessment = await uow.risk.assess(
                buyer_id,
                amount=validate_amount(amount, "amount"),
                ip=risk_context.ip if risk_context else None,
                device=risk_context.device if risk_context else None,
                location=risk_context.location if risk_context else None,
                endpoint=risk_context.endpoint if risk_context else "/escrows",
                request=request,
            )
        async with self.unit_of_work() as uow:
            return await uow.escrows.create(
                buyer_id,
                seller_id,
                amount,
                assessment_id=assessment.id,
                request=request,
                **options,
            )

    async def sweep_once(self, now: datetime | None = None) -> SweepReport:
        return await self.sweeper.run_once(now)

    async def aclose(self) -> None:
        closer = getattr(self.context.reputation, "aclose", None)
        if closer is not None:
            await closer()
        await self.engine.dispose()
        logger.info("core.closed")

