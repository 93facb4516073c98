"""Audit trail: the append-only transaction log.

Every meaningful state transition records exactly one entry. Structured
``data`` holds ids, amounts and statuses only; reasons and notes go into
the encrypted ``sensitive`` payload. Client IPs are masked before storage.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from pydantic_core import to_jsonable_python

from escrow_settlement.infrastructure.database.orm_models import TransactionLog
from escrow_settlement.infrastructure.database.repositories import TransactionLogRepository
from escrow_settlement.logging_config import get_logger

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from escrow_settlement.domain.enums import TransactionType
    from escrow_settlement.schemas.context import RequestMetadata
    from escrow_settlement.services.context import ServiceContext

logger = get_logger(__name__)


class AuditTrail:
    """Records and reads transaction log entries."""

    def __init__(self, session: AsyncSession, context: ServiceContext) -> None:
        self._repo = TransactionLogRepository(session)
        self._ctx = context

    async def record(
        self,
        entry_type: TransactionType,
        *,
        entity_id: Any,
        entity_type: str,
        user_id: str | None = None,
        data: dict[str, Any] | None = None,
        sensitive: dict[str, Any] | None = None,
        request: RequestMetadata | None = None,
    ) -> TransactionLog:
        entry = TransactionLog(
            type=entry_type.value,
            user_id=user_id,
            entity_id=str(entity_id),
            entity_type=entity_type,
            data=to_jsonable_python(data) if data is not None else None,
            sensitive=to_jsonable_python(sensitive) if sensitive else None,
            created_at=self._ctx.now(),
        )
        if request is not None:
            entry.ip_address = self._ctx.ip_masker.mask(request.ip)
            entry.user_agent = request.user_agent
            if request.device is not None:
                entry.metadata_json = {"device": request.device.model_dump(mode="json")}
        entry = await self._repo.record(entry)
        logger.debug("audit.recorded", type=entry.type, entity_id=entry.entity_id)
        return entry

    async def for_entity(self, entity_id: Any) -> list[TransactionLog]:
        """Entries for one entity, oldest first."""
        return await self._repo.get_by_entity(str(entity_id))

    async def count(self, entity_id: Any, entry_type: TransactionType) -> int:
        return await self._repo.count_by_type(str(entity_id), entry_type.value)
