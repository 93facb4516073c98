"""Payment gateway adapter.

No real card or crypto rails are wired in. SimulatedPaymentGateway generates
settlement references the way a rail would return them, so the rest of
the core can record outcomes end to end.
"""

from __future__ import annotations

import uuid
from typing import TYPE_CHECKING

from escrow_settlement.logging_config import get_logger

if TYPE_CHECKING:
    from decimal import Decimal

logger = get_logger(__name__)


class SimulatedPaymentGateway:
    """Handles settlement payouts without moving real money."""

    def __init__(self, prefix: str = "sim") -> None:
        """Initialize the simulated gateway.

        Args:
            prefix: Prepended to every generated reference.
        """
        self._prefix = prefix

    async def disburse(
        self,
        escrow_id: uuid.UUID,
        payee_id: str,
        amount: Decimal,
        purpose: str,
    ) -> str:
        """Pay ``amount`` out of the escrow to ``payee_id``.

        Returns the settlement reference.
        """
        reference = f"{self._prefix}_{uuid.uuid4().hex}"
        logger.info(
            "payment.disbursement_simulated",
            reference=reference,
            escrow_id=str(escrow_id),
            payee=payee_id,
            amount=str(amount),
            purpose=purpose,
        )
        return reference
