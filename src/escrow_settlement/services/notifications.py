"""Fire-and-forget notifications.

There is no delivery channel; LoggingNotifier only logs. publish_safely
is what services call: a failing notifier is logged and never propagates,
so it cannot roll back the transition that triggered it.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from escrow_settlement.logging_config import get_logger

if TYPE_CHECKING:
    from escrow_settlement.domain.collaborators import Notifier

logger = get_logger(__name__)


class LoggingNotifier:
    """Default notifier: writes each event to the structured log."""

    async def publish(self, event: str, payload: dict[str, Any]) -> None:
        logger.info("notification.published", notification=event, payload=payload)


async def publish_safely(notifier: Notifier, event: str, payload: dict[str, Any]) -> None:
    try:
        await notifier.publish(event, payload)
    except Exception:
        logger.warning("notification.failed", notification=event, exc_info=True)
