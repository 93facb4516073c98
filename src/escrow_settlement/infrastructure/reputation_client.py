"""Proxy/IP reputation adapters.

HttpProxyReputation calls an external detection API with a short timeout
and a couple of tenacity retries on transport errors. Every failure mode
(timeout, connection error, non-2xx, unparseable body) surfaces as
ExternalSignalUnavailable; the risk engine turns that into a degraded
"unknown" signal.

InertProxyReputation is used when no API key is configured.
"""

from __future__ import annotations

from typing import Any

import httpx
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from escrow_settlement.domain.collaborators import UNKNOWN_REGION, ProxyCheck
from escrow_settlement.domain.exceptions import ExternalSignalUnavailable
from escrow_settlement.logging_config import get_logger

logger = get_logger(__name__)

SOURCE = "proxy_reputation"


class HttpProxyReputation:
    """Reputation lookup over HTTP.

    Expected response body: ``{"is_proxy": bool, "confidence": 0-100, "region": str}``.
    """

    def __init__(
        self,
        url: str,
        api_key: str,
        timeout_seconds: float = 2.0,
        attempts: int = 2,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._url = url
        self._api_key = api_key
        self._attempts = max(1, attempts)
        self._client = client or httpx.AsyncClient(timeout=httpx.Timeout(timeout_seconds))
        self._owns_client = client is None

    async def detect_proxy(self, ip: str, endpoint: str) -> ProxyCheck:
        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(self._attempts),
                wait=wait_exponential(multiplier=0.1, min=0.1, max=1),
                retry=retry_if_exception_type(httpx.TransportError),
                reraise=True,
            ):
                with attempt:
                    response = await self._client.get(
                        self._url,
                        params={"ip": ip, "endpoint": endpoint},
                        headers={"X-API-Key": self._api_key},
                    )
                    response.raise_for_status()
        except httpx.TimeoutException as exc:
            raise ExternalSignalUnavailable(SOURCE, "timeout") from exc
        except httpx.HTTPStatusError as exc:
            raise ExternalSignalUnavailable(
                SOURCE, f"status {exc.response.status_code}"
            ) from exc
        except httpx.HTTPError as exc:
            raise ExternalSignalUnavailable(SOURCE, type(exc).__name__) from exc

        return self._parse(response)

    def _parse(self, response: httpx.Response) -> ProxyCheck:
        try:
            body: Any = response.json()
            is_proxy = bool(body["is_proxy"])
            confidence = float(body.get("confidence", 0))
            region = body.get("region") or UNKNOWN_REGION
        except (ValueError, KeyError, TypeError, AttributeError) as exc:
            raise ExternalSignalUnavailable(SOURCE, "unparseable response") from exc
        return ProxyCheck(
            is_proxy=is_proxy,
            confidence=max(0.0, min(100.0, confidence)),
            region=str(region),
        )

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()


class InertProxyReputation:
    """Stand-in used when proxy detection is not configured."""

    async def detect_proxy(self, ip: str, endpoint: str) -> ProxyCheck:
        logger.warning("reputation.skipped", reason="no API key configured", endpoint=endpoint)
        return ProxyCheck.unknown()

    async def aclose(self) -> None:
        return None
