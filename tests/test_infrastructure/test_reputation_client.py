"""Tests for the HTTP proxy/IP reputation adapter."""

from __future__ import annotations

import httpx
import pytest

from escrow_settlement.domain.collaborators import UNKNOWN_REGION, ProxyCheck
from escrow_settlement.domain.exceptions import ExternalSignalUnavailable
from escrow_settlement.infrastructure.reputation_client import (
    HttpProxyReputation,
    InertProxyReputation,
)

URL = "https://reputation.test/v1/check"


def _client(handler) -> httpx.AsyncClient:  # noqa: ANN001
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


class TestHttpProxyReputation:
    @pytest.mark.asyncio
    async def test_parses_response(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"is_proxy": True, "confidence": 95, "region": "NL"})

        async with _client(handler) as client:
            reputation = HttpProxyReputation(URL, "key-1", client=client)
            check = await reputation.detect_proxy("203.0.113.7", "/escrows")

        assert check == ProxyCheck(is_proxy=True, confidence=95.0, region="NL")
        assert seen[0].headers["X-API-Key"] == "key-1"
        assert seen[0].url.params["ip"] == "203.0.113.7"

    @pytest.mark.asyncio
    async def test_missing_region_is_unknown(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"is_proxy": False})

        async with _client(handler) as client:
            check = await HttpProxyReputation(URL, "k", client=client).detect_proxy("1.2.3.4", "/")

        assert check.region == UNKNOWN_REGION
        assert not check.region_known

    @pytest.mark.asyncio
    async def test_timeout_is_unavailable(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("slow", request=request)

        async with _client(handler) as client:
            reputation = HttpProxyReputation(URL, "k", attempts=1, client=client)
            with pytest.raises(ExternalSignalUnavailable) as exc_info:
                await reputation.detect_proxy("1.2.3.4", "/")

        assert exc_info.value.reason == "timeout"

    @pytest.mark.asyncio
    async def test_transport_errors_are_retried(self) -> None:
        calls = 0

        def handler(request: httpx.Request) -> httpx.Response:
            nonlocal calls
            calls += 1
            if calls == 1:
                raise httpx.ConnectError("refused", request=request)
            return httpx.Response(200, json={"is_proxy": False, "confidence": 0, "region": "DE"})

        async with _client(handler) as client:
            reputation = HttpProxyReputation(URL, "k", attempts=2, client=client)
            check = await reputation.detect_proxy("1.2.3.4", "/")

        assert calls == 2
        assert check.region == "DE"

    @pytest.mark.asyncio
    async def test_error_status_is_unavailable(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(503)

        async with _client(handler) as client:
            with pytest.raises(ExternalSignalUnavailable, match="status 503"):
                await HttpProxyReputation(URL, "k", client=client).detect_proxy("1.2.3.4", "/")

    @pytest.mark.asyncio
    async def test_garbage_body_is_unavailable(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, text="<html>")

        async with _client(handler) as client:
            with pytest.raises(ExternalSignalUnavailable, match="unparseable"):
                await HttpProxyReputation(URL, "k", client=client).detect_proxy("1.2.3.4", "/")


class TestInertProxyReputation:
    @pytest.mark.asyncio
    async def test_returns_unknown(self) -> None:
        assert await InertProxyReputation().detect_proxy("1.2.3.4", "/") == ProxyCheck.unknown()
