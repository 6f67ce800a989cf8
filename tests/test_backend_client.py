import asyncio

import httpx
import pytest

from aarath.backend.client import AuctionBackendClient
from aarath.core.errors import StoreError


def _client(handler) -> AuctionBackendClient:
    return AuctionBackendClient(base_url="http://backend.test/api/", timeout=1, transport=httpx.MockTransport(handler))


def test_bare_list_response():
    def handler(request):
        assert str(request.url) == "http://backend.test/api/auctions/active"
        return httpx.Response(200, json=[{"id": 1}, {"id": None}, "junk", {"id": "2"}])

    assert asyncio.run(_client(handler).list_active_auctions()) == [{"id": 1}, {"id": "2"}]


def test_envelope_response():
    def handler(request):
        return httpx.Response(200, json={"success": True, "data": [{"id": "a"}]})

    assert asyncio.run(_client(handler).list_active_auctions()) == [{"id": "a"}]


def test_unexpected_body_is_empty():
    def handler(request):
        return httpx.Response(200, json={"data": None})

    assert asyncio.run(_client(handler).list_active_auctions()) == []


def test_errors_raise_store_error():
    def failing(request):
        return httpx.Response(500, json={"detail": "boom"})

    def unreachable(request):
        raise httpx.ConnectTimeout("timed out", request=request)

    with pytest.raises(StoreError):
        asyncio.run(_client(failing).list_active_auctions())
    with pytest.raises(StoreError):
        asyncio.run(_client(unreachable).list_active_auctions())
