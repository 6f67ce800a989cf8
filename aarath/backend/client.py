"""Client for the marketplace REST backend that owns auctions and products."""
import httpx
import structlog
from aarath.core.config import settings
from aarath.core.errors import StoreError

logger = structlog.get_logger()


class AuctionBackendClient:
    def __init__(self, base_url: str | None = None, timeout: float | None = None,
                 transport: httpx.AsyncBaseTransport | None = None):
        self.base_url = (base_url or settings.backend_url).rstrip("/")
        self.timeout = timeout or settings.backend_timeout_seconds
        self.transport = transport

    async def list_active_auctions(self) -> list[dict]:
        """GET /auctions/active. Accepts a bare list or a ``{"data": [...]}`` envelope."""
        async with httpx.AsyncClient(base_url=self.base_url, timeout=self.timeout, transport=self.transport) as client:
            try:
                r = await client.get("/auctions/active", headers={"Accept": "application/json"})
            except httpx.HTTPError as exc:
                raise StoreError(f"Auction backend unreachable: {exc}") from exc
        if r.status_code != 200:
            logger.warning("Auction backend error", status_code=r.status_code, url=str(r.url))
            raise StoreError(f"Auction backend returned {r.status_code}")
        data = r.json()
        if isinstance(data, dict):
            data = data.get("data") or []
        if not isinstance(data, list):
            return []
        return [a for a in data if isinstance(a, dict) and a.get("id") is not None]
