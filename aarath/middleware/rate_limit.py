import re
import time
import uuid
from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
import structlog
import aarath.core.redis as redis_module
from aarath.core.config import settings

logger = structlog.get_logger()

BID_PATH = re.compile(r"^/auctions/[^/]+/bids/?$")

async def sliding_window_allow(key: str, limit: int, window_seconds: int) -> bool:
    now = time.time()
    window_start = now - window_seconds
    try:
        client = redis_module.redis_client
        pipe = client.pipeline()
        pipe.zremrangebyscore(key, 0, window_start)
        pipe.zadd(key, {f"{now}:{uuid.uuid4().hex[:8]}": now})
        pipe.zcard(key)
        pipe.expire(key, window_seconds)
        _, _, count, _ = await pipe.execute()
        return count <= limit
    except Exception:
        # Fail open: a missing limiter must not take bidding down with it
        logger.warning("Rate limiter unavailable", key=key)
        return True

class RateLimitMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        ip = request.client.host if request.client else 'unknown'
        global_key = f"rl:ip:{ip}:{settings.rate_limit_requests}in{settings.rate_limit_window_seconds}"
        if not await sliding_window_allow(global_key, settings.rate_limit_requests, settings.rate_limit_window_seconds):
            return JSONResponse(status_code=429, content={"detail": "Too many requests"})

        if request.method == "POST" and BID_PATH.match(request.url.path):
            bid_key = f"rl:bid:{ip}:{request.url.path}"
            if not await sliding_window_allow(bid_key, settings.bid_rate_limit, settings.bid_rate_window_seconds):
                return JSONResponse(status_code=429, content={"detail": "Bid rate limit exceeded"})

        return await call_next(request)
