from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
import structlog
from structlog.contextvars import bound_contextvars
import uuid

logger = structlog.get_logger()

class RequestIDMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        request.state.request_id = request_id
        with bound_contextvars(request_id=request_id):
            logger.info("Request started", method=request.method, url=str(request.url))
            response = await call_next(request)
            logger.info("Request completed", status_code=response.status_code)
        response.headers["X-Request-ID"] = request_id
        return response
