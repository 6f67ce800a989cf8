from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
from fastapi.middleware.cors import CORSMiddleware
from aarath.core.config import settings
from aarath.core.errors import AuctionError
from aarath.middleware.request_id import RequestIDMiddleware
from aarath.middleware.rate_limit import RateLimitMiddleware
from aarath.realtime.store import RealtimeStore
from aarath.auctions.endpoints import router as auctions_router

@asynccontextmanager
async def lifespan(app: FastAPI):
    # The live store is authoritative and lives as long as the process
    app.state.store = RealtimeStore()
    yield

app = FastAPI(lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=['*'],
    allow_headers=['*']
)
app.add_middleware(RateLimitMiddleware)
app.add_middleware(RequestIDMiddleware)

@app.exception_handler(AuctionError)
async def auction_error_handler(request: Request, exc: AuctionError):
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})

app.include_router(auctions_router)
