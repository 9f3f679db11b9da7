"""FastAPI application entry point."""

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from slowapi import Limiter
from slowapi.util import get_remote_address
from slowapi.errors import RateLimitExceeded

from api.host import close_tables
from api.routes import table
from api.session import close_session_store
from api.websocket import router as ws_router
from bjcore.logging_utils import setup_logging
from config import config

setup_logging(config.logging.level)
logger = logging.getLogger(__name__)

limiter = Limiter(
    key_func=get_remote_address,
    enabled=config.rate_limit.enabled,
    default_limits=[f"{config.rate_limit.requests_per_minute}/minute"],
)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    t = config.table
    logger.info(
        "Table host starting: %d decks, %d%% penetration, min bet %s",
        t.num_decks,
        t.penetration_percent,
        t.min_bet,
    )
    yield
    closed = await close_tables()
    await close_session_store()
    logger.info("Table host stopped; flushed %d tables", closed)


def _rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    return JSONResponse(
        status_code=429,
        content={"detail": f"Rate limit exceeded: {exc.detail}"},
    )


app = FastAPI(
    title="Blackjack Table",
    description="Multi-hand blackjack table with shoe, cut card and KO count",
    version="0.1.0",
    lifespan=lifespan,
)

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.cors.allowed_origins,
    allow_credentials=config.cors.allow_credentials,
    allow_methods=config.cors.allow_methods,
    allow_headers=config.cors.allow_headers,
)


@app.get("/api/health")
@limiter.limit(f"{config.rate_limit.requests_per_minute}/minute")
async def health_check(request: Request) -> dict[str, str]:
    return {"status": "healthy"}


app.include_router(table.router, prefix="/api/table", tags=["table"])
app.include_router(ws_router, prefix="/ws", tags=["websocket"])
