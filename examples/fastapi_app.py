"""Minimal FastAPI app serving the bytetunnel streaming gateway."""

from contextlib import asynccontextmanager

from fastapi import FastAPI
from redis import asyncio as aioredis

from bytetunnel.config import BytetunnelConfig
from bytetunnel.router import router


@asynccontextmanager
async def lifespan(app: FastAPI):
    config = BytetunnelConfig()
    app.extra["redis"] = aioredis.from_url(config.redis_url)
    app.extra["bytetunnel_config"] = config
    try:
        yield
    finally:
        await app.extra["redis"].aclose()


app = FastAPI(lifespan=lifespan)
app.include_router(router)
