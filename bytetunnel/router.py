"""
FastAPI Router for the bytetunnel streaming gateway

Pairs the two WebSocket legs of a stream (device side and service side) and
pipes raw bytes between them. Each leg must present the bearer token the
control-plane stored for the stream.
"""

import asyncio
import contextlib
import hmac
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from fastapi import APIRouter, WebSocket, WebSocketDisconnect, status

if TYPE_CHECKING:
    from redis.asyncio import Redis  # noqa: F401

from bytetunnel.config import BytetunnelConfig
from bytetunnel.relay import first_completed

LOG = logging.getLogger(__name__)

router = APIRouter(prefix="/bytetunnel", tags=["bytetunnel"])


@dataclass
class Rendezvous:
    """Legs waiting for their peer, keyed by stream name."""

    waiting: dict[str, tuple[WebSocket, asyncio.Future[None], asyncio.Future[None]]] = field(
        default_factory=dict
    )

    async def join(self, stream_name: str, websocket: WebSocket, timeout: float) -> bool:
        """
        Join a stream and block until it is over.

        The timeout only bounds the wait for a peer; a paired stream runs
        until either leg disconnects. Returns False if no peer showed up.
        """
        peer = self.waiting.pop(stream_name, None)
        if peer is not None:
            peer_websocket, peer_paired, peer_done = peer
            peer_paired.set_result(None)
            try:
                await pipe(peer_websocket, websocket)
            finally:
                if not peer_done.done():
                    peer_done.set_result(None)
            return True

        loop = asyncio.get_running_loop()
        paired: asyncio.Future[None] = loop.create_future()
        done: asyncio.Future[None] = loop.create_future()
        self.waiting[stream_name] = (websocket, paired, done)
        try:
            await asyncio.wait_for(asyncio.shield(paired), timeout=timeout)
        except TimeoutError:
            return False
        finally:
            entry = self.waiting.get(stream_name)
            if entry is not None and entry[1] is paired:
                del self.waiting[stream_name]

        await done
        return True


@router.websocket("/streams/{stream_name}")
async def bytetunnel_websocket(websocket: WebSocket, stream_name: str) -> None:
    """
    WebSocket endpoint for one leg of a stream.

    Payloads are relayed as raw bytes; the gateway never inspects them.
    """
    redis: Redis = websocket.app.extra["redis"]
    config = websocket.app.extra.get("bytetunnel_config")
    if config is None:
        config = BytetunnelConfig()
    elif not isinstance(config, BytetunnelConfig):
        config = BytetunnelConfig.model_validate(config)
    rendezvous: Rendezvous = websocket.app.extra.setdefault("bytetunnel_rendezvous", Rendezvous())

    if not await is_authorized(redis, config, stream_name, websocket.headers.get("authorization")):
        LOG.warning("Rejected unauthorized leg for stream %s", stream_name)
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    await websocket.accept()
    LOG.info("New leg for stream %s", stream_name)

    try:
        paired = await rendezvous.join(stream_name, websocket, config.pair_timeout_seconds)
        if not paired:
            LOG.warning("No peer joined stream %s", stream_name)
    except Exception:
        LOG.exception("Error in stream %s", stream_name)
    finally:
        await redis.delete(config.grant_key(stream_name))
        with contextlib.suppress(RuntimeError, WebSocketDisconnect):
            await websocket.close()
        LOG.info("Leg for stream %s closed", stream_name)


async def is_authorized(
    redis: "Redis",
    config: BytetunnelConfig,
    stream_name: str,
    authorization: str | None,
) -> bool:
    """Check the bearer token of a leg against the token stored for the stream."""
    if not authorization or not authorization.startswith("Bearer "):
        return False

    expected = await redis.get(config.grant_key(stream_name))
    if expected is None:
        return False
    if isinstance(expected, bytes):
        expected = expected.decode("utf-8")

    return hmac.compare_digest(authorization.removeprefix("Bearer "), expected)


async def pipe(first: WebSocket, second: WebSocket) -> None:
    """Copy messages both ways until either leg disconnects."""
    finished = await first_completed(forward(first, second), forward(second, first))
    exc = finished.exception()
    if exc is None or isinstance(exc, WebSocketDisconnect):
        return
    # Starlette raises RuntimeError for send/receive on a leg already closed
    if isinstance(exc, RuntimeError):
        LOG.debug("Leg closed mid-transfer: %s", exc)
        return
    raise exc


async def forward(source: WebSocket, target: WebSocket) -> None:
    while True:
        message = await source.receive_bytes()
        await target.send_bytes(message)
