"""
Duplex Relay

Copies bytes between a local TCP stream and a gateway WebSocket until either
side is done. The relay is content-agnostic: every local read becomes one
binary message and every received message is written out verbatim.
"""

import asyncio
import logging
from collections.abc import Awaitable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from websockets.exceptions import ConnectionClosedOK

if TYPE_CHECKING:
    from websockets.asyncio.client import ClientConnection

from bytetunnel.errors import RelayIOError
from bytetunnel.models import RelayOutcome

LOG = logging.getLogger(__name__)

DEFAULT_CHUNK_SIZE = 10240


@dataclass
class RelayCounters:
    to_local: int = 0
    to_remote: int = 0


async def first_completed(*aws: Awaitable[Any]) -> "asyncio.Future[Any]":
    """
    Run awaitables concurrently until the first one finishes.

    The others are cancelled and joined before returning, so nothing started
    here outlives the call. Returns the future that finished first; its result
    or exception is left for the caller to inspect.
    """
    futures = [asyncio.ensure_future(aw) for aw in aws]
    try:
        done, _ = await asyncio.wait(futures, return_when=asyncio.FIRST_COMPLETED)
    finally:
        for future in futures:
            future.cancel()
        await asyncio.gather(*futures, return_exceptions=True)

    return next(future for future in futures if future in done)


async def relay(
    reader: asyncio.StreamReader,
    writer: asyncio.StreamWriter,
    websocket: "ClientConnection",
    *,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
) -> RelayOutcome:
    """
    Relay bytes between a local stream and a gateway connection.

    Returns as soon as either direction ends. Neither stream is closed here;
    that is left to whoever opened them.

    Raises:
        RelayIOError: If the direction that ended first failed
        ValueError: If chunk_size is smaller than one byte
    """
    if chunk_size < 1:
        raise ValueError(f"chunk_size must be at least 1, got {chunk_size}")

    counters = RelayCounters()
    inbound = asyncio.create_task(
        remote_to_local(websocket, writer, counters), name="remote-to-local"
    )
    outbound = asyncio.create_task(
        local_to_remote(reader, websocket, counters, chunk_size), name="local-to-remote"
    )

    finished = await first_completed(inbound, outbound)
    finished_by = "remote" if finished is inbound else "local"

    exc = finished.exception()
    if exc is not None and not isinstance(exc, ConnectionClosedOK):
        LOG.debug("Relay direction %s failed: %r", finished.get_name(), exc)
        raise RelayIOError(finished.get_name()) from exc

    LOG.debug(
        "Relay finished by %s side (%d bytes to local, %d bytes to remote)",
        finished_by,
        counters.to_local,
        counters.to_remote,
    )
    return RelayOutcome(
        finished_by=finished_by,
        bytes_to_local=counters.to_local,
        bytes_to_remote=counters.to_remote,
    )


async def remote_to_local(
    websocket: "ClientConnection",
    writer: asyncio.StreamWriter,
    counters: RelayCounters,
) -> None:
    """Write every gateway message to the local stream until the gateway closes."""
    async for message in websocket:
        if isinstance(message, str):
            message = message.encode("utf-8")

        writer.write(message)
        await writer.drain()
        counters.to_local += len(message)


async def local_to_remote(
    reader: asyncio.StreamReader,
    websocket: "ClientConnection",
    counters: RelayCounters,
    chunk_size: int,
) -> None:
    """Send each chunk read from the local stream as one binary message until EOF."""
    while True:
        data = await reader.read(chunk_size)
        if not data:
            break

        await websocket.send(data)
        counters.to_remote += len(data)
