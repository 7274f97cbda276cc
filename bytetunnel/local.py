"""Helpers for the plain TCP side of a tunnel."""

import asyncio
import contextlib
import logging

from bytetunnel.errors import ConnectFailed

LOG = logging.getLogger(__name__)


async def open_local_connection(
    host: str,
    port: int,
    *,
    timeout: float | None = None,
) -> tuple[asyncio.StreamReader, asyncio.StreamWriter]:
    """
    Connect to a local TCP target such as an SSH daemon.

    Raises:
        ConnectFailed: If the target refuses, is unreachable or times out
    """
    LOG.debug("Connecting to local target %s:%s", host, port)
    try:
        return await asyncio.wait_for(asyncio.open_connection(host, port), timeout=timeout)
    except TimeoutError as exc:
        raise ConnectFailed(f"{host}:{port}", "timed out") from exc
    except OSError as exc:
        raise ConnectFailed(f"{host}:{port}", str(exc)) from exc


async def close_local(writer: asyncio.StreamWriter, *, timeout: float = 1.0) -> None:
    """Close a local stream, tolerating peers that already went away."""
    if writer.is_closing():
        return

    writer.close()
    with contextlib.suppress(OSError, TimeoutError):
        await asyncio.wait_for(writer.wait_closed(), timeout=timeout)
