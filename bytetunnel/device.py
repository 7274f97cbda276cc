"""
Device side of the tunnel.

Waits for stream requests pushed by the control-plane and, for each accepted
one, connects the local target (typically an SSH daemon) to the gateway.
"""

import asyncio
import logging
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass, field

from websockets.asyncio.client import ClientConnection

from bytetunnel.control import DeviceControlPlane
from bytetunnel.errors import GrantRejected
from bytetunnel.gateway import GatewayConnector
from bytetunnel.local import close_local, open_local_connection
from bytetunnel.models import RelayOutcome, SessionGrant, StreamRequest
from bytetunnel.relay import DEFAULT_CHUNK_SIZE, relay

LOG = logging.getLogger(__name__)

AcceptPolicy = Callable[[StreamRequest], bool]


def accept_all(request: StreamRequest) -> bool:
    return True


@dataclass
class DeviceStream:
    """
    Accept loop for the device side.

    Sessions are handled one at a time. Cancel the task running run() to stop.

    Usage:
        device = DeviceStream(control, "localhost", 22)
        await device.run()
    """

    control: DeviceControlPlane
    target_host: str
    target_port: int
    connector: GatewayConnector = field(default_factory=GatewayConnector)
    chunk_size: int = DEFAULT_CHUNK_SIZE
    connect_timeout: float | None = 10.0
    accept_policy: AcceptPolicy = field(default=accept_all, kw_only=True)
    logger: logging.Logger = field(default=LOG, kw_only=True)

    async def run(self) -> None:
        while True:
            self.logger.info("Waiting for an incoming stream request.")
            try:
                await self.run_once()
            except asyncio.CancelledError:
                raise
            except Exception:
                self.logger.exception("An error occurred during streaming session.")

    async def run_once(self) -> RelayOutcome | None:
        """Handle a single stream request. Returns None when nothing was relayed."""
        request = await self.control.wait_for_request()
        if request is None:
            return None

        if not self.accept_policy(request):
            await self.control.reject(request)
            self.logger.info("Rejected stream %s.", request.grant.stream_name)
            return None

        await self.control.accept(request)
        grant = request.grant.accepted_copy()

        async with self.open_endpoints(grant) as (reader, writer, websocket):
            self.logger.info("Starting streaming for stream %s.", grant.stream_name)
            outcome = await relay(reader, writer, websocket, chunk_size=self.chunk_size)

        self.logger.info(
            "Finished streaming for stream %s (%s side closed).",
            grant.stream_name,
            outcome.finished_by,
        )
        return outcome

    @asynccontextmanager
    async def open_endpoints(
        self,
        grant: SessionGrant,
    ) -> AsyncIterator[tuple[asyncio.StreamReader, asyncio.StreamWriter, ClientConnection]]:
        """
        Open the gateway and local connections concurrently.

        If either fails the other is closed before the error propagates. On
        exit the local stream is closed first, then the gateway connection.
        """
        if not grant.accepted:
            raise GrantRejected(grant.stream_name)

        gateway = asyncio.create_task(self.connector.connect(grant.gateway_url, grant.auth_token))
        local = asyncio.create_task(
            open_local_connection(self.target_host, self.target_port, timeout=self.connect_timeout)
        )

        try:
            websocket, (reader, writer) = await asyncio.gather(gateway, local)
        except BaseException:
            gateway.cancel()
            local.cancel()
            await asyncio.wait([gateway, local])
            if succeeded(gateway):
                await gateway.result().close()
            if succeeded(local):
                await close_local(local.result()[1])
            raise

        try:
            yield reader, writer, websocket
        finally:
            await close_local(writer)
            await websocket.close()


def succeeded(task: asyncio.Task) -> bool:
    return task.done() and not task.cancelled() and task.exception() is None
