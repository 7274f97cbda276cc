"""
Service side of the tunnel.

Listens on a loopback port and, for every TCP client, asks the control-plane
for a stream to the device, then relays the client through the gateway.
"""

import asyncio
import logging
from dataclasses import dataclass, field

from bytetunnel.control import ServiceControlPlane
from bytetunnel.errors import BytetunnelError, GrantRejected
from bytetunnel.gateway import GatewayConnector
from bytetunnel.local import close_local
from bytetunnel.models import RelayOutcome
from bytetunnel.relay import DEFAULT_CHUNK_SIZE, relay

LOG = logging.getLogger(__name__)


@dataclass
class ServiceStream:
    """
    Accept loop for the service side.

    Every accepted client runs in its own task, so one slow tunnel never
    blocks the listener. Cancel the task running run() to stop; in-flight
    sessions are cancelled and their sockets closed.

    Usage:
        service = ServiceStream(control, "my-device", 2222)
        await service.run()
    """

    control: ServiceControlPlane
    device_id: str
    listen_port: int
    listen_host: str = "127.0.0.1"
    stream_label: str = "ServiceStream"
    connector: GatewayConnector = field(default_factory=GatewayConnector)
    chunk_size: int = DEFAULT_CHUNK_SIZE
    logger: logging.Logger = field(default=LOG, kw_only=True)
    sessions: set[asyncio.Task] = field(default_factory=set, init=False)
    server: asyncio.Server | None = field(default=None, init=False)
    started: asyncio.Event = field(default_factory=asyncio.Event, init=False)

    @property
    def port(self) -> int:
        """The port actually bound, useful when listening on port 0."""
        if self.server is None or not self.server.sockets:
            raise RuntimeError("ServiceStream is not listening")
        return self.server.sockets[0].getsockname()[1]

    async def run(self) -> None:
        self.server = await asyncio.start_server(
            self.handle_connection, self.listen_host, self.listen_port
        )
        self.logger.info("Waiting for TCP clients on %s:%s.", self.listen_host, self.port)
        self.started.set()

        try:
            await self.server.serve_forever()
        finally:
            self.server.close()
            await self.shutdown()
            await self.server.wait_closed()
            self.logger.info("Stopped listening on %s:%s.", self.listen_host, self.listen_port)

    async def shutdown(self) -> None:
        """Cancel all in-flight sessions and wait for them to clean up."""
        sessions = list(self.sessions)
        for task in sessions:
            task.cancel()
        await asyncio.gather(*sessions, return_exceptions=True)

    async def handle_connection(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
    ) -> None:
        """Run one tunnelled session; errors never reach the listener."""
        peer = writer.get_extra_info("peername")
        task = asyncio.current_task()
        if task is not None:
            self.sessions.add(task)

        self.logger.info("Accepted TCP client %s.", peer)
        try:
            await self.run_session(reader, writer)
        except asyncio.CancelledError:
            raise
        except BytetunnelError as exc:
            self.logger.warning("Streaming session for %s ended: %s", peer, exc)
        except Exception:
            self.logger.exception("An error occurred during streaming session for %s.", peer)
        finally:
            await close_local(writer)
            self.sessions.discard(task)

    async def run_session(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
    ) -> RelayOutcome:
        """
        Negotiate a stream for one local client and relay it.

        Raises:
            GrantRejected: If the device did not accept the stream
            ConnectFailed: If the gateway could not be reached
            RelayIOError: If relaying failed
        """
        grant = await self.control.request_grant(self.device_id, self.stream_label)
        self.logger.info(
            "Stream response received: name=%s accepted=%s.", grant.stream_name, grant.accepted
        )
        if not grant.accepted:
            raise GrantRejected(grant.stream_name)

        async with self.connector.session(grant) as websocket:
            self.logger.info("Streaming started for stream %s.", grant.stream_name)
            outcome = await relay(reader, writer, websocket, chunk_size=self.chunk_size)

        self.logger.info(
            "Finished streaming for stream %s (%s side closed).",
            grant.stream_name,
            outcome.finished_by,
        )
        return outcome
