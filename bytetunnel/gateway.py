"""
Gateway Session Factory

Opens authenticated WebSocket connections to the streaming gateway. A
connection is only ever opened for a grant that has been accepted.
"""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field

from websockets.asyncio.client import ClientConnection, connect
from websockets.exceptions import WebSocketException

from bytetunnel.errors import ConnectFailed, GrantRejected
from bytetunnel.models import SessionGrant

LOG = logging.getLogger(__name__)


@dataclass
class GatewayConnector:
    """
    Creates WebSocket connections with the Authorization header the gateway expects.

    Usage:
        connector = GatewayConnector()
        async with connector.session(grant) as websocket:
            ...
    """

    open_timeout: float | None = 10.0
    close_timeout: float | None = 10.0
    max_size: int | None = 2**20
    logger: logging.Logger = field(default=LOG, kw_only=True)

    async def connect(self, url: str, token: str) -> ClientConnection:
        """
        Connect to the streaming gateway.

        No retries are attempted; retrying is up to the caller.

        Raises:
            ConnectFailed: If the handshake is rejected, the URL is invalid,
                the network is unreachable or the handshake times out
        """
        self.logger.debug("Try to connect to %s", url)
        try:
            return await connect(
                url,
                additional_headers={"Authorization": f"Bearer {token}"},
                compression=None,
                open_timeout=self.open_timeout,
                close_timeout=self.close_timeout,
                max_size=self.max_size,
            )
        except TimeoutError as exc:
            raise ConnectFailed(url, "handshake timed out") from exc
        except (OSError, WebSocketException) as exc:
            raise ConnectFailed(url, str(exc) or type(exc).__name__) from exc

    @asynccontextmanager
    async def session(self, grant: SessionGrant) -> AsyncIterator[ClientConnection]:
        """Connect for an accepted grant and close with normal closure on exit."""
        if not grant.accepted:
            raise GrantRejected(grant.stream_name)

        websocket = await self.connect(grant.gateway_url, grant.auth_token)
        try:
            yield websocket
        finally:
            await websocket.close()
            self.logger.debug("Closed gateway connection for stream %s", grant.stream_name)
