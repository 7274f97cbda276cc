"""
bytetunnel - TCP over a WebSocket streaming gateway

Tunnels a TCP byte stream (for example an SSH session) between a device and a
service that cannot reach each other directly. Both sides rendezvous through a
streaming gateway using a per-session URL and bearer token.

The tunnel does NOT inspect payloads - it simply moves bytes.
"""

from bytetunnel.control import DeviceControlPlane, RedisControlPlane, ServiceControlPlane
from bytetunnel.device import DeviceStream, accept_all
from bytetunnel.errors import (
    BytetunnelError,
    ConnectFailed,
    GrantRejected,
    GrantUnavailable,
    RelayIOError,
)
from bytetunnel.gateway import GatewayConnector
from bytetunnel.models import (
    RelayOutcome,
    SessionGrant,
    StreamRequest,
    StreamResponse,
)
from bytetunnel.relay import relay
from bytetunnel.service import ServiceStream

__all__ = [
    # Roles
    "DeviceStream",
    "ServiceStream",
    "accept_all",
    # Engine
    "GatewayConnector",
    "relay",
    # Control-plane
    "DeviceControlPlane",
    "ServiceControlPlane",
    "RedisControlPlane",
    # Models
    "RelayOutcome",
    "SessionGrant",
    "StreamRequest",
    "StreamResponse",
    # Errors
    "BytetunnelError",
    "ConnectFailed",
    "GrantRejected",
    "GrantUnavailable",
    "RelayIOError",
]

__version__ = "0.1.0"
