"""Exceptions raised by bytetunnel."""


class BytetunnelError(Exception):
    """Base class for all bytetunnel errors."""


class GrantUnavailable(BytetunnelError):
    """The control-plane did not answer a grant request in time."""

    def __init__(self, device_id: str, timeout: float) -> None:
        self.device_id = device_id
        self.timeout = timeout
        super().__init__(f"No stream grant for device {device_id} within {timeout}s")


class GrantRejected(BytetunnelError):
    """A stream grant was not accepted."""

    def __init__(self, stream_name: str) -> None:
        self.stream_name = stream_name
        super().__init__(f"Stream {stream_name} was not accepted")


class ConnectFailed(BytetunnelError):
    """Opening the local TCP connection or the gateway connection failed."""

    def __init__(self, target: str, reason: str) -> None:
        self.target = target
        self.reason = reason
        super().__init__(f"Failed to connect to {target}: {reason}")


class RelayIOError(BytetunnelError):
    """One direction of a relay failed with an I/O error."""

    def __init__(self, direction: str) -> None:
        self.direction = direction
        super().__init__(f"Relay failed while copying {direction}")
