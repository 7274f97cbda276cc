"""Shared test fixtures for bytetunnel tests."""

import asyncio
from collections import defaultdict
from dataclasses import dataclass, field

import pytest_asyncio
from websockets.asyncio.server import Server, ServerConnection, serve

from bytetunnel.models import SessionGrant, StreamRequest


@dataclass
class FakeGateway:
    """A real WebSocket server standing in for the streaming gateway."""

    server: Server
    connections: "asyncio.Queue[ServerConnection]" = field(default_factory=asyncio.Queue)
    authorizations: list[str | None] = field(default_factory=list)

    @property
    def port(self) -> int:
        return self.server.sockets[0].getsockname()[1]

    def url(self, stream_name: str) -> str:
        return f"ws://127.0.0.1:{self.port}/{stream_name}"


@dataclass
class FakeTarget:
    """A TCP server standing in for the device's SSH daemon."""

    server: asyncio.Server
    connections: "asyncio.Queue[tuple[asyncio.StreamReader, asyncio.StreamWriter]]" = field(
        default_factory=asyncio.Queue
    )

    @property
    def port(self) -> int:
        return self.server.sockets[0].getsockname()[1]


@pytest_asyncio.fixture
async def gateway():
    connections: asyncio.Queue[ServerConnection] = asyncio.Queue()
    authorizations: list[str | None] = []

    async def handler(connection: ServerConnection) -> None:
        authorizations.append(connection.request.headers.get("Authorization"))
        await connections.put(connection)
        await connection.wait_closed()

    server = await serve(handler, "127.0.0.1", 0, compression=None)
    try:
        yield FakeGateway(server, connections, authorizations)
    finally:
        server.close()
        await server.wait_closed()


@pytest_asyncio.fixture
async def target():
    connections: asyncio.Queue[tuple[asyncio.StreamReader, asyncio.StreamWriter]] = asyncio.Queue()
    writers: list[asyncio.StreamWriter] = []

    async def handler(reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        writers.append(writer)
        await connections.put((reader, writer))

    server = await asyncio.start_server(handler, "127.0.0.1", 0)
    try:
        yield FakeTarget(server, connections)
    finally:
        for writer in writers:
            writer.close()
        server.close()
        await server.wait_closed()


@pytest_asyncio.fixture
async def local_pair(target):
    """A connected TCP pair: (reader, writer) for the relay and the peer's (reader, writer)."""
    reader, writer = await asyncio.open_connection("127.0.0.1", target.port)
    peer_reader, peer_writer = await target.connections.get()
    try:
        yield reader, writer, peer_reader, peer_writer
    finally:
        writer.close()


def make_request(url: str, token: str = "tok1", stream_name: str = "s1") -> StreamRequest:
    return StreamRequest(
        device_id="iot-device-sample",
        stream_label="ServiceStream",
        grant=SessionGrant(gateway_url=url, auth_token=token, stream_name=stream_name),
    )


class FakeDeviceControl:
    """Hands out queued stream requests and records the answers."""

    def __init__(self, *requests: StreamRequest | None) -> None:
        self.requests: asyncio.Queue[StreamRequest | None] = asyncio.Queue()
        for request in requests:
            self.requests.put_nowait(request)
        self.accepted: list[StreamRequest] = []
        self.rejected: list[StreamRequest] = []
        self.events: list[str] = []

    async def wait_for_request(self) -> StreamRequest | None:
        request = await self.requests.get()
        if isinstance(request, BaseException):
            raise request
        return request

    async def accept(self, request: StreamRequest) -> None:
        self.events.append("accept")
        self.accepted.append(request)

    async def reject(self, request: StreamRequest) -> None:
        self.events.append("reject")
        self.rejected.append(request)


class FakeServiceControl:
    """Returns prepared grants (or raises prepared errors) in order."""

    def __init__(self, *grants: SessionGrant | BaseException) -> None:
        self.grants = list(grants)
        self.calls: list[tuple[str, str]] = []

    async def request_grant(self, device_id: str, stream_label: str) -> SessionGrant:
        self.calls.append((device_id, stream_label))
        grant = self.grants.pop(0)
        if isinstance(grant, BaseException):
            raise grant
        return grant


class FakeRedis:
    """The handful of async Redis commands bytetunnel uses, kept in memory."""

    def __init__(self) -> None:
        self.lists: defaultdict[str, list[bytes]] = defaultdict(list)
        self.values: dict[str, bytes] = {}
        self.expiries: dict[str, int] = {}
        self.changed = asyncio.Condition()

    async def set(self, name: str, value: str, ex: int | None = None) -> bool:
        self.values[name] = value.encode("utf-8")
        if ex is not None:
            self.expiries[name] = ex
        return True

    async def get(self, name: str) -> bytes | None:
        return self.values.get(name)

    async def delete(self, *names: str) -> int:
        removed = 0
        for name in names:
            self.expiries.pop(name, None)
            removed += self.values.pop(name, None) is not None
            removed += bool(self.lists.pop(name, None))
        return removed

    async def lpush(self, name: str, *values: str) -> int:
        async with self.changed:
            for value in values:
                self.lists[name].insert(0, value.encode("utf-8"))
            self.changed.notify_all()
        return len(self.lists[name])

    async def lrem(self, name: str, count: int, value: str) -> int:
        encoded = value.encode("utf-8")
        items = self.lists[name]
        removed = 0
        for index in [i for i, item in enumerate(items) if item == encoded][: count or None]:
            del items[index - removed]
            removed += 1
        return removed

    async def expire(self, name: str, seconds: int) -> bool:
        self.expiries[name] = seconds
        return True

    async def blpop(self, keys: list[str], timeout: float = 0) -> tuple[bytes, bytes] | None:
        return await self.pop(keys, timeout, index=0)

    async def brpop(self, keys: list[str], timeout: float = 0) -> tuple[bytes, bytes] | None:
        return await self.pop(keys, timeout, index=-1)

    async def pop(self, keys: list[str], timeout: float, index: int) -> tuple[bytes, bytes] | None:
        async def wait() -> tuple[bytes, bytes]:
            async with self.changed:
                while True:
                    for key in keys:
                        if self.lists[key]:
                            return key.encode("utf-8"), self.lists[key].pop(index)
                    await self.changed.wait()

        try:
            return await asyncio.wait_for(wait(), timeout=timeout or None)
        except TimeoutError:
            return None
