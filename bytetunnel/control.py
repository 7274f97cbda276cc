"""
Control-plane

Devices and services never talk to each other directly; they exchange stream
grants through a control-plane. The protocols below are what the tunnel
endpoints consume. RedisControlPlane implements both on top of Redis lists.
"""

import logging
import secrets
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Protocol
from uuid import uuid4

if TYPE_CHECKING:
    from redis.asyncio import Redis

from bytetunnel.config import BytetunnelConfig
from bytetunnel.errors import GrantUnavailable
from bytetunnel.models import SessionGrant, StreamRequest, StreamResponse

LOG = logging.getLogger(__name__)


class DeviceControlPlane(Protocol):
    async def wait_for_request(self) -> StreamRequest | None: ...

    async def accept(self, request: StreamRequest) -> None: ...

    async def reject(self, request: StreamRequest) -> None: ...


class ServiceControlPlane(Protocol):
    async def request_grant(self, device_id: str, stream_label: str) -> SessionGrant: ...


@dataclass
class RedisControlPlane:
    """
    Control-plane backed by Redis lists.

    A service pushes a StreamRequest onto the device's request list and blocks
    on a per-request response list. The device pops requests and answers with
    a StreamResponse. Each token is stored under its own expiring key so the
    gateway can check it.

    Usage:
        control = RedisControlPlane(redis, device_id="my-device")
        grant = await control.request_grant("my-device", "ServiceStream")
    """

    redis: "Redis"
    device_id: str | None = None
    config: BytetunnelConfig = field(default_factory=BytetunnelConfig)

    async def request_grant(self, device_id: str, stream_label: str) -> SessionGrant:
        """
        Ask a device to open a stream and wait for its answer.

        Unless the device accepts, the request and the token are withdrawn
        before returning, including on timeout and cancellation.

        Raises:
            GrantUnavailable: If the device does not answer within the grant timeout
        """
        stream_name = f"{stream_label}-{uuid4().hex}"
        grant = SessionGrant(
            gateway_url=self.config.stream_url(stream_name),
            auth_token=secrets.token_urlsafe(32),
            stream_name=stream_name,
        )
        request = StreamRequest(
            device_id=device_id,
            stream_label=stream_label,
            grant=grant,
            expires_at=time.time() + self.config.grant_timeout_seconds,
        )
        requests_list = self.config.requests_list(device_id)
        request_data = request.model_dump_json()
        accepted = False

        await self.redis.set(
            self.config.grant_key(stream_name),
            grant.auth_token,
            ex=self.config.grant_ttl_seconds,
        )
        try:
            await self.redis.lpush(requests_list, request_data)
            LOG.debug("Requested stream %s from device %s", stream_name, device_id)

            result = await self.redis.blpop(
                [self.config.response_list(request.request_id)],
                timeout=self.config.grant_timeout_seconds,
            )
            if result is None:
                LOG.warning("Timeout waiting for device %s to answer %s", device_id, stream_name)
                raise GrantUnavailable(device_id, self.config.grant_timeout_seconds)

            _, response_data = result
            accepted = StreamResponse.model_validate_json(response_data).accepted
        finally:
            if not accepted:
                await self.withdraw(requests_list, request_data, stream_name)

        return grant.accepted_copy() if accepted else grant

    async def withdraw(self, requests_list: str, request_data: str, stream_name: str) -> None:
        """Remove an unanswered request and its token."""
        await self.redis.lrem(requests_list, 1, request_data)
        await self.redis.delete(self.config.grant_key(stream_name))
        LOG.debug("Withdrew stream %s", stream_name)

    async def wait_for_request(self) -> StreamRequest | None:
        """
        Block until a live stream request arrives.

        Returns None when the poll interval passes. Requests whose deadline
        has passed are dropped without an answer.
        """
        if self.device_id is None:
            raise ValueError("RedisControlPlane needs a device_id to wait for requests")

        while True:
            result = await self.redis.brpop(
                [self.config.requests_list(self.device_id)],
                timeout=self.config.request_poll_seconds,
            )
            if result is None:
                return None

            _, request_data = result
            request = StreamRequest.model_validate_json(request_data)
            if not request.expired():
                return request

            LOG.debug("Dropping expired request %s", request.request_id)

    async def accept(self, request: StreamRequest) -> None:
        await self.respond(request, accepted=True)

    async def reject(self, request: StreamRequest) -> None:
        await self.respond(request, accepted=False)

    async def respond(self, request: StreamRequest, *, accepted: bool) -> None:
        response = StreamResponse(request_id=request.request_id, accepted=accepted)
        response_list = self.config.response_list(request.request_id)
        await self.redis.lpush(response_list, response.model_dump_json())
        await self.redis.expire(response_list, int(self.config.grant_timeout_seconds) + 1)
        LOG.debug("Answered request %s (accepted=%s)", request.request_id, accepted)
