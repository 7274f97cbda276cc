"""Data models exchanged between the control-plane and the tunnel endpoints."""

import time
from typing import Literal
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field


class SessionGrant(BaseModel):
    """Gateway URL and bearer token authorizing one relay session."""

    model_config = ConfigDict(frozen=True)

    gateway_url: str
    auth_token: str
    stream_name: str
    accepted: bool = False

    def accepted_copy(self) -> "SessionGrant":
        return self.model_copy(update={"accepted": True})


class StreamRequest(BaseModel):
    """A grant pushed by the control-plane to a device, waiting for an answer."""

    model_config = ConfigDict(frozen=True)

    request_id: str = Field(default_factory=lambda: uuid4().hex)
    device_id: str
    stream_label: str
    grant: SessionGrant
    expires_at: float | None = None

    def expired(self, now: float | None = None) -> bool:
        if self.expires_at is None:
            return False
        return (time.time() if now is None else now) >= self.expires_at


class StreamResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    request_id: str
    accepted: bool


class RelayOutcome(BaseModel):
    """How a finished relay ended and how many bytes went each way."""

    model_config = ConfigDict(frozen=True)

    finished_by: Literal["local", "remote"]
    bytes_to_local: int = 0
    bytes_to_remote: int = 0
