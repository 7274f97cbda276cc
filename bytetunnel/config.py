"""Configuration for bytetunnel components."""

from pydantic_settings import BaseSettings, SettingsConfigDict


class BytetunnelConfig(BaseSettings):
    redis_url: str = "redis://localhost:6379/0"
    gateway_url: str = "ws://127.0.0.1:8000/bytetunnel/streams"

    device_id: str = "iot-device-sample"
    stream_label: str = "ServiceStream"

    target_host: str = "localhost"
    target_port: int = 22
    listen_host: str = "127.0.0.1"
    listen_port: int = 2222

    chunk_size: int = 10240
    connect_timeout_seconds: float = 10.0
    grant_timeout_seconds: float = 30.0
    request_poll_seconds: float = 5.0
    pair_timeout_seconds: float = 30.0

    requests_list_pattern: str = "bytetunnel:{device_id}:requests"
    response_list_pattern: str = "bytetunnel:{request_id}:response"
    grant_key_pattern: str = "bytetunnel:grant:{stream_name}"
    grant_ttl_seconds: int = 300

    log_level: str = "INFO"

    model_config = SettingsConfigDict(env_prefix="bytetunnel_")

    def requests_list(self, device_id: str) -> str:
        return self.requests_list_pattern.format(device_id=device_id)

    def response_list(self, request_id: str) -> str:
        return self.response_list_pattern.format(request_id=request_id)

    def grant_key(self, stream_name: str) -> str:
        return self.grant_key_pattern.format(stream_name=stream_name)

    def stream_url(self, stream_name: str) -> str:
        return f"{self.gateway_url.rstrip('/')}/{stream_name}"
