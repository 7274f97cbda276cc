"""Command line entry point for the device and service sides of a tunnel."""

import argparse
import asyncio
import logging
from collections.abc import Sequence

from redis import asyncio as aioredis

from bytetunnel.config import BytetunnelConfig
from bytetunnel.control import RedisControlPlane
from bytetunnel.device import DeviceStream
from bytetunnel.gateway import GatewayConnector
from bytetunnel.service import ServiceStream

LOG = logging.getLogger("bytetunnel")

NOISY_LOGGERS = ("websockets", "asyncio")


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="bytetunnel")
    parser.add_argument("--redis-url")
    parser.add_argument("--gateway-url")
    parser.add_argument("--device-id")
    parser.add_argument("--log-level")

    roles = parser.add_subparsers(dest="role", required=True)

    device = roles.add_parser("device", help="expose a local TCP target through the gateway")
    device.add_argument("--target-host")
    device.add_argument("--target-port", type=int)

    service = roles.add_parser("service", help="listen locally and tunnel clients to a device")
    service.add_argument("--listen-host")
    service.add_argument("--listen-port", type=int)
    service.add_argument("--stream-label")

    return parser.parse_args(argv)


def build_config(args: argparse.Namespace) -> BytetunnelConfig:
    """Environment settings, overridden by whatever was given on the command line."""
    overrides = {
        key: value
        for key, value in vars(args).items()
        if key != "role" and value is not None
    }
    return BytetunnelConfig(**overrides)


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def build_stream(
    role: str,
    control: RedisControlPlane,
    config: BytetunnelConfig,
) -> DeviceStream | ServiceStream:
    connector = GatewayConnector(open_timeout=config.connect_timeout_seconds)

    if role == "device":
        return DeviceStream(
            control,
            config.target_host,
            config.target_port,
            connector=connector,
            chunk_size=config.chunk_size,
            connect_timeout=config.connect_timeout_seconds,
        )

    return ServiceStream(
        control,
        config.device_id,
        config.listen_port,
        listen_host=config.listen_host,
        stream_label=config.stream_label,
        connector=connector,
        chunk_size=config.chunk_size,
    )


async def run(role: str, config: BytetunnelConfig) -> None:
    redis = aioredis.from_url(config.redis_url)
    try:
        control = RedisControlPlane(redis, device_id=config.device_id, config=config)
        await build_stream(role, control, config).run()
    finally:
        await redis.aclose()


def main(argv: Sequence[str] | None = None) -> int:
    args = parse_args(argv)
    config = build_config(args)
    configure_logging(config.log_level)

    if not config.device_id.strip():
        LOG.critical("Please provide a device identifier.")
        return 1

    try:
        asyncio.run(run(args.role, config))
    except KeyboardInterrupt:
        pass

    LOG.info("Shutdown completed.")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
