"""Configuration helpers for an embedded NATS server."""

from __future__ import annotations

import secrets
from dataclasses import dataclass, field
from urllib.parse import SplitResult, urlsplit

_NANOID_ALPHABET = "_-0123456789abcdefghijklmnopqrstuvwxyzABCDEFGHIJKLMNOPQRSTUVWXYZ"
DEFAULT_SERVICE_ADDR = "nats://127.0.0.1:4222"


@dataclass
class EmbeddedNatsConfig:
    """Settings of the embedded NATS server."""

    debug: bool = False
    trace: bool = False
    name: str = ""
    service_addr: str = DEFAULT_SERVICE_ADDR
    cluster_addr: str = ""
    cluster_name: str = "anycable-cluster"
    gateway_addr: str = ""
    gateway_advertise: str = ""
    gateways: list[str] | None = None
    routes: list[str] | None = None
    jetstream: bool = False
    store_dir: str = ""
    # Seconds to wait for JetStream to become ready
    jetstream_ready_timeout: int = 30


@dataclass
class RemoteGateway:
    """A named remote gateway with its URLs."""

    name: str
    urls: list[SplitResult] = field(default_factory=list)


def _nanoid(size: int) -> str:
    return "".join(secrets.choice(_NANOID_ALPHABET) for _ in range(size))


def _parse_url(raw: str, what: str) -> SplitResult:
    try:
        return urlsplit(raw)
    except ValueError as exc:
        raise ValueError(f"Error parsing {what} URL: {exc}") from exc


def parse_address(addr: str) -> tuple[str, int]:
    """Split a URL into host and port; raises ValueError without a valid port."""
    uri = _parse_url(addr, "address")
    netloc = uri.netloc.rsplit("@", 1)[-1]
    if netloc.startswith("["):
        port_part = netloc.partition("]")[2]
    else:
        port_part = netloc.rpartition(":")[2] if ":" in netloc else ""
    if port_part in ("", ":"):
        raise ValueError("Port cannot be empty")
    try:
        port = uri.port
    except ValueError as exc:
        raise ValueError(f"Port is not valid: {exc}") from exc
    if port is None:
        raise ValueError("Port cannot be empty")
    return uri.hostname or "", port


def parse_routes(routes: list[str] | None) -> list[SplitResult] | None:
    """Parse route URLs; returns None when there are none."""
    if not routes:
        return None
    return [_parse_url(route, "route") for route in routes]


def parse_gateways(gateways: list[str] | None) -> list[RemoteGateway]:
    """Parse ``name:url1,url2`` gateway descriptions."""
    result = []
    for gateway in gateways or []:
        name, sep, addrs = gateway.partition(":")
        if not sep:
            raise ValueError(f"Gateway has unknown format: {gateway}")
        urls = [_parse_url(addr, "gateway") for addr in addrs.split(",")]
        result.append(RemoteGateway(name=name, urls=urls))
    return result


def server_name(config: EmbeddedNatsConfig) -> str:
    """Return the configured server name or derive a unique one from the service address."""
    if config.name:
        return config.name
    base = config.service_addr.replace(":", "-").replace("/", "")
    return f"{base}-{_nanoid(3)}"


def describe(config: EmbeddedNatsConfig, name: str) -> str:
    """Human-readable summary of the server configuration."""
    parts = [f"server_name: {name}"]
    if config.cluster_addr:
        parts.append(f"cluster: {config.cluster_addr}, cluster_name: {config.cluster_name}")
    if config.routes is not None:
        parts.append(f"routes: {','.join(config.routes)}")
    if config.gateway_addr:
        gateways = " ".join(config.gateways or [])
        parts.append(f"gateway: {config.gateway_addr}, gateways: [{gateways}]")
        if config.gateway_advertise:
            parts.append(f"gateway_advertise: {config.gateway_advertise}")
    return ", ".join(parts)