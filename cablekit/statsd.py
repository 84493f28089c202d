"""Periodic export of metrics to a StatsD server over UDP."""

from __future__ import annotations

import logging
import socket
import threading
from collections.abc import Iterable, Iterator
from dataclasses import dataclass
from enum import Enum
from typing import Any

logger = logging.getLogger("cablekit.statsd")


class TagStyle(Enum):
    """How tags are attached to a StatsD metric line."""

    DATADOG = "datadog"
    INFLUXDB = "influxdb"
    GRAPHITE = "graphite"


def resolve_tag_style(name: str) -> TagStyle:
    """Return the tag style called ``name``; raises ValueError for unknown styles."""
    try:
        return TagStyle(name)
    except ValueError:
        raise ValueError(f"Unknown StatsD tags format: {name}") from None


@dataclass
class StatsdConfig:
    """Settings of the StatsD exporter."""

    host: str = ""
    prefix: str = "anycable_go."
    tag_format: str = "datadog"
    max_packet_size: int = 1400

    def enabled(self) -> bool:
        return self.host != ""


def _split_host_port(addr: str) -> tuple[str, int]:
    host, sep, port = addr.rpartition(":")
    if not sep or not port.isdigit():
        raise ValueError(f"Invalid StatsD address: {addr}")
    return host.strip("[]") or "localhost", int(port)


def _format_line(
    name: str,
    value: int,
    kind: str,
    style: TagStyle | None,
    tags: dict[str, str] | None,
) -> str:
    if not tags or style is None:
        return f"{name}:{value}|{kind}"
    if style is TagStyle.DATADOG:
        rendered = ",".join(f"{k}:{v}" for k, v in tags.items())
        return f"{name}:{value}|{kind}|#{rendered}"
    separator = "," if style is TagStyle.INFLUXDB else ";"
    rendered = "".join(f"{separator}{k}={v}" for k, v in tags.items())
    return f"{name}{rendered}:{value}|{kind}"


def _packets(lines: Iterable[str], max_size: int) -> Iterator[bytes]:
    """Group newline-separated lines into datagrams no larger than ``max_size``."""
    buf: list[bytes] = []
    size = 0
    for line in lines:
        data = line.encode("utf-8")
        extra = len(data) + (1 if buf else 0)
        if buf and size + extra > max_size:
            yield b"\n".join(buf)
            buf = []
            size = 0
            extra = len(data)
        buf.append(data)
        size += extra
    if buf:
        yield b"\n".join(buf)


class StatsdWriter:
    """Sends counter deltas and gauge values to StatsD on every write."""

    def __init__(self, config: StatsdConfig, tags: dict[str, str] | None = None) -> None:
        self.config = config
        self.tags = tags
        self._sock: socket.socket | None = None
        self._style: TagStyle | None = None
        self._lock = threading.Lock()

    def run(self, interval: int) -> None:
        """Open the UDP socket; raises ValueError for a bad address or tag format."""
        style = None
        tags_info = ""
        if self.tags is not None:
            style = resolve_tag_style(self.config.tag_format)
            tags_info = f", tags={self.tags}, style={self.config.tag_format}"

        host, port = _split_host_port(self.config.host)
        family, kind, proto, _, sockaddr = socket.getaddrinfo(
            host, port, type=socket.SOCK_DGRAM
        )[0]
        sock = socket.socket(family, kind, proto)
        sock.connect(sockaddr)

        with self._lock:
            self._sock = sock
            self._style = style

        logger.info(
            "Send statsd metrics to %s with every %ss (prefix=%s%s)",
            self.config.host,
            interval,
            self.config.prefix,
            tags_info,
        )

    def stop(self) -> None:
        with self._lock:
            if self._sock is not None:
                self._sock.close()
            self._sock = None

    def write(self, metrics: Any) -> None:
        """Send the current interval values of ``metrics``; does nothing when stopped."""
        with self._lock:
            if self._sock is None:
                return
            prefix = self.config.prefix
            lines = [
                _format_line(
                    prefix + counter.name, counter.interval_value, "c", self._style, self.tags
                )
                for counter in metrics.counters()
            ]
            lines.extend(
                _format_line(prefix + gauge.name, gauge.value, "g", self._style, self.tags)
                for gauge in metrics.gauges()
            )
            for packet in _packets(lines, self.config.max_packet_size):
                try:
                    self._sock.send(packet)
                except OSError as exc:
                    logger.error("Error sending statsd packet: %s", exc)