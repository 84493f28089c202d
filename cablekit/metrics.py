"""Metrics registry with rotation, log printing and Prometheus export."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Any, Protocol
from urllib.parse import urlsplit

from cablekit.counters import Counter, Gauge
from cablekit.statsd import StatsdConfig

logger = logging.getLogger("cablekit.metrics")

DEFAULT_ROTATE_INTERVAL = 15
DEFAULT_HOST = "localhost"
PROMETHEUS_NAMESPACE = "anycable_go"


class MetricsError(Exception):
    """Raised when metrics cannot be configured."""


class IntervalWriter(Protocol):
    def run(self, interval: int) -> None: ...

    def stop(self) -> None: ...

    def write(self, metrics: Metrics) -> None: ...


class Instrumenter(Protocol):
    def counter_increment(self, name: str) -> None: ...

    def counter_add(self, name: str, val: int) -> None: ...

    def gauge_increment(self, name: str) -> None: ...

    def gauge_decrement(self, name: str) -> None: ...

    def gauge_set(self, name: str, val: int) -> None: ...

    def register_counter(self, name: str, desc: str) -> None: ...

    def register_gauge(self, name: str, desc: str) -> None: ...


@dataclass
class MetricsConfig:
    """Metrics settings."""

    log: bool = False
    log_interval: int = 0  # deprecated
    rotate_interval: int = DEFAULT_ROTATE_INTERVAL
    log_formatter: str = ""
    log_filter: list[str] | None = None
    http: str = ""
    host: str = ""
    port: int = 0
    tags: dict[str, str] | None = None
    statsd: StatsdConfig = field(default_factory=StatsdConfig)

    def log_enabled(self) -> bool:
        return self.log or self.log_formatter_enabled()

    def http_enabled(self) -> bool:
        return self.http != ""

    def log_formatter_enabled(self) -> bool:
        return self.log_formatter != ""


def _to_prom_tags(tags: dict[str, str] | None) -> str:
    if tags is None:
        return ""
    return "{" + ", ".join(f'{k}="{v}"' for k, v in tags.items()) + "}"


def _make_handler(metrics: Metrics, path: str) -> type[BaseHTTPRequestHandler]:
    class _PrometheusHandler(BaseHTTPRequestHandler):
        def do_GET(self) -> None:
            if urlsplit(self.path).path != path:
                self.send_error(404)
                return
            body = metrics.prometheus().encode("utf-8")
            self.send_response(200)
            self.send_header("Content-Type", "text/plain; charset=utf-8")
            self.send_header("Content-Length", str(len(body)))
            self.end_headers()
            self.wfile.write(body)

        def log_message(self, format: str, *args: Any) -> None:
            logger.debug(format, *args)

    return _PrometheusHandler


class Metrics:
    """Registry of counters and gauges, periodically rotated and written out."""

    def __init__(
        self,
        writers: list[IntervalWriter] | None = None,
        rotate_interval: float = DEFAULT_ROTATE_INTERVAL,
    ) -> None:
        self._writers: list[IntervalWriter] = list(writers or [])
        self.rotate_interval = rotate_interval
        self.tags: dict[str, str] | None = None
        self.http_path = ""
        self._counters: dict[str, Counter] = {}
        self._gauges: dict[str, Gauge] = {}
        self._lock = threading.RLock()
        self._shutdown = threading.Event()
        self._closed = False
        self._server: ThreadingHTTPServer | None = None
        self._server_thread: threading.Thread | None = None

    @property
    def writers(self) -> tuple[IntervalWriter, ...]:
        return tuple(self._writers)

    @property
    def http_address(self) -> tuple[str, int] | None:
        """Host and port of the metrics HTTP server, if one is configured."""
        if self._server is None:
            return None
        host, port = self._server.server_address[:2]
        return str(host), int(port)

    def _attach_http_server(self, host: str, port: int, path: str) -> None:
        self.http_path = path
        self._server = ThreadingHTTPServer((host, port), _make_handler(self, path))
        self._server.daemon_threads = True

    def default_tags(self, tags: dict[str, str] | None) -> None:
        self.tags = tags

    def register_writer(self, writer: IntervalWriter) -> None:
        self._writers.append(writer)

    def run(self) -> None:
        """Serve HTTP metrics if configured and rotate until shut down."""
        if self._closed:
            return

        if self._server is not None:
            host, port = self.http_address or ("", 0)
            logger.info("Serve metrics at %s:%s%s", host, port, self.http_path)
            self._server_thread = threading.Thread(
                target=self._server.serve_forever, name="metrics-http", daemon=True
            )
            self._server_thread.start()

        if not self._writers:
            logger.debug("No metrics writers. Disable metrics rotation")
            return

        if not self.rotate_interval:
            self.rotate_interval = DEFAULT_ROTATE_INTERVAL

        for writer in self._writers:
            writer.run(int(self.rotate_interval))

        while not self._shutdown.wait(self.rotate_interval):
            logger.debug("Rotate metrics (interval %ss)", self.rotate_interval)
            self.rotate()
            for writer in self._writers:
                try:
                    writer.write(self)
                except Exception as exc:
                    logger.error("Metrics writer failed to write: %s", exc)

    def shutdown(self) -> None:
        """Stop rotation, the HTTP server and all writers; safe to call twice."""
        with self._lock:
            if self._closed:
                return
            self._closed = True

        self._shutdown.set()

        if self._server is not None:
            if self._server_thread is not None:
                self._server.shutdown()
                self._server_thread.join()
            self._server.server_close()

        for writer in self._writers:
            writer.stop()

    def register_counter(self, name: str, desc: str) -> None:
        with self._lock:
            self._counters[name] = Counter(name, desc)

    def register_gauge(self, name: str, desc: str) -> None:
        with self._lock:
            self._gauges[name] = Gauge(name, desc)

    def counter(self, name: str) -> Counter:
        """Return a registered counter; raises KeyError for unknown names."""
        return self._counters[name]

    def gauge(self, name: str) -> Gauge:
        """Return a registered gauge; raises KeyError for unknown names."""
        return self._gauges[name]

    def counter_increment(self, name: str) -> None:
        self._counters[name].inc()

    def counter_add(self, name: str, val: int) -> None:
        self._counters[name].add(val)

    def gauge_increment(self, name: str) -> None:
        self._gauges[name].inc()

    def gauge_decrement(self, name: str) -> None:
        self._gauges[name].dec()

    def gauge_set(self, name: str, val: int) -> None:
        self._gauges[name].set(val)

    def counters(self) -> list[Counter]:
        with self._lock:
            return list(self._counters.values())

    def gauges(self) -> list[Gauge]:
        with self._lock:
            return list(self._gauges.values())

    def interval_snapshot(self) -> dict[str, int]:
        """Counter deltas of the last interval and current gauge values."""
        with self._lock:
            snapshot = {name: c.interval_value for name, c in self._counters.items()}
            snapshot.update((name, g.value) for name, g in self._gauges.items())
        return snapshot

    def rotate(self) -> None:
        with self._lock:
            for counter in self._counters.values():
                counter.update_delta()

    def prometheus(self) -> str:
        """Render all metrics in the Prometheus text format."""
        tags = _to_prom_tags(self.tags)
        parts = []
        for metric, kind in [(c, "counter") for c in self.counters()] + [
            (g, "gauge") for g in self.gauges()
        ]:
            name = f"{PROMETHEUS_NAMESPACE}_{metric.name}"
            parts.append(
                f"\n# HELP {name} {metric.desc}\n"
                f"# TYPE {name} {kind}\n"
                f"{name}{tags} {metric.value}\n"
            )
        return "".join(parts)


class NoopMetrics:
    """An instrumenter that records no values, only how many calls it dropped."""

    def __init__(self) -> None:
        self.ignored_calls = 0

    def _ignore(self) -> None:
        self.ignored_calls += 1

    def counter_increment(self, name: str) -> None:
        self._ignore()

    def counter_add(self, name: str, val: int) -> None:
        self._ignore()

    def gauge_increment(self, name: str) -> None:
        self._ignore()

    def gauge_decrement(self, name: str) -> None:
        self._ignore()

    def gauge_set(self, name: str, val: int) -> None:
        self._ignore()

    def register_counter(self, name: str, desc: str) -> None:
        self._ignore()

    def register_gauge(self, name: str, desc: str) -> None:
        self._ignore()


class BasePrinter:
    """Logs interval snapshots as structured key=value lines."""

    def __init__(self, filter_list: list[str] | None = None) -> None:
        self.filter: set[str] | None = set(filter_list) if filter_list is not None else None
        self.running = False

    def run(self, interval: int) -> None:
        self.running = True
        if self.filter is not None:
            logger.info(
                "Log metrics every %ds (only selected fields: %s)",
                interval,
                ", ".join(sorted(self.filter)),
            )
        else:
            logger.info("Log metrics every %ds", interval)

    def stop(self) -> None:
        """Mark the printer as stopped."""
        self.running = False

    def write(self, metrics: Metrics) -> None:
        self.print_snapshot(metrics.interval_snapshot())

    def print_snapshot(self, snapshot: dict[str, int]) -> dict[str, Any]:
        """Log the (filtered) snapshot and return the fields that were logged."""
        fields: dict[str, Any] = {"context": "metrics"}
        for key, value in snapshot.items():
            if self.filter is None or key in self.filter:
                fields[key] = value
        logger.info(" ".join(f"{k}={v}" for k, v in fields.items()))
        return fields


def metrics_from_config(config: MetricsConfig) -> Metrics:
    """Build a Metrics instance; binds the HTTP server when one is configured."""
    writers: list[IntervalWriter] = []

    if config.log_enabled():
        if config.log_formatter_enabled():
            raise MetricsError(
                f"Custom metrics log formatters are not supported: {config.log_formatter}"
            )
        writers.append(BasePrinter(config.log_filter))

    instance = Metrics(writers, config.rotate_interval)

    if config.tags is not None:
        instance.tags = config.tags

    if config.http_enabled():
        instance._attach_http_server(config.host or DEFAULT_HOST, config.port, config.http)

    return instance