import socket

import pytest

from cablekit.metrics import Metrics
from cablekit.statsd import StatsdConfig, StatsdWriter, TagStyle, resolve_tag_style


@pytest.fixture
def server():
    sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    sock.bind(("127.0.0.1", 0))
    sock.settimeout(1.0)
    yield sock
    sock.close()


@pytest.fixture
def metrics():
    m = Metrics(None, 0)
    m.register_counter("test_count", "")
    m.register_gauge("test_gauge", "")
    for _ in range(10):
        m.counter("test_count").inc()
    m.gauge("test_gauge").set(123)
    return m


def _address(sock):
    host, port = sock.getsockname()
    return f"{host}:{port}"


def _send(server, metrics, tags=None, **options):
    config = StatsdConfig(host=_address(server), **options)
    writer = StatsdWriter(config, tags)
    writer.run(0)
    try:
        writer.write(metrics)
        return server.recv(1500).decode()
    finally:
        writer.stop()


def test_write_sends_metrics(server, metrics):
    payload = _send(server, metrics)
    assert "anycable_go.test_count:10|c" in payload
    assert "anycable_go.test_gauge:123|g" in payload


def test_write_uses_custom_prefix(server, metrics):
    payload = _send(server, metrics, prefix="ws.")
    assert "ws.test_count:10|c" in payload
    assert "ws.test_gauge:123|g" in payload


def test_datadog_tags(server, metrics):
    payload = _send(server, metrics, {"env": "dev"}, tag_format="datadog")
    assert "anycable_go.test_count:10|c|#env:dev" in payload
    assert "anycable_go.test_gauge:123|g|#env:dev" in payload


def test_multiple_datadog_tags(server, metrics):
    payload = _send(server, metrics, {"env": "dev", "rev": "1.1"}, tag_format="datadog")
    assert "anycable_go.test_count:10|c|#" in payload
    assert "anycable_go.test_gauge:123|g|#" in payload
    assert "env:dev" in payload
    assert "rev:1.1" in payload


def test_influxdb_tags(server, metrics):
    payload = _send(server, metrics, {"env": "dev"}, tag_format="influxdb")
    assert "anycable_go.test_count,env=dev:10|c" in payload
    assert "anycable_go.test_gauge,env=dev:123|g" in payload


def test_graphite_tags(server, metrics):
    payload = _send(server, metrics, {"env": "dev"}, tag_format="graphite")
    assert "anycable_go.test_count;env=dev:10|c" in payload
    assert "anycable_go.test_gauge;env=dev:123|g" in payload


def test_write_after_stop_sends_nothing(server, metrics):
    writer = StatsdWriter(StatsdConfig(host=_address(server)))
    writer.run(0)
    writer.stop()
    writer.write(metrics)
    with pytest.raises(TimeoutError):
        server.recv(1500)


def test_packets_respect_max_size(server):
    m = Metrics(None, 0)
    for i in range(20):
        m.register_counter(f"counter_number_{i}", "")
        m.counter(f"counter_number_{i}").add(i)
    writer = StatsdWriter(StatsdConfig(host=_address(server), max_packet_size=100))
    writer.run(0)
    try:
        writer.write(m)
        lines = []
        while len(lines) < 20:
            packet = server.recv(1500)
            assert len(packet) <= 100
            lines.extend(packet.decode().split("\n"))
    finally:
        writer.stop()
    assert "anycable_go.counter_number_7:7|c" in lines
    assert len(lines) == 20


def test_unknown_tag_format_fails_on_run(server):
    writer = StatsdWriter(StatsdConfig(host=_address(server), tag_format="bogus"), {"a": "b"})
    with pytest.raises(ValueError, match="Unknown StatsD tags format: bogus"):
        writer.run(0)


def test_resolve_tag_style():
    assert resolve_tag_style("influxdb") is TagStyle.INFLUXDB
    with pytest.raises(ValueError):
        resolve_tag_style("prometheus")


def test_config_defaults_and_enabled():
    config = StatsdConfig()
    assert config.prefix == "anycable_go."
    assert config.max_packet_size == 1400
    assert config.tag_format == "datadog"
    assert config.enabled() is False
    config.host = "localhost:8125"
    assert config.enabled() is True