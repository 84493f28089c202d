import pytest

from cablekit.enats import (
    EmbeddedNatsConfig,
    describe,
    parse_address,
    parse_gateways,
    parse_routes,
    server_name,
)


def test_defaults():
    config = EmbeddedNatsConfig()
    assert config.cluster_name == "anycable-cluster"
    assert config.jetstream_ready_timeout == 30
    assert config.routes is None


def test_parse_address():
    assert parse_address("nats://0.0.0.0:5222") == ("0.0.0.0", 5222)


def test_parse_address_without_port():
    with pytest.raises(ValueError, match="Port cannot be empty"):
        parse_address("nats://localhost")


def test_parse_address_invalid_port():
    with pytest.raises(ValueError, match="Port is not valid"):
        parse_address("nats://localhost:abc")


def test_parse_routes():
    assert parse_routes([]) is None
    assert parse_routes(None) is None
    routes = parse_routes(["nats://a.internal:5222", "nats://b.internal:5223"])
    assert [r.hostname for r in routes] == ["a.internal", "b.internal"]
    assert [r.port for r in routes] == [5222, 5223]


def test_parse_gateways():
    gateways = parse_gateways(["east:nats://e1:7222,nats://e2:7222", "west:nats://w1:7222"])
    assert [g.name for g in gateways] == ["east", "west"]
    assert [u.hostname for u in gateways[0].urls] == ["e1", "e2"]
    assert len(gateways[1].urls) == 1


def test_parse_gateways_bad_format():
    with pytest.raises(ValueError, match="unknown format"):
        parse_gateways(["bogus"])


def test_server_name_uses_configured_name():
    assert server_name(EmbeddedNatsConfig(name="node-a")) == "node-a"


def test_server_name_derived_from_service_addr():
    name = server_name(EmbeddedNatsConfig())
    assert name.startswith("nats-127.0.0.1-4222-")
    assert len(name) == len("nats-127.0.0.1-4222-") + 3
    assert ":" not in name and "/" not in name


def test_describe_minimal():
    assert describe(EmbeddedNatsConfig(), "srv") == "server_name: srv"


def test_describe_full():
    config = EmbeddedNatsConfig(
        cluster_addr="nats://0.0.0.0:5222",
        cluster_name="c1",
        routes=["r1", "r2"],
        gateway_addr="nats://0.0.0.0:7222",
        gateways=["a:x", "b:y"],
        gateway_advertise="adv:7222",
    )
    result = describe(config, "srv")
    assert result.startswith("server_name: srv, cluster: nats://0.0.0.0:5222, cluster_name: c1")
    assert ", routes: r1,r2" in result
    assert ", gateway: nats://0.0.0.0:7222, gateways: [a:x b:y]" in result
    assert result.endswith(", gateway_advertise: adv:7222")