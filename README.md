# cablekit

Building blocks for a real-time, channel-based pub/sub server:

- `cablekit.hub`: a sharded `Hub` that tracks sessions, their stream
  subscriptions and identifiers, broadcasts `StreamMessage`s to subscribers
  through background `Gate` threads and runs remote disconnects.
- `cablekit.encoders`: a `JSONEncoder` for outgoing replies and incoming
  commands, `to_json`, and `CachedEncodedMessage`, which encodes one
  broadcast only once per encoder.
- `cablekit.messages`: the message and result types (`Reply`,
  `StreamMessage`, `DisconnectMessage`, `PingMessage`, `ConnectResult`,
  `CommandResult`, `SessionEnv`, ...).
- `cablekit.counters` and `cablekit.metrics`: thread-safe `Counter` and
  `Gauge` with interval deltas, a `Metrics` registry with rotation, a
  Prometheus text exporter and an optional HTTP endpoint
  (`metrics_from_config`), a logging `BasePrinter` and a `NoopMetrics`
  stand-in.
- `cablekit.statsd`: `StatsdWriter`, which sends counter deltas and gauge
  values over UDP with Datadog, InfluxDB or Graphite tag styles.
- `cablekit.identity`: `JWTIdentifier`, which authenticates a connection from
  an HMAC-signed token in an `x-<param>` header or a query parameter, and
  `IdentifiableController`, which puts an identifier in front of any
  controller.
- `cablekit.gobench`: a self-contained benchmark `Controller` with `echo` and
  `broadcast` actions.
- `cablekit.config`: the server `Config` with `fly`, `heroku` and `broker`
  presets, detected from the environment or chosen through `user_presets`.
- `cablekit.enats`: configuration helpers for an embedded NATS server:
  address, route and gateway parsing, server naming and a description string.

## Installation

```
pip install cablekit
```

## Example

A session needs `id` and `identifiers` attributes and `send` and
`disconnect_with_message` methods. `Hub.run` blocks, so run it in a thread:

```python
import threading

from cablekit.encoders import to_json
from cablekit.hub import Hub


class Session:
    def __init__(self, sid):
        self.id = sid
        self.identifiers = sid

    def send(self, msg):
        print(to_json(msg))

    def disconnect_with_message(self, msg, code):
        print("disconnect", code)


hub = Hub(2)
threading.Thread(target=hub.run, daemon=True).start()

session = Session("42")
hub.add_session(session)
hub.subscribe_session(session, "chat", "chat_channel")
hub.broadcast("chat", '"hello"')
# {"identifier":"chat_channel","message":"hello"}

hub.shutdown()
```

Metrics in Prometheus format:

```python
from cablekit.metrics import Metrics

metrics = Metrics([], 15)
metrics.register_counter("messages_total", "Total messages")
metrics.counter("messages_total").inc()
print(metrics.prometheus())
```

Presets:

```python
from cablekit.config import Config

config = Config(user_presets=["broker"])
config.load_presets()
print(config.broker_adapter, config.broadcast_adapter)  # memory http
```

## What it does not do

cablekit has no WebSocket or SSE server, no command-line program, no RPC
client and no Redis or NATS pub/sub or broadcast adapters; the adapter names
in `Config` are plain settings. `cablekit.enats` only prepares settings for
an embedded NATS server and does not start one. Custom metrics log
formatters are not supported: `metrics_from_config` raises `MetricsError`
when `log_formatter` is set.

## Running the tests

```
pip install -e ".[test]"
pytest
```