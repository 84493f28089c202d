"""Application configuration and deployment presets."""

from __future__ import annotations

import logging
import os
import secrets
from dataclasses import dataclass, field

from cablekit.enats import DEFAULT_SERVICE_ADDR, EmbeddedNatsConfig
from cablekit.identity import JWTConfig
from cablekit.metrics import MetricsConfig

logger = logging.getLogger("cablekit.config")

_NANOID_ALPHABET = "_-0123456789abcdefghijklmnopqrstuvwxyzABCDEFGHIJKLMNOPQRSTUVWXYZ"


class PresetError(Exception):
    """Raised when a preset cannot be applied."""


def _nanoid(size: int) -> str:
    return "".join(secrets.choice(_NANOID_ALPHABET) for _ in range(size))


@dataclass
class NatsConfig:
    """Connection settings of a NATS pub/sub client."""

    servers: str = DEFAULT_SERVICE_ADDR
    channel: str = "__anycable__"
    dont_randomize_servers: bool = False
    max_reconnect_attempts: int = 5
    # Internal channel name for node-to-node broadcasting
    internal_channel: str = "__anycable_internal__"


@dataclass
class RedisConfig:
    """Redis connection settings."""

    url: str = "redis://localhost:6379/5"


@dataclass
class RPCConfig:
    """RPC backend settings."""

    host: str = "localhost:50051"


@dataclass
class HTTPBroadcastConfig:
    """Settings of the HTTP broadcasting endpoint."""

    port: int = 8090
    path: str = "/_broadcast"


@dataclass
class Config:
    """Main application configuration."""

    rpc: RPCConfig = field(default_factory=RPCConfig)
    broker_adapter: str = ""
    redis: RedisConfig = field(default_factory=RedisConfig)
    http_broadcast: HTTPBroadcastConfig = field(default_factory=HTTPBroadcastConfig)
    nats: NatsConfig = field(default_factory=NatsConfig)
    host: str = "localhost"
    port: int = 8080
    max_conn: int = 0
    broadcast_adapter: str = "redis"
    pubsub_adapter: str = ""
    path: list[str] = field(default_factory=lambda: ["/cable"])
    health_path: str = "/health"
    headers: list[str] = field(default_factory=lambda: ["cookie"])
    cookies: list[str] = field(default_factory=list)
    max_message_size: int = 0
    disconnector_disabled: bool = False
    log_level: str = "info"
    log_format: str = "text"
    debug: bool = False
    metrics: MetricsConfig = field(default_factory=MetricsConfig)
    jwt: JWTConfig = field(default_factory=JWTConfig)
    embed_nats: bool = False
    embedded_nats: EmbeddedNatsConfig = field(default_factory=EmbeddedNatsConfig)
    user_presets: list[str] | None = None

    def presets(self) -> list[str]:
        """Explicitly chosen presets, or those detected from the environment."""
        if self.user_presets is not None:
            return self.user_presets
        return detect_presets_from_env()

    def load_presets(self) -> None:
        """Apply presets to settings still at their defaults; raises PresetError on failure."""
        presets = self.presets()
        if not presets:
            return

        logger.info("Load presets: %s", ",".join(presets))

        defaults = Config()
        loaders = {
            "fly": self._load_fly_preset,
            "heroku": self._load_heroku_preset,
            "broker": self._load_broker_preset,
        }
        for preset in presets:
            loader = loaders.get(preset)
            if loader is not None:
                loader(defaults)

    def _load_fly_preset(self, defaults: Config) -> None:
        if self.host == defaults.host:
            self.host = "0.0.0.0"

        region = os.environ.get("FLY_REGION")
        if region is None:
            raise PresetError("FLY_REGION env is missing")

        app_name = os.environ.get("FLY_APP_NAME")
        if app_name is None:
            raise PresetError("FLY_APP_NAME env is missing")

        alloc_id = os.environ.get("FLY_ALLOC_ID", "")
        redis_enabled = self.redis.url != defaults.redis.url

        # Use the same port for HTTP broadcasts by default
        if self.http_broadcast.port == defaults.http_broadcast.port:
            self.http_broadcast.port = self.port

        enats = self.embedded_nats
        enats_defaults = defaults.embedded_nats

        if enats.name == enats_defaults.name and alloc_id:
            # Unique suffix avoids duplicates during deployments
            enats.name = f"fly-{region}-{alloc_id}-{_nanoid(3)}"

        if enats.service_addr == enats_defaults.service_addr:
            enats.service_addr = "nats://0.0.0.0:4222"

        if enats.cluster_addr == enats_defaults.cluster_addr:
            enats.cluster_addr = "nats://0.0.0.0:5222"

        if enats.cluster_name == enats_defaults.cluster_name:
            enats.cluster_name = f"{app_name}-{region}-cluster"

        if enats.routes is None:
            enats.routes = [f"nats://{region}.{app_name}.internal:5222"]

        if enats.gateway_advertise == enats_defaults.gateway_advertise:
            enats.gateway_advertise = f"{region}.{app_name}.internal:7222"

        # Embed NATS unless another pub/sub adapter is set or Redis is configured
        if self.pubsub_adapter == defaults.pubsub_adapter:
            if redis_enabled:
                self.pubsub_adapter = "redis"
            else:
                self.pubsub_adapter = "nats"
                if not self.embed_nats or self.nats.servers == defaults.nats.servers:
                    self.embed_nats = True
                    self.nats.servers = enats.service_addr
                    self.broadcast_adapter = "http,nats"

        if not redis_enabled and self.broadcast_adapter == defaults.broadcast_adapter:
            self.broadcast_adapter = "http"

        rpc_name = os.environ.get("ANYCABLE_FLY_RPC_APP_NAME")
        if rpc_name is not None and self.rpc.host == defaults.rpc.host:
            self.rpc.host = f"dns:///{region}.{rpc_name}.internal:50051"

    def _load_heroku_preset(self, defaults: Config) -> None:
        if self.host == defaults.host:
            self.host = "0.0.0.0"

        if self.http_broadcast.port == defaults.http_broadcast.port:
            heroku_port = os.environ.get("PORT", "")
            if heroku_port:
                try:
                    self.http_broadcast.port = int(heroku_port)
                except ValueError as exc:
                    raise PresetError(f"Invalid PORT value: {heroku_port}") from exc

    def _load_broker_preset(self, defaults: Config) -> None:
        redis_enabled = self.redis.url != defaults.redis.url
        enats_enabled = self.embed_nats

        if self.broker_adapter == defaults.broker_adapter:
            self.broker_adapter = "nats" if enats_enabled else "memory"

        if self.broadcast_adapter == defaults.broadcast_adapter:
            if enats_enabled:
                self.broadcast_adapter = "http,nats"
            elif redis_enabled:
                self.broadcast_adapter = "http,redisx,redis"
            else:
                self.broadcast_adapter = "http"

        if self.pubsub_adapter == defaults.pubsub_adapter:
            if enats_enabled:
                self.pubsub_adapter = "nats"
            elif redis_enabled:
                self.pubsub_adapter = "redis"


def _has_env(*names: str) -> bool:
    return all(name in os.environ for name in names)


def detect_presets_from_env() -> list[str]:
    """Presets matching the hosting platform the process runs on."""
    presets = []
    if _has_env("FLY_APP_NAME", "FLY_ALLOC_ID", "FLY_REGION"):
        presets.append("fly")
    if _has_env("HEROKU_APP_ID", "HEROKU_DYNO_ID"):
        presets.append("heroku")
    return presets