"""Connection identification: a controller wrapper and a JWT-based identifier."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Protocol
from urllib.parse import parse_qs, urlsplit

import jwt

from cablekit.messages import CommandResult, ConnectResult, SessionEnv, Status

logger = logging.getLogger("cablekit.identity")

UNAUTHORIZED_MESSAGE = '{"type":"disconnect","reason":"unauthorized","reconnect":false}'
EXPIRED_MESSAGE = '{"type":"disconnect","reason":"token_expired","reconnect":false}'

_HMAC_ALGORITHMS = ["HS256", "HS384", "HS512"]


def welcome_message(sid: str) -> str:
    """The welcome message sent to a freshly authenticated client."""
    return '{"type":"welcome","sid":"' + sid + '"}'


class Identifier(Protocol):
    """Identifies a connection; returns None to defer to the wrapped controller."""

    def identify(self, sid: str, env: SessionEnv) -> ConnectResult | None: ...


class _Controller(Protocol):
    def start(self) -> None: ...

    def shutdown(self) -> None: ...

    def authenticate(self, sid: str, env: SessionEnv) -> ConnectResult: ...

    def subscribe(self, sid: str, env: SessionEnv, ids: str, channel: str) -> CommandResult: ...

    def unsubscribe(
        self, sid: str, env: SessionEnv, ids: str, channel: str
    ) -> CommandResult: ...

    def perform(
        self, sid: str, env: SessionEnv, ids: str, channel: str, data: str
    ) -> CommandResult: ...

    def disconnect(
        self, sid: str, env: SessionEnv, ids: str, subscriptions: list[str]
    ) -> None: ...


class IdentifiableController:
    """A controller that authenticates through an identifier before delegating."""

    def __init__(self, controller: _Controller, identifier: Identifier) -> None:
        self.controller = controller
        self.identifier = identifier

    def start(self) -> None:
        return self.controller.start()

    def shutdown(self) -> None:
        return self.controller.shutdown()

    def authenticate(self, sid: str, env: SessionEnv) -> ConnectResult:
        """Identify the connection, falling back to the wrapped controller when undecided."""
        result = self.identifier.identify(sid, env)

        if result is None:
            return self.controller.authenticate(sid, env)

        if result.cstate is None:
            result.cstate = {}

        result.disconnect_interest = -1
        return result

    def subscribe(self, sid: str, env: SessionEnv, ids: str, channel: str) -> CommandResult:
        return self.controller.subscribe(sid, env, ids, channel)

    def unsubscribe(self, sid: str, env: SessionEnv, ids: str, channel: str) -> CommandResult:
        return self.controller.unsubscribe(sid, env, ids, channel)

    def perform(
        self, sid: str, env: SessionEnv, ids: str, channel: str, data: str
    ) -> CommandResult:
        return self.controller.perform(sid, env, ids, channel, data)

    def disconnect(
        self, sid: str, env: SessionEnv, ids: str, subscriptions: list[str]
    ) -> None:
        return self.controller.disconnect(sid, env, ids, subscriptions)


@dataclass
class JWTConfig:
    """JWT identification settings."""

    secret: str = ""
    param: str = "jid"
    algo: str = "HS256"
    force: bool = False

    def enabled(self) -> bool:
        return self.secret != ""


def _unauthorized_response() -> ConnectResult:
    return ConnectResult(status=Status.FAILURE, transmissions=[UNAUTHORIZED_MESSAGE])


def _expired_response() -> ConnectResult:
    return ConnectResult(status=Status.FAILURE, transmissions=[EXPIRED_MESSAGE])


class JWTIdentifier:
    """Identifies connections by an HMAC-signed JWT from a header or query parameter."""

    def __init__(self, config: JWTConfig) -> None:
        self._key = config.secret.encode("utf-8")
        self.param_name = config.param
        self.header_name = f"x-{config.param}".lower()
        self.required = config.force

    def _raw_token(self, env: SessionEnv) -> str:
        if env.headers is not None:
            value = env.headers.get(self.header_name, "")
            if value:
                return value

        query = urlsplit(env.url).query
        values = parse_qs(query, keep_blank_values=True).get(self.param_name)
        return values[0] if values else ""

    def identify(self, sid: str, env: SessionEnv) -> ConnectResult | None:
        """Return a result for the connection, or None when there is no token and none is required.

        Raises ValueError when a valid token carries no identifiers.
        """
        raw = self._raw_token(env)

        if not raw:
            logger.debug("No token is found (url=%s, headers=%s)", env.url, env.headers)
            return _unauthorized_response() if self.required else None

        try:
            claims = jwt.decode(
                raw,
                self._key,
                algorithms=_HMAC_ALGORITHMS,
                options={"verify_aud": False},
            )
        except jwt.ExpiredSignatureError:
            logger.debug("Token has expired")
            return _expired_response()
        except jwt.InvalidTokenError as exc:
            logger.debug("Invalid token: %s", exc)
            return _unauthorized_response()

        ids = claims.get("ext")
        if not isinstance(ids, str):
            raise ValueError(f"JWT token doesn't contain identifiers: {claims}")

        return ConnectResult(
            identifier=ids,
            transmissions=[welcome_message(sid)],
            status=Status.SUCCESS,
        )