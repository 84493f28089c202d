"""A self-contained benchmark controller that answers channel commands without RPC."""

from __future__ import annotations

import json
import logging
import secrets
from typing import Any

from cablekit.messages import CommandResult, ConnectResult, SessionEnv, StreamMessage

logger = logging.getLogger("cablekit.gobench")

METRICS_CALLS = "gochannels_call_total"

_NANOID_ALPHABET = "_-0123456789abcdefghijklmnopqrstuvwxyzABCDEFGHIJKLMNOPQRSTUVWXYZ"
_NANOID_SIZE = 21
_INT64_MIN = -(1 << 63)
_INT64_MAX = (1 << 63) - 1

_HTML_ESCAPES = {
    "<": "\\u003c",
    ">": "\\u003e",
    "&": "\\u0026",
    "\u2028": "\\u2028",
    "\u2029": "\\u2029",
}


def _dump(value: Any) -> str:
    """Compact JSON with sorted keys and HTML-sensitive characters escaped."""
    text = json.dumps(value, separators=(",", ":"), sort_keys=True, ensure_ascii=False)
    for char, escaped in _HTML_ESCAPES.items():
        text = text.replace(char, escaped)
    return text


def _nanoid(size: int = _NANOID_SIZE) -> str:
    return "".join(secrets.choice(_NANOID_ALPHABET) for _ in range(size))


def welcome_message(sid: str) -> str:
    """The welcome message sent on connection."""
    return '{"type":"welcome","sid":"' + sid + '"}'


def confirmation_message(identifier: str) -> str:
    """The subscription confirmation for a channel identifier."""
    return _dump({"identifier": identifier, "type": "confirm_subscription"})


def _identifier_id(identifier: str) -> int:
    data = json.loads(identifier)
    if data is None:
        return 0
    if not isinstance(data, dict):
        raise ValueError("identifier must be a JSON object")

    channel_id = 0
    for key, value in data.items():
        folded = key.lower()
        if folded == "id":
            if value is None:
                continue
            if (
                isinstance(value, bool)
                or not isinstance(value, int)
                or not _INT64_MIN <= value <= _INT64_MAX
            ):
                raise ValueError(f"id must be an integer, got {value!r}")
            channel_id = value
        elif folded == "channel" and value is not None and not isinstance(value, str):
            raise ValueError(f"channel must be a string, got {value!r}")
    return channel_id


def stream_from_identifier(identifier: str) -> str:
    """Map a channel identifier to its stream: "all", or "all<id>" when it has a non-zero id."""
    try:
        channel_id = _identifier_id(identifier)
    except ValueError as exc:
        logger.warning("failed to parse identifier %s: %s", identifier, exc)
        return "all"

    return "all" if channel_id == 0 else f"all{channel_id}"


class Controller:
    """Lets everyone connect and serves echo and broadcast actions locally."""

    def __init__(self, metrics: Any) -> None:
        metrics.register_counter(METRICS_CALLS, "The total number of Go channels calls")
        self._metrics = metrics
        self.running = False

    def _track(self) -> None:
        self._metrics.counter_increment(METRICS_CALLS)

    def start(self) -> None:
        """Mark the controller as running; there is nothing to connect to."""
        self.running = True

    def shutdown(self) -> None:
        """Mark the controller as stopped."""
        self.running = False

    def authenticate(self, sid: str, env: SessionEnv) -> ConnectResult:
        """Accept the connection with a random identifier."""
        self._track()
        identifiers = _dump({"id": _nanoid()})
        return ConnectResult(identifier=identifiers, transmissions=[welcome_message(sid)])

    def subscribe(self, sid: str, env: SessionEnv, ids: str, channel: str) -> CommandResult:
        self._track()
        return CommandResult(
            streams=[stream_from_identifier(channel)],
            transmissions=[confirmation_message(channel)],
        )

    def unsubscribe(self, sid: str, env: SessionEnv, ids: str, channel: str) -> CommandResult:
        self._track()
        return CommandResult(stop_all_streams=True)

    def perform(
        self, sid: str, env: SessionEnv, ids: str, channel: str, data: str
    ) -> CommandResult:
        """Handle "echo" and "broadcast" actions; raises ValueError for malformed data."""
        self._track()

        payload = json.loads(data)
        if not isinstance(payload, dict):
            raise ValueError("perform data must be a JSON object")

        action = payload.get("action")
        if not isinstance(action, str):
            raise ValueError("perform data must contain a string action")

        if action == "echo":
            response = _dump({"message": payload, "identifier": channel})
            return CommandResult(transmissions=[response])

        if action == "broadcast":
            broadcast = StreamMessage(
                stream=stream_from_identifier(channel), data=_dump(payload)
            )
            payload["action"] = "broadcastResult"
            response = _dump({"message": payload, "identifier": channel})
            return CommandResult(transmissions=[response], broadcasts=[broadcast])

        return CommandResult()

    def disconnect(
        self, sid: str, env: SessionEnv, ids: str, subscriptions: list[str]
    ) -> None:
        self._track()