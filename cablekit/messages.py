"""Message and result types exchanged between sessions, the hub and controllers."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

REMOTE_DISCONNECT_REASON = "remote"


class FrameType(Enum):
    """Kind of a frame written to a client socket."""

    TEXT = "text"
    CLOSE = "close"
    BINARY = "binary"


@dataclass(frozen=True)
class SentFrame:
    """An encoded frame ready to be written to a socket."""

    frame_type: FrameType
    payload: bytes = b""


@dataclass
class Reply:
    """A message sent to a client; empty fields are left out on the wire."""

    type: str = ""
    identifier: str = ""
    message: Any = None
    reason: str = ""
    reconnect: bool = False
    stream_id: str = ""
    epoch: str = ""
    offset: int = 0

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {}
        if self.type:
            out["type"] = self.type
        if self.identifier:
            out["identifier"] = self.identifier
        if self.message is not None:
            out["message"] = self.message
        if self.reason:
            out["reason"] = self.reason
        if self.reconnect:
            out["reconnect"] = self.reconnect
        if self.stream_id:
            out["stream_id"] = self.stream_id
        if self.epoch:
            out["epoch"] = self.epoch
        if self.offset:
            out["offset"] = self.offset
        return out


@dataclass
class PingMessage:
    """A keep-alive message."""

    message: Any = None
    type: str = "ping"

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"type": self.type}
        if self.message is not None:
            out["message"] = self.message
        return out


@dataclass
class DisconnectMessage:
    """A message telling the client it is being disconnected."""

    reason: str
    reconnect: bool
    type: str = "disconnect"

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, "reason": self.reason, "reconnect": self.reconnect}


def new_disconnect_message(reason: str, reconnect: bool) -> DisconnectMessage:
    """Build a disconnect message with the given reason."""
    return DisconnectMessage(reason=reason, reconnect=reconnect)


@dataclass
class StreamMessageMetadata:
    """Extra delivery options attached to a broadcast."""

    exclude_socket: str = ""


def _decode_data(data: str) -> Any:
    try:
        return json.loads(data)
    except ValueError:
        return data


@dataclass
class StreamMessage:
    """A payload broadcast to every subscriber of a stream."""

    stream: str = ""
    data: str = ""
    epoch: str = ""
    offset: int = 0
    meta: StreamMessageMetadata | None = None

    def to_reply_for(self, identifier: str) -> Reply:
        """Build the reply a subscriber with the given channel identifier receives."""
        reply = Reply(identifier=identifier, message=_decode_data(self.data))
        if self.epoch:
            reply.stream_id = self.stream
            reply.epoch = self.epoch
            reply.offset = self.offset
        return reply


@dataclass
class RemoteDisconnectMessage:
    """A command to disconnect all sessions with the given identifiers."""

    identifier: str
    reconnect: bool = False


@dataclass
class Message:
    """A command received from a client."""

    command: str = ""
    identifier: str = ""
    data: Any = None


@dataclass
class SessionEnv:
    """Connection environment: URL, headers and per-connection state."""

    url: str = ""
    headers: dict[str, str] | None = None
    cstate: dict[str, str] | None = None
    istate: dict[str, dict[str, str]] | None = None


class Status(Enum):
    """Outcome of a controller call."""

    FAILURE = "failure"
    SUCCESS = "success"
    ERROR = "error"


@dataclass
class ConnectResult:
    """Result of authenticating a connection."""

    identifier: str = ""
    transmissions: list[str] = field(default_factory=list)
    broadcasts: list[StreamMessage] = field(default_factory=list)
    cstate: dict[str, str] | None = None
    istate: dict[str, dict[str, str]] | None = None
    disconnect_interest: int = 0
    status: Status = Status.SUCCESS


@dataclass
class CommandResult:
    """Result of a subscribe, unsubscribe or perform command."""

    streams: list[str] = field(default_factory=list)
    stopped_streams: list[str] = field(default_factory=list)
    stop_all_streams: bool = False
    transmissions: list[str] = field(default_factory=list)
    broadcasts: list[StreamMessage] = field(default_factory=list)
    disconnect: bool = False
    cstate: dict[str, str] | None = None
    istate: dict[str, dict[str, str]] | None = None
    status: Status = Status.SUCCESS