"""Encoding of outgoing messages and decoding of incoming commands."""

from __future__ import annotations

import json
import threading
from typing import Any, Callable

from cablekit.messages import FrameType, Message, SentFrame

EncodingFunction = Callable[[Any], SentFrame]


class EncodingError(Exception):
    """Raised when a message cannot be encoded."""


def to_json(msg: Any) -> str:
    """Serialize a message object (anything with ``to_dict``) to compact JSON."""
    return json.dumps(msg.to_dict(), separators=(",", ":"), ensure_ascii=False)


class EncodingCache:
    """Remembers the encoded frame of one message per encoder."""

    def __init__(self) -> None:
        self._frames: dict[str, SentFrame | None] = {}
        self._lock = threading.Lock()

    def fetch(self, msg: Any, encoder: str, callback: EncodingFunction) -> SentFrame:
        """Return the cached frame for ``encoder``, encoding with ``callback`` on first use."""
        with self._lock:
            if encoder not in self._frames:
                try:
                    frame = callback(msg)
                except Exception:
                    frame = None
                self._frames[encoder] = frame
            frame = self._frames[encoder]
        if frame is None:
            raise EncodingError("Encoding failed")
        return frame


class CachedEncodedMessage:
    """A message wrapper that encodes its target at most once per encoder."""

    def __init__(self, target: Any) -> None:
        self.target = target
        self._cache = EncodingCache()

    @property
    def type(self) -> str:
        return self.target.type

    def fetch(self, encoder_id: str, callback: EncodingFunction) -> SentFrame:
        return self._cache.fetch(self.target, encoder_id, callback)

    def to_dict(self) -> dict[str, Any]:
        return self.target.to_dict()


class JSONEncoder:
    """Encodes messages as JSON text frames."""

    id = "json"

    def encode(self, msg: Any) -> SentFrame:
        return SentFrame(FrameType.TEXT, to_json(msg).encode("utf-8"))

    def encode_transmission(self, msg: str) -> SentFrame:
        return SentFrame(FrameType.TEXT, msg.encode("utf-8"))

    def decode(self, payload: bytes | str) -> Message:
        """Parse a client command; raises ValueError on malformed input."""
        data = json.loads(payload)
        if not isinstance(data, dict):
            raise ValueError("command must be a JSON object")
        return Message(
            command=data.get("command", ""),
            identifier=data.get("identifier", ""),
            data=data.get("data"),
        )