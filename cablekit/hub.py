"""Session registry and sharded stream broadcasting."""

from __future__ import annotations

import logging
import queue
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Protocol

from cablekit.encoders import CachedEncodedMessage
from cablekit.messages import (
    REMOTE_DISCONNECT_REASON,
    RemoteDisconnectMessage,
    StreamMessage,
    new_disconnect_message,
)

logger = logging.getLogger("cablekit.hub")

_FNV64_OFFSET = 0xCBF29CE484222325
_FNV64_PRIME = 0x100000001B3
_UINT64 = (1 << 64) - 1

_STOP = object()


class HubSession(Protocol):
    """What the hub needs from a client session."""

    @property
    def id(self) -> str: ...

    @property
    def identifiers(self) -> str: ...

    def send(self, msg: Any) -> None: ...

    def disconnect_with_message(self, msg: Any, code: str) -> None: ...


def shard_index(stream: str, size: int) -> int:
    """Pick the shard for ``stream`` using the 64-bit FNV-1a hash."""
    if size == 1:
        return 0
    value = _FNV64_OFFSET
    for byte in stream.encode("utf-8"):
        value ^= byte
        value = (value * _FNV64_PRIME) & _UINT64
    return value % size


def build_message(message: StreamMessage, identifier: str) -> CachedEncodedMessage:
    """Build the (lazily encoded) reply a subscriber of ``identifier`` receives."""
    return CachedEncodedMessage(message.to_reply_for(identifier))


class HubSessionInfo:
    """A registered session with the stream-identifier pairs it is subscribed to."""

    def __init__(self, session: HubSession) -> None:
        self.session = session
        self.streams: list[tuple[str, str]] = []

    def add_stream(self, stream: str, identifier: str) -> None:
        self.streams.append((stream, identifier))

    def remove_stream(self, stream: str, identifier: str) -> None:
        """Remove the first matching pair, if any."""
        try:
            self.streams.remove((stream, identifier))
        except ValueError:
            pass


class Gate:
    """A shard of the hub: keeps subscriptions for some streams and delivers broadcasts."""

    def __init__(self) -> None:
        # stream -> session -> identifiers (ordered set)
        self._streams: dict[str, dict[Any, dict[str, None]]] = {}
        self._queue: queue.Queue[Any] = queue.Queue()
        self._lock = threading.Lock()
        self._closed = threading.Event()
        self._thread = threading.Thread(
            target=self._broadcast_loop, name="hub-gate", daemon=True
        )
        self._thread.start()

    def broadcast(self, message: StreamMessage) -> None:
        """Queue ``message`` for delivery if the stream has subscribers."""
        logger.debug("Broadcast message to %s: %r", message.stream, message)
        with self._lock:
            if message.stream not in self._streams:
                logger.debug("No sessions for stream %s", message.stream)
                return
        if self._closed.is_set():
            return
        self._queue.put(message)

    def subscribe(self, session: HubSession, stream: str, identifier: str) -> None:
        with self._lock:
            sessions = self._streams.setdefault(stream, {})
            sessions.setdefault(session, {})[identifier] = None

    def unsubscribe(self, session: HubSession, stream: str, identifier: str) -> None:
        with self._lock:
            sessions = self._streams.get(stream)
            if sessions is None:
                return
            ids = sessions.get(session)
            if ids is None or identifier not in ids:
                return
            del ids[identifier]
            if not ids:
                del sessions[session]
                if not sessions:
                    del self._streams[stream]

    def size(self) -> int:
        """Number of streams with subscribers."""
        with self._lock:
            return len(self._streams)

    def close(self) -> None:
        """Stop delivering broadcasts; safe to call more than once."""
        if self._closed.is_set():
            return
        self._closed.set()
        self._queue.put(_STOP)
        if threading.current_thread() is not self._thread:
            self._thread.join()

    def _broadcast_loop(self) -> None:
        while True:
            message = self._queue.get()
            if message is _STOP or self._closed.is_set():
                return
            try:
                self._perform_broadcast(message)
            except Exception:
                logger.exception("Failed to broadcast to %s", message.stream)

    def _perform_broadcast(self, message: StreamMessage) -> None:
        with self._lock:
            snapshot = {
                session: list(ids)
                for session, ids in self._streams.get(message.stream, {}).items()
            }

        exclude = message.meta.exclude_socket if message.meta is not None else None
        built: dict[str, CachedEncodedMessage] = {}

        for session, ids in snapshot.items():
            if exclude is not None and exclude == session.id:
                continue
            for identifier in ids:
                data = built.get(identifier)
                if data is None:
                    data = built[identifier] = build_message(message, identifier)
                session.send(data)


class Hub:
    """Stores sessions and their subscriptions, routing broadcasts through sharded gates."""

    def __init__(self, pool_size: int = 1) -> None:
        if pool_size < 1:
            raise ValueError("pool_size must be at least 1")
        self._gates = [Gate() for _ in range(pool_size)]
        self._sessions: dict[str, HubSessionInfo] = {}
        self._identifiers: dict[str, set[str]] = {}
        self._events: queue.Queue[Any] = queue.Queue()
        self._pool = ThreadPoolExecutor(max_workers=256, thread_name_prefix="remote-commands")
        self._lock = threading.RLock()
        self._started = threading.Event()
        self._stopped = threading.Event()

    def _gate(self, stream: str) -> Gate:
        return self._gates[shard_index(stream, len(self._gates))]

    def run(self) -> None:
        """Process queued events until :meth:`shutdown` is called; blocks."""
        self._started.set()
        try:
            while True:
                kind, payload = self._events.get()
                if kind is _STOP:
                    return
                try:
                    if kind == "add":
                        self.add_session(payload)
                    elif kind == "remove":
                        self.remove_session(payload)
                    elif kind == "broadcast":
                        self._gate(payload.stream).broadcast(payload)
                    elif kind == "disconnect":
                        self._disconnect_sessions(payload.identifier, payload.reconnect)
                except Exception:
                    logger.exception("Failed to handle hub event %s", kind)
        finally:
            self._stopped.set()

    def shutdown(self) -> None:
        """Stop the event loop, wait for it to finish and release the gates."""
        self._events.put((_STOP, None))
        if self._started.is_set():
            self._stopped.wait()
        for gate in self._gates:
            gate.close()
        self._pool.shutdown(wait=True)

    def remove_session_later(self, session: HubSession) -> None:
        self._events.put(("remove", session))

    def broadcast(self, stream: str, data: str) -> None:
        self._events.put(("broadcast", StreamMessage(stream=stream, data=data)))

    def broadcast_message(self, message: StreamMessage) -> None:
        self._events.put(("broadcast", message))

    def remote_disconnect(self, message: RemoteDisconnectMessage) -> None:
        self._events.put(("disconnect", message))

    def size(self) -> int:
        """Number of registered sessions."""
        with self._lock:
            return len(self._sessions)

    def uniq_size(self) -> int:
        """Number of distinct session identifiers."""
        with self._lock:
            return len(self._identifiers)

    def streams_size(self) -> int:
        """Number of streams with subscribers across all gates."""
        return sum(gate.size() for gate in self._gates)

    def add_session(self, session: HubSession) -> None:
        with self._lock:
            uid = session.id
            identifiers = session.identifiers
            self._sessions[uid] = HubSessionInfo(session)
            self._identifiers.setdefault(identifiers, set()).add(uid)
        logger.debug("[%s] Registered with identifiers: %s", uid, identifiers)

    def remove_session(self, session: HubSession) -> None:
        uid = session.id
        with self._lock:
            if uid not in self._sessions:
                logger.warning("[%s] Session hasn't been registered", uid)
                return

        identifiers = session.identifiers
        self.unsubscribe_session_from_all_channels(session)

        with self._lock:
            self._sessions.pop(uid, None)
            ids = self._identifiers.get(identifiers)
            if ids is not None:
                ids.discard(uid)
                if not ids:
                    del self._identifiers[identifiers]

        logger.debug("[%s] Unregistered", uid)

    def unsubscribe_session_from_all_channels(self, session: HubSession) -> None:
        with self._lock:
            info = self._sessions.get(session.id)
            if info is None:
                return
            for stream, identifier in info.streams:
                self._gate(stream).unsubscribe(session, stream, identifier)

    def unsubscribe_session_from_channel(self, session: HubSession, identifier: str) -> None:
        """Drop every stream subscription the session holds for a channel identifier."""
        with self._lock:
            info = self._sessions.get(session.id)
            if info is not None:
                for stream, ident in list(info.streams):
                    if ident == identifier:
                        self._gate(stream).unsubscribe(session, stream, ident)
                        info.remove_stream(stream, ident)
        logger.debug("[%s] Unsubscribed from %s", session.id, identifier)

    def subscribe_session(self, session: HubSession, stream: str, identifier: str) -> None:
        self._gate(stream).subscribe(session, stream, identifier)
        with self._lock:
            info = self._sessions.get(session.id)
            if info is None:
                info = self._sessions[session.id] = HubSessionInfo(session)
            info.add_stream(stream, identifier)
        logger.debug("[%s] Subscribed to %s (channel %s)", session.id, stream, identifier)

    def unsubscribe_session(self, session: HubSession, stream: str, identifier: str) -> None:
        self._gate(stream).unsubscribe(session, stream, identifier)
        with self._lock:
            info = self._sessions.get(session.id)
            if info is not None:
                info.remove_stream(stream, identifier)
        logger.debug("[%s] Unsubscribed from %s (channel %s)", session.id, stream, identifier)

    def find_by_identifier(self, identifier: str) -> HubSession | None:
        """Return any registered session with the given identifiers, or None."""
        with self._lock:
            for uid in self._identifiers.get(identifier, ()):
                info = self._sessions.get(uid)
                if info is not None:
                    return info.session
        return None

    def sessions(self) -> list[HubSession]:
        with self._lock:
            return [info.session for info in self._sessions.values()]

    def _disconnect_sessions(self, identifier: str, reconnect: bool) -> None:
        with self._lock:
            ids = self._identifiers.get(identifier)
        if ids is None:
            logger.debug("Can not disconnect sessions: unknown identifier %s", identifier)
            return

        msg = new_disconnect_message(REMOTE_DISCONNECT_REASON, reconnect)

        def disconnect() -> None:
            with self._lock:
                targets = [self._sessions[uid] for uid in list(ids) if uid in self._sessions]
            for info in targets:
                info.session.disconnect_with_message(msg, REMOTE_DISCONNECT_REASON)

        self._pool.submit(disconnect)