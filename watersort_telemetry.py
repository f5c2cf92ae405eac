"""Telemetry schema and sinks for water-sort solver instrumentation."""

from __future__ import annotations

from collections import deque
from dataclasses import asdict, dataclass
from queue import Empty, Full, Queue
from typing import Any, Callable, Deque, Dict, List, Mapping, Optional, Protocol, Tuple
import json
import socket
import threading
import time


def now_ms() -> int:
    return int(time.time() * 1000)


@dataclass(frozen=True)
class TelemetryEnvelope:
    event: str
    ts_ms: int
    data: Dict[str, Any]


@dataclass(frozen=True)
class SearchStartEvent:
    kind: str
    state_key: str
    tube_count: int
    tube_height: int
    canonical: str
    time_limit_ms: Optional[int]
    slice_states: int


@dataclass(frozen=True)
class NodeBatchEvent:
    kind: str
    nodes_total: int
    states_seen: int
    frontier: int
    max_depth: int
    nps_estimate: int
    branching_factor_estimate: float
    elapsed_ms: int


@dataclass(frozen=True)
class SliceEvent:
    kind: str
    slice_index: int
    nodes_total: int
    states_seen: int
    frontier: int
    elapsed_ms: int


@dataclass(frozen=True)
class SearchEndEvent:
    kind: str
    solvable: Optional[bool]
    moves: Optional[list[tuple[int, int]]]
    complete: bool
    nodes: int
    states: int
    max_depth: int
    slices: int
    elapsed_ms: int
    reason: str



class TelemetrySink(Protocol):
    def emit(self, envelope: TelemetryEnvelope) -> None:
        ...

    def close(self) -> None:
        ...


class NullTelemetrySink:
    def emit(self, envelope: TelemetryEnvelope) -> None:
        pass

    def close(self) -> None:
        pass


class CallbackTelemetrySink:
    def __init__(self, callback: Callable[[TelemetryEnvelope], None]) -> None:
        self._callback = callback

    def emit(self, envelope: TelemetryEnvelope) -> None:
        self._callback(envelope)

    def close(self) -> None:
        pass


class MemoryTelemetrySink:
    """Keeps the most recent envelopes in memory, oldest first."""

    def __init__(self, maxlen: Optional[int] = None) -> None:
        self._events: Deque[TelemetryEnvelope] = deque(maxlen=maxlen)

    def emit(self, envelope: TelemetryEnvelope) -> None:
        self._events.append(envelope)

    def events(self, name: Optional[str] = None) -> List[TelemetryEnvelope]:
        if name is None:
            return list(self._events)
        return [envelope for envelope in self._events if envelope.event == name]

    def close(self) -> None:
        pass


class ThreadedTCPSink:
    """
    JSONL-over-TCP sink; a daemon thread owns the socket.

    ``emit`` never blocks. When the buffer is full the oldest envelope is
    discarded and counted in ``dropped``. The sender reconnects after any
    socket error. ``close`` gives the sender a short window to flush.
    """

    def __init__(
        self,
        host: str,
        port: int,
        queue_size: int = 1024,
        reconnect_delay_ms: int = 250,
        connect_timeout_ms: int = 300,
        flush_timeout_ms: int = 500,
    ) -> None:
        self.address = (host, port)
        self.dropped = 0
        self._pending: "Queue[TelemetryEnvelope]" = Queue(maxsize=max(8, queue_size))
        self._reconnect_delay_s = max(0.05, reconnect_delay_ms / 1000.0)
        self._connect_timeout_s = max(0.05, connect_timeout_ms / 1000.0)
        self._flush_timeout_s = max(0.0, flush_timeout_ms / 1000.0)
        self._closing = threading.Event()
        self._thread = threading.Thread(target=self._sender, name="watersort-telemetry-sender", daemon=True)
        self._thread.start()

    def emit(self, envelope: TelemetryEnvelope) -> None:
        if self._closing.is_set():
            return
        while True:
            try:
                self._pending.put_nowait(envelope)
                return
            except Full:
                pass
            try:
                self._pending.get_nowait()
                self.dropped += 1
            except Empty:
                continue

    def close(self) -> None:
        self._closing.set()
        self._thread.join(timeout=self._flush_timeout_s + self._connect_timeout_s)

    def _sender(self) -> None:
        conn: Optional[socket.socket] = None
        flush_deadline: Optional[float] = None
        while True:
            if self._closing.is_set():
                if flush_deadline is None:
                    flush_deadline = time.monotonic() + self._flush_timeout_s
                if conn is None or self._pending.empty() or time.monotonic() >= flush_deadline:
                    break
            if conn is None:
                conn = self._connect()
                if conn is None:
                    self._closing.wait(self._reconnect_delay_s)
                    continue
            try:
                envelope = self._pending.get(timeout=0.1)
            except Empty:
                continue
            try:
                conn.sendall(encode_envelope(envelope))
            except OSError:
                _close_quietly(conn)
                conn = None
        if conn is not None:
            _close_quietly(conn)

    def _connect(self) -> Optional[socket.socket]:
        try:
            conn = socket.create_connection(self.address, timeout=self._connect_timeout_s)
        except OSError:
            return None
        conn.settimeout(None)
        return conn


def _close_quietly(conn: socket.socket) -> None:
    try:
        conn.close()
    except OSError:
        pass


def encode_envelope(envelope: TelemetryEnvelope) -> bytes:
    line = json.dumps(asdict(envelope), separators=(",", ":"), default=str)
    return line.encode("utf-8") + b"\n"


def emit_event(sink: Optional[TelemetrySink], event: str, payload: Mapping[str, Any]) -> None:
    if sink is None:
        return
    try:
        sink.emit(TelemetryEnvelope(event=event, ts_ms=now_ms(), data=dict(payload)))
    except Exception:
        # A failing sink must not abort the search that reports to it.
        return


def emit_dataclass_event(sink: Optional[TelemetrySink], event: str, payload_obj: object) -> None:
    if sink is None:
        return
    emit_event(sink, event, asdict(payload_obj))


def parse_host_port(value: str) -> Optional[Tuple[str, int]]:
    """Parse ``host:port`` or ``[v6-address]:port``; ``None`` when malformed."""
    host, sep, port_raw = value.strip().rpartition(":")
    if not sep:
        return None
    if host.startswith("[") and host.endswith("]"):
        host = host[1:-1]
    host = host.strip()
    if not host or not port_raw.isdigit():
        return None
    port = int(port_raw)
    if not 0 < port <= 65535:
        return None
    return host, port
