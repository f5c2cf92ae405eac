"""Qt driver that runs solver searches in slices on the host event loop."""

from __future__ import annotations

import os
import time
from typing import Iterable, Optional, Sequence

from PySide6.QtCore import QCoreApplication, QObject, QTimer, Signal, Slot

from watersort_engine import Color, PuzzleParams
from watersort_solver import (
    SLICE_STATES,
    FeasibilitySearch,
    SearchSession,
    ShortestSolutionSearch,
)
from watersort_telemetry import TelemetrySink, ThreadedTCPSink, parse_host_port

SOLVE_TICK_MS = 0
SOLVE_TIME_LIMIT_MS: Optional[int] = None


class SolverWorker(QObject):
    """
    Runs one search at a time without blocking the Qt event loop.

    Every timer tick advances the active search by one slice. A request whose
    id is no longer the latest is dropped at the next tick.
    """

    result_ready = Signal(int, object)
    progress = Signal(int, object)
    solve_failed = Signal(int, str)

    def __init__(
        self,
        slice_states: int = SLICE_STATES,
        telemetry_sink: Optional[TelemetrySink] = None,
    ) -> None:
        super().__init__()
        self.latest_request_id = 0
        self.slice_states = max(1, slice_states)
        self._session: Optional[SearchSession] = None
        self._active_request_id: Optional[int] = None
        self._closed = False
        self._owns_sink = False
        self._telemetry_sink = telemetry_sink
        if telemetry_sink is None:
            endpoint_raw = os.environ.get("WATERSORT_TELEMETRY", "").strip()
            endpoint = parse_host_port(endpoint_raw) if endpoint_raw else None
            if endpoint is not None:
                self._telemetry_sink = ThreadedTCPSink(endpoint[0], endpoint[1])
                self._owns_sink = True
        self._tick_timer = QTimer(self)
        self._tick_timer.setInterval(SOLVE_TICK_MS)
        self._tick_timer.timeout.connect(self._run_slice)

    @property
    def active_request_id(self) -> Optional[int]:
        return self._active_request_id

    def is_busy(self) -> bool:
        return self._session is not None

    def set_latest_request_id(self, request_id: int) -> None:
        self.latest_request_id = request_id
        if self._active_request_id is not None and self._active_request_id != int(request_id):
            self._drop_session()

    @Slot(object, object, int)
    def solve(self, params: PuzzleParams, tubes: Iterable[Sequence[Color]], request_id: int) -> None:
        self._start(request_id, lambda: ShortestSolutionSearch(params, tubes))

    @Slot(object, object, int)
    def check(self, params: PuzzleParams, tubes: Iterable[Sequence[Color]], request_id: int) -> None:
        self._start(request_id, lambda: FeasibilitySearch(params, tubes))

    def _start(self, request_id: int, factory) -> None:
        if self._closed:
            self.solve_failed.emit(request_id, "Solver worker is closed")
            return
        if request_id != self.latest_request_id:
            return
        self._drop_session()
        try:
            search = factory()
        except ValueError as exc:
            self.solve_failed.emit(request_id, f"{type(exc).__name__}: {exc}")
            return
        self._session = SearchSession(
            search,
            time_limit_ms=SOLVE_TIME_LIMIT_MS,
            slice_states=self.slice_states,
            telemetry_sink=self._telemetry_sink,
        )
        self._active_request_id = int(request_id)
        self._tick_timer.start()

    def _drop_session(self) -> None:
        if self._session is not None:
            self._session.stop("interrupted")
        self._session = None
        self._active_request_id = None
        self._tick_timer.stop()

    def _run_slice(self) -> None:
        session = self._session
        request_id = self._active_request_id
        if session is None or request_id is None:
            self._tick_timer.stop()
            return
        if request_id != self.latest_request_id:
            self._drop_session()
            return
        try:
            result = session.step()
        except Exception as exc:
            self._session = None
            self._active_request_id = None
            self._tick_timer.stop()
            self.solve_failed.emit(request_id, f"{type(exc).__name__}: {exc}")
            return
        if result is None:
            self.progress.emit(request_id, session.snapshot())
            return
        self._session = None
        self._active_request_id = None
        self._tick_timer.stop()
        self.result_ready.emit(request_id, result)

    def wait_for_idle(self, timeout_ms: int) -> bool:
        app = QCoreApplication.instance()
        deadline = time.perf_counter() + (max(0, timeout_ms) / 1000.0)
        while self._session is not None and time.perf_counter() < deadline:
            if app is None:
                self._run_slice()
            else:
                app.processEvents()
        return self._session is None

    def shutdown(self) -> None:
        self._drop_session()
        if self._owns_sink and self._telemetry_sink is not None:
            self._telemetry_sink.close()
        self._telemetry_sink = None
        self._owns_sink = False

    def close(self) -> None:
        self.shutdown()
        self._closed = True

