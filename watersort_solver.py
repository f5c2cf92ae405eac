"""Breadth-first shortest solutions and stack-based feasibility checks."""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass
from typing import Callable, Deque, Dict, Iterable, List, Optional, Sequence, Set, Tuple
import time

from watersort_engine import (
    Color,
    Configuration,
    PuzzleParams,
    apply_move_fast,
    configuration_to_json,
    is_solved,
    legal_moves,
    validate_configuration,
)
from watersort_telemetry import (
    NodeBatchEvent,
    SearchEndEvent,
    SearchStartEvent,
    SliceEvent,
    TelemetrySink,
    emit_dataclass_event,
)

SLICE_STATES = 2048
TELEMETRY_EMIT_INTERVAL_MS = 120

SHORTEST = "shortest"
FEASIBILITY = "feasibility"

Path = Tuple[Tuple[int, int], ...]


@dataclass(frozen=True)
class SearchResult:
    moves: Optional[List[Tuple[int, int]]]
    solvable: Optional[bool]
    complete: bool
    nodes: int
    states: int
    max_depth: int
    slices: int
    elapsed_ms: int
    reason: str


@dataclass
class _TelemetryStats:
    sink: TelemetrySink
    kind: str
    solve_start: float
    last_emit: float


def identity_key(tubes: Iterable[Sequence[Color]]) -> Configuration:
    return tuple(tuple(tube) for tube in tubes)


def _tube_signature(tube: Tuple[Color, ...]) -> Tuple[str, ...]:
    # repr keeps mixed color types orderable
    return tuple(repr(color) for color in tube)


def sorted_key(tubes: Iterable[Sequence[Color]]) -> Configuration:
    return tuple(sorted((tuple(tube) for tube in tubes), key=_tube_signature))


KEY_FUNCTIONS: Dict[str, Callable[[Iterable[Sequence[Color]]], Configuration]] = {
    "identity": identity_key,
    "sorted": sorted_key,
}


def ordered_children(params: PuzzleParams, state: Configuration) -> List[Tuple[int, int, Configuration]]:
    return [
        (source, target, apply_move_fast(state, source, target, params.tube_height)[0])
        for source, target in legal_moves(params, state)
    ]


class ShortestSolutionSearch:
    """
    Resumable breadth-first search for a minimal move sequence.

    Each queue entry carries its own configuration snapshot and the path that
    reached it. Visited configurations are keyed by ``identity_key`` so the
    tube indices in a returned path stay replayable. ``advance`` only returns
    between queue entries.
    """

    kind = SHORTEST
    canonical = "identity"

    def __init__(self, params: PuzzleParams, tubes: Iterable[Sequence[Color]]) -> None:
        self.params = params
        start = validate_configuration(params, tubes)
        self.initial = start
        self._queue: Deque[Tuple[Configuration, Path]] = deque([(start, ())])
        self._seen: Set[Configuration] = {identity_key(start)}
        self.nodes = 0
        self.max_depth = 0
        self.slices = 0
        self.branching_sum = 0
        self.finished = False
        self.solution: Optional[List[Tuple[int, int]]] = None

    @property
    def states(self) -> int:
        return len(self._seen)

    @property
    def frontier(self) -> int:
        return len(self._queue)

    @property
    def solvable(self) -> Optional[bool]:
        if not self.finished:
            return None
        return self.solution is not None

    def advance(self, max_new_states: int = SLICE_STATES) -> bool:
        if self.finished:
            return True
        self.slices += 1
        budget = max(1, max_new_states)
        added = 0
        while self._queue:
            state, path = self._queue.popleft()
            self.nodes += 1
            if len(path) > self.max_depth:
                self.max_depth = len(path)
            if is_solved(self.params, state):
                self.solution = list(path)
                self._finish()
                return True
            children = ordered_children(self.params, state)
            self.branching_sum += len(children)
            for source, target, child in children:
                key = identity_key(child)
                if key in self._seen:
                    continue
                self._seen.add(key)
                self._queue.append((child, path + ((source, target),)))
                added += 1
            if added >= budget:
                return False
        self._finish()
        return True

    def _finish(self) -> None:
        self.finished = True
        self._queue.clear()


class FeasibilitySearch:
    """Resumable depth-first existence check over an explicit stack."""

    kind = FEASIBILITY

    def __init__(
        self,
        params: PuzzleParams,
        tubes: Iterable[Sequence[Color]],
        canonical: str = "sorted",
    ) -> None:
        if canonical not in KEY_FUNCTIONS:
            raise ValueError(f"unknown canonical key {canonical!r}; expected one of {sorted(KEY_FUNCTIONS)}")
        self.params = params
        self.canonical = canonical
        self._key = KEY_FUNCTIONS[canonical]
        start = validate_configuration(params, tubes)
        self.initial = start
        self._stack: List[Tuple[Configuration, int]] = [(start, 0)]
        self._visited: Set[Configuration] = set()
        self.nodes = 0
        self.max_depth = 0
        self.slices = 0
        self.branching_sum = 0
        self.finished = False
        self.found = False

    @property
    def states(self) -> int:
        return len(self._visited)

    @property
    def frontier(self) -> int:
        return len(self._stack)

    @property
    def solvable(self) -> Optional[bool]:
        if not self.finished:
            return None
        return self.found

    @property
    def solution(self) -> Optional[List[Tuple[int, int]]]:
        return None

    def advance(self, max_new_states: int = SLICE_STATES) -> bool:
        if self.finished:
            return True
        self.slices += 1
        budget = max(1, max_new_states)
        added = 0
        while self._stack:
            state, depth = self._stack.pop()
            self.nodes += 1
            if depth > self.max_depth:
                self.max_depth = depth
            if is_solved(self.params, state):
                self.found = True
                self._finish()
                return True
            key = self._key(state)
            if key in self._visited:
                continue
            self._visited.add(key)
            children = ordered_children(self.params, state)
            self.branching_sum += len(children)
            for _, _, child in children:
                self._stack.append((child, depth + 1))
                added += 1
            if added >= budget:
                return False
        self._finish()
        return True

    def _finish(self) -> None:
        self.finished = True
        self._stack.clear()


def _finished_reason(search) -> str:
    return "solved" if search.solvable else "exhausted"


def _telemetry_maybe_emit_batch(stats: Optional[_TelemetryStats], search, force: bool = False) -> None:
    if stats is None:
        return
    now = time.perf_counter()
    if not force and (now - stats.last_emit) * 1000 < TELEMETRY_EMIT_INTERVAL_MS:
        return
    elapsed_ms = max(1, int((now - stats.solve_start) * 1000))
    branching = 0.0
    if search.nodes > 0:
        branching = search.branching_sum / search.nodes
    emit_dataclass_event(
        stats.sink,
        "node_batch",
        NodeBatchEvent(
            kind=stats.kind,
            nodes_total=search.nodes,
            states_seen=search.states,
            frontier=search.frontier,
            max_depth=search.max_depth,
            nps_estimate=int(search.nodes * 1000 / elapsed_ms),
            branching_factor_estimate=round(branching, 3),
            elapsed_ms=elapsed_ms,
        ),
    )
    stats.last_emit = now


class SearchSession:
    """
    Drives one resumable search slice by slice.

    ``step`` runs a single slice and returns the final ``SearchResult`` once
    the search finishes or its deadline passes, ``None`` otherwise. Hosts with
    their own event loop call ``step`` from a timer; ``run_search`` calls it
    in a loop.
    """

    def __init__(
        self,
        search,
        time_limit_ms: Optional[int] = None,
        slice_states: int = SLICE_STATES,
        telemetry_sink: Optional[TelemetrySink] = None,
    ) -> None:
        self.search = search
        self.slice_states = max(1, slice_states)
        self.start = time.perf_counter()
        self.deadline = None if time_limit_ms is None else self.start + max(0, time_limit_ms) / 1000.0
        self.result: Optional[SearchResult] = None
        self._telemetry: Optional[_TelemetryStats] = None
        if telemetry_sink is not None:
            self._telemetry = _TelemetryStats(
                sink=telemetry_sink,
                kind=search.kind,
                solve_start=self.start,
                last_emit=self.start,
            )
            emit_dataclass_event(
                telemetry_sink,
                "search_start",
                SearchStartEvent(
                    kind=search.kind,
                    state_key=configuration_to_json(search.initial),
                    tube_count=len(search.initial),
                    tube_height=search.params.tube_height,
                    canonical=search.canonical,
                    time_limit_ms=time_limit_ms,
                    slice_states=self.slice_states,
                ),
            )

    def _elapsed_ms(self) -> int:
        return int((time.perf_counter() - self.start) * 1000)

    def snapshot(self, reason: Optional[str] = None) -> SearchResult:
        search = self.search
        if reason is None:
            reason = _finished_reason(search) if search.finished else "running"
        return SearchResult(
            moves=search.solution if search.finished else None,
            solvable=search.solvable,
            complete=search.finished,
            nodes=search.nodes,
            states=search.states,
            max_depth=search.max_depth,
            slices=search.slices,
            elapsed_ms=self._elapsed_ms(),
            reason=reason,
        )

    def step(self) -> Optional[SearchResult]:
        if self.result is not None:
            return self.result
        if not self.search.finished:
            if self.deadline is not None and time.perf_counter() >= self.deadline:
                return self.stop("timeout")
            self.search.advance(self.slice_states)
            if self._telemetry is not None:
                emit_dataclass_event(
                    self._telemetry.sink,
                    "slice",
                    SliceEvent(
                        kind=self.search.kind,
                        slice_index=self.search.slices,
                        nodes_total=self.search.nodes,
                        states_seen=self.search.states,
                        frontier=self.search.frontier,
                        elapsed_ms=self._elapsed_ms(),
                    ),
                )
                _telemetry_maybe_emit_batch(self._telemetry, self.search)
        if self.search.finished:
            return self.stop(_finished_reason(self.search))
        return None

    def stop(self, reason: str) -> SearchResult:
        if self.result is not None:
            return self.result
        result = self.snapshot(reason)
        self.result = result
        if self._telemetry is not None:
            # Final batch so dashboards see the closing counters.
            _telemetry_maybe_emit_batch(self._telemetry, self.search, force=True)
            emit_dataclass_event(
                self._telemetry.sink,
                "search_end",
                SearchEndEvent(
                    kind=self.search.kind,
                    solvable=result.solvable,
                    moves=result.moves,
                    complete=result.complete,
                    nodes=result.nodes,
                    states=result.states,
                    max_depth=result.max_depth,
                    slices=result.slices,
                    elapsed_ms=result.elapsed_ms,
                    reason=result.reason,
                ),
            )
        return result


def run_search(
    search,
    interrupt_check: Optional[Callable[[], bool]] = None,
    time_limit_ms: Optional[int] = None,
    progress_callback: Optional[Callable[[SearchResult], None]] = None,
    slice_states: int = SLICE_STATES,
    telemetry_sink: Optional[TelemetrySink] = None,
) -> SearchResult:
    session = SearchSession(
        search,
        time_limit_ms=time_limit_ms,
        slice_states=slice_states,
        telemetry_sink=telemetry_sink,
    )
    while True:
        if interrupt_check is not None and not search.finished and interrupt_check():
            return session.stop("interrupted")
        result = session.step()
        if progress_callback is not None:
            progress_callback(result if result is not None else session.snapshot())
        if result is not None:
            return result


def solve_puzzle(
    params: PuzzleParams,
    tubes: Iterable[Sequence[Color]],
    interrupt_check: Optional[Callable[[], bool]] = None,
    time_limit_ms: Optional[int] = None,
    progress_callback: Optional[Callable[[SearchResult], None]] = None,
    slice_states: int = SLICE_STATES,
    telemetry_sink: Optional[TelemetrySink] = None,
) -> SearchResult:
    search = ShortestSolutionSearch(params, tubes)
    return run_search(
        search,
        interrupt_check=interrupt_check,
        time_limit_ms=time_limit_ms,
        progress_callback=progress_callback,
        slice_states=slice_states,
        telemetry_sink=telemetry_sink,
    )


def check_solvable(
    params: PuzzleParams,
    tubes: Iterable[Sequence[Color]],
    canonical: str = "sorted",
    interrupt_check: Optional[Callable[[], bool]] = None,
    time_limit_ms: Optional[int] = None,
    progress_callback: Optional[Callable[[SearchResult], None]] = None,
    slice_states: int = SLICE_STATES,
    telemetry_sink: Optional[TelemetrySink] = None,
) -> SearchResult:
    search = FeasibilitySearch(params, tubes, canonical=canonical)
    return run_search(
        search,
        interrupt_check=interrupt_check,
        time_limit_ms=time_limit_ms,
        progress_callback=progress_callback,
        slice_states=slice_states,
        telemetry_sink=telemetry_sink,
    )


def solve_shortest(params: PuzzleParams, tubes: Iterable[Sequence[Color]]) -> Optional[List[Tuple[int, int]]]:
    return solve_puzzle(params, tubes).moves


def exists_solution(params: PuzzleParams, tubes: Iterable[Sequence[Color]], canonical: str = "sorted") -> bool:
    return bool(check_solvable(params, tubes, canonical=canonical).solvable)
