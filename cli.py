"""CLI for the tube water-sort puzzle and its solver."""

from __future__ import annotations

import argparse
import os
import random
from typing import Callable, List, Optional, Tuple

from watersort_engine import (
    PALETTE,
    Configuration,
    IllegalMove,
    InvalidConfiguration,
    PuzzleParams,
    apply_move_with_info,
    configuration_from_json,
    deal_configuration,
    is_solved,
    pretty_print,
    trace_moves,
    validate_configuration,
)
from watersort_solver import SearchResult, check_solvable, solve_puzzle
from watersort_telemetry import TelemetrySink, ThreadedTCPSink, parse_host_port


def print_help() -> None:
    print("Controls: 'a b' = pour tube a into tube b, h=hint, s=solution, u=undo, r=reset, q=quit, ?=help.")
    print("Tubes are numbered from 1, left to right.")


def read_command(prompt: str) -> str:
    while True:
        try:
            raw = input(prompt).strip().lower()
        except EOFError:
            print()
            return "q"
        if raw == "":
            print("Please enter two tube numbers, or a command.")
            continue
        return raw


def parse_pour(raw: str, tube_count: int) -> Optional[Tuple[int, int]]:
    sep = "," if "," in raw else " "
    parts = [part for part in raw.split(sep) if part.strip() != ""]
    if len(parts) != 2:
        return None
    try:
        source, target = (int(part) for part in parts)
    except ValueError:
        return None
    if not (1 <= source <= tube_count and 1 <= target <= tube_count):
        return None
    return source - 1, target - 1


def format_moves(moves: List[Tuple[int, int]]) -> str:
    if not moves:
        return "(already solved)"
    return ", ".join(f"{source + 1}->{target + 1}" for source, target in moves)


def format_search(result: SearchResult) -> str:
    return (
        f"Search: reason={result.reason} complete={result.complete} nodes={result.nodes} "
        f"states={result.states} depth={result.max_depth} slices={result.slices} "
        f"elapsed_ms={result.elapsed_ms}"
    )


def _telemetry_from(value: Optional[str]) -> Optional[TelemetrySink]:
    raw = value if value is not None else os.environ.get("WATERSORT_TELEMETRY", "")
    endpoint = parse_host_port(raw) if raw else None
    if endpoint is None:
        return None
    return ThreadedTCPSink(endpoint[0], endpoint[1])


def _report_solution(
    params: PuzzleParams,
    state: Configuration,
    result: SearchResult,
    explain: bool,
) -> None:
    if not result.complete:
        print("Search stopped before finishing; no answer yet.")
    elif result.moves is None:
        print("No solution.")
    else:
        print(f"Solution ({len(result.moves)} moves): {format_moves(result.moves)}")
        if explain:
            for info in trace_moves(params, state, result.moves):
                print(f"  pour {info.move.amount} from {info.move.source + 1} to {info.move.target + 1}")
    if explain:
        print(format_search(result))


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Tube water-sort puzzle CLI solver")
    parser.add_argument("--colors", type=int, default=4, help="number of colors to deal (default: 4)")
    parser.add_argument("--height", type=int, default=4, help="tube capacity (default: 4)")
    parser.add_argument("--empty", type=int, default=2, help="number of empty tubes (default: 2)")
    parser.add_argument("--seed", type=int, default=None, help="RNG seed for the deal")
    parser.add_argument(
        "--puzzle",
        default=None,
        help='puzzle as JSON, bottom to top per tube, e.g. \'[["red","blue"],["blue","red"],[]]\'',
    )
    parser.add_argument("--solve", action="store_true", help="print the shortest solution and exit")
    parser.add_argument("--explain", action="store_true", help="print pour amounts and search stats")
    parser.add_argument(
        "--time-ms",
        type=int,
        default=0,
        help="search budget in milliseconds, 0 for no limit (default: 0)",
    )
    parser.add_argument(
        "--telemetry",
        default=None,
        help="send telemetry as JSONL to host:port (default: $WATERSORT_TELEMETRY)",
    )
    args = parser.parse_args(argv)

    if args.height <= 0:
        print("--height must be positive")
        return 2
    if args.empty < 0:
        print("--empty must be non-negative")
        return 2
    if args.colors < 0 or args.colors > len(PALETTE):
        print(f"--colors must be between 0 and {len(PALETTE)}")
        return 2

    if args.puzzle is not None:
        try:
            params = PuzzleParams(tube_height=args.height)
            loaded = (params, validate_configuration(params, configuration_from_json(args.puzzle)))
        except InvalidConfiguration as exc:
            print(f"invalid puzzle: {exc}")
            return 2

        def new_puzzle() -> Tuple[PuzzleParams, Configuration]:
            return loaded

    else:
        deals = random.Random(args.seed)

        def new_puzzle() -> Tuple[PuzzleParams, Configuration]:
            return deal_configuration(args.colors, args.height, empty=args.empty, seed=deals.getrandbits(32))

    params, state = new_puzzle()

    time_limit_ms = args.time_ms if args.time_ms > 0 else None
    telemetry = _telemetry_from(args.telemetry)
    try:
        if args.solve:
            print(pretty_print(params, state))
            print()
            result = solve_puzzle(params, state, time_limit_ms=time_limit_ms, telemetry_sink=telemetry)
            _report_solution(params, state, result, args.explain)
            return 0
        return play(params, state, time_limit_ms, telemetry, args.explain, new_puzzle)
    finally:
        if telemetry is not None:
            telemetry.close()


def play(
    params: PuzzleParams,
    state: Configuration,
    time_limit_ms: Optional[int],
    telemetry: Optional[TelemetrySink],
    explain: bool,
    new_puzzle: Callable[[], Tuple[PuzzleParams, Configuration]],
) -> int:
    history: List[Configuration] = []
    print_help()
    while True:
        print()
        print(pretty_print(params, state))

        if is_solved(params, state):
            print()
            print(f"Solved in {len(history)} moves!")
            return 0

        raw = read_command("Move (a b, h=hint, s=solution, u=undo, r=reset, q=quit, ?=help): ")
        if raw in {"q", "quit"}:
            return 0
        if raw in {"?", "help"}:
            print_help()
            continue
        if raw in {"r", "reset"}:
            params, state = new_puzzle()
            history.clear()
            print("Puzzle reset.")
            continue
        if raw in {"u", "undo"}:
            if history:
                state = history.pop()
            else:
                print("Nothing to undo.")
            continue
        if raw in {"h", "hint", "s", "solution"}:
            result = solve_puzzle(params, state, time_limit_ms=time_limit_ms, telemetry_sink=telemetry)
            if raw in {"s", "solution"}:
                _report_solution(params, state, result, explain)
            elif result.moves:
                source, target = result.moves[0]
                print(f"Hint: pour {source + 1} into {target + 1} ({len(result.moves)} moves left).")
                if explain:
                    print(format_search(result))
            else:
                _report_solution(params, state, result, explain)
            continue

        pour = parse_pour(raw, len(state))
        if pour is None:
            print(f"Please enter two tube numbers between 1 and {len(state)}, or a command.")
            continue

        try:
            info = apply_move_with_info(params, state, pour[0], pour[1])
        except IllegalMove as exc:
            print(str(exc))
            continue
        history.append(state)
        state = info.state
        print(f"Poured {info.move.amount} from tube {pour[0] + 1} into tube {pour[1] + 1}.")
        if info.solved:
            continue
        check = check_solvable(params, state, time_limit_ms=time_limit_ms, telemetry_sink=telemetry)
        if check.complete and not check.solvable:
            print("No solution exists from the current position. Undo with 'u'.")


if __name__ == "__main__":
    raise SystemExit(main())
