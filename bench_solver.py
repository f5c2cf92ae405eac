"""Deterministic benchmark harness for the water-sort solver."""

from __future__ import annotations

import argparse
import gc
import platform
import random
import statistics
import sys
import time
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple

from watersort_engine import (
    Configuration,
    PuzzleParams,
    configuration_from_json,
    configuration_to_json,
    deal_configuration,
    validate_configuration,
)
from watersort_solver import check_solvable, solve_puzzle

Position = Tuple[PuzzleParams, Configuration]


def _generate_positions(
    *,
    positions: int,
    colors: int,
    height: int,
    empty: int,
    seed: int,
) -> List[Position]:
    rng = random.Random(seed)
    return [
        deal_configuration(colors, height, empty=empty, seed=rng.getrandbits(32))
        for _ in range(positions)
    ]


def _load_positions(path: Path, limit: int, height: int) -> List[Position]:
    params = PuzzleParams(tube_height=height)
    out: List[Position] = []
    with path.open("r", encoding="utf-8") as handle:
        for line_no, raw in enumerate(handle, start=1):
            line = raw.strip()
            if not line:
                continue
            try:
                config = validate_configuration(params, configuration_from_json(line))
            except ValueError as exc:
                raise ValueError(f"invalid puzzle at line {line_no}: {exc}") from exc
            out.append((params, config))
            if len(out) >= limit:
                break
    return out


def _save_positions(path: Path, positions: Sequence[Position]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", encoding="utf-8") as handle:
        for _, config in positions:
            handle.write(configuration_to_json(config) + "\n")


def _percentile(values: Sequence[float], percentile: float) -> float:
    if not values:
        return 0.0
    if len(values) == 1:
        return float(values[0])
    cuts = statistics.quantiles(values, n=100, method="inclusive")
    index = min(len(cuts) - 1, max(0, round(percentile * 100) - 1))
    return float(cuts[index])


def _argument_error(args: argparse.Namespace) -> Optional[str]:
    for name in ("positions", "colors", "height", "repeat"):
        if getattr(args, name) <= 0:
            return f"--{name} must be > 0"
    if args.empty < 0:
        return "--empty must be >= 0"
    if args.load_positions is not None and not args.load_positions.exists():
        return f"--load-positions not found: {args.load_positions}"
    return None


def _run_single(params: PuzzleParams, config: Configuration, time_limit_ms: Optional[int]) -> Dict[str, object]:
    shortest = solve_puzzle(params, config, time_limit_ms=time_limit_ms)
    feasible = check_solvable(params, config, time_limit_ms=time_limit_ms)
    return {
        "moves": None if shortest.moves is None else len(shortest.moves),
        "agree": (not shortest.complete or not feasible.complete) or shortest.solvable == feasible.solvable,
        "bfs_nodes": shortest.nodes,
        "bfs_ms": shortest.elapsed_ms,
        "dfs_nodes": feasible.nodes,
        "dfs_ms": feasible.elapsed_ms,
        "solvable": shortest.solvable,
    }


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Deterministic solver benchmark")
    parser.add_argument("--positions", type=int, default=10, help="number of puzzles (default: 10)")
    parser.add_argument("--colors", type=int, default=4, help="colors per puzzle (default: 4)")
    parser.add_argument("--height", type=int, default=4, help="tube capacity (default: 4)")
    parser.add_argument("--empty", type=int, default=2, help="empty tubes per puzzle (default: 2)")
    parser.add_argument("--seed", type=int, default=12345, help="random seed for puzzle generation")
    parser.add_argument("--time-ms", type=int, default=0, help="budget per search, 0 for none (default: 0)")
    parser.add_argument("--repeat", type=int, default=1, help="benchmark repeats for p50/p95 summaries")
    parser.add_argument("--no-gc", action="store_true", help="disable GC during benchmark loop")
    parser.add_argument(
        "--save-positions",
        type=Path,
        default=None,
        help="write sampled puzzles (JSON lines) to file",
    )
    parser.add_argument(
        "--load-positions",
        type=Path,
        default=None,
        help="load puzzles (JSON lines) from file; uses --height",
    )
    args = parser.parse_args(argv)

    error = _argument_error(args)
    if error is not None:
        print(error)
        return 2

    if args.load_positions is not None:
        try:
            positions = _load_positions(args.load_positions, args.positions, args.height)
        except ValueError as exc:
            print(f"failed to load positions: {exc}")
            return 2
        if not positions:
            print("--load-positions provided no puzzles")
            return 2
    else:
        try:
            positions = _generate_positions(
                positions=args.positions,
                colors=args.colors,
                height=args.height,
                empty=args.empty,
                seed=args.seed,
            )
        except ValueError as exc:
            print(str(exc))
            return 2
    if args.save_positions is not None:
        _save_positions(args.save_positions, positions)

    time_limit_ms = args.time_ms if args.time_ms > 0 else None
    print(f"python={sys.version.split()[0]} platform={platform.platform()} repeats={args.repeat}")
    print(
        "rep idx solvable moves bfs_nodes bfs_ms dfs_nodes dfs_ms wall_ms "
        f"(positions={len(positions)} colors={args.colors} height={args.height} seed={args.seed})"
    )

    gc_was_enabled = gc.isenabled()
    repeat_summaries: List[Dict[str, float]] = []
    disagreements = 0
    if args.no_gc and gc_was_enabled:
        gc.disable()
    try:
        for rep in range(1, args.repeat + 1):
            total_bfs_nodes = 0
            total_dfs_nodes = 0
            total_bfs_ms = 0
            total_dfs_ms = 0
            solvable_count = 0
            wall_start_ns = time.perf_counter_ns()

            for idx, (params, config) in enumerate(positions, start=1):
                start_ns = time.perf_counter_ns()
                row = _run_single(params, config, time_limit_ms)
                wall_ms = (time.perf_counter_ns() - start_ns) // 1_000_000
                total_bfs_nodes += int(row["bfs_nodes"])
                total_dfs_nodes += int(row["dfs_nodes"])
                total_bfs_ms += int(row["bfs_ms"])
                total_dfs_ms += int(row["dfs_ms"])
                if row["solvable"]:
                    solvable_count += 1
                if not row["agree"]:
                    disagreements += 1
                moves = "-" if row["moves"] is None else str(row["moves"])
                print(
                    f"{rep:>3d} {idx:03d} {str(row['solvable']):>8} {moves:>5} "
                    f"{int(row['bfs_nodes']):>9d} {int(row['bfs_ms']):>6d} "
                    f"{int(row['dfs_nodes']):>9d} {int(row['dfs_ms']):>6d} {int(wall_ms):>7d}"
                )

            total_wall_ms = max(1, (time.perf_counter_ns() - wall_start_ns) // 1_000_000)
            nps_wall = int((total_bfs_nodes + total_dfs_nodes) * 1000 / total_wall_ms)
            repeat_summaries.append(
                {
                    "solvable": float(solvable_count),
                    "total_wall_ms": float(total_wall_ms),
                    "nps_wall": float(nps_wall),
                    "avg_bfs_nodes": total_bfs_nodes / len(positions),
                    "avg_dfs_nodes": total_dfs_nodes / len(positions),
                }
            )
            print(
                "summary "
                f"rep={rep} positions={len(positions)} solvable={solvable_count} "
                f"bfs_nodes={total_bfs_nodes} bfs_ms={total_bfs_ms} "
                f"dfs_nodes={total_dfs_nodes} dfs_ms={total_dfs_ms} "
                f"total_wall_ms={total_wall_ms} nps_wall={nps_wall}"
            )
    finally:
        if args.no_gc and gc_was_enabled:
            gc.enable()

    if args.repeat > 1:
        def _print_dist(name: str, key: str) -> None:
            values = [summary[key] for summary in repeat_summaries]
            print(
                f"dist {name} min={min(values):.2f} p50={_percentile(values, 0.50):.2f} "
                f"p95={_percentile(values, 0.95):.2f} max={max(values):.2f} mean={statistics.fmean(values):.2f}"
            )

        _print_dist("nps_wall", "nps_wall")
        _print_dist("total_wall_ms", "total_wall_ms")
        _print_dist("avg_bfs_nodes", "avg_bfs_nodes")
        _print_dist("avg_dfs_nodes", "avg_dfs_nodes")

    if disagreements:
        print(f"error: shortest and feasibility searches disagreed on {disagreements} puzzles")
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
