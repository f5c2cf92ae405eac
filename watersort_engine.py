"""Core rules engine for the tube water-sort puzzle."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Hashable, Iterable, List, Mapping, Optional, Sequence, Tuple
import json
import random

Color = Hashable
Tube = Tuple[Color, ...]
Configuration = Tuple[Tube, ...]

PALETTE: Tuple[str, ...] = (
    "red",
    "blue",
    "green",
    "yellow",
    "orange",
    "purple",
    "pink",
    "brown",
    "cyan",
    "magenta",
    "lime",
    "teal",
    "indigo",
    "violet",
    "gold",
    "silver",
    "black",
    "white",
    "gray",
    "turquoise",
    "maroon",
    "beige",
    "lavender",
)


class InvalidConfiguration(ValueError):
    """Raised when a configuration or move address breaks the puzzle's preconditions."""


class IllegalMove(ValueError):
    """Raised when applying a pour the rules do not allow."""


@dataclass(frozen=True)
class PuzzleParams:
    tube_height: int
    tube_count: Optional[int] = None


@dataclass(frozen=True)
class Block:
    color: Color
    hidden: bool = field(default=False, compare=False)


@dataclass(frozen=True)
class Move:
    source: int
    target: int
    amount: int


@dataclass(frozen=True)
class MoveInfo:
    state: Configuration
    move: Move
    solved: bool


def _block_color(block: Any) -> Color:
    if isinstance(block, Block):
        return block.color
    if isinstance(block, Mapping):
        if "color" not in block:
            raise InvalidConfiguration(f"block has no color: {block!r}")
        return block["color"]
    return block


def configuration_from_blocks(tubes: Iterable[Iterable[Any]]) -> Configuration:
    return tuple(tuple(_block_color(block) for block in tube) for tube in tubes)


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def validate_configuration(params: PuzzleParams, tubes: Iterable[Iterable[Any]]) -> Configuration:
    if not _is_int(params.tube_height) or params.tube_height <= 0:
        raise InvalidConfiguration(f"tube_height must be a positive integer, got {params.tube_height!r}")
    config = configuration_from_blocks(tubes)
    if params.tube_count is not None and params.tube_count != len(config):
        raise InvalidConfiguration(f"expected {params.tube_count} tubes, got {len(config)}")
    for i, tube in enumerate(config):
        if len(tube) > params.tube_height:
            raise InvalidConfiguration(
                f"tube {i} holds {len(tube)} blocks, more than tube_height={params.tube_height}"
            )
        for color in tube:
            try:
                hash(color)
            except TypeError as exc:
                raise InvalidConfiguration(f"tube {i} has an unhashable color {color!r}") from exc
    return config


def _check_index(tubes: Sequence[Sequence[Color]], index: int, role: str) -> None:
    if not _is_int(index) or index < 0 or index >= len(tubes):
        raise InvalidConfiguration(f"{role} tube index {index!r} out of range 0..{len(tubes) - 1}")


def is_solved(params: PuzzleParams, tubes: Sequence[Sequence[Color]]) -> bool:
    for tube in tubes:
        if not tube:
            continue
        if len(tube) != params.tube_height:
            return False
        first = tube[0]
        if any(color != first for color in tube):
            return False
    return True


def is_valid_move(tubes: Sequence[Sequence[Color]], source: int, target: int, params: PuzzleParams) -> bool:
    _check_index(tubes, source, "source")
    _check_index(tubes, target, "target")
    if source == target:
        return False
    src = tubes[source]
    dst = tubes[target]
    if not src:
        return False
    if len(dst) >= params.tube_height:
        return False
    return not dst or dst[-1] == src[-1]


def pour_run_length(tubes: Sequence[Sequence[Color]], source: int) -> int:
    _check_index(tubes, source, "source")
    src = tubes[source]
    if not src:
        return 0
    top = src[-1]
    run = 0
    for color in reversed(src):
        if color != top:
            break
        run += 1
    return run


def pour_amount(tubes: Sequence[Sequence[Color]], source: int, target: int, params: PuzzleParams) -> int:
    free = params.tube_height - len(tubes[target])
    return max(0, min(pour_run_length(tubes, source), free))


def legal_moves(params: PuzzleParams, tubes: Sequence[Sequence[Color]]) -> List[Tuple[int, int]]:
    count = len(tubes)
    return [
        (source, target)
        for source in range(count)
        for target in range(count)
        if source != target and is_valid_move(tubes, source, target, params)
    ]


def total_blocks(tubes: Iterable[Sequence[Color]]) -> int:
    return sum(len(tube) for tube in tubes)


def apply_move(params: PuzzleParams, tubes: Sequence[Sequence[Color]], source: int, target: int) -> Configuration:
    return apply_move_with_info(params, tubes, source, target).state


def apply_move_with_info(
    params: PuzzleParams, tubes: Sequence[Sequence[Color]], source: int, target: int
) -> MoveInfo:
    if not is_valid_move(tubes, source, target, params):
        if source == target:
            raise IllegalMove("illegal move: source and target are the same tube")
        if not tubes[source]:
            raise IllegalMove("illegal move: source tube is empty")
        if len(tubes[target]) >= params.tube_height:
            raise IllegalMove("illegal move: target tube is full")
        raise IllegalMove("illegal move: top colors differ")
    config = tuple(tuple(tube) for tube in tubes)
    new_state, amount = apply_move_fast(config, source, target, params.tube_height)
    return MoveInfo(new_state, Move(source, target, amount), is_solved(params, new_state))


def apply_move_fast(config: Configuration, source: int, target: int, tube_height: int) -> Tuple[Configuration, int]:
    # Caller has already validated the move.
    src = config[source]
    dst = config[target]
    top = src[-1]
    free = tube_height - len(dst)
    amount = 0
    cut = len(src)
    while cut > 0 and amount < free and src[cut - 1] == top:
        cut -= 1
        amount += 1
    tubes = list(config)
    tubes[source] = src[:cut]
    tubes[target] = dst + src[cut:]
    return tuple(tubes), amount


def replay_moves(
    params: PuzzleParams, tubes: Sequence[Sequence[Color]], moves: Iterable[Tuple[int, int]]
) -> Configuration:
    state = tuple(tuple(tube) for tube in tubes)
    for source, target in moves:
        state = apply_move(params, state, source, target)
    return state


def trace_moves(
    params: PuzzleParams, tubes: Sequence[Sequence[Color]], moves: Iterable[Tuple[int, int]]
) -> List[MoveInfo]:
    trace: List[MoveInfo] = []
    state: Configuration = tuple(tuple(tube) for tube in tubes)
    for source, target in moves:
        info = apply_move_with_info(params, state, source, target)
        trace.append(info)
        state = info.state
    return trace


def deal_configuration(
    colors: int,
    tube_height: int,
    empty: int = 2,
    seed: Optional[int] = None,
    palette: Sequence[Color] = PALETTE,
) -> Tuple[PuzzleParams, Configuration]:
    if colors < 0:
        raise ValueError("colors must be non-negative")
    if colors > len(palette):
        raise ValueError(f"at most {len(palette)} colors available")
    if tube_height <= 0:
        raise ValueError("tube_height must be positive")
    if empty < 0:
        raise ValueError("empty must be non-negative")
    rng = random.Random(seed)
    units: List[Color] = [color for color in palette[:colors] for _ in range(tube_height)]
    rng.shuffle(units)
    full = tuple(tuple(units[i * tube_height:(i + 1) * tube_height]) for i in range(colors))
    config = full + ((),) * empty
    return PuzzleParams(tube_height=tube_height, tube_count=len(config)), config


def configuration_to_json(tubes: Iterable[Sequence[Color]]) -> str:
    return json.dumps([list(tube) for tube in tubes], separators=(",", ":"))


def configuration_from_json(raw: str) -> Configuration:
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise InvalidConfiguration(f"malformed puzzle JSON: {exc}") from exc
    if not isinstance(data, list) or not all(isinstance(tube, list) for tube in data):
        raise InvalidConfiguration("puzzle JSON must be a list of lists")
    return configuration_from_blocks(data)


def pretty_print(params: PuzzleParams, tubes: Sequence[Sequence[Color]]) -> str:
    """
    Text rendering, one column per tube.

    The top slot is the first row; tube numbers are 1-based and sit under a
    rule line. Empty slots are blank.
    """
    columns: List[List[str]] = []
    for i, tube in enumerate(tubes):
        cells = [str(tube[slot]) if slot < len(tube) else "" for slot in range(params.tube_height)]
        cells.reverse()
        label = str(i + 1)
        width = max([len(label), 1, *(len(c) for c in cells)])
        columns.append([c.center(width) for c in cells] + ["-" * width, label.center(width)])
    if not columns:
        return "(no tubes)"
    rows = len(columns[0])
    return "\n".join("  ".join(col[r] for col in columns).rstrip() for r in range(rows))
