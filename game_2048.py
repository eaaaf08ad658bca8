"""
Stateless 2048 Game Implementation
Pure functional approach: every operation returns a new grid or state
and never modifies its arguments.
"""

import random
from enum import Enum
from typing import Callable, List, NamedTuple, Tuple, Union

SIZE = 4
WIN_VALUE = 2048

Grid = List[List[int]]
RNG = Callable[[], float]


class Direction(str, Enum):
    UP = 'up'
    DOWN = 'down'
    LEFT = 'left'
    RIGHT = 'right'


class MoveResult(NamedTuple):
    grid: Grid
    score_delta: int
    moved: bool


class GameState(NamedTuple):
    grid: Grid
    score: int
    won: bool
    over: bool


def _empty_grid() -> Grid:
    return [[0] * SIZE for _ in range(SIZE)]


def _copy_grid(grid: Grid) -> Grid:
    return [row[:] for row in grid]


def _merge_line(line: List[int]) -> Tuple[List[int], int]:
    """
    Merge a single line (row or column) towards index 0.

    Args:
        line: List of 4 integers representing a row or column

    Returns:
        Tuple of (merged line, points gained from merges)
    """
    # Remove zeros
    non_zero = [val for val in line if val != 0]

    # Merge adjacent equal values, each tile at most once
    merged = []
    score_delta = 0
    i = 0
    while i < len(non_zero):
        if i + 1 < len(non_zero) and non_zero[i] == non_zero[i + 1]:
            value = non_zero[i] * 2
            merged.append(value)
            score_delta += value
            i += 2
        else:
            merged.append(non_zero[i])
            i += 1

    # Fill with zeros to maintain length of 4
    merged.extend([0] * (SIZE - len(merged)))
    return merged, score_delta


def init_game(rng: RNG = random.random) -> GameState:
    """
    Start a new session: an empty 4x4 grid with two random tiles.

    Args:
        rng: Function returning a float in [0, 1) on each call

    Returns:
        Initial game state with score 0
    """
    grid = spawn_tile(spawn_tile(_empty_grid(), rng), rng)
    return GameState(grid=grid, score=0, won=has_won(grid), over=not can_move(grid))


def apply_move(grid: Grid, direction: Union[Direction, str]) -> MoveResult:
    """
    Shift and merge all tiles in the given direction. No tile is spawned.

    Args:
        grid: Current 4x4 grid (left untouched)
        direction: One of 'up', 'down', 'left', 'right'

    Returns:
        MoveResult with the new grid, the points gained and whether any cell changed

    Raises:
        ValueError: If direction is not one of the four directions
    """
    direction = Direction(direction)
    reverse = direction in (Direction.RIGHT, Direction.DOWN)
    new_grid = _empty_grid()
    score_delta = 0

    for k in range(SIZE):
        if direction in (Direction.LEFT, Direction.RIGHT):
            line = grid[k][:]
        else:
            line = [grid[i][k] for i in range(SIZE)]

        if reverse:
            line.reverse()
        merged, points = _merge_line(line)
        if reverse:
            merged.reverse()
        score_delta += points

        if direction in (Direction.LEFT, Direction.RIGHT):
            new_grid[k] = merged
        else:
            for i in range(SIZE):
                new_grid[i][k] = merged[i]

    return MoveResult(grid=new_grid, score_delta=score_delta, moved=new_grid != grid)


def spawn_tile(grid: Grid, rng: RNG = random.random) -> Grid:
    """
    Add a random tile (2 with 90% probability or 4 with 10% probability)
    to a uniformly chosen empty position.

    Args:
        grid: 4x4 grid (left untouched)
        rng: Function returning a float in [0, 1) on each call

    Returns:
        Copy of the grid with one new tile, or a plain copy if the grid is full
    """
    empty_positions = [
        (i, j) for i in range(SIZE) for j in range(SIZE) if grid[i][j] == 0
    ]
    new_grid = _copy_grid(grid)
    if not empty_positions:
        return new_grid

    # Guard against an rng that returns exactly 1.0
    choice = min(int(rng() * len(empty_positions)), len(empty_positions) - 1)
    i, j = empty_positions[choice]
    new_grid[i][j] = 2 if rng() < 0.9 else 4
    return new_grid


def can_move(grid: Grid) -> bool:
    """
    Check if any move is possible from the current grid.

    A move exists iff there is an empty cell or two equal neighbours,
    so no direction needs to be simulated.
    """
    for i in range(SIZE):
        for j in range(SIZE):
            if grid[i][j] == 0:
                return True
            if j + 1 < SIZE and grid[i][j] == grid[i][j + 1]:
                return True
            if i + 1 < SIZE and grid[i][j] == grid[i + 1][j]:
                return True
    return False


def has_won(grid: Grid) -> bool:
    """True if any tile has reached 2048."""
    return any(val >= WIN_VALUE for row in grid for val in row)


def max_tile(grid: Grid) -> int:
    return max(max(row) for row in grid)


def move(state: GameState, direction: Union[Direction, str], rng: RNG = random.random) -> GameState:
    """
    Advance the session by one move.

    If the move changes nothing the same state object is returned: no score,
    no spawn, no flag update. Otherwise a tile is spawned into the moved grid,
    the points are added to the score and the won/over flags are recomputed.
    Once won, a state stays won.

    Args:
        state: Current game state
        direction: One of 'up', 'down', 'left', 'right'
        rng: Function returning a float in [0, 1) on each call

    Returns:
        New game state (or `state` itself if the move was invalid)
    """
    result = apply_move(state.grid, direction)
    if not result.moved:
        return state

    grid = spawn_tile(result.grid, rng)
    return GameState(
        grid=grid,
        score=state.score + result.score_delta,
        won=state.won or has_won(grid),
        over=not can_move(grid),
    )


def display(grid: Grid) -> str:
    """
    Format the grid as a markdown table.

    Args:
        grid: 4x4 grid to format
    """
    res = ''
    for row in grid:
        res += "| " + " | ".join(f"{val if val else '':^4}" for val in row) + " |\n"
    return res
