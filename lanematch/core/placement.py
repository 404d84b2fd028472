"""
Safe Position Placement
=======================

Nudges a randomly sampled spawn position away from objects already falling
in the same lane.
"""

from __future__ import annotations

from typing import Iterable, Optional, Sequence, Tuple

from lanematch.core.config_loader import GameConfig, get_config
from lanematch.core.entities import GameObject


def clamp(value: float, low: float, high: float) -> float:
    return min(high, max(low, value))


def _nudge(
    x: float,
    y: float,
    existing: Sequence[GameObject],
    lane_bounds: Tuple[float, float],
    min_vertical_gap: float,
    horizontal_separation: float
) -> Tuple[float, float, bool]:
    """One sweep over the lane. Returns (x, y, moved)."""
    min_x, max_x = lane_bounds
    moved = False
    for other in existing:
        vertical_gap = abs(other.y - y)
        horizontal_gap = abs(other.x - x)

        # Too close vertically: lift above the other object
        if vertical_gap < min_vertical_gap:
            new_y = min(y, other.y - min_vertical_gap)
            if new_y != y:
                y = new_y
                moved = True

        # Overlapping band: step sideways, staying inside the lane
        if horizontal_gap < horizontal_separation and vertical_gap < min_vertical_gap * 1.2:
            target = other.x - horizontal_separation if x < other.x else other.x + horizontal_separation
            new_x = clamp(target, min_x, max_x)
            if new_x != x:
                x = new_x
                moved = True
    return x, y, moved


def calculate_safe_position(
    initial_x: float,
    initial_y: float,
    existing: Iterable[GameObject],
    lane_bounds: Tuple[float, float],
    config: Optional[GameConfig] = None,
    max_attempts: Optional[int] = None
) -> Tuple[float, float]:
    """
    Find a spawn position clear of existing objects in a lane.

    Each attempt sweeps the lane once, lifting the candidate above any
    object it is vertically too close to and shifting it sideways when it
    also overlaps horizontally. The loop stops at the first sweep that
    needs no adjustment. After max_attempts sweeps the last candidate is
    accepted as is.

    Args:
        initial_x: Sampled x (% of viewport width), inside lane_bounds.
        initial_y: Sampled y (px), usually zero or negative for stagger.
        existing: Objects already in the lane, including ones created
            earlier in the same batch.
        lane_bounds: (min_x, max_x) of the lane.
        config: Game configuration. Uses default if None.
        max_attempts: Overrides spawn.placement_max_attempts.

    Returns:
        (x, y) of the chosen position.
    """
    if config is None:
        config = get_config()
    spawn = config.spawn
    attempts = max_attempts if max_attempts is not None else spawn.placement_max_attempts

    others = list(existing)
    x = clamp(initial_x, *lane_bounds)
    y = initial_y
    for _ in range(max(1, attempts)):
        x, y, moved = _nudge(
            x, y, others, lane_bounds,
            spawn.min_vertical_gap, spawn.horizontal_separation
        )
        if not moved:
            break
    return x, y
