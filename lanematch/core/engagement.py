"""
Engagement Calculators
======================

Pure functions mapping streak to combo multiplier and progress to difficulty
(fall speed, spawn interval, milestones).
"""

from __future__ import annotations

import math
from typing import Optional

from lanematch.core.config_loader import ComboLevel, GameConfig, Milestone, get_config


def streak_multiplier(streak: int, config: Optional[GameConfig] = None) -> float:
    """
    Multiplier of the highest combo level reached by a streak.

    Args:
        streak: Consecutive correct taps.
        config: Game configuration. Uses default if None.

    Returns:
        1.0 below the first combo level.
    """
    if config is None:
        config = get_config()
    multiplier = 1.0
    for level in config.scoring.combo_levels:
        if streak >= level.streak:
            multiplier = level.multiplier
        else:
            break
    return multiplier


def combo_level_for(streak: int, config: Optional[GameConfig] = None) -> Optional[ComboLevel]:
    """Combo level reached exactly at this streak (celebration trigger), or None."""
    if config is None:
        config = get_config()
    for level in config.scoring.combo_levels:
        if level.streak == streak:
            return level
    return None


def calculate_dynamic_speed(progress: float, config: Optional[GameConfig] = None) -> float:
    """
    Fall speed multiplier for the current progress.

    Speed grows by speed_increase_per_progress for every full 10% of
    progress and is capped at max_speed_multiplier.
    """
    if config is None:
        config = get_config()
    difficulty = config.difficulty
    steps = math.floor(progress / 10)
    multiplier = difficulty.base_fall_speed + steps * difficulty.speed_increase_per_progress
    return min(multiplier, difficulty.max_speed_multiplier)


def calculate_spawn_interval(progress: float, config: Optional[GameConfig] = None) -> float:
    """Spawn tick interval (ms) for the current progress, never below the minimum."""
    if config is None:
        config = get_config()
    difficulty = config.difficulty
    span = difficulty.base_spawn_interval_ms - difficulty.min_spawn_interval_ms
    reduction = span * (progress / 100.0) * 0.3
    return max(difficulty.min_spawn_interval_ms, difficulty.base_spawn_interval_ms - reduction)


def check_milestone(
    previous_progress: float,
    current_progress: float,
    config: Optional[GameConfig] = None
) -> Optional[Milestone]:
    """
    Highest milestone crossed by a progress change.

    A milestone is crossed when previous < threshold <= current, so a drop
    in progress never triggers one.
    """
    if config is None:
        config = get_config()
    crossed = None
    for milestone in config.scoring.milestones:
        if previous_progress < milestone.progress <= current_progress:
            crossed = milestone
    return crossed
