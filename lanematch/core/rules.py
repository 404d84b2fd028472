"""
Level Rules
===========

What happens when progress completes: a win in normal play, or a lap in
continuous mode that cycles through the categories and tracks the fastest
full cycle.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Optional

from lanematch.core.config_loader import GameConfig, get_config
from lanematch.core.state_snapshot import SessionState


@dataclass(frozen=True)
class TransitionResult:
    """Result of a level completion."""
    state: SessionState
    reason: str
    level_changed: bool = False
    wrapped: bool = False
    elapsed: Optional[int] = None
    new_best_time: Optional[int] = None

    @property
    def is_win(self) -> bool:
        return self.state.winner

    @staticmethod
    def win(state: SessionState) -> "TransitionResult":
        return TransitionResult(state, "player_wins")

    @staticmethod
    def lap(state: SessionState) -> "TransitionResult":
        return TransitionResult(state, "continuous_mode_reset")

    @staticmethod
    def level_change(
        state: SessionState,
        wrapped: bool = False,
        elapsed: Optional[int] = None,
        new_best_time: Optional[int] = None
    ) -> "TransitionResult":
        return TransitionResult(
            state, "continuous_mode_level_change",
            level_changed=True, wrapped=wrapped,
            elapsed=elapsed, new_best_time=new_best_time,
        )


class LevelRules:
    """
    Win / continuous-mode transition.

    - Normal play: winner is set and the session freezes until reset.
    - Continuous mode: every completion is a lap and resets progress.
      Every laps_per_level laps the level advances (wrapping to 0). On a
      wrap the cycle time is measured against the best time, which only
      improves when strictly faster, and a new cycle starts.

    The caller picks the next target; the returned state keeps the old one.
    """

    def __init__(self, config: Optional[GameConfig] = None):
        """
        Initialize rules.

        Args:
            config: Game configuration. Uses default if None.
        """
        if config is None:
            config = get_config()

        self._laps_per_level = config.continuous.laps_per_level

    @property
    def laps_per_level(self) -> int:
        return self._laps_per_level

    def complete(self, state: SessionState, now: float, category_count: int) -> TransitionResult:
        """
        Apply a level completion.

        Args:
            state: State whose progress just reached the maximum.
            now: Current time (ms).
            category_count: Number of levels in the catalog.
        """
        if not state.continuous_mode:
            return TransitionResult.win(replace(state, winner=True))

        lap_count = state.lap_count + 1
        lapped = replace(state, lap_count=lap_count, progress=0, winner=False, last_milestone=0)

        if lap_count % self._laps_per_level != 0:
            return TransitionResult.lap(lapped)

        next_level = (state.level_index + 1) % category_count
        advanced = replace(lapped, level_index=next_level, sequence_cursor=0)
        if next_level != 0 or state.cycle_start_time is None:
            return TransitionResult.level_change(advanced)

        elapsed = int(now - state.cycle_start_time)
        new_best = None
        if state.best_time is None or elapsed < state.best_time:
            new_best = elapsed
        wrapped = replace(
            advanced,
            cycle_start_time=now,
            last_completion_time=elapsed,
            best_time=new_best if new_best is not None else state.best_time,
        )
        return TransitionResult.level_change(wrapped, wrapped=True, elapsed=elapsed, new_best_time=new_best)
