"""
Tap Validator & Scorer
======================

Validates a tapped object against the current target and applies the score
change. Level completion is handled by lanematch.core.rules.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Optional, Sequence

from lanematch.core.catalog import Category
from lanematch.core.config_loader import ComboLevel, GameConfig, Milestone, get_config
from lanematch.core.engagement import check_milestone, combo_level_for, streak_multiplier
from lanematch.core.entities import GameObject
from lanematch.core.exceptions import LookupMiss
from lanematch.core.state_snapshot import SessionState


@dataclass(frozen=True)
class TapValidation:
    """A tapped object and whether it matched."""
    obj: GameObject
    is_correct: bool


@dataclass(frozen=True)
class ScoreUpdate:
    """New state after a tap plus any celebrations it triggered."""
    state: SessionState
    milestone: Optional[Milestone] = None
    combo: Optional[ComboLevel] = None
    completed: bool = False

    def __repr__(self) -> str:
        return (f"ScoreUpdate(progress={self.state.progress}, streak={self.state.streak}, "
                f"completed={self.completed})")


def is_correct_tap(obj: GameObject, state: SessionState, category: Category) -> bool:
    """
    Match rule for a tapped object.

    Sequence categories compare by name against the expected item, other
    categories compare the emoji glyph against the target.
    """
    if state.target is None:
        return False
    if category.requires_sequence:
        return obj.name == state.target.name
    return obj.emoji == state.target.emoji


def validate_tap(
    objects: Sequence[GameObject],
    object_id: str,
    state: SessionState,
    category: Category
) -> TapValidation:
    """
    Look up a tapped object and check it against the target.

    Raises:
        LookupMiss: If the object is no longer in the pool.
    """
    for obj in objects:
        if obj.id == object_id:
            return TapValidation(obj=obj, is_correct=is_correct_tap(obj, state, category))
    raise LookupMiss("object", object_id)


class ScoreKeeper:
    """
    Applies correct and incorrect taps to the session state.

    progress moves by points_per_tap and stays within [0, max_progress];
    streak never goes below zero and a miss always resets it.
    """

    def __init__(self, config: Optional[GameConfig] = None):
        """
        Initialize score keeper.

        Args:
            config: Game configuration. Uses default if None.
        """
        if config is None:
            config = get_config()

        self._config = config
        self._points = config.scoring.points_per_tap
        self._max_progress = config.scoring.max_progress

    @property
    def max_progress(self) -> int:
        return self._max_progress

    def apply_correct(self, state: SessionState, category: Category) -> ScoreUpdate:
        """
        Score a correct tap.

        Advances the sequence cursor for sequence categories. Sets
        completed when progress reaches max_progress.
        """
        streak = state.streak + 1
        progress = min(state.progress + self._points, self._max_progress)
        milestone = check_milestone(state.progress, progress, self._config)
        cursor = state.sequence_cursor + 1 if category.requires_sequence else state.sequence_cursor

        new_state = replace(
            state,
            streak=streak,
            progress=progress,
            multiplier=streak_multiplier(streak, self._config),
            sequence_cursor=cursor,
            last_milestone=milestone.progress if milestone else state.last_milestone,
        )
        return ScoreUpdate(
            state=new_state,
            milestone=milestone,
            combo=combo_level_for(streak, self._config),
            completed=progress >= self._max_progress,
        )

    def apply_incorrect(self, state: SessionState) -> ScoreUpdate:
        """Score a miss: streak to zero, progress down by one tap's worth."""
        new_state = replace(
            state,
            streak=0,
            progress=max(state.progress - self._points, 0),
            multiplier=1.0,
        )
        return ScoreUpdate(state=new_state)
