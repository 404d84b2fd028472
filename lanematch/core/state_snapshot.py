"""
State Snapshot
==============

SessionState is the committed scalar state of a session. SessionSnapshot is
the read-only view handed to the presentation layer, with a numpy packing
for tools and analysis.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Optional, Tuple

import numpy as np

from lanematch.core.catalog import VocabularyItem
from lanematch.core.config_loader import GameConfig, get_config
from lanematch.core.entities import FairyTransformObject, GameObject, Lane, WormObject

# Worm arrays are padded to this many slots
MAX_WORMS = 32


@dataclass(frozen=True)
class SessionState:
    """
    Scalar session state. Replaced wholesale on every commit.

    sequence_cursor is the position in the current level's sequence and is
    only meaningful for categories with requires_sequence.
    """
    level_index: int = 0
    target: Optional[VocabularyItem] = None
    target_deadline: Optional[float] = None
    progress: int = 0
    streak: int = 0
    multiplier: float = 1.0
    winner: bool = False
    active: bool = False
    continuous_mode: bool = False
    sequence_cursor: int = 0
    last_milestone: int = 0
    screen_shake: bool = False

    # Continuous mode
    lap_count: int = 0
    cycle_start_time: Optional[float] = None
    best_time: Optional[int] = None
    last_completion_time: Optional[int] = None

    @property
    def target_emoji(self) -> Optional[str]:
        return self.target.emoji if self.target else None


@dataclass(frozen=True)
class SessionSnapshot:
    """Immutable view of a session at one instant."""
    state: SessionState
    now: float
    category_name: str
    objects: Tuple[GameObject, ...]
    worms: Tuple[WormObject, ...]
    fairies: Tuple[FairyTransformObject, ...]
    max_objects: int

    @property
    def time_remaining_ms(self) -> Optional[float]:
        """Milliseconds until the target rotates, or None without a deadline."""
        if self.state.target_deadline is None:
            return None
        return max(0.0, self.state.target_deadline - self.now)

    @property
    def alive_worms(self) -> Tuple[WormObject, ...]:
        return tuple(w for w in self.worms if w.alive)

    @property
    def target_objects(self) -> Tuple[GameObject, ...]:
        emoji = self.state.target_emoji
        return tuple(o for o in self.objects if o.emoji == emoji)

    def find_object(self, object_id: str) -> Optional[GameObject]:
        for obj in self.objects:
            if obj.id == object_id:
                return obj
        return None

    def to_arrays(self) -> Dict[str, np.ndarray]:
        """
        Pack entities into fixed-size arrays.

        Object arrays have max_objects slots and worm arrays MAX_WORMS
        slots; unused slots are masked out. A pool transiently above
        capacity is truncated.
        """
        n = self.max_objects
        obj_x = np.zeros(n, dtype=np.float32)
        obj_y = np.zeros(n, dtype=np.float32)
        obj_speed = np.zeros(n, dtype=np.float32)
        obj_lane = np.full(n, -1, dtype=np.int8)
        obj_is_target = np.zeros(n, dtype=bool)
        obj_mask = np.zeros(n, dtype=bool)

        target = self.state.target_emoji
        for i, obj in enumerate(self.objects[:n]):
            obj_x[i] = obj.x
            obj_y[i] = obj.y
            obj_speed[i] = obj.speed
            obj_lane[i] = 0 if obj.lane is Lane.LEFT else 1
            obj_is_target[i] = obj.emoji == target
            obj_mask[i] = True

        worm_x = np.zeros(MAX_WORMS, dtype=np.float32)
        worm_y = np.zeros(MAX_WORMS, dtype=np.float32)
        worm_alive = np.zeros(MAX_WORMS, dtype=bool)
        worm_mask = np.zeros(MAX_WORMS, dtype=bool)
        for i, worm in enumerate(self.worms[:MAX_WORMS]):
            worm_x[i] = worm.x
            worm_y[i] = worm.y
            worm_alive[i] = worm.alive
            worm_mask[i] = True

        return {
            "level_index": np.array(self.state.level_index, dtype=np.int32),
            "progress": np.array(self.state.progress, dtype=np.int32),
            "streak": np.array(self.state.streak, dtype=np.int32),
            "objects_count": np.array(len(self.objects), dtype=np.int32),
            "obj_x": obj_x,
            "obj_y": obj_y,
            "obj_speed": obj_speed,
            "obj_lane": obj_lane,
            "obj_is_target": obj_is_target,
            "obj_mask": obj_mask,
            "worm_x": worm_x,
            "worm_y": worm_y,
            "worm_alive": worm_alive,
            "worm_mask": worm_mask,
        }


class SnapshotBuilder:
    """Builds snapshots sized from the config."""

    def __init__(self, config: Optional[GameConfig] = None):
        if config is None:
            config = get_config()
        self._max_objects = config.spawn.max_active_objects

    @property
    def max_objects(self) -> int:
        return self._max_objects

    def build(
        self,
        state: SessionState,
        now: float,
        category_name: str,
        objects: Tuple[GameObject, ...],
        worms: Tuple[WormObject, ...],
        fairies: Tuple[FairyTransformObject, ...]
    ) -> SessionSnapshot:
        return SessionSnapshot(
            state=state,
            now=now,
            category_name=category_name,
            objects=tuple(objects),
            worms=tuple(worms),
            fairies=tuple(fairies),
            max_objects=self._max_objects,
        )
