"""
Worms
=====

Worm hazards: creation, the one-way alive -> dead transition on tap, and
the speed escalation fed back to the session.
"""

from __future__ import annotations

import math
import random
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

from lanematch.core.config_loader import GameConfig, get_config
from lanematch.core.entities import IdFactory, Lane, WormObject
from lanematch.core.exceptions import LookupMiss


@dataclass(frozen=True)
class WormKill:
    """Result of tapping a worm."""
    worms: Tuple[WormObject, ...]
    worm: WormObject
    alive_remaining: int


def create_worms(
    count: int,
    start_index: int,
    rng: random.Random,
    ids: IdFactory,
    config: Optional[GameConfig] = None
) -> List[WormObject]:
    """
    Create worms, alternating lanes by their overall index.

    Args:
        count: Number of worms to create.
        start_index: Index of the first new worm among all worms of the
            session (even indices go left).
        rng: Random source.
        ids: Id source.
        config: Game configuration. Uses default if None.
    """
    if config is None:
        config = get_config()
    worm_cfg = config.worms

    worms = []
    for i in range(count):
        index = start_index + i
        lane = Lane.LEFT if index % 2 == 0 else Lane.RIGHT
        min_x, max_x = config.lanes.bounds(lane.value)
        worms.append(WormObject(
            id=ids.next_id("worm"),
            lane=lane,
            x=rng.random() * (max_x - min_x) + min_x,
            y=rng.random() * worm_cfg.spawn_y_range + worm_cfg.spawn_y_min,
            vx=(rng.random() - 0.5) * worm_cfg.base_speed * 2,
            vy=(rng.random() - 0.5) * worm_cfg.base_speed * 2,
            angle=rng.random() * math.pi * 2,
            wiggle_phase=rng.random() * math.pi * 2,
        ))
    return worms


def kill_worm(worms: Sequence[WormObject], worm_id: str) -> Optional[WormKill]:
    """
    Mark a worm dead.

    Returns:
        WormKill, or None if the worm is already dead.

    Raises:
        LookupMiss: If no worm has this id.
    """
    for index, worm in enumerate(worms):
        if worm.id != worm_id:
            continue
        if not worm.alive:
            return None
        dead = worm.killed()
        updated = tuple(worms[:index]) + (dead,) + tuple(worms[index + 1:])
        alive = sum(1 for w in updated if w.alive)
        return WormKill(worms=updated, worm=worm, alive_remaining=alive)
    raise LookupMiss("worm", worm_id)


def escalate_speed(factor: float, alive_remaining: int, config: Optional[GameConfig] = None) -> float:
    """Speed factor after a kill: multiplied by speed_escalation while worms remain."""
    if config is None:
        config = get_config()
    if alive_remaining > 0:
        return factor * config.worms.speed_escalation
    return factor
