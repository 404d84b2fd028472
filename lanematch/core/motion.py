"""
Motion
======

Per-frame movement for falling objects and worms. This is linear motion
with simple lane separation and bounce, not a physics simulation.
"""

from __future__ import annotations

import math
from dataclasses import replace
from typing import Dict, List, Optional, Sequence, Tuple

from lanematch.core.config_loader import GameConfig, get_config
from lanematch.core.engagement import calculate_dynamic_speed
from lanematch.core.entities import GameObject, Lane, WormObject
from lanematch.core.placement import clamp

# Frame duration the object speeds are tuned for
FRAME_MS = 1000.0 / 60.0


def _separate_lane(objects: List[GameObject], lane: Lane, config: GameConfig) -> List[GameObject]:
    """Push apart on-screen neighbours that overlap horizontally."""
    min_x, max_x = config.lanes.bounds(lane.value)
    min_sep = config.spawn.collision_min_separation
    min_gap = config.spawn.min_vertical_gap

    ordered = sorted(objects, key=lambda o: o.y)
    xs = [o.x for o in ordered]
    for i, current in enumerate(ordered):
        if current.y < 0:
            continue
        xs[i] = clamp(xs[i], min_x, max_x)
        for j in range(i + 1, len(ordered)):
            other = ordered[j]
            if other.y < 0:
                continue
            if other.y - current.y > min_gap:
                break
            gap = abs(xs[i] - xs[j])
            if gap >= min_sep or gap == 0:
                continue
            overlap = (min_sep - gap) / 2
            direction = -1 if xs[i] < xs[j] else 1
            xs[i] = clamp(xs[i] + overlap * direction, min_x, max_x)
            xs[j] = clamp(xs[j] - overlap * direction, min_x, max_x)

    return [o if o.x == x else replace(o, x=x) for o, x in zip(ordered, xs)]


def advance_objects(
    objects: Sequence[GameObject],
    progress: float,
    config: Optional[GameConfig] = None,
    frames: float = 1.0
) -> Tuple[List[GameObject], List[GameObject]]:
    """
    Move falling objects down and drop the ones past the bottom edge.

    Args:
        objects: Current pool.
        progress: Session progress, drives the dynamic speed.
        config: Game configuration. Uses default if None.
        frames: Number of nominal 60 Hz frames to advance.

    Returns:
        (kept, fallen) with kept in original pool order.
    """
    if config is None:
        config = get_config()
    limit = config.lanes.viewport_height + config.spawn.emoji_size
    step = 1.2 * calculate_dynamic_speed(progress, config) * frames

    moved: List[GameObject] = []
    fallen: List[GameObject] = []
    for obj in objects:
        new_y = obj.y + obj.speed * step
        if new_y < limit:
            moved.append(replace(obj, y=new_y))
        else:
            fallen.append(obj)

    by_id: Dict[str, GameObject] = {}
    for lane in Lane:
        lane_objects = [o for o in moved if o.lane is lane]
        if len(lane_objects) > 1:
            lane_objects = _separate_lane(lane_objects, lane, config)
        for obj in lane_objects:
            by_id[obj.id] = obj
    return [by_id[o.id] for o in moved], fallen


def update_worms(
    worms: Sequence[WormObject],
    dt: float,
    speed_factor: float,
    config: Optional[GameConfig] = None
) -> List[WormObject]:
    """
    Move live worms and bounce them off their lane and the viewport.

    Args:
        worms: Current worms. Dead worms are returned unchanged.
        dt: Elapsed time (ms).
        speed_factor: Session worm speed factor.
        config: Game configuration. Uses default if None.
    """
    if config is None:
        config = get_config()
    width = config.lanes.viewport_width
    height = config.lanes.viewport_height
    size = config.worms.size
    margin_x = size / width * 100
    margin_y = size

    updated = []
    for worm in worms:
        if not worm.alive:
            updated.append(worm)
            continue
        min_x, max_x = config.lanes.bounds(worm.lane.value)
        x = worm.x + worm.vx * speed_factor * dt / 10
        y = worm.y + worm.vy * speed_factor * dt / 10
        vx, vy = worm.vx, worm.vy

        if x <= min_x + margin_x or x >= max_x - margin_x:
            vx = -vx
            x = clamp(x, min_x + margin_x, max_x - margin_x)
        if y <= margin_y or y >= height - margin_y:
            vy = -vy
            y = clamp(y, margin_y, height - margin_y)

        updated.append(replace(
            worm,
            x=x,
            y=y,
            vx=vx,
            vy=vy,
            angle=math.atan2(vy, vx),
            wiggle_phase=(worm.wiggle_phase + 0.1 * dt) % (math.pi * 2),
        ))
    return updated


def push_objects_from_worms(
    worms: Sequence[WormObject],
    objects: Sequence[GameObject],
    config: Optional[GameConfig] = None
) -> List[GameObject]:
    """Nudge falling objects out of the way of live worms, within their lane."""
    if config is None:
        config = get_config()
    live = [w for w in worms if w.alive]
    if not live or not objects:
        return list(objects)

    width = config.lanes.viewport_width
    reach = config.worms.size / 2 + config.spawn.emoji_size / 2

    result = []
    for obj in objects:
        x, y = obj.x, obj.y
        for worm in live:
            dx = (x - worm.x) / 100 * width
            dy = y - worm.y
            distance = math.hypot(dx, dy)
            if 0 < distance < reach:
                push = (reach - distance) * 0.3
                x += (dx / distance * push) / width * 100
                y += dy / distance * push
                min_x, max_x = config.lanes.bounds(obj.lane.value)
                x = clamp(x, min_x, max_x)
                y = max(0.0, y)
        result.append(obj if (x, y) == (obj.x, obj.y) else obj.moved(x, y))
    return result
