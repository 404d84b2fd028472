"""
Fairy Transformation
====================

A tapped worm turns into a fairy that morphs in place, flies off along a
quadratic bezier arc toward one screen edge, and leaves a fading trail.

The flight path is drawn once in create_fairy(). After that every visual
quantity is a pure function of the fairy's age, so replaying the same fairy
at the same time always yields the same frame.
"""

from __future__ import annotations

import math
import random
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Tuple

from lanematch.core.config_loader import GameConfig, get_config
from lanematch.core.entities import FairyTransformObject, WormObject


class FairyPhase(str, Enum):
    MORPHING = "morphing"
    FLYING = "flying"
    TRAIL_FADING = "trail-fading"
    EXPIRED = "expired"


@dataclass(frozen=True)
class FairyFrame:
    """Everything a renderer needs to draw a fairy at one instant."""
    phase: FairyPhase
    x: float
    y: float
    morph_progress: float
    fly_progress: float
    opacity: float
    worm_opacity: float
    fade_in: float
    scale: float
    rotation: float
    glow: float
    sparkles: Tuple[Tuple[float, float, float], ...]


def ease_out_cubic(t: float) -> float:
    t = min(1.0, max(0.0, t))
    return 1.0 - (1.0 - t) ** 3


def quadratic_bezier(p0: float, p1: float, p2: float, t: float) -> float:
    u = 1.0 - t
    return u * u * p0 + 2.0 * u * t * p1 + t * t * p2


def choose_fly_target(
    x: float,
    y: float,
    rng: random.Random,
    config: Optional[GameConfig] = None
) -> Tuple[float, float]:
    """
    Pick an off-screen point past one of the four edges.

    x is % of width, y is px. Top and bottom keep x near the start, left
    and right keep y near the start.
    """
    if config is None:
        config = get_config()
    fairy = config.fairy
    height = config.lanes.viewport_height

    edge = rng.randrange(4)
    jitter = rng.random() - 0.5
    if edge == 0:
        return x + jitter * fairy.edge_variation_x, -fairy.off_screen_distance
    if edge == 1:
        return fairy.screen_right_edge, y + jitter * fairy.edge_variation_y
    if edge == 2:
        return x + jitter * fairy.edge_variation_x, height + fairy.off_screen_distance
    return fairy.screen_left_edge, y + jitter * fairy.edge_variation_y


def choose_control_point(
    start: Tuple[float, float],
    end: Tuple[float, float],
    rng: random.Random
) -> Tuple[float, float]:
    """Bezier control point near the midpoint, arcing upward."""
    sx, sy = start
    ex, ey = end
    cx = sx + (ex - sx) * 0.5 + (rng.random() - 0.5) * 20
    cy = min(sy, ey) - 50 - rng.random() * 50
    return cx, cy


def create_fairy(
    fairy_id: str,
    worm: WormObject,
    now: float,
    rng: random.Random,
    config: Optional[GameConfig] = None
) -> FairyTransformObject:
    """
    Create the fairy for a tapped worm at the worm's last position.

    All randomness (edge target, control point, sparkle orbits) is drawn
    here.
    """
    if config is None:
        config = get_config()

    target = choose_fly_target(worm.x, worm.y, rng, config)
    control = choose_control_point((worm.x, worm.y), target, rng)
    sparkles = tuple(
        (40 + rng.random() * 20, 0.5 + rng.random() * 0.5, 8 + rng.random() * 8)
        for _ in range(config.fairy.sparkle_count)
    )
    return FairyTransformObject(
        id=fairy_id,
        x=worm.x,
        y=worm.y,
        created_at=now,
        lane=worm.lane,
        target_x=target[0],
        target_y=target[1],
        control_x=control[0],
        control_y=control[1],
        sparkle_seeds=sparkles,
    )


def fairy_phase(fairy: FairyTransformObject, now: float, config: Optional[GameConfig] = None) -> FairyPhase:
    if config is None:
        config = get_config()
    timing = config.fairy
    age = fairy.age(now)
    if age < timing.morph_ms:
        return FairyPhase.MORPHING
    if age < timing.morph_ms + timing.fly_ms:
        return FairyPhase.FLYING
    if age < timing.total_ms:
        return FairyPhase.TRAIL_FADING
    return FairyPhase.EXPIRED


def is_expired(fairy: FairyTransformObject, now: float, config: Optional[GameConfig] = None) -> bool:
    return fairy_phase(fairy, now, config) is FairyPhase.EXPIRED


def _fly_progress(fairy: FairyTransformObject, now: float, config: GameConfig) -> float:
    fly_age = fairy.age(now) - config.fairy.morph_ms
    return min(1.0, max(0.0, fly_age / config.fairy.fly_ms))


def fairy_position(
    fairy: FairyTransformObject,
    now: float,
    config: Optional[GameConfig] = None
) -> Tuple[float, float]:
    """
    Position at `now`.

    At the start point while morphing, on the eased bezier arc while
    flying, and at the edge target afterwards.
    """
    if config is None:
        config = get_config()
    phase = fairy_phase(fairy, now, config)
    if phase is FairyPhase.MORPHING:
        return fairy.x, fairy.y
    if phase is not FairyPhase.FLYING:
        return fairy.target_x, fairy.target_y
    t = ease_out_cubic(_fly_progress(fairy, now, config))
    return (
        quadratic_bezier(fairy.x, fairy.control_x, fairy.target_x, t),
        quadratic_bezier(fairy.y, fairy.control_y, fairy.target_y, t),
    )


def fairy_frame(fairy: FairyTransformObject, now: float, config: Optional[GameConfig] = None) -> FairyFrame:
    """Full visual state at `now`."""
    if config is None:
        config = get_config()
    timing = config.fairy
    age = fairy.age(now)
    phase = fairy_phase(fairy, now, config)
    x, y = fairy_position(fairy, now, config)

    morph = min(1.0, age / timing.morph_ms) if phase is FairyPhase.MORPHING else 1.0
    fly = _fly_progress(fairy, now, config)

    if phase is FairyPhase.MORPHING:
        opacity = 1.0
    elif phase is FairyPhase.FLYING:
        fade_start = timing.morph_ms + timing.fly_ms * 0.7
        opacity = min(1.0, max(0.0, 1.0 - (age - fade_start) / (timing.fly_ms * 0.3)))
    else:
        opacity = 0.0

    # Sparkle orbit, offsets in px around the fairy
    sparkles = []
    count = len(fairy.sparkle_seeds)
    for i, (distance, speed, size) in enumerate(fairy.sparkle_seeds):
        angle = (math.pi * 2 * i) / count + speed * age / 1000.0
        sparkles.append((math.cos(angle) * distance, math.sin(angle) * distance, size))

    return FairyFrame(
        phase=phase,
        x=x,
        y=y,
        morph_progress=morph,
        fly_progress=fly,
        opacity=opacity,
        worm_opacity=max(0.0, 1.0 - morph * 2),
        fade_in=min(1.0, max(0.0, morph * 2 - 0.5)),
        scale=0.5 + morph * 0.7 + math.sin(morph * math.pi * 4) * 0.1,
        rotation=morph * 360.0,
        glow=10 + math.sin(age / 100.0) * 5,
        sparkles=tuple(sparkles),
    )
