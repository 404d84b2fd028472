"""
Entities
========

Immutable records for everything on screen: falling objects, worms and the
fairies a tapped worm turns into. Updates produce new instances through
dataclasses.replace so a committed pool is never changed under a reader.
"""

from __future__ import annotations

import itertools
from dataclasses import dataclass, replace
from enum import Enum
from typing import Iterator, Optional, Tuple, Union

from lanematch.core.catalog import VocabularyItem


class Lane(str, Enum):
    """One of the two horizontal regions objects fall through."""
    LEFT = "left"
    RIGHT = "right"

    @classmethod
    def parse(cls, value: Union[str, "Lane"]) -> Optional["Lane"]:
        """Accept a Lane or its string value ("left"/"right"). None if unknown."""
        if isinstance(value, Lane):
            return value
        try:
            return cls(str(value).lower())
        except ValueError:
            return None


@dataclass(frozen=True)
class GameObject:
    """
    A falling emoji.

    x is a percentage of the viewport width, y is in pixels and is negative
    while the object is still above the viewport.
    """
    id: str
    item: VocabularyItem
    lane: Lane
    x: float
    y: float
    speed: float
    size: int

    @property
    def emoji(self) -> str:
        return self.item.emoji

    @property
    def name(self) -> str:
        return self.item.name

    def moved(self, x: float, y: float) -> "GameObject":
        """Copy of this object at a new position."""
        return replace(self, x=x, y=y)

    def __repr__(self) -> str:
        return f"GameObject({self.id}: {self.item.emoji} {self.lane.value} x={self.x:.1f} y={self.y:.0f})"


@dataclass(frozen=True)
class WormObject:
    """
    A wandering worm hazard.

    x is a percentage of the viewport width, y is in pixels. alive goes from
    True to False exactly once, when the worm is tapped.
    """
    id: str
    lane: Lane
    x: float
    y: float
    vx: float
    vy: float
    angle: float
    wiggle_phase: float
    alive: bool = True

    def killed(self) -> "WormObject":
        return replace(self, alive=False, vx=0.0, vy=0.0)


@dataclass(frozen=True)
class FairyTransformObject:
    """
    The fairy a tapped worm turns into.

    The flight path (edge target and bezier control point) is drawn once at
    creation. Everything else is a function of age, see lanematch.core.fairy.
    """
    id: str
    x: float
    y: float
    created_at: float
    lane: Lane
    target_x: float
    target_y: float
    control_x: float
    control_y: float
    sparkle_seeds: Tuple[Tuple[float, float, float], ...] = ()

    def age(self, now: float) -> float:
        return max(0.0, now - self.created_at)


class IdFactory:
    """Session-owned source of readable, unique entity ids."""

    def __init__(self):
        self._counter: Iterator[int] = itertools.count(1)

    def next_id(self, prefix: str) -> str:
        """Next id with the given prefix, e.g. "decoy-17"."""
        return f"{prefix}-{next(self._counter)}"
