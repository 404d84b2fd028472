"""
Spawn Scheduler
===============

Builds the batches of falling objects for each spawn tick.

Each call takes the committed pool and returns a SpawnResult holding the
complete next pool, so the session can commit a whole tick in one update.
Nothing here touches session state directly.

Batch order:
1. Overflow prune if the pool is within required_slots of capacity.
2. Targets first (target_guarantee_count, at least one when forced).
3. Decoys from the fairness selector, with duplicate rejection.
"""

from __future__ import annotations

import logging
import random
from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence, Set, Tuple

from lanematch.core.catalog import Category, VocabularyItem
from lanematch.core.config_loader import GameConfig, get_config
from lanematch.core.entities import GameObject, IdFactory, Lane
from lanematch.core.exceptions import InvariantViolation
from lanematch.core.fairness import FairnessTracker
from lanematch.core.placement import calculate_safe_position

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SpawnResult:
    """Outcome of one spawn tick or immediate-target spawn."""
    objects: Tuple[GameObject, ...]
    created: Tuple[GameObject, ...] = ()
    pruned: Tuple[GameObject, ...] = ()
    target_count: int = 0
    forced: bool = False
    over_capacity: bool = False
    last_target_spawn_time: Optional[float] = None

    @property
    def changed(self) -> bool:
        return bool(self.created or self.pruned)


def split_lanes(objects: Sequence[GameObject]) -> Tuple[List[GameObject], List[GameObject]]:
    """(left, right) lists preserving order."""
    left = [o for o in objects if o.lane is Lane.LEFT]
    right = [o for o in objects if o.lane is Lane.RIGHT]
    return left, right


class SpawnScheduler:
    """
    Spawns falling objects with target liveness, fairness and a soft cap.

    Invariants:
    - Pool size after a batch is at most max_active_objects, except for a
      forced target spawn with no free slot, which adds exactly one object
      and is reported as over_capacity.
    - A target spawns whenever the last one is older than
      force_target_after_ms.
    - The pruner never removes objects matching the current target.
    """

    def __init__(
        self,
        config: Optional[GameConfig] = None,
        rng: Optional[random.Random] = None,
        fairness: Optional[FairnessTracker] = None,
        ids: Optional[IdFactory] = None
    ):
        """
        Initialize spawner.

        Args:
            config: Game configuration. Uses default if None.
            rng: Random source shared with the session.
            fairness: Appearance tracker shared with the session.
            ids: Id source shared with the session.
        """
        if config is None:
            config = get_config()

        self._config = config
        self._spawn = config.spawn
        self._lanes = config.lanes
        self._rng = rng or random.Random()
        self._fairness = fairness or FairnessTracker(config, self._rng)
        self._ids = ids or IdFactory()

    @property
    def fairness(self) -> FairnessTracker:
        return self._fairness

    # ------------------------------------------------------------------
    # Overflow pruning
    # ------------------------------------------------------------------

    def prune_overflow(
        self,
        objects: Sequence[GameObject],
        target_emoji: Optional[str]
    ) -> Tuple[List[GameObject], List[GameObject]]:
        """
        Remove decoys until the pool is back at the prune threshold.

        Decoys lowest on screen (largest y) go first. Target matches are
        never removed and at least min_decoy_slots decoys are kept.

        Returns:
            (kept, removed)
        """
        threshold = self._spawn.prune_threshold
        if len(objects) <= threshold:
            return list(objects), []

        decoys = [o for o in objects if o.emoji != target_emoji]
        removable = max(0, len(decoys) - self._spawn.min_decoy_slots)
        count = min(len(objects) - threshold, removable)
        if count <= 0:
            return list(objects), []

        victims = sorted(decoys, key=lambda o: o.y, reverse=True)[:count]
        victim_ids = {v.id for v in victims}
        kept = [o for o in objects if o.id not in victim_ids]
        logger.debug("Pruned %d decoys (pool %d -> %d)", len(victims), len(objects), len(kept))
        return kept, victims

    # ------------------------------------------------------------------
    # Object construction
    # ------------------------------------------------------------------

    def _random_lane(self) -> Lane:
        return Lane.LEFT if self._rng.random() < 0.5 else Lane.RIGHT

    def _build(
        self,
        item: VocabularyItem,
        lane: Lane,
        index: int,
        prefix: str,
        lane_objects: Sequence[GameObject],
        fall_speed_multiplier: float
    ) -> GameObject:
        min_x, max_x = self._lanes.bounds(lane.value)
        initial_x = self._rng.random() * (max_x - min_x) + min_x
        initial_y = 0.0 - index * self._spawn.spawn_vertical_gap
        x, y = calculate_safe_position(
            initial_x, initial_y, lane_objects, (min_x, max_x), self._config
        )
        speed = (self._rng.random() * 0.8 + 0.6) * fall_speed_multiplier
        return GameObject(
            id=self._ids.next_id(prefix),
            item=item,
            lane=lane,
            x=x,
            y=y,
            speed=speed,
            size=self._spawn.emoji_size,
        )

    def _select_unique(
        self,
        select: Callable[[], VocabularyItem],
        spawned_in_batch: Set[str],
        active_emojis: Set[str]
    ) -> VocabularyItem:
        """
        Draw a decoy avoiding duplicates.

        A duplicate of this batch is always rejected; a duplicate of
        something already visible is rejected with
        duplicate_reject_probability. Retries are capped at twice the number
        of visible emojis; after that the last draw is kept.
        """
        reject_p = self._spawn.duplicate_reject_probability

        def rejected(candidate: VocabularyItem) -> bool:
            if candidate.emoji in spawned_in_batch:
                return True
            return candidate.emoji in active_emojis and self._rng.random() < reject_p

        item = select()
        if rejected(item):
            max_attempts = len(active_emojis) * 2
            for _ in range(max_attempts):
                item = select()
                if not rejected(item):
                    break
        return item

    def _record_appearances(self, created: Sequence[GameObject], now: float) -> None:
        """Mark a fully built batch as seen. A batch that fails leaves no trace."""
        for obj in created:
            self._fairness.record_appearance(obj.emoji, now)

    # ------------------------------------------------------------------
    # Spawning
    # ------------------------------------------------------------------

    def spawn_batch(
        self,
        objects: Sequence[GameObject],
        category: Category,
        target_emoji: Optional[str],
        now: float,
        last_target_spawn_time: float,
        fall_speed_multiplier: float = 1.0
    ) -> SpawnResult:
        """
        Regular spawn tick.

        Args:
            objects: Committed pool.
            category: Category of the current level.
            target_emoji: Current target glyph.
            now: Current time (ms).
            last_target_spawn_time: When a target object last spawned.
            fall_speed_multiplier: Session speed option.

        Returns:
            SpawnResult with the complete next pool.

        Raises:
            InvariantViolation: If the target is not in the category.
        """
        target_item = category.find_by_emoji(target_emoji) if target_emoji else None
        if target_item is None:
            raise InvariantViolation(
                f"Target {target_emoji!r} has no entry in category '{category.name}'"
            )

        forced = (now - last_target_spawn_time) > self._spawn.force_target_after_ms
        working, pruned = self.prune_overflow(objects, target_emoji)

        available = max(0, self._spawn.max_active_objects - len(working))
        count = min(available, self._spawn.spawn_count)
        over_capacity = False
        if forced and count <= 0:
            count = 1
            over_capacity = True
            logger.warning(
                "Forced target spawn with no free slot: pool %d -> %d (cap %d)",
                len(working), len(working) + 1, self._spawn.max_active_objects
            )

        if count <= 0:
            return SpawnResult(
                objects=tuple(working),
                pruned=tuple(pruned),
                forced=forced,
                last_target_spawn_time=last_target_spawn_time,
            )

        left, right = split_lanes(working)
        lanes = {Lane.LEFT: left, Lane.RIGHT: right}
        created: List[GameObject] = []
        spawned_in_batch: Set[str] = set()
        active_emojis = {o.emoji for o in working}

        guarantee = self._spawn.target_guarantee_count
        target_count = min(guarantee, count)
        if forced:
            target_count = max(1, target_count)

        for i in range(target_count):
            lane = self._random_lane()
            obj = self._build(target_item, lane, i, "target", lanes[lane], fall_speed_multiplier)
            lanes[lane].append(obj)
            created.append(obj)
            spawned_in_batch.add(target_item.emoji)
        if target_count > 0:
            last_target_spawn_time = now

        select = self._fairness.make_selector(category.items, now)
        for i in range(target_count, count):
            item = self._select_unique(select, spawned_in_batch, active_emojis)
            lane = self._random_lane()
            obj = self._build(item, lane, i, "decoy", lanes[lane], fall_speed_multiplier)
            lanes[lane].append(obj)
            created.append(obj)
            spawned_in_batch.add(item.emoji)

        self._record_appearances(created, now)
        return SpawnResult(
            objects=tuple(working) + tuple(created),
            created=tuple(created),
            pruned=tuple(pruned),
            target_count=target_count,
            forced=forced,
            over_capacity=over_capacity,
            last_target_spawn_time=last_target_spawn_time,
        )

    def spawn_immediate_targets(
        self,
        objects: Sequence[GameObject],
        category: Category,
        target_emoji: Optional[str],
        now: float,
        last_target_spawn_time: float,
        fall_speed_multiplier: float = 1.0
    ) -> SpawnResult:
        """
        Put the new target on screen right after a target change.

        Spawns immediate_target_count targets alternating left/right lanes.
        Skipped when the pool is within immediate_target_count of capacity.

        Raises:
            InvariantViolation: If the target is not in the category.
        """
        count = self._spawn.immediate_target_count
        if len(objects) >= self._spawn.max_active_objects - count:
            logger.debug("Immediate spawn skipped, pool at %d", len(objects))
            return SpawnResult(objects=tuple(objects), last_target_spawn_time=last_target_spawn_time)

        target_item = category.find_by_emoji(target_emoji) if target_emoji else None
        if target_item is None:
            raise InvariantViolation(
                f"Target {target_emoji!r} has no entry in category '{category.name}'"
            )

        left, right = split_lanes(objects)
        lanes = {Lane.LEFT: left, Lane.RIGHT: right}
        created: List[GameObject] = []
        for i in range(count):
            lane = Lane.LEFT if i % 2 == 0 else Lane.RIGHT
            obj = self._build(target_item, lane, i, "immediate", lanes[lane], fall_speed_multiplier)
            lanes[lane].append(obj)
            created.append(obj)

        self._record_appearances(created, now)
        return SpawnResult(
            objects=tuple(objects) + tuple(created),
            created=tuple(created),
            target_count=len(created),
            last_target_spawn_time=now if created else last_target_spawn_time,
        )
