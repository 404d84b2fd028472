"""
Tests for batch spawning and the overflow pruner.
"""

import random

import pytest

from lanematch.core.config_loader import load_config
from lanematch.core.catalog import VocabularyItem, load_catalog
from lanematch.core.entities import GameObject, IdFactory, Lane
from lanematch.core.exceptions import InvariantViolation
from lanematch.core.fairness import FairnessTracker
from lanematch.core.spawner import SpawnScheduler


@pytest.fixture
def config():
    return load_config()


@pytest.fixture
def category(config):
    return load_catalog(config.catalog_path)[0]


@pytest.fixture
def spawner(config):
    rng = random.Random(42)
    return SpawnScheduler(config, rng, FairnessTracker(config, rng), IdFactory())


def fill_pool(item, count, start=0, lane=Lane.LEFT):
    return [GameObject(f"fill-{start + i}", item, lane, 20.0, float(start + i), 1.0, 60)
            for i in range(count)]


class TestSpawnBatch:
    """Test regular spawn ticks."""

    def test_first_batch(self, spawner, category):
        """Targets come first, then decoys, up to spawn_count."""
        target = category.items[0]
        result = spawner.spawn_batch([], category, target.emoji, 1000, 0)

        assert len(result.created) == 8
        assert result.target_count == 2
        assert [o.emoji for o in result.created[:2]] == [target.emoji, target.emoji]
        assert all(o.id.startswith("target-") for o in result.created[:2])
        assert all(o.id.startswith("decoy-") for o in result.created[2:])
        assert result.last_target_spawn_time == 1000
        assert not result.forced

    def test_objects_inside_lanes(self, spawner, category, config):
        result = spawner.spawn_batch([], category, category.items[0].emoji, 0, 0)
        for obj in result.created:
            low, high = config.lanes.bounds(obj.lane.value)
            assert low <= obj.x <= high
            assert obj.y <= 0

    def test_speed_range(self, spawner, category):
        result = spawner.spawn_batch([], category, category.items[0].emoji, 0, 0, fall_speed_multiplier=2.0)
        for obj in result.created:
            assert 1.2 <= obj.speed <= 2.8

    def test_pool_never_exceeds_capacity(self, spawner, category, config):
        """Without forcing, repeated ticks keep the pool at or under capacity."""
        objects = []
        last = 0.0
        target = category.items[0].emoji
        for tick in range(12):
            now = tick * 1500.0
            result = spawner.spawn_batch(objects, category, target, now, last)
            objects, last = list(result.objects), result.last_target_spawn_time
            assert len(objects) <= config.spawn.max_active_objects

    def test_appearances_recorded(self, spawner, category):
        result = spawner.spawn_batch([], category, category.items[0].emoji, 500, 0)
        for obj in result.created:
            assert spawner.fairness.last_seen(obj.emoji) == 500

    def test_unknown_target(self, spawner, category):
        with pytest.raises(InvariantViolation):
            spawner.spawn_batch([], category, "🐶", 0, 0)
        with pytest.raises(InvariantViolation):
            spawner.spawn_batch([], category, None, 0, 0)

    def test_full_pool_of_targets_not_forced(self, spawner, category):
        """Nothing to prune and no free slot: the tick is empty."""
        target = category.items[0]
        objects = fill_pool(target, 30)
        result = spawner.spawn_batch(objects, category, target.emoji, 1000, 0)
        assert result.created == ()
        assert len(result.objects) == 30

    def test_forced_target_over_capacity(self, spawner, category):
        """A forced target still spawns when the pool is full."""
        target = category.items[0]
        objects = fill_pool(target, 30)
        result = spawner.spawn_batch(objects, category, target.emoji, 7000, 0)
        assert result.forced
        assert result.over_capacity
        assert len(result.created) == 1
        assert result.created[0].emoji == target.emoji
        assert len(result.objects) == 31
        assert result.last_target_spawn_time == 7000

    def test_deterministic_with_seed(self, config, category):
        def run(seed):
            rng = random.Random(seed)
            spawner = SpawnScheduler(config, rng, FairnessTracker(config, rng), IdFactory())
            result = spawner.spawn_batch([], category, category.items[0].emoji, 0, 0)
            return [(o.emoji, o.lane, o.x, o.y) for o in result.created]

        assert run(9) == run(9)


class TestOverflowPruner:
    """Test decoy pruning before a batch."""

    def test_below_threshold_untouched(self, spawner, category):
        objects = fill_pool(category.items[1], 25)
        kept, removed = spawner.prune_overflow(objects, category.items[0].emoji)
        assert len(kept) == 25
        assert removed == []

    def test_removes_lowest_decoys(self, spawner, category):
        """Decoys with the largest y go first; targets stay."""
        target, decoy = category.items[0], category.items[1]
        objects = fill_pool(target, 2, start=1000) + fill_pool(decoy, 28)
        kept, removed = spawner.prune_overflow(objects, target.emoji)

        assert len(kept) == 25
        assert sorted(o.y for o in removed) == [23.0, 24.0, 25.0, 26.0, 27.0]
        assert all(o.emoji == decoy.emoji for o in removed)
        assert sum(1 for o in kept if o.emoji == target.emoji) == 2

    def test_keeps_minimum_decoys(self, spawner, category):
        target, decoy = category.items[0], category.items[1]
        objects = fill_pool(target, 26) + fill_pool(decoy, 4, start=100)
        kept, removed = spawner.prune_overflow(objects, target.emoji)
        assert len(removed) == 1
        assert sum(1 for o in kept if o.emoji == decoy.emoji) == 3

    def test_batch_reports_pruned(self, spawner, category):
        target, decoy = category.items[0], category.items[1]
        objects = fill_pool(decoy, 28)
        result = spawner.spawn_batch(objects, category, target.emoji, 1000, 0)
        assert len(result.pruned) == 3
        assert len(result.objects) == 30


class TestImmediateTargets:
    """Test the spawn that follows a target change."""

    def test_alternating_lanes(self, spawner, category):
        target = category.items[3]
        result = spawner.spawn_immediate_targets([], category, target.emoji, 2000, 0)
        assert [o.lane for o in result.created] == [Lane.LEFT, Lane.RIGHT]
        assert all(o.emoji == target.emoji for o in result.created)
        assert all(o.id.startswith("immediate-") for o in result.created)
        assert result.last_target_spawn_time == 2000

    def test_skipped_near_capacity(self, spawner, category):
        objects = fill_pool(category.items[1], 28)
        result = spawner.spawn_immediate_targets(objects, category, category.items[0].emoji, 2000, 50)
        assert result.created == ()
        assert result.last_target_spawn_time == 50
        assert not result.changed

    def test_unknown_target(self, spawner, category):
        with pytest.raises(InvariantViolation):
            spawner.spawn_immediate_targets([], category, "🐶", 0, 0)


def scripted(items):
    """Selector returning items in order, counting calls."""
    draws = iter(items)

    def select():
        select.calls += 1
        return next(draws)

    select.calls = 0
    return select


class TestDuplicateRejection:
    """Test decoy draws that avoid repeats."""

    def test_batch_duplicate_always_redrawn(self, spawner, category):
        apple, banana = category.items[0], category.items[1]
        select = scripted([apple, banana])
        item = spawner._select_unique(select, {apple.emoji}, {"🐶"})
        assert item == banana
        assert select.calls == 2

    def test_retries_capped_with_last_draw_kept(self, spawner, category):
        """Retries stop at twice the visible count; the last draw is returned."""
        apple = category.items[0]
        active = {o.emoji for o in category.items[1:4]}
        select = scripted([apple] * 20)
        item = spawner._select_unique(select, {apple.emoji}, active)
        assert item == apple
        assert select.calls == 2 * len(active) + 1

    def test_no_retry_on_empty_screen(self, spawner, category):
        apple = category.items[0]
        select = scripted([apple, category.items[1]])
        assert spawner._select_unique(select, {apple.emoji}, set()) == apple
        assert select.calls == 1

    def test_on_screen_duplicate_mostly_rejected(self, spawner, category):
        """A visible emoji is redrawn about 70% of the time."""
        apple, banana = category.items[0], category.items[1]
        trials = 2000
        redrawn = 0
        for _ in range(trials):
            item = spawner._select_unique(scripted([apple, banana]), set(), {apple.emoji})
            redrawn += item == banana
        assert 0.65 < redrawn / trials < 0.75


class TestFailedBatch:
    """Test that a batch failing midway leaves no state behind."""

    def test_fairness_untouched(self, spawner, category, monkeypatch):
        build = spawner._build

        def failing_build(item, lane, index, prefix, *args):
            if prefix == "decoy":
                raise RuntimeError("placement failed")
            return build(item, lane, index, prefix, *args)

        monkeypatch.setattr(spawner, "_build", failing_build)
        with pytest.raises(RuntimeError):
            spawner.spawn_batch([], category, category.items[0].emoji, 1000, 0)
        assert spawner.fairness.last_appearances == {}
