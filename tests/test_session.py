"""
Tests for the game session controller.
"""

import pytest

from lanematch.core.config_loader import load_config
from lanematch.core.catalog import load_catalog
from lanematch.core.engagement import calculate_spawn_interval
from lanematch.core.entities import Lane
from lanematch.core.exceptions import InvariantViolation
from lanematch.core.ports import MemoryBestTimeStore
from lanematch.core.scheduler import VirtualScheduler
from lanematch.core.session import GameSession


class RecordingAudio:
    def __init__(self):
        self.played = []

    def play(self, event_name):
        self.played.append(event_name)


class BrokenAudio:
    def play(self, event_name):
        raise RuntimeError("no speakers")


class FailingStore:
    """Best-time store whose backend is unavailable."""

    def load(self):
        raise OSError("disk unavailable")

    def save(self, best_time_ms):
        raise PermissionError("read-only")


@pytest.fixture
def config():
    return load_config()


@pytest.fixture
def catalog(config):
    return load_catalog(config.catalog_path)


@pytest.fixture
def scheduler():
    return VirtualScheduler()


@pytest.fixture
def session(config, catalog, scheduler):
    return GameSession(config=config, catalog=catalog, scheduler=scheduler, seed=42)


@pytest.fixture
def started(session, scheduler):
    session.start_game()
    scheduler.advance(100)
    return session


@pytest.fixture
def store():
    return MemoryBestTimeStore()


@pytest.fixture
def continuous(config, catalog, scheduler, store):
    session = GameSession(config=config, catalog=catalog, scheduler=scheduler, seed=7,
                          best_time_store=store, continuous_mode=True)
    session.start_game()
    scheduler.advance(100)
    return session


def find_target(session):
    """An on-screen object matching the target, waiting for spawn ticks if needed."""
    session.scheduler.run_pending()
    for _ in range(10):
        for obj in session.objects:
            if obj.emoji == session.state.target_emoji:
                return obj
        session.scheduler.advance(session.config.difficulty.base_spawn_interval_ms)
    raise AssertionError("target never spawned")


def tap_target(session):
    obj = find_target(session)
    session.handle_object_tap(obj.id, obj.lane.value)
    return obj


def find_decoy(session):
    return next(o for o in session.objects if o.emoji != session.state.target_emoji)


def state_change_reasons(session):
    return [e.data["reason"] for e in session.telemetry.events("state_change")]


class TestLifecycle:
    """Test start and reset."""

    def test_start_game(self, started, catalog):
        state = started.state
        assert state.active
        assert not state.winner
        assert state.level_index == 0
        assert state.target in catalog[0].items
        assert state.target_deadline == 10000
        assert (state.progress, state.streak) == (0, 0)
        assert state_change_reasons(started) == ["game_start"]

    def test_targets_spawn_after_start_delay(self, session, scheduler):
        session.start_game()
        scheduler.advance(99)
        assert session.objects == ()
        scheduler.advance(1)
        assert [o.lane for o in session.objects] == [Lane.LEFT, Lane.RIGHT]
        assert all(o.emoji == session.state.target_emoji for o in session.objects)

    def test_start_clamps_level(self, session, catalog):
        session.start_game(99)
        assert session.state.level_index == len(catalog) - 1

    def test_reset_cancels_every_timer(self, started, scheduler):
        started.reset_game()
        assert scheduler.pending == []

        scheduler.advance(60000)
        assert started.objects == ()
        assert started.worms == ()
        assert not started.state.active
        assert started.state.level_index == 0

    def test_reset_stops_progressive_worms(self, session, scheduler):
        """Worm timers scheduled at start never fire after a reset."""
        session.start_game()
        scheduler.advance(3000)
        assert len(session.worms) == 2

        session.reset_game()
        scheduler.advance(40000)
        assert session.worms == ()

    def test_restart_replaces_timers(self, started):
        started.start_game()
        names = started.scheduler.pending_names()
        assert names.count("spawn") == 1
        assert names.count("deadline") == 1
        assert names.count("worm-recurring") == 1
        assert sum(1 for n in names if n.startswith("worm-progressive")) == 5
        assert started.objects == ()

    def test_taps_ignored_before_start(self, session):
        session.handle_object_tap("target-1", "left")
        session.handle_worm_tap("worm-1", "left")
        session.change_target_manually()
        assert len(session.telemetry) == 0
        assert not session.state.active


class TestTaps:
    """Test tap handling and the two-phase target change."""

    def test_correct_tap(self, started):
        """Correct tap scores, removes the object and rotates the target."""
        before = started.state
        obj = tap_target(started)
        state = started.state

        assert state.streak == 1
        assert state.progress == 20
        assert state.target != before.target
        assert state.target_deadline == started.now + 10000
        assert obj.id not in {o.id for o in started.objects}
        assert state_change_reasons(started)[-1] == "target_change_on_correct_tap"

    def test_two_phase_commit(self, started):
        """The new target is committed before its immediate spawn runs."""
        tap_target(started)
        target = started.state.target_emoji
        assert not any(o.emoji == target for o in started.objects)

        started.scheduler.run_pending()
        fresh = [o for o in started.objects if o.emoji == target]
        assert len(fresh) == 2
        assert all(o.id.startswith("immediate-") for o in fresh)

    def test_tap_is_idempotent(self, started):
        obj = find_target(started)
        started.handle_object_tap(obj.id, obj.lane.value)
        after_first = started.state
        started.handle_object_tap(obj.id, obj.lane.value)

        assert started.state == after_first
        assert started.telemetry.count("tap") == 1
        assert started.telemetry.count("warning") == 1

    def test_incorrect_tap(self, started, scheduler):
        scheduler.advance(1400)
        decoy = find_decoy(started)
        started.handle_object_tap(decoy.id, decoy.lane.value)

        state = started.state
        assert state.streak == 0
        assert state.progress == 0
        assert state.screen_shake
        assert decoy.id not in {o.id for o in started.objects}

        scheduler.advance(500)
        assert not started.state.screen_shake

    def test_incorrect_tap_after_progress(self, started, scheduler):
        tap_target(started)
        scheduler.advance(1400)
        decoy = find_decoy(started)
        started.handle_object_tap(decoy.id, decoy.lane.value)
        assert started.state.progress == 0
        assert started.state.streak == 0

    def test_reduced_motion_skips_shake(self, started, scheduler):
        started.reduced_motion = True
        scheduler.advance(1400)
        decoy = find_decoy(started)
        started.handle_object_tap(decoy.id, decoy.lane.value)
        assert not started.state.screen_shake

    def test_unknown_lane_still_scores(self, started):
        """The object id decides the tap, whatever lane string comes with it."""
        obj = find_target(started)
        started.handle_object_tap(obj.id, "player1")
        assert started.state.progress == 20
        assert started.telemetry.count("error") == 0

    def test_tap_telemetry(self, started):
        obj = tap_target(started)
        event = started.telemetry.events("tap")[-1]
        assert event.data["object_id"] == obj.id
        assert event.data["correct"]
        assert event.data["latency_ms"] >= 0

    def test_audio_feedback(self, config, catalog, scheduler):
        audio = RecordingAudio()
        session = GameSession(config=config, catalog=catalog, scheduler=scheduler, seed=1, audio=audio)
        session.start_game()
        scheduler.advance(100)
        tap_target(session)
        assert audio.played == ["success"]

    def test_broken_audio_does_not_block_taps(self, config, catalog, scheduler):
        session = GameSession(config=config, catalog=catalog, scheduler=scheduler, seed=1,
                              audio=BrokenAudio())
        session.start_game()
        scheduler.advance(100)
        tap_target(session)
        assert session.state.progress == 20


class TestWin:
    """Test normal play completion."""

    def test_five_correct_taps_win(self, started):
        for _ in range(5):
            tap_target(started)

        state = started.state
        assert state.winner
        assert state.progress == 100
        assert state_change_reasons(started)[-1] == "player_wins"
        assert started.scheduler.pending == []

    def test_session_frozen_after_win(self, started, scheduler):
        for _ in range(5):
            tap_target(started)
        won = started.state
        objects = started.objects

        if objects:
            started.handle_object_tap(objects[0].id, objects[0].lane.value)
        scheduler.advance(60000)
        assert started.state == won
        assert started.objects == objects


class TestContinuousMode:
    """Test laps, level advance and the best cycle time."""

    def test_lap_resets_progress(self, continuous):
        for _ in range(5):
            tap_target(continuous)
        state = continuous.state
        assert state.lap_count == 1
        assert state.progress == 0
        assert state.level_index == 0
        assert not state.winner
        assert state_change_reasons(continuous)[-1] == "continuous_mode_reset"

    def test_level_advances_after_five_laps(self, continuous, catalog):
        for _ in range(25):
            tap_target(continuous)
        state = continuous.state
        assert state.level_index == 1
        assert state.lap_count == 5
        assert state.progress == 0
        assert state.target in catalog[1].items
        assert state_change_reasons(continuous)[-1] == "continuous_mode_level_change"

    def test_full_cycle_records_best_time(self, continuous, catalog, store):
        """Wrapping back to the first level measures and stores the cycle."""
        for _ in range(len(catalog) * 25):
            tap_target(continuous)

        state = continuous.state
        now = continuous.now
        assert state.level_index == 0
        assert state.last_completion_time == int(now)
        assert state.best_time == int(now)
        assert state.cycle_start_time == now
        assert store.load() == state.best_time

    def test_best_time_loaded_at_start(self, config, catalog, scheduler):
        session = GameSession(config=config, catalog=catalog, scheduler=scheduler,
                              best_time_store=MemoryBestTimeStore(5000), continuous_mode=True)
        session.start_game()
        assert session.state.best_time == 5000
        assert session.state.cycle_start_time == 0

    def test_failing_store_does_not_block_wrap(self, config, catalog, scheduler):
        """A store that cannot save still lets the new level spawn its targets."""
        session = GameSession(config=config, catalog=catalog, scheduler=scheduler, seed=3,
                              best_time_store=FailingStore(), continuous_mode=True)
        assert session.state.best_time is None

        session.start_game(len(catalog) - 1)
        scheduler.advance(100)
        for _ in range(25):
            tap_target(session)

        state = session.state
        assert state.level_index == 0
        assert state.best_time == int(session.now)
        assert "immediate-spawn" in scheduler.pending_names()
        assert session.telemetry.count("error") == 0


class TestSequence:
    """Test ordered categories."""

    def test_targets_follow_order(self, session, scheduler, catalog):
        alphabet = catalog[len(catalog) - 1]
        session.start_game(len(catalog) - 1)
        scheduler.advance(100)
        assert session.state.target == alphabet.items[0]
        assert session.state.target_deadline is None

        tap_target(session)
        assert session.state.target == alphabet.items[1]
        assert session.state.sequence_cursor == 1

    def test_no_deadline_rotation(self, session, scheduler, catalog):
        session.start_game(len(catalog) - 1)
        first = session.state.target
        scheduler.advance(25000)
        assert session.state.target == first

    def test_manual_change_ignored(self, session, scheduler, catalog):
        session.start_game(len(catalog) - 1)
        scheduler.advance(1500)
        first = session.state.target
        session.change_target_manually()
        assert session.state.target == first


class TestTargetRotation:
    """Test deadline rotation and manual target change."""

    def test_deadline_rotation(self, started, scheduler):
        first = started.state.target
        scheduler.advance(9900)
        assert started.state.target != first
        assert started.state.target_deadline == 20000
        assert "target_timeout" in state_change_reasons(started)

    def test_no_rotation_before_deadline(self, started, scheduler):
        first = started.state.target
        scheduler.advance(9800)
        assert started.state.target == first

    def test_change_target_manually(self, started, scheduler):
        scheduler.advance(1400)
        before = started.state.target_emoji
        visible = {o.emoji for o in started.objects} - {before}

        started.change_target_manually()
        assert started.state.target_emoji in visible
        assert started.state.target_deadline == started.now + 10000
        assert state_change_reasons(started)[-1] == "manual_target_change"

    def test_change_target_without_candidates(self, started):
        """Only the target itself on screen: nothing to switch to."""
        before = started.state
        started.change_target_manually()
        assert started.state == before


class TestWorms:
    """Test worm timers and worm taps."""

    def test_progressive_spawn(self, session, scheduler):
        session.start_game()
        scheduler.advance(12000)
        worms = session.worms
        assert len(worms) == 5
        assert [w.lane for w in worms] == [Lane.LEFT, Lane.RIGHT] * 2 + [Lane.LEFT]

    def test_recurring_spawn(self, session, scheduler):
        session.start_game()
        scheduler.advance(30000)
        assert len(session.worms) == 8

    def test_worm_tap(self, session, scheduler):
        session.start_game()
        scheduler.advance(3000)
        worm = session.worms[0]

        session.handle_worm_tap(worm.id, worm.lane.value)
        assert not session.worms[0].alive
        assert len(session.fairies) == 1
        assert session.context.worm_speed_factor == pytest.approx(1.2)

        session.handle_worm_tap(worm.id, worm.lane.value)
        assert len(session.fairies) == 1
        assert session.context.worm_speed_factor == pytest.approx(1.2)

    def test_last_worm_does_not_escalate(self, session, scheduler):
        session.start_game()
        scheduler.run_pending()
        worm = session.worms[0]
        session.handle_worm_tap(worm.id, worm.lane.value)
        assert session.context.worm_speed_factor == 1.0

    def test_unknown_worm(self, started):
        started.handle_worm_tap("worm-999", "left")
        assert started.telemetry.count("warning") == 1

    def test_fairies_expire(self, session, scheduler):
        session.start_game()
        scheduler.advance(3000)
        session.handle_worm_tap(session.worms[0].id)
        scheduler.advance(7500)
        assert session.fairies == ()


class TestErrorBoundary:
    """Test that callback failures never escape."""

    def test_unexpected_error_in_spawn_tick(self, started, scheduler, monkeypatch):
        def boom(*args, **kwargs):
            raise RuntimeError("spawn bug")

        monkeypatch.setattr(started._spawner, "spawn_batch", boom)
        objects = started.objects
        scheduler.advance(1400)

        assert started.objects == objects
        errors = started.telemetry.events("error")
        assert errors and errors[-1].data["error"] == "RuntimeError"

    def test_invariant_violation_skips_batch(self, started, scheduler, monkeypatch):
        def broken(*args, **kwargs):
            raise InvariantViolation("target missing")

        monkeypatch.setattr(started._spawner, "spawn_batch", broken)
        scheduler.advance(1400)
        assert started.telemetry.events("error")[-1].data["error"] == "InvariantViolation"
        assert started.state.active

    def test_spawn_interval_rearmed(self, started, scheduler, config):
        tap_target(started)
        scheduler.advance(1400)
        assert started.context.spawn_interval_ms == calculate_spawn_interval(20, config)


class TestFramesAndSnapshot:
    """Test the per-frame updater and snapshots."""

    def test_advance_frame_moves_objects(self, started):
        before = {o.id: o.y for o in started.objects}
        started.advance_frame(1000 / 60)
        for obj in started.objects:
            assert obj.y > before[obj.id]

    def test_advance_frame_before_start(self, session):
        session.advance_frame(16)
        assert session.objects == ()

    def test_snapshot(self, started, catalog):
        snap = started.snapshot()
        assert snap.category_name == catalog[0].name
        assert snap.time_remaining_ms == 10000 - started.now
        assert len(snap.target_objects) == 2
        assert snap.to_arrays()["obj_mask"].sum() == len(started.objects)
