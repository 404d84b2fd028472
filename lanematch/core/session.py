"""
Game Session
============

Session controller: owns the committed state, the entity collections and
every timer, and exposes the commands the presentation layer calls.

Every command and timer callback reads the last committed state, computes
the next one, and commits it in one assignment at the end. A target change
that needs fresh targets on screen is a two-phase commit: the new target is
committed first, then the immediate spawn is queued as a zero-delay
callback so it sees the committed target.
"""

from __future__ import annotations

import functools
import logging
import random
import time
from dataclasses import dataclass, field, replace
from typing import Callable, List, Optional, Tuple

from lanematch.core.catalog import Category, CategoryCatalog, TargetPool, VocabularyItem, get_catalog
from lanematch.core.config_loader import GameConfig, get_config
from lanematch.core.engagement import calculate_spawn_interval
from lanematch.core.entities import FairyTransformObject, GameObject, IdFactory, Lane, WormObject
from lanematch.core.exceptions import InvariantViolation, LookupMiss, StorageError
from lanematch.core.fairness import FairnessTracker
from lanematch.core.fairy import create_fairy, is_expired
from lanematch.core.motion import FRAME_MS, advance_objects, push_objects_from_worms, update_worms
from lanematch.core.ports import AudioFeedback, BestTimeStore, MemoryBestTimeStore, NullAudio
from lanematch.core.rules import LevelRules, TransitionResult
from lanematch.core.scheduler import TimerHandle, TimerScheduler, VirtualScheduler
from lanematch.core.scoring import ScoreKeeper, ScoreUpdate, validate_tap
from lanematch.core.spawner import SpawnResult, SpawnScheduler
from lanematch.core.state_snapshot import SessionSnapshot, SessionState, SnapshotBuilder
from lanematch.core.telemetry import Telemetry
from lanematch.core.worms import create_worms, escalate_speed, kill_worm

logger = logging.getLogger(__name__)


def _callback_boundary(source: str) -> Callable:
    """
    Catch everything a command or timer callback raises.

    LookupMiss is benign, InvariantViolation and anything else are logged
    and reported as telemetry errors. The callback then counts as a no-op;
    since commits happen last, no partial update is visible.
    """
    def decorator(fn: Callable) -> Callable:
        @functools.wraps(fn)
        def wrapper(self: "GameSession", *args, **kwargs):
            try:
                return fn(self, *args, **kwargs)
            except LookupMiss as e:
                logger.warning("%s ignored: %s", source, e)
                self._telemetry.emit("warning", self.now, source=source, message=str(e))
            except InvariantViolation as e:
                logger.error("%s skipped: %s", source, e)
                self._telemetry.emit("error", self.now, source=source, error="InvariantViolation",
                                     message=str(e))
            except Exception as e:
                logger.exception("Unexpected error in %s", source)
                self._telemetry.emit("error", self.now, source=source, error=type(e).__name__,
                                     message=str(e))
            return None
        return wrapper
    return decorator


@dataclass
class SessionContext:
    """
    Session-scoped mutable counters and timer handles.

    Lives for one session; start_game() and reset_game() replace it.
    """
    worm_speed_factor: float = 1.0
    last_target_spawn_time: float = 0.0
    spawn_interval_ms: float = 0.0
    spawn_handle: Optional[TimerHandle] = None
    deadline_handle: Optional[TimerHandle] = None
    fairness_handle: Optional[TimerHandle] = None
    recurring_worm_handle: Optional[TimerHandle] = None
    screen_shake_handle: Optional[TimerHandle] = None
    progressive_worm_handles: List[TimerHandle] = field(default_factory=list)
    deferred_handles: List[TimerHandle] = field(default_factory=list)

    def play_handles(self) -> List[TimerHandle]:
        """Every gameplay timer (everything except the screen shake)."""
        handles = [self.spawn_handle, self.deadline_handle, self.fairness_handle,
                   self.recurring_worm_handle]
        handles.extend(self.progressive_worm_handles)
        handles.extend(self.deferred_handles)
        return [h for h in handles if h is not None]


@dataclass(frozen=True)
class TapOutcome:
    """Next state of a tap plus what to do once it is committed."""
    state: SessionState
    reason: str
    update: Optional[ScoreUpdate] = None
    transition: Optional[TransitionResult] = None
    respawn: bool = False
    shake: bool = False


class GameSession:
    """
    One player's game: spawn ticks, taps, worms, level transitions.

    Commands never raise to the caller. Taps and ticks arriving before
    start_game(), after a non-continuous win, or after reset_game() are
    ignored.
    """

    def __init__(
        self,
        config: Optional[GameConfig] = None,
        catalog: Optional[CategoryCatalog] = None,
        scheduler: Optional[TimerScheduler] = None,
        seed: Optional[int] = None,
        audio: Optional[AudioFeedback] = None,
        best_time_store: Optional[BestTimeStore] = None,
        telemetry: Optional[Telemetry] = None,
        continuous_mode: bool = False,
        reduced_motion: bool = False,
        fall_speed_multiplier: float = 1.0
    ):
        """
        Initialize session.

        Args:
            config: Game configuration. Uses default if None.
            catalog: Vocabulary. Loaded from config.catalog_path if None.
            scheduler: Clock and timers. A VirtualScheduler if None.
            seed: Random seed for reproducibility.
            audio: Audio feedback port.
            best_time_store: Persistent record of the best continuous cycle.
            telemetry: Event sink.
            continuous_mode: Loop levels instead of ending at the first win.
            reduced_motion: Suppress the screen shake on a miss.
            fall_speed_multiplier: Scales the speed of newly spawned objects.
        """
        if config is None:
            config = get_config()

        self._config = config
        self._catalog = catalog if catalog is not None else get_catalog(config)
        self._scheduler: TimerScheduler = scheduler if scheduler is not None else VirtualScheduler()
        self._audio: AudioFeedback = audio if audio is not None else NullAudio()
        self._store: BestTimeStore = best_time_store if best_time_store is not None else MemoryBestTimeStore()
        self._telemetry = telemetry if telemetry is not None else Telemetry()

        self.continuous_mode = continuous_mode
        self.reduced_motion = reduced_motion
        self.fall_speed_multiplier = fall_speed_multiplier

        # Subsystems share one random source and one id source
        self._rng = random.Random(seed)
        self._ids = IdFactory()
        self._fairness = FairnessTracker(config, self._rng)
        self._target_pool = TargetPool(self._rng)
        self._spawner = SpawnScheduler(config, self._rng, self._fairness, self._ids)
        self._scorer = ScoreKeeper(config)
        self._rules = LevelRules(config)
        self._snapshot_builder = SnapshotBuilder(config)

        self._state = SessionState(best_time=self._load_best_time())
        self._objects: Tuple[GameObject, ...] = ()
        self._worms: Tuple[WormObject, ...] = ()
        self._fairies: Tuple[FairyTransformObject, ...] = ()
        self._context = SessionContext()

    # ------------------------------------------------------------------
    # Read-only access
    # ------------------------------------------------------------------

    @property
    def config(self) -> GameConfig:
        return self._config

    @property
    def catalog(self) -> CategoryCatalog:
        return self._catalog

    @property
    def scheduler(self) -> TimerScheduler:
        return self._scheduler

    @property
    def telemetry(self) -> Telemetry:
        return self._telemetry

    @property
    def fairness(self) -> FairnessTracker:
        return self._fairness

    @property
    def context(self) -> SessionContext:
        return self._context

    @property
    def now(self) -> float:
        return self._scheduler.now()

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def objects(self) -> Tuple[GameObject, ...]:
        return self._objects

    @property
    def worms(self) -> Tuple[WormObject, ...]:
        return self._worms

    @property
    def fairies(self) -> Tuple[FairyTransformObject, ...]:
        return self._fairies

    @property
    def category(self) -> Category:
        return self._catalog.get(self._state.level_index)

    @property
    def is_playing(self) -> bool:
        """True while taps and ticks change the game."""
        return self._state.active and not self._state.winner

    def snapshot(self) -> SessionSnapshot:
        """Read-only view for the presentation layer."""
        self._discard_expired_fairies()
        return self._snapshot_builder.build(
            self._state, self.now, self.category.name,
            self._objects, self._worms, self._fairies,
        )

    # ------------------------------------------------------------------
    # Side-effect ports
    # ------------------------------------------------------------------

    def _play(self, event_name: str) -> None:
        try:
            self._audio.play(event_name)
        except Exception:
            logger.exception("Audio feedback '%s' failed", event_name)

    def _load_best_time(self) -> Optional[int]:
        try:
            return self._store.load()
        except StorageError as e:
            logger.warning("Best time unavailable: %s", e)
        except Exception:
            logger.exception("Best time store failed to load")
        return None

    def _save_best_time(self, best_time_ms: int) -> None:
        # Persistence never blocks scoring or spawning
        try:
            self._store.save(best_time_ms)
        except StorageError as e:
            logger.warning("Best time not saved: %s", e)
        except Exception:
            logger.exception("Best time store failed to save %d ms", best_time_ms)

    # ------------------------------------------------------------------
    # Timers
    # ------------------------------------------------------------------

    def _cancel_play_timers(self) -> None:
        ctx = self._context
        for handle in ctx.play_handles():
            self._scheduler.cancel(handle)
        ctx.spawn_handle = None
        ctx.deadline_handle = None
        ctx.fairness_handle = None
        ctx.recurring_worm_handle = None
        ctx.progressive_worm_handles = []
        ctx.deferred_handles = []

    def _cancel_all_timers(self) -> None:
        self._cancel_play_timers()
        self._scheduler.cancel(self._context.screen_shake_handle)
        self._context.screen_shake_handle = None

    def _defer(self, delay_ms: float, callback: Callable[[], None], name: str) -> None:
        handle = self._scheduler.call_later(delay_ms, callback, name)
        ctx = self._context
        ctx.deferred_handles = [h for h in ctx.deferred_handles if not h.cancelled]
        ctx.deferred_handles.append(handle)

    def _schedule_immediate_spawn(self) -> None:
        """Phase two of a target change."""
        self._defer(0, self._spawn_immediate, "immediate-spawn")

    def _arm_spawn_interval(self, interval_ms: float) -> None:
        self._scheduler.cancel(self._context.spawn_handle)
        self._context.spawn_interval_ms = interval_ms
        self._context.spawn_handle = self._scheduler.call_every(interval_ms, self._on_spawn_tick, "spawn")

    def _start_timers(self) -> None:
        ctx = self._context
        timing = self._config.timing
        worms = self._config.worms

        self._arm_spawn_interval(calculate_spawn_interval(self._state.progress, self._config))
        ctx.deadline_handle = self._scheduler.call_every(
            timing.deadline_check_interval_ms, self._on_deadline_check, "deadline")
        ctx.fairness_handle = self._scheduler.call_every(
            timing.fairness_sweep_interval_ms, self._on_fairness_sweep, "fairness")

        for i in range(worms.initial_count):
            ctx.progressive_worm_handles.append(self._scheduler.call_later(
                i * worms.progressive_interval_ms, self._on_progressive_worm, f"worm-progressive-{i}"))
        ctx.recurring_worm_handle = self._scheduler.call_every(
            worms.recurring_interval_ms, self._on_recurring_worms, "worm-recurring")

        self._defer(timing.start_spawn_delay_ms, self._spawn_immediate, "start-spawn")

    # ------------------------------------------------------------------
    # Target selection
    # ------------------------------------------------------------------

    def _deadline_for(self, category: Category) -> Optional[float]:
        if category.requires_sequence:
            return None
        return self.now + self._config.timing.target_duration_ms

    def _next_target(self, category: Category, cursor: int) -> VocabularyItem:
        return self._target_pool.next_target(category, cursor)

    def _emit_state_change(self, reason: str, before: SessionState, after: SessionState) -> None:
        self._telemetry.emit(
            "state_change", self.now, reason=reason,
            level=after.level_index, progress=after.progress, streak=after.streak,
            previous_target=before.target_emoji, target=after.target_emoji,
        )

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    @_callback_boundary("start_game")
    def start_game(self, level_index: Optional[int] = None) -> None:
        """
        Start a new session at a level (the current one if None).

        Cancels every timer of the previous session before anything else.
        """
        self._cancel_all_timers()
        now = self.now
        level = self._catalog.clamp_level(self._state.level_index if level_index is None else level_index)
        category = self._catalog[level]

        self._fairness.reset()
        self._target_pool.clear()
        target = self._next_target(category, 0)

        before = self._state
        self._context = SessionContext(last_target_spawn_time=now)
        self._objects = ()
        self._worms = ()
        self._fairies = ()
        self._state = SessionState(
            level_index=level,
            target=target,
            target_deadline=self._deadline_for(category),
            active=True,
            continuous_mode=self.continuous_mode,
            cycle_start_time=now if self.continuous_mode else None,
            best_time=self._load_best_time(),
        )
        self._start_timers()

        logger.info("Game started: level %d (%s), continuous=%s", level, category.name, self.continuous_mode)
        self._emit_state_change("game_start", before, self._state)

    @_callback_boundary("reset_game")
    def reset_game(self) -> None:
        """Stop the session: cancel every timer and clear all entities."""
        self._cancel_all_timers()
        before = self._state
        self._fairness.reset()
        self._target_pool.clear()
        self._context = SessionContext()
        self._objects = ()
        self._worms = ()
        self._fairies = ()
        self._state = SessionState(
            continuous_mode=self.continuous_mode,
            best_time=before.best_time,
        )
        logger.info("Game reset")
        self._emit_state_change("game_reset", before, self._state)

    @_callback_boundary("handle_object_tap")
    def handle_object_tap(self, object_id: str, side: Optional[str] = None) -> None:
        """
        Tap on a falling object.

        Taps on objects that are already gone are ignored.
        """
        if not self.is_playing:
            return
        started = time.perf_counter()
        before = self._state
        category = self.category
        validation = validate_tap(self._objects, object_id, before, category)
        obj = validation.obj
        if side is not None and Lane.parse(side) is not obj.lane:
            logger.debug("Tap on %s reported from %r lane", obj.id, side)

        objects = tuple(o for o in self._objects if o.id != object_id)
        if validation.is_correct:
            outcome = self._apply_correct_tap(before, category)
        else:
            outcome = self._apply_incorrect_tap(before)

        # Commit
        self._objects = objects
        self._state = outcome.state

        self._play("success" if validation.is_correct else "miss")
        latency_ms = (time.perf_counter() - started) * 1000.0
        self._telemetry.emit(
            "tap", self.now, object_id=object_id, emoji=obj.emoji, lane=obj.lane.value,
            correct=validation.is_correct, latency_ms=latency_ms,
        )
        self._emit_state_change(outcome.reason, before, outcome.state)
        self._after_score(before, outcome)
        if outcome.respawn:
            self._schedule_immediate_spawn()

    def _apply_correct_tap(self, before: SessionState, category: Category) -> TapOutcome:
        update = self._scorer.apply_correct(before, category)
        state = update.state

        if update.completed:
            transition = self._rules.complete(state, self.now, len(self._catalog))
            state = transition.state
            if transition.is_win:
                return TapOutcome(state, transition.reason, update, transition)
            next_category = self._catalog.get(state.level_index)
            if transition.level_changed:
                self._fairness.reset()
                self._target_pool.refill(next_category)
            target = self._next_target(next_category, state.sequence_cursor)
            state = replace(state, target=target, target_deadline=self._deadline_for(next_category))
            return TapOutcome(state, transition.reason, update, transition, respawn=True)

        if category.requires_sequence:
            # Past the last item the target stays until the level completes
            if state.sequence_cursor < len(category):
                target = category.sequence_item(state.sequence_cursor)
                return TapOutcome(replace(state, target=target), "sequence_advance", update, respawn=True)
            return TapOutcome(state, "sequence_complete", update)

        target = self._next_target(category, state.sequence_cursor)
        state = replace(state, target=target, target_deadline=self._deadline_for(category))
        return TapOutcome(state, "target_change_on_correct_tap", update, respawn=True)

    def _apply_incorrect_tap(self, before: SessionState) -> TapOutcome:
        state = self._scorer.apply_incorrect(before).state
        if not self.reduced_motion:
            state = replace(state, screen_shake=True)
        return TapOutcome(state, "incorrect_tap_penalty", shake=state.screen_shake)

    def _after_score(self, before: SessionState, outcome: TapOutcome) -> None:
        """Side effects of a committed score change."""
        state = outcome.state
        now = self.now
        if outcome.shake:
            self._scheduler.cancel(self._context.screen_shake_handle)
            self._context.screen_shake_handle = self._scheduler.call_later(
                self._config.timing.screen_shake_ms, self._clear_screen_shake, "screen-shake")

        update = outcome.update
        if update is not None and update.milestone is not None:
            self._telemetry.emit("milestone", now, progress=update.milestone.progress,
                                 title=update.milestone.title)
        if update is not None and update.combo is not None:
            self._telemetry.emit("combo", now, streak=update.combo.streak,
                                 multiplier=update.combo.multiplier, title=update.combo.title)

        transition = outcome.transition
        if transition is None:
            return
        if transition.is_win:
            self._cancel_play_timers()
            self._play("win")
            logger.info("Level %d won", state.level_index)
            return
        if transition.level_changed:
            logger.info("Continuous mode: level %d -> %d (lap %d)",
                        before.level_index, state.level_index, state.lap_count)
        if transition.new_best_time is not None:
            logger.info("New best cycle time: %d ms", transition.new_best_time)
            self._save_best_time(transition.new_best_time)

    @_callback_boundary("handle_worm_tap")
    def handle_worm_tap(self, worm_id: str, side: Optional[str] = None) -> None:
        """
        Tap on a worm: it dies, a fairy appears, and the other worms speed up.

        Taps on dead worms are ignored.
        """
        if not self.is_playing:
            return
        kill = kill_worm(self._worms, worm_id)
        if kill is None:
            logger.debug("Worm %s already dead", worm_id)
            return
        now = self.now
        fairy = create_fairy(self._ids.next_id("fairy"), kill.worm, now, self._rng, self._config)
        factor = escalate_speed(self._context.worm_speed_factor, kill.alive_remaining, self._config)

        # Commit
        self._worms = kill.worms
        self._fairies = self._fairies + (fairy,)
        self._context.worm_speed_factor = factor

        self._play("worm_tap")
        self._telemetry.emit("worm", now, action="killed", worm_id=worm_id, side=side,
                             alive=kill.alive_remaining, speed_factor=factor)

    @_callback_boundary("change_target_manually")
    def change_target_manually(self) -> None:
        """
        Switch the target to another emoji currently on screen.

        No-op when nothing else is visible, and for sequence categories.
        """
        if not self.is_playing:
            return
        category = self.category
        if category.requires_sequence:
            return
        before = self._state
        visible = sorted({o.emoji for o in self._objects if o.emoji != before.target_emoji})
        if not visible:
            logger.debug("No other visible emoji to switch to")
            return
        item = category.find_by_emoji(self._rng.choice(visible))
        if item is None:
            logger.debug("Visible emoji not in category '%s'", category.name)
            return

        self._state = replace(before, target=item, target_deadline=self._deadline_for(category))
        self._emit_state_change("manual_target_change", before, self._state)
        self._schedule_immediate_spawn()

    @_callback_boundary("advance_frame")
    def advance_frame(self, dt_ms: float) -> None:
        """
        Per-frame motion: objects fall, worms wander and push objects aside.

        Objects that fall past the bottom edge leave the pool.
        """
        if not self.is_playing:
            return
        objects, fallen = advance_objects(
            self._objects, self._state.progress, self._config, frames=dt_ms / FRAME_MS)
        worms = update_worms(self._worms, dt_ms, self._context.worm_speed_factor, self._config)
        objects = push_objects_from_worms(worms, objects, self._config)

        self._objects = tuple(objects)
        self._worms = tuple(worms)
        if fallen:
            logger.debug("%d objects fell off screen", len(fallen))

    # ------------------------------------------------------------------
    # Timer callbacks
    # ------------------------------------------------------------------

    def _commit_spawn(self, result: SpawnResult, kind: str) -> None:
        self._objects = result.objects
        if result.last_target_spawn_time is not None:
            self._context.last_target_spawn_time = result.last_target_spawn_time
        if not result.changed:
            return
        now = self.now
        self._telemetry.emit(
            "spawn_batch", now, batch=kind, count=len(result.created), targets=result.target_count,
            pruned=len(result.pruned), forced=result.forced, pool=len(result.objects),
        )
        for obj in result.created:
            self._telemetry.emit("emoji_appearance", now, emoji=obj.emoji, name=obj.name, object_id=obj.id)
        if result.over_capacity:
            self._telemetry.emit("warning", now, source="spawn", message="forced spawn over capacity",
                                 pool=len(result.objects))

    @_callback_boundary("spawn_tick")
    def _on_spawn_tick(self) -> None:
        if not self.is_playing:
            return
        self._discard_expired_fairies()
        result = self._spawner.spawn_batch(
            self._objects, self.category, self._state.target_emoji, self.now,
            self._context.last_target_spawn_time, self.fall_speed_multiplier,
        )
        self._commit_spawn(result, "batch")

        interval = calculate_spawn_interval(self._state.progress, self._config)
        if interval != self._context.spawn_interval_ms:
            logger.debug("Spawn interval %.0f -> %.0f ms", self._context.spawn_interval_ms, interval)
            self._arm_spawn_interval(interval)

    @_callback_boundary("spawn_immediate")
    def _spawn_immediate(self) -> None:
        if not self.is_playing:
            return
        result = self._spawner.spawn_immediate_targets(
            self._objects, self.category, self._state.target_emoji, self.now,
            self._context.last_target_spawn_time, self.fall_speed_multiplier,
        )
        self._commit_spawn(result, "immediate")

    @_callback_boundary("deadline_check")
    def _on_deadline_check(self) -> None:
        if not self.is_playing:
            return
        before = self._state
        if before.target_deadline is None or self.now < before.target_deadline:
            return
        category = self.category
        target = self._next_target(category, before.sequence_cursor)
        self._state = replace(before, target=target, target_deadline=self._deadline_for(category))
        self._emit_state_change("target_timeout", before, self._state)
        self._schedule_immediate_spawn()

    @_callback_boundary("fairness_sweep")
    def _on_fairness_sweep(self) -> None:
        if self.is_playing:
            self._fairness.invalidate()

    @_callback_boundary("progressive_worm")
    def _on_progressive_worm(self) -> None:
        self._add_worms(1, "progressive")

    @_callback_boundary("recurring_worms")
    def _on_recurring_worms(self) -> None:
        self._add_worms(self._config.worms.recurring_count, "recurring")

    def _add_worms(self, count: int, kind: str) -> None:
        if not self.is_playing:
            return
        alive_before = sum(1 for w in self._worms if w.alive)
        new_worms = create_worms(count, len(self._worms), self._rng, self._ids, self._config)
        self._worms = self._worms + tuple(new_worms)
        self._telemetry.emit("worm", self.now, action=f"{kind}_spawn", count=count,
                             alive=alive_before + count)

    @_callback_boundary("screen_shake")
    def _clear_screen_shake(self) -> None:
        self._context.screen_shake_handle = None
        if self._state.screen_shake:
            self._state = replace(self._state, screen_shake=False)

    def _discard_expired_fairies(self) -> None:
        if not self._fairies:
            return
        now = self.now
        self._fairies = tuple(f for f in self._fairies if not is_expired(f, now, self._config))
