"""
Session Simulator
=================

Plays a headless game session with a scripted player and prints summary
statistics. Useful for tuning spawn and scoring parameters.

Usage:
    python -m tools.simulate_session [--duration S] [--accuracy A] [--continuous]
"""

from __future__ import annotations

import argparse
import logging
import sys
import time
from typing import Optional

import numpy as np

from lanematch.core.config_loader import load_config
from lanematch.core.motion import FRAME_MS
from lanematch.core.ports import JsonBestTimeStore, MemoryBestTimeStore
from lanematch.core.scheduler import VirtualScheduler
from lanematch.core.session import GameSession


def simulate(
    duration_s: float = 120.0,
    accuracy: float = 0.85,
    tap_interval_ms: float = 900.0,
    worm_tap_chance: float = 0.05,
    continuous: bool = False,
    level: int = 0,
    seed: int = 42,
    best_time_file: Optional[str] = None
) -> dict:
    """
    Run one session with a scripted player.

    Args:
        duration_s: Game time to simulate (seconds).
        accuracy: Chance that a tap goes to a target rather than a decoy.
        tap_interval_ms: Mean time between taps.
        worm_tap_chance: Chance per tap of tapping a worm instead.
        continuous: Play in continuous mode.
        level: Starting level.
        seed: Random seed for the session and the player.
        best_time_file: JSON file for the best cycle time (in memory if None).

    Returns:
        Dict with session statistics.
    """
    config = load_config()
    scheduler = VirtualScheduler()
    store = (JsonBestTimeStore(best_time_file, config.continuous.best_time_key)
             if best_time_file else MemoryBestTimeStore())
    session = GameSession(
        config=config,
        scheduler=scheduler,
        seed=seed,
        best_time_store=store,
        continuous_mode=continuous,
    )
    rng = np.random.default_rng(seed)

    session.start_game(level)
    next_tap = rng.exponential(tap_interval_ms)
    max_pool = 0
    frames = int(duration_s * 1000 / FRAME_MS)

    start = time.perf_counter()
    for _ in range(frames):
        scheduler.advance(FRAME_MS)
        session.advance_frame(FRAME_MS)
        max_pool = max(max_pool, len(session.objects))
        if not session.is_playing:
            break

        if scheduler.now() < next_tap:
            continue
        next_tap = scheduler.now() + rng.exponential(tap_interval_ms)

        alive = [w for w in session.worms if w.alive]
        if alive and rng.random() < worm_tap_chance:
            worm = alive[rng.integers(len(alive))]
            session.handle_worm_tap(worm.id, worm.lane.value)
            continue

        visible = [o for o in session.objects if o.y >= 0]
        target = session.state.target_emoji
        matches = [o for o in visible if o.emoji == target]
        misses = [o for o in visible if o.emoji != target]
        pool = matches if (matches and rng.random() < accuracy) or not misses else misses
        if pool:
            obj = pool[rng.integers(len(pool))]
            session.handle_object_tap(obj.id, obj.lane.value)
    elapsed = time.perf_counter() - start

    telemetry = session.telemetry
    taps = telemetry.events("tap")
    correct = sum(1 for e in taps if e.data["correct"])
    state = session.state
    return {
        "game_seconds": scheduler.now() / 1000,
        "wall_seconds": elapsed,
        "taps": len(taps),
        "correct": correct,
        "accuracy": correct / len(taps) if taps else 0.0,
        "winner": state.winner,
        "level": state.level_index,
        "laps": state.lap_count,
        "progress": state.progress,
        "best_time_ms": state.best_time,
        "max_pool": max_pool,
        "spawn_batches": telemetry.count("spawn_batch"),
        "worms_killed": sum(1 for w in session.worms if not w.alive),
        "errors": telemetry.count("error"),
    }


def main():
    parser = argparse.ArgumentParser(description="Simulate a Lane Match session")
    parser.add_argument("--duration", type=float, default=120.0, help="Game seconds to simulate")
    parser.add_argument("--accuracy", type=float, default=0.85, help="Share of taps aimed at targets")
    parser.add_argument("--tap-interval", type=float, default=900.0, help="Mean ms between taps")
    parser.add_argument("--continuous", action="store_true", help="Play in continuous mode")
    parser.add_argument("--level", type=int, default=0, help="Starting level")
    parser.add_argument("--seed", type=int, default=42, help="Random seed")
    parser.add_argument("--best-time-file", type=str, default=None, help="JSON file for the best time")
    parser.add_argument("--verbose", "-v", action="store_true", help="Log session events")

    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    stats = simulate(
        duration_s=args.duration,
        accuracy=args.accuracy,
        tap_interval_ms=args.tap_interval,
        continuous=args.continuous,
        level=args.level,
        seed=args.seed,
        best_time_file=args.best_time_file,
    )

    print("=" * 40)
    print("SESSION SUMMARY")
    print("=" * 40)
    for key, value in stats.items():
        if isinstance(value, float):
            print(f"{key:<16} {value:>12.3f}")
        else:
            print(f"{key:<16} {str(value):>12}")

    return 0


if __name__ == "__main__":
    sys.exit(main())
