"""
Configuration Loader
====================

Loads and validates game_config.yaml, providing typed access to all parameters.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Tuple

import yaml

from lanematch.core.exceptions import ConfigError


@dataclass(frozen=True)
class SpawnConfig:
    """Falling-object pool and batch spawning parameters."""
    max_active_objects: int          # Soft capacity of the pool
    spawn_count: int                 # Objects per spawn tick
    target_guarantee_count: int      # Targets per tick when slots allow
    min_decoy_slots: int             # Decoys the overflow pruner keeps
    immediate_target_count: int      # Targets spawned right after a target change
    emoji_size: int
    spawn_vertical_gap: float        # Stagger between objects of one batch (px)
    min_vertical_gap: float          # Placement separation (px)
    horizontal_separation: float     # Placement separation (% of width)
    placement_max_attempts: int
    force_target_after_ms: float
    duplicate_reject_probability: float
    collision_min_separation: float

    @property
    def required_slots(self) -> int:
        """Slots reserved before a batch: guaranteed targets plus decoys."""
        return self.target_guarantee_count + self.min_decoy_slots

    @property
    def prune_threshold(self) -> int:
        """Pool size above which the overflow pruner runs before spawning."""
        return self.max_active_objects - self.required_slots


@dataclass(frozen=True)
class LaneConfig:
    """Horizontal lane bounds (percent) and nominal viewport size (px)."""
    left: Tuple[float, float]
    right: Tuple[float, float]
    viewport_width: int
    viewport_height: int

    def bounds(self, lane: str) -> Tuple[float, float]:
        """(min_x, max_x) for a lane name."""
        if lane == "left":
            return self.left
        if lane == "right":
            return self.right
        raise ValueError(f"Unknown lane: {lane}")


@dataclass(frozen=True)
class TimingConfig:
    """Deadlines and periodic sweep intervals."""
    target_duration_ms: float
    rotation_threshold_ms: float
    stale_cache_ttl_ms: float
    stale_bias: float
    fairness_sweep_interval_ms: float
    deadline_check_interval_ms: float
    screen_shake_ms: float
    start_spawn_delay_ms: float


@dataclass(frozen=True)
class Milestone:
    """Progress threshold that triggers a celebration."""
    progress: int
    title: str
    emoji: str


@dataclass(frozen=True)
class ComboLevel:
    """Streak threshold with its point multiplier."""
    streak: int
    multiplier: float
    title: str
    emoji: str


@dataclass(frozen=True)
class ScoringConfig:
    """Progress and streak scoring parameters."""
    points_per_tap: int
    max_progress: int
    milestones: Tuple[Milestone, ...]
    combo_levels: Tuple[ComboLevel, ...]


@dataclass(frozen=True)
class DifficultyConfig:
    """Progress-driven difficulty curve."""
    base_fall_speed: float
    speed_increase_per_progress: float  # Added per 10% of progress
    max_speed_multiplier: float
    base_spawn_interval_ms: float
    min_spawn_interval_ms: float


@dataclass(frozen=True)
class ContinuousConfig:
    """Endless-play parameters."""
    laps_per_level: int
    best_time_key: str


@dataclass(frozen=True)
class WormConfig:
    """Worm hazard spawning and escalation."""
    initial_count: int
    progressive_interval_ms: float
    recurring_count: int
    recurring_interval_ms: float
    size: int
    base_speed: float
    speed_escalation: float
    spawn_y_min: float
    spawn_y_range: float


@dataclass(frozen=True)
class FairyConfig:
    """Fairy transformation timeline and flight geometry."""
    morph_ms: float
    fly_ms: float
    trail_fade_ms: float
    sparkle_count: int
    edge_variation_x: float
    edge_variation_y: float
    off_screen_distance: float
    screen_right_edge: float
    screen_left_edge: float

    @property
    def total_ms(self) -> float:
        """Full lifetime of a fairy, after which it is discarded."""
        return self.morph_ms + self.fly_ms + self.trail_fade_ms


@dataclass(frozen=True)
class GameConfig:
    """
    Complete game configuration loaded from YAML.

    All values are immutable to prevent accidental modification during runtime.
    """
    spawn: SpawnConfig
    lanes: LaneConfig
    timing: TimingConfig
    scoring: ScoringConfig
    difficulty: DifficultyConfig
    continuous: ContinuousConfig
    worms: WormConfig
    fairy: FairyConfig
    catalog_path: str


def _parse_bounds(data: List, lane: str) -> Tuple[float, float]:
    """Parse a [min, max] lane bound pair."""
    if len(data) != 2:
        raise ConfigError(f"Lane '{lane}' bounds must have 2 values [min, max], got {data}")
    return (float(data[0]), float(data[1]))


def _parse_milestone(data: Dict) -> Milestone:
    return Milestone(
        progress=int(data["progress"]),
        title=str(data.get("title", "")),
        emoji=str(data.get("emoji", "")),
    )


def _parse_combo_level(data: Dict) -> ComboLevel:
    return ComboLevel(
        streak=int(data["streak"]),
        multiplier=float(data["multiplier"]),
        title=str(data.get("title", "")),
        emoji=str(data.get("emoji", "")),
    )


def _validate_config(config: GameConfig) -> None:
    """Validate configuration consistency."""
    spawn = config.spawn
    if spawn.required_slots >= spawn.max_active_objects:
        raise ConfigError(
            f"target_guarantee_count + min_decoy_slots ({spawn.required_slots}) must be "
            f"below max_active_objects ({spawn.max_active_objects})"
        )
    if spawn.spawn_count <= 0:
        raise ConfigError(f"spawn_count must be positive, got {spawn.spawn_count}")
    if spawn.placement_max_attempts <= 0:
        raise ConfigError("placement_max_attempts must be positive")
    if not 0.0 <= spawn.duplicate_reject_probability <= 1.0:
        raise ConfigError("duplicate_reject_probability must be in [0, 1]")

    for lane in ("left", "right"):
        lo, hi = config.lanes.bounds(lane)
        if not 0.0 <= lo < hi <= 100.0:
            raise ConfigError(f"Lane '{lane}' bounds must satisfy 0 <= min < max <= 100, got {(lo, hi)}")

    if not 0.0 <= config.timing.stale_bias <= 1.0:
        raise ConfigError("stale_bias must be in [0, 1]")
    for name in ("target_duration_ms", "rotation_threshold_ms", "fairness_sweep_interval_ms",
                 "deadline_check_interval_ms"):
        if getattr(config.timing, name) <= 0:
            raise ConfigError(f"timing.{name} must be positive")

    # Combo streaks must be strictly increasing for the multiplier lookup
    streaks = [level.streak for level in config.scoring.combo_levels]
    if any(b <= a for a, b in zip(streaks, streaks[1:])):
        raise ConfigError(f"combo_levels streaks must be strictly increasing, got {streaks}")

    progresses = [m.progress for m in config.scoring.milestones]
    if any(b <= a for a, b in zip(progresses, progresses[1:])):
        raise ConfigError(f"milestones must be strictly increasing, got {progresses}")

    difficulty = config.difficulty
    if difficulty.min_spawn_interval_ms > difficulty.base_spawn_interval_ms:
        raise ConfigError("min_spawn_interval_ms cannot exceed base_spawn_interval_ms")

    if config.continuous.laps_per_level <= 0:
        raise ConfigError("laps_per_level must be positive")

    if min(config.fairy.morph_ms, config.fairy.fly_ms, config.fairy.trail_fade_ms) <= 0:
        raise ConfigError("fairy phase durations must be positive")


def load_config(config_path: Optional[str] = None) -> GameConfig:
    """
    Load and validate game configuration from YAML.

    Args:
        config_path: Path to game_config.yaml. If None, uses default location.

    Returns:
        Validated GameConfig instance.

    Raises:
        FileNotFoundError: If config file doesn't exist.
        ConfigError: If config validation fails.
    """
    if config_path is None:
        config_path = os.path.join(
            os.path.dirname(os.path.dirname(__file__)),
            "game_config.yaml"
        )

    config_path = Path(config_path)
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    with open(config_path, "r", encoding="utf-8") as f:
        raw = yaml.safe_load(f)

    spawn_data = raw["spawn"]
    spawn = SpawnConfig(
        max_active_objects=int(spawn_data["max_active_objects"]),
        spawn_count=int(spawn_data["spawn_count"]),
        target_guarantee_count=int(spawn_data["target_guarantee_count"]),
        min_decoy_slots=int(spawn_data["min_decoy_slots"]),
        immediate_target_count=int(spawn_data.get("immediate_target_count", 2)),
        emoji_size=int(spawn_data.get("emoji_size", 60)),
        spawn_vertical_gap=float(spawn_data["spawn_vertical_gap"]),
        min_vertical_gap=float(spawn_data["min_vertical_gap"]),
        horizontal_separation=float(spawn_data["horizontal_separation"]),
        placement_max_attempts=int(spawn_data.get("placement_max_attempts", 8)),
        force_target_after_ms=float(spawn_data["force_target_after_ms"]),
        duplicate_reject_probability=float(spawn_data.get("duplicate_reject_probability", 0.7)),
        collision_min_separation=float(spawn_data.get("collision_min_separation", 8)),
    )

    lane_data = raw["lanes"]
    lanes = LaneConfig(
        left=_parse_bounds(lane_data["left"], "left"),
        right=_parse_bounds(lane_data["right"], "right"),
        viewport_width=int(lane_data.get("viewport_width", 1920)),
        viewport_height=int(lane_data.get("viewport_height", 1080)),
    )

    timing_data = raw["timing"]
    timing = TimingConfig(
        target_duration_ms=float(timing_data["target_duration_ms"]),
        rotation_threshold_ms=float(timing_data["rotation_threshold_ms"]),
        stale_cache_ttl_ms=float(timing_data.get("stale_cache_ttl_ms", 5000)),
        stale_bias=float(timing_data.get("stale_bias", 0.7)),
        fairness_sweep_interval_ms=float(timing_data.get("fairness_sweep_interval_ms", 5000)),
        deadline_check_interval_ms=float(timing_data.get("deadline_check_interval_ms", 1000)),
        screen_shake_ms=float(timing_data.get("screen_shake_ms", 500)),
        start_spawn_delay_ms=float(timing_data.get("start_spawn_delay_ms", 100)),
    )

    scoring_data = raw["scoring"]
    scoring = ScoringConfig(
        points_per_tap=int(scoring_data["points_per_tap"]),
        max_progress=int(scoring_data.get("max_progress", 100)),
        milestones=tuple(_parse_milestone(m) for m in scoring_data.get("milestones", [])),
        combo_levels=tuple(_parse_combo_level(c) for c in scoring_data.get("combo_levels", [])),
    )

    difficulty_data = raw["difficulty"]
    difficulty = DifficultyConfig(
        base_fall_speed=float(difficulty_data["base_fall_speed"]),
        speed_increase_per_progress=float(difficulty_data["speed_increase_per_progress"]),
        max_speed_multiplier=float(difficulty_data["max_speed_multiplier"]),
        base_spawn_interval_ms=float(difficulty_data["base_spawn_interval_ms"]),
        min_spawn_interval_ms=float(difficulty_data["min_spawn_interval_ms"]),
    )

    continuous_data = raw.get("continuous", {})
    continuous = ContinuousConfig(
        laps_per_level=int(continuous_data.get("laps_per_level", 5)),
        best_time_key=str(continuous_data.get("best_time_key", "continuousModeHighScore")),
    )

    worm_data = raw["worms"]
    worms = WormConfig(
        initial_count=int(worm_data["initial_count"]),
        progressive_interval_ms=float(worm_data["progressive_interval_ms"]),
        recurring_count=int(worm_data["recurring_count"]),
        recurring_interval_ms=float(worm_data["recurring_interval_ms"]),
        size=int(worm_data.get("size", 60)),
        base_speed=float(worm_data["base_speed"]),
        speed_escalation=float(worm_data.get("speed_escalation", 1.2)),
        spawn_y_min=float(worm_data.get("spawn_y_min", 100)),
        spawn_y_range=float(worm_data.get("spawn_y_range", 300)),
    )

    fairy_data = raw["fairy"]
    fairy = FairyConfig(
        morph_ms=float(fairy_data["morph_ms"]),
        fly_ms=float(fairy_data["fly_ms"]),
        trail_fade_ms=float(fairy_data["trail_fade_ms"]),
        sparkle_count=int(fairy_data.get("sparkle_count", 12)),
        edge_variation_x=float(fairy_data.get("edge_variation_x", 40)),
        edge_variation_y=float(fairy_data.get("edge_variation_y", 200)),
        off_screen_distance=float(fairy_data.get("off_screen_distance", 100)),
        screen_right_edge=float(fairy_data.get("screen_right_edge", 110)),
        screen_left_edge=float(fairy_data.get("screen_left_edge", -20)),
    )

    # Catalog path is relative to the config file unless absolute
    catalog_path = Path(raw.get("catalog_file", "categories.yaml"))
    if not catalog_path.is_absolute():
        catalog_path = config_path.parent / catalog_path

    config = GameConfig(
        spawn=spawn,
        lanes=lanes,
        timing=timing,
        scoring=scoring,
        difficulty=difficulty,
        continuous=continuous,
        worms=worms,
        fairy=fairy,
        catalog_path=str(catalog_path),
    )

    _validate_config(config)
    return config


# Module-level singleton for convenience
_cached_config: Optional[GameConfig] = None


def get_config() -> GameConfig:
    """Get the cached game configuration, loading if necessary."""
    global _cached_config
    if _cached_config is None:
        _cached_config = load_config()
    return _cached_config


def reload_config(config_path: Optional[str] = None) -> GameConfig:
    """Reload the configuration (useful for testing)."""
    global _cached_config
    _cached_config = load_config(config_path)
    return _cached_config
