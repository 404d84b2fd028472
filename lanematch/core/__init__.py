"""
LaneMatch Core - the session engine.

This module provides the session controller and all supporting systems
(spawning, fairness, placement, scoring, level rules, worms, fairies).

Main exports:
- GameSession: Session controller driven by commands and timers
- VirtualScheduler: Deterministic clock and timer queue
- SessionSnapshot: Read-only view of one instant
- GameConfig: Configuration loaded from game_config.yaml
- CategoryCatalog: Vocabulary loaded from categories.yaml
"""

from lanematch.core.config_loader import GameConfig, load_config
from lanematch.core.catalog import Category, CategoryCatalog, VocabularyItem, load_catalog
from lanematch.core.entities import FairyTransformObject, GameObject, Lane, WormObject
from lanematch.core.exceptions import (
    ConfigError,
    InvariantViolation,
    LaneMatchError,
    LookupMiss,
    StorageError,
)
from lanematch.core.ports import JsonBestTimeStore, MemoryBestTimeStore, NullAudio
from lanematch.core.scheduler import TimerHandle, VirtualScheduler
from lanematch.core.session import GameSession
from lanematch.core.state_snapshot import SessionSnapshot, SessionState
from lanematch.core.telemetry import Telemetry, TelemetryEvent

__all__ = [
    "GameConfig",
    "load_config",
    "Category",
    "CategoryCatalog",
    "VocabularyItem",
    "load_catalog",
    "FairyTransformObject",
    "GameObject",
    "Lane",
    "WormObject",
    "ConfigError",
    "InvariantViolation",
    "LaneMatchError",
    "LookupMiss",
    "StorageError",
    "JsonBestTimeStore",
    "MemoryBestTimeStore",
    "NullAudio",
    "TimerHandle",
    "VirtualScheduler",
    "GameSession",
    "SessionSnapshot",
    "SessionState",
    "Telemetry",
    "TelemetryEvent",
]
