"""
Fairness Tracker
================

Remembers when every vocabulary item last appeared on screen and flags the
"stale" ones (unseen for longer than the rotation threshold) so decoy
selection can bring them back.

The stale set is cached. It is recomputed only after invalidate() (called by
the session's periodic sweep and on level changes) or once the cache is older
than stale_cache_ttl_ms.
"""

from __future__ import annotations

import logging
import random
from typing import Callable, Dict, Optional, Sequence, Tuple

from lanematch.core.catalog import VocabularyItem
from lanematch.core.config_loader import GameConfig, get_config

logger = logging.getLogger(__name__)


class FairnessTracker:
    """
    Per-item last-appearance bookkeeping with a cached stale set.

    Selection is biased toward stale items but never exclusive: with
    probability (1 - stale_bias) any item of the category can be drawn.
    """

    def __init__(
        self,
        config: Optional[GameConfig] = None,
        rng: Optional[random.Random] = None
    ):
        """
        Initialize tracker.

        Args:
            config: Game configuration. Uses default if None.
            rng: Random source shared with the session.
        """
        if config is None:
            config = get_config()

        self._rotation_threshold = config.timing.rotation_threshold_ms
        self._cache_ttl = config.timing.stale_cache_ttl_ms
        self._stale_bias = config.timing.stale_bias
        self._rng = rng or random.Random()

        self._last_seen: Dict[str, float] = {}
        self._stale_cache: Tuple[VocabularyItem, ...] = ()
        self._cache_items: Tuple[VocabularyItem, ...] = ()
        self._cache_time: Optional[float] = None

    @property
    def last_appearances(self) -> Dict[str, float]:
        """Copy of the emoji -> last appearance map."""
        return dict(self._last_seen)

    def last_seen(self, emoji: str) -> Optional[float]:
        return self._last_seen.get(emoji)

    def record_appearance(self, emoji: str, now: float) -> None:
        """Record that an emoji was just spawned."""
        self._last_seen[emoji] = now

    def invalidate(self) -> None:
        """Force the next stale_items() call to recompute."""
        self._cache_time = None

    def reset(self) -> None:
        """Forget all appearances (new session or new level vocabulary)."""
        self._last_seen.clear()
        self._stale_cache = ()
        self._cache_items = ()
        self._cache_time = None

    def _is_stale(self, item: VocabularyItem, now: float) -> bool:
        last = self._last_seen.get(item.emoji)
        return last is None or now - last > self._rotation_threshold

    def stale_items(self, items: Sequence[VocabularyItem], now: float) -> Tuple[VocabularyItem, ...]:
        """
        Items unseen for longer than the rotation threshold.

        Args:
            items: Vocabulary of the current level.
            now: Current time in ms.

        Returns:
            Cached stale set, recomputed if invalidated, expired, or built
            for a different vocabulary.
        """
        items = tuple(items)
        expired = (
            self._cache_time is None
            or now - self._cache_time > self._cache_ttl
            or items != self._cache_items
        )
        if expired:
            self._stale_cache = tuple(item for item in items if self._is_stale(item, now))
            self._cache_items = items
            self._cache_time = now
            logger.debug("Stale set recomputed: %d of %d items", len(self._stale_cache), len(items))
        return self._stale_cache

    def select_item(self, items: Sequence[VocabularyItem], now: float) -> VocabularyItem:
        """Draw one item, favouring stale ones."""
        return self.make_selector(items, now)()

    def make_selector(self, items: Sequence[VocabularyItem], now: float) -> Callable[[], VocabularyItem]:
        """
        Build a selector bound to the stale set at time `now`.

        The spawner calls the returned function repeatedly within one batch,
        so the stale set is resolved once per batch.
        """
        items = tuple(items)
        if not items:
            raise ValueError("Cannot select from an empty vocabulary")
        stale = self.stale_items(items, now)
        rng = self._rng
        bias = self._stale_bias

        def select() -> VocabularyItem:
            if stale and rng.random() < bias:
                return stale[rng.randrange(len(stale))]
            return items[rng.randrange(len(items))]

        return select
