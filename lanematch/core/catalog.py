"""
Category Catalog
================

Read-only vocabulary shared by every session, plus the session-owned target
pool that draws targets from it.
"""

from __future__ import annotations

import random
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Sequence, Tuple

import yaml

from lanematch.core.config_loader import GameConfig, get_config
from lanematch.core.exceptions import ConfigError


@dataclass(frozen=True)
class VocabularyItem:
    """A single emoji glyph and the word it stands for."""
    emoji: str
    name: str

    def __repr__(self) -> str:
        return f"VocabularyItem({self.emoji} {self.name})"


@dataclass(frozen=True)
class Category:
    """
    An ordered list of vocabulary items forming one level.

    The sequence cursor for categories with requires_sequence is owned by the
    session, not stored here, so the catalog can be shared safely.
    """
    name: str
    items: Tuple[VocabularyItem, ...]
    requires_sequence: bool = False

    def __len__(self) -> int:
        return len(self.items)

    def find_by_emoji(self, emoji: str) -> Optional[VocabularyItem]:
        """First item with the given glyph, or None."""
        for item in self.items:
            if item.emoji == emoji:
                return item
        return None

    def sequence_item(self, cursor: int) -> VocabularyItem:
        """Expected item at a sequence cursor (wraps past the end)."""
        return self.items[cursor % len(self.items)]


class CategoryCatalog:
    """
    Collection of all categories in level order.

    Provides indexed access and level clamping.
    """

    def __init__(self, categories: Sequence[Category]):
        if not categories:
            raise ConfigError("Catalog must contain at least one category")
        for category in categories:
            if not category.items:
                raise ConfigError(f"Category '{category.name}' has no items")
        self._categories: Tuple[Category, ...] = tuple(categories)

    def __len__(self) -> int:
        """Number of categories (levels)."""
        return len(self._categories)

    def __getitem__(self, level_index: int) -> Category:
        """Get category by level index."""
        if 0 <= level_index < len(self._categories):
            return self._categories[level_index]
        raise IndexError(f"Level {level_index} out of range [0, {len(self._categories)})")

    def __iter__(self) -> Iterator[Category]:
        return iter(self._categories)

    @property
    def categories(self) -> Tuple[Category, ...]:
        return self._categories

    def clamp_level(self, level_index: int) -> int:
        """Clamp an arbitrary level index into the valid range."""
        return max(0, min(len(self._categories) - 1, int(level_index)))

    def get(self, level_index: int) -> Category:
        """Category at a level, falling back to the first one."""
        if 0 <= level_index < len(self._categories):
            return self._categories[level_index]
        return self._categories[0]

    def get_by_name(self, name: str) -> Optional[Category]:
        """Get category by name (case-insensitive)."""
        name_lower = name.lower()
        for category in self._categories:
            if category.name.lower() == name_lower:
                return category
        return None


def _parse_category(data: Dict) -> Category:
    """Parse a single category from YAML."""
    items = []
    for item_data in data["items"]:
        if isinstance(item_data, dict):
            items.append(VocabularyItem(emoji=str(item_data["emoji"]), name=str(item_data["name"])))
        elif isinstance(item_data, (list, tuple)) and len(item_data) == 2:
            items.append(VocabularyItem(emoji=str(item_data[0]), name=str(item_data[1])))
        else:
            raise ConfigError(f"Item must be {{emoji, name}} or [emoji, name], got {item_data}")
    return Category(
        name=str(data["name"]),
        items=tuple(items),
        requires_sequence=bool(data.get("requires_sequence", False)),
    )


def load_catalog(catalog_path: str) -> CategoryCatalog:
    """
    Load the vocabulary catalog from YAML.

    Raises:
        FileNotFoundError: If the catalog file doesn't exist.
        ConfigError: If a category is malformed.
    """
    path = Path(catalog_path)
    if not path.exists():
        raise FileNotFoundError(f"Catalog file not found: {path}")

    with open(path, "r", encoding="utf-8") as f:
        raw = yaml.safe_load(f)

    return CategoryCatalog([_parse_category(c) for c in raw["categories"]])


# Module-level singleton
_cached_catalog: Optional[CategoryCatalog] = None


def get_catalog(config: Optional[GameConfig] = None) -> CategoryCatalog:
    """
    Get the category catalog singleton.

    Args:
        config: Optional config to use. If None, uses cached or default config.
    """
    global _cached_catalog
    if _cached_catalog is None or config is not None:
        if config is None:
            config = get_config()
        _cached_catalog = load_catalog(config.catalog_path)
    return _cached_catalog


class TargetPool:
    """
    Shuffle bag of targets for one category.

    Random targets are drawn without repeats until every item of the
    category has been used, then the bag refills and reshuffles. Sequence
    categories bypass the bag and return the item at the session's cursor.
    """

    def __init__(self, rng: Optional[random.Random] = None):
        self._rng = rng or random.Random()
        self._bag: List[VocabularyItem] = []

    def refill(self, category: Category) -> None:
        """Refill and shuffle the bag from a category."""
        self._bag = list(category.items)
        self._rng.shuffle(self._bag)

    def clear(self) -> None:
        self._bag = []

    def __len__(self) -> int:
        return len(self._bag)

    def next_target(self, category: Category, cursor: int = 0) -> VocabularyItem:
        """
        Draw the next target.

        Args:
            category: Category of the current level.
            cursor: Sequence cursor, used only for sequence categories.
        """
        if category.requires_sequence:
            return category.sequence_item(cursor)
        if not self._bag:
            self.refill(category)
        return self._bag.pop()

