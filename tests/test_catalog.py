"""
Tests for the vocabulary catalog and target pool.
"""

import random

import pytest

from lanematch.core.config_loader import load_config
from lanematch.core.catalog import Category, CategoryCatalog, TargetPool, VocabularyItem, load_catalog
from lanematch.core.exceptions import ConfigError


@pytest.fixture
def config():
    return load_config()


@pytest.fixture
def catalog(config):
    return load_catalog(config.catalog_path)


class TestCatalog:
    """Test category loading and lookup."""

    def test_level_order(self, catalog):
        assert len(catalog) == 9
        assert catalog[0].name == "Fruits & Vegetables"
        assert catalog[len(catalog) - 1].name == "Alphabet Challenge"

    def test_only_alphabet_requires_sequence(self, catalog):
        sequenced = [c.name for c in catalog if c.requires_sequence]
        assert sequenced == ["Alphabet Challenge"]

    def test_emojis_unique_within_category(self, catalog):
        """Glyph lookup relies on unique emoji per category."""
        for category in catalog:
            emojis = [item.emoji for item in category.items]
            assert len(emojis) == len(set(emojis)), category.name

    def test_clamp_level(self, catalog):
        assert catalog.clamp_level(-3) == 0
        assert catalog.clamp_level(4) == 4
        assert catalog.clamp_level(99) == len(catalog) - 1

    def test_index_out_of_range(self, catalog):
        with pytest.raises(IndexError):
            catalog[len(catalog)]
        assert catalog.get(len(catalog)) is catalog[0]

    def test_get_by_name(self, catalog):
        assert catalog.get_by_name("counting fun") is catalog[1]
        assert catalog.get_by_name("nope") is None

    def test_find_by_emoji(self, catalog):
        fruits = catalog[0]
        assert fruits.find_by_emoji("🍎") == VocabularyItem("🍎", "apple")
        assert fruits.find_by_emoji("🐶") is None

    def test_sequence_item_wraps(self):
        category = Category("Seq", (VocabularyItem("A", "a"), VocabularyItem("B", "b")), True)
        assert category.sequence_item(0).name == "a"
        assert category.sequence_item(3).name == "b"

    def test_empty_category_rejected(self):
        with pytest.raises(ConfigError):
            CategoryCatalog([Category("Empty", ())])

    def test_malformed_item_rejected(self, tmp_path):
        path = tmp_path / "categories.yaml"
        path.write_text("categories:\n  - name: Bad\n    items:\n      - just-a-string\n", encoding="utf-8")
        with pytest.raises(ConfigError):
            load_catalog(str(path))

    def test_list_items_accepted(self, tmp_path):
        path = tmp_path / "categories.yaml"
        path.write_text("categories:\n  - name: Pairs\n    items:\n      - [X, ex]\n", encoding="utf-8")
        catalog = load_catalog(str(path))
        assert catalog[0].items == (VocabularyItem("X", "ex"),)


class TestTargetPool:
    """Test shuffle-bag target selection."""

    def test_no_repeats_until_exhausted(self, catalog):
        """Every item is drawn once before any repeats."""
        category = catalog[0]
        pool = TargetPool(random.Random(1))
        drawn = [pool.next_target(category).emoji for _ in range(len(category))]
        assert sorted(drawn) == sorted(item.emoji for item in category.items)
        assert len(pool) == 0

    def test_refills_after_exhaustion(self, catalog):
        category = catalog[0]
        pool = TargetPool(random.Random(1))
        for _ in range(len(category)):
            pool.next_target(category)
        pool.next_target(category)
        assert len(pool) == len(category) - 1

    def test_deterministic_with_seed(self, catalog):
        category = catalog[2]
        p1, p2 = TargetPool(random.Random(7)), TargetPool(random.Random(7))
        seq1 = [p1.next_target(category) for _ in range(20)]
        seq2 = [p2.next_target(category) for _ in range(20)]
        assert seq1 == seq2

    def test_sequence_follows_cursor(self, catalog):
        """Sequence categories ignore the bag and follow the cursor."""
        alphabet = catalog[len(catalog) - 1]
        pool = TargetPool(random.Random(1))
        assert pool.next_target(alphabet, 0) == alphabet.items[0]
        assert pool.next_target(alphabet, 3) == alphabet.items[3]
        assert len(pool) == 0

    def test_clear(self, catalog):
        pool = TargetPool(random.Random(1))
        pool.refill(catalog[0])
        pool.clear()
        assert len(pool) == 0
