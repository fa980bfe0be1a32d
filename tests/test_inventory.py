from __future__ import annotations

import pytest

from story_engine.core.inventory import (
    default_player_stats,
    detect_item_category,
    normalize_inventory,
    starting_gold,
)


@pytest.mark.parametrize(
    "universe, gold",
    [
        ("Star Wars: Outer Rim", 100),
        ("Neon Harbor", 150),
        ("Steampunk Isles", 75),
        ("Cthulhu Mythos", 30),
        ("Red Dead Frontier", 40),
        ("The Wasteland", 20),
        ("Modern Tokyo", 200),
        ("Middle Earth", 50),
        ("", 50),
    ],
)
def test_starting_gold_by_universe(universe, gold):
    assert starting_gold(universe) == gold


def test_default_player_stats():
    assert default_player_stats("Steampunk Isles") == {"hp": 100, "maxHp": 100, "gold": 75}


def test_detect_item_category():
    assert detect_item_category("Healing potion") == "consumable"
    assert detect_item_category("Leather boots") == "armor"
    assert detect_item_category("Rusty key") == "quest"
    assert detect_item_category("Odd pebble") == "misc"


def test_normalize_inventory_upgrades_strings_and_skips_junk():
    items = normalize_inventory(["Medkit", {"name": "Rope", "quantity": 0}, 42, "", {"category": "weapon"}])

    assert [item.name for item in items] == ["Medkit", "Rope"]
    assert items[0].consumable
    assert items[1].quantity == 1
    assert items[1].stackable


def test_quest_items_are_not_sellable():
    (item,) = normalize_inventory({"name": "Sealed letter", "category": "quest"})
    assert item.category == "quest"
    assert not item.sellable
