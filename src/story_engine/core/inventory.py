from __future__ import annotations

from typing import Any

from .normalize import coerce_int, coerce_number, coerce_str
from .types import ITEM_CATEGORIES, Item, ItemEffect

# Checked in order; the first category with a matching keyword wins.
CATEGORY_KEYWORDS: dict[str, tuple[str, ...]] = {
    "consumable": (
        "potion", "elixir", "food", "drink", "herb", "medicine", "bandage",
        "ration", "water", "ale", "wine", "bread", "meat", "fruit", "scroll",
        "antidote", "tonic", "salve", "pill", "injection", "stim", "medkit",
        "poção", "pocao", "comida", "bebida", "erva", "remédio", "poción", "hierba",
    ),
    "weapon": (
        "sword", "axe", "bow", "arrow", "dagger", "knife", "spear", "staff",
        "wand", "mace", "hammer", "gun", "pistol", "rifle", "laser", "blade",
        "crossbow", "bolt", "club", "whip", "flail", "halberd", "scythe",
        "grenade", "bomb", "explosive", "blaster", "lightsaber", "phaser",
        "espada", "machado", "adaga", "faca", "hacha", "daga", "cuchillo",
    ),
    "armor": (
        "armor", "armour", "shield", "helmet", "helm", "boots", "gloves",
        "gauntlets", "breastplate", "chainmail", "leather", "plate", "robe",
        "cloak", "cape", "vest", "jacket", "suit", "greaves", "pauldron",
        "bracer", "visor", "mask", "bodysuit",
        "armadura", "escudo", "elmo", "capacete", "casco", "manto",
    ),
    "valuable": (
        "gold", "silver", "gem", "jewel", "diamond", "ruby", "emerald",
        "sapphire", "pearl", "coin", "treasure", "ring", "amulet", "necklace",
        "bracelet", "crown", "scepter", "goblet", "statue", "artifact",
        "relic", "crystal", "orb", "idol", "tiara",
        "ouro", "prata", "joia", "tesouro", "oro", "plata", "joya", "tesoro",
    ),
    "material": (
        "wood", "stone", "iron", "steel", "ore", "ingot", "cloth",
        "bone", "scale", "feather", "fur", "hide", "thread", "rope", "chain",
        "glass", "oil", "powder", "dust", "essence", "component", "reagent",
        "madeira", "pedra", "ferro", "madera", "piedra", "hierro",
    ),
    "quest": (
        "quest", "key", "letter", "note", "map", "document", "evidence",
        "token", "emblem", "seal", "pass", "ticket", "invitation", "contract",
        "deed", "warrant", "message", "journal", "diary", "book", "tome",
        "chave", "carta", "mapa", "llave",
    ),
    "currency": (
        "credit", "dollar", "euro", "yen", "peso", "pound", "ducat",
        "sovereign", "florin", "penny", "cent", "bitcoin", "crypto",
        "moeda", "moneda",
    ),
    "misc": (
        "torch", "lantern", "candle", "tool", "kit", "bag", "sack",
        "backpack", "container", "box", "chest", "bottle", "flask", "vial",
        "mirror", "compass", "spyglass", "telescope", "trinket", "toy",
    ),
}

DEFAULT_PLAYER_STATS: dict[str, float] = {"hp": 100, "maxHp": 100, "gold": 50}

_STARTING_GOLD_RULES: tuple[tuple[tuple[str, ...], int], ...] = (
    (("star wars", "star trek", "sci-fi", "scifi", "space", "future", "alien"), 100),
    (("cyberpunk", "blade runner", "neo", "neon"), 150),
    (("steampunk", "victorian", "clockwork"), 75),
    (("horror", "lovecraft", "cthulhu", "zombie", "resident evil", "silent hill"), 30),
    (("western", "cowboy", "red dead"), 40),
    (("post-apocalyptic", "postapocalyptic", "fallout", "wasteland", "mad max"), 20),
    (("modern", "contemporary", "city", "urban"), 200),
)


def detect_item_category(name: str) -> str:
    lower = (name or "").lower()
    for category, keywords in CATEGORY_KEYWORDS.items():
        for keyword in keywords:
            if keyword in lower:
                return category
    return "misc"


def starting_gold(universe_name: str) -> int:
    lower = (universe_name or "").lower()
    for keywords, gold in _STARTING_GOLD_RULES:
        if any(keyword in lower for keyword in keywords):
            return gold
    return int(DEFAULT_PLAYER_STATS["gold"])


def default_player_stats(universe_name: str) -> dict[str, float]:
    return {
        "hp": DEFAULT_PLAYER_STATS["hp"],
        "maxHp": DEFAULT_PLAYER_STATS["maxHp"],
        "gold": starting_gold(universe_name),
    }


def create_item(name: str, category: str | None = None, quantity: int = 1) -> Item:
    resolved = category if category in ITEM_CATEGORIES else detect_item_category(name)
    return Item(
        name=name,
        category=resolved,
        quantity=max(1, quantity),
        stackable=resolved in ("consumable", "material", "currency"),
        consumable=resolved == "consumable",
        sellable=resolved != "quest",
    )


def _normalize_effects(raw: object) -> list[ItemEffect]:
    if not isinstance(raw, list):
        return []
    effects: list[ItemEffect] = []
    for entry in raw:
        if not isinstance(entry, dict):
            continue
        stat = coerce_str(entry.get("stat"))
        value = coerce_number(entry.get("value"))
        if not stat or value is None:
            continue
        duration = coerce_number(entry.get("duration"))
        effects.append(ItemEffect(stat=stat, value=value, duration=int(duration) if duration is not None else None))
    return effects


def normalize_item(raw: object) -> Item | None:
    """Upgrade a bare string or a loosely structured dict into an ``Item``."""
    if isinstance(raw, Item):
        return raw
    if isinstance(raw, str):
        name = raw.strip()
        return create_item(name) if name else None
    if not isinstance(raw, dict):
        return None

    name = coerce_str(raw.get("name"))
    if not name:
        return None
    item = create_item(
        name,
        category=coerce_str(raw.get("category")).lower() or None,
        quantity=coerce_int(raw.get("quantity"), 1),
    )
    for source_key, attr in (
        ("stackable", "stackable"),
        ("isStackable", "stackable"),
        ("consumable", "consumable"),
        ("canSell", "sellable"),
        ("sellable", "sellable"),
    ):
        value = raw.get(source_key)
        if isinstance(value, bool):
            setattr(item, attr, value)
    description = coerce_str(raw.get("description"))
    item.description = description or None
    base_value = coerce_number(raw.get("baseValue", raw.get("base_value")))
    item.base_value = int(base_value) if base_value is not None else None
    item.effects = _normalize_effects(raw.get("effects"))
    return item


def normalize_inventory(raw: Any) -> list[Item]:
    if raw is None:
        return []
    if isinstance(raw, (str, dict)):
        raw = [raw]
    if not isinstance(raw, list):
        return []
    items: list[Item] = []
    for entry in raw:
        item = normalize_item(entry)
        if item is not None:
            items.append(item)
    return items
