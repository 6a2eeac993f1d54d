"""
Card field schema for sorting rule expressions.

Field access in expressions is a lookup in this fixed table. Anything not
listed here is rejected at validation time.
"""

from enum import Enum


class FieldType(str, Enum):
    """Declared type of a card field."""

    STRING = "string"
    NUMBER = "number"
    BOOLEAN = "boolean"
    LIST = "list"


PRICE_KEYS = ("usd", "usd_foil", "usd_etched", "eur", "eur_foil", "tix")

STRING_FIELDS = (
    "name",
    "set_code",
    "set_name",
    "rarity",
    "type_line",
    "oracle_text",
    "mana_cost",
    "power",
    "toughness",
    "loyalty",
    "artist",
    "collector_number",
    "frame",
    "border_color",
    "layout",
    "treatment",
)

NUMBER_FIELDS = (
    "cmc",
    "edhrec_rank",
    "color_count",
    "quantity",
    *(f"prices.{key}" for key in PRICE_KEYS),
)

LIST_FIELDS = (
    "colors",
    "color_identity",
    "keywords",
    "finishes",
    "promo_types",
)

BOOLEAN_FIELDS = (
    "reserved",
    "foil",
    "nonfoil",
    "oversized",
    "promo",
    "reprint",
    "digital",
    "full_art",
    "textless",
    "booster",
)

# Derived from color_identity, which Scryfall sets for every layout including
# double-faced cards whose colors only appear per face
COLOR_FIELDS = (
    "is_mono_color",
    "is_multicolor",
    "is_colorless",
)

CARD_FIELDS: dict[str, FieldType] = {
    **{name: FieldType.STRING for name in STRING_FIELDS},
    **{name: FieldType.NUMBER for name in NUMBER_FIELDS},
    **{name: FieldType.LIST for name in LIST_FIELDS},
    **{name: FieldType.BOOLEAN for name in BOOLEAN_FIELDS},
    **{name: FieldType.BOOLEAN for name in COLOR_FIELDS},
}

# Alternate spellings accepted in expression text
FIELD_ALIASES: dict[str, str] = {
    "set": "set_code",
}


def canonical_field(name: str) -> str:
    """Resolve an alias to its schema field name."""
    return FIELD_ALIASES.get(name, name)


def field_type(name: str) -> FieldType | None:
    """Declared type of a field, or None if the field is unknown."""
    return CARD_FIELDS.get(canonical_field(name))
