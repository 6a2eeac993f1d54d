"""
Evaluation context builder.

Converts catalog card data (Scryfall card JSON) plus inventory attributes
into the flat, read-only mapping that expressions are evaluated against.
"""

import json
from collections.abc import Mapping
from types import MappingProxyType
from typing import Any

from cardkeeper.rules.schema import BOOLEAN_FIELDS, LIST_FIELDS, PRICE_KEYS

EvaluationContext = Mapping[str, Any]

# Schema field name -> key in the catalog JSON, where they differ
_SOURCE_KEYS = {"set_code": "set"}

_STRING_SOURCE_FIELDS = (
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
)


def parse_price(value: Any) -> float | None:
    """Parse a catalog price ("83.73") into a float, None if unavailable."""
    if value is None or isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def color_fields(color_identity: list[Any]) -> dict[str, Any]:
    """Color count and mono/multi/colorless flags for a color identity."""
    count = len({color for color in color_identity if isinstance(color, str)})
    return {
        "color_count": count,
        "is_mono_color": count == 1,
        "is_multicolor": count >= 2,
        "is_colorless": count == 0,
    }


def context_from_card_json(
    card: Mapping[str, Any],
    treatment: str = "",
    quantity: int | None = None,
) -> EvaluationContext:
    """
    Build an evaluation context from a catalog card dict.

    Values are copied as found so the evaluator sees the actual runtime
    types; keys missing from the card are left out rather than defaulted.

    Args:
        card: Card object in Scryfall JSON shape
        treatment: Inventory treatment (foil, nonfoil, etched, ...)
        quantity: Inventory quantity, if known

    Returns:
        Read-only mapping of schema field names to values
    """
    data: dict[str, Any] = {}

    for field in _STRING_SOURCE_FIELDS:
        value = card.get(_SOURCE_KEYS.get(field, field))
        if value is not None:
            data[field] = value

    for field in ("cmc", "edhrec_rank"):
        if card.get(field) is not None:
            data[field] = card[field]

    for field in (*LIST_FIELDS, *BOOLEAN_FIELDS):
        if card.get(field) is not None:
            data[field] = card[field]

    identity = card.get("color_identity")
    if isinstance(identity, list):
        data.update(color_fields(identity))

    prices = card.get("prices") or {}
    if isinstance(prices, Mapping):
        for key in PRICE_KEYS:
            price = parse_price(prices.get(key))
            if price is not None:
                data[f"prices.{key}"] = price

    if treatment:
        data["treatment"] = treatment
    if quantity is not None:
        data["quantity"] = quantity

    return MappingProxyType(data)


def context_from_raw_json(
    raw_json: str,
    treatment: str = "",
    quantity: int | None = None,
) -> EvaluationContext:
    """
    Build an evaluation context from stored catalog JSON text.

    Raises:
        ValueError: If the text is not a JSON object
    """
    card = json.loads(raw_json)
    if not isinstance(card, dict):
        raise ValueError("Card JSON must be an object")
    return context_from_card_json(card, treatment=treatment, quantity=quantity)
