from dataclasses import dataclass
from datetime import datetime


@dataclass(frozen=True, slots=True)
class SortingRule:
    """
    A named, prioritised expression that maps cards to a storage location.

    Attributes:
        id: Rule identifier (also the tie-break for equal priorities)
        name: Display name
        priority: Evaluation order key; lower values are evaluated first
        expression: Boolean expression text
        storage_location_id: Target location for matching cards
        enabled: Disabled rules are never evaluated
        updated_at: Last modification time; part of the parse cache key
    """

    id: int
    name: str
    priority: int
    expression: str
    storage_location_id: int
    enabled: bool = True
    created_at: datetime | None = None
    updated_at: datetime | None = None
