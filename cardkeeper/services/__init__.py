"""
CardKeeper services.

Storage assignment for single cards and bulk re-sort of the inventory.
"""

from cardkeeper.services.auto_sort import AutoSortService, auto_sort_service
from cardkeeper.services.resort import (
    BatchPersistenceError,
    BatchPlan,
    InventoryRow,
    ResortJobRegistry,
    ResortOptions,
    ResortRunner,
    plan_batch,
    resort_registry,
)

__all__ = [
    "AutoSortService",
    "BatchPersistenceError",
    "BatchPlan",
    "InventoryRow",
    "ResortJobRegistry",
    "ResortOptions",
    "ResortRunner",
    "auto_sort_service",
    "plan_batch",
    "resort_registry",
]
