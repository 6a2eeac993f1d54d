from cardkeeper.api.health import router as health_router
from cardkeeper.api.inventory import router as inventory_router
from cardkeeper.api.jobs import router as jobs_router
from cardkeeper.api.sorting_rules import router as sorting_rules_router
from cardkeeper.api.storage import router as storage_router

__all__ = [
    "health_router",
    "inventory_router",
    "jobs_router",
    "sorting_rules_router",
    "storage_router",
]
