from cardkeeper.db.database import get_session, get_session_factory, init_db
from cardkeeper.db.operations import (
    apply_location_changes,
    batch_update_priorities,
    cancel_stale_jobs,
    count_by_location,
    count_inventory,
    create_inventory_item,
    create_job,
    create_sorting_rule,
    create_storage_location,
    delete_sorting_rule,
    fetch_inventory_batch,
    find_active_job,
    finish_job,
    get_card,
    get_cards_by_ids,
    get_enabled_rules,
    get_job,
    get_sorting_rule,
    get_storage_location,
    list_sorting_rules,
    list_storage_locations,
    require_storage_location,
    sorting_rule_to_model,
    start_job,
    update_job_metadata,
    update_sorting_rule,
    upsert_card,
)

__all__ = [
    "apply_location_changes",
    "batch_update_priorities",
    "cancel_stale_jobs",
    "count_by_location",
    "count_inventory",
    "create_inventory_item",
    "create_job",
    "create_sorting_rule",
    "create_storage_location",
    "delete_sorting_rule",
    "fetch_inventory_batch",
    "find_active_job",
    "finish_job",
    "get_card",
    "get_cards_by_ids",
    "get_enabled_rules",
    "get_job",
    "get_session",
    "get_session_factory",
    "get_sorting_rule",
    "get_storage_location",
    "init_db",
    "list_sorting_rules",
    "list_storage_locations",
    "require_storage_location",
    "sorting_rule_to_model",
    "start_job",
    "update_job_metadata",
    "update_sorting_rule",
    "upsert_card",
]
