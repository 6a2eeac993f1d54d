from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any


class JobType(str, Enum):
    """Kinds of background job."""

    INVENTORY_RESORT = "inventory_resort"


class JobStatus(str, Enum):
    """
    Job lifecycle.

    pending -> in_progress -> completed | failed | cancelled
    """

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED)


ACTIVE_STATUSES = (JobStatus.PENDING, JobStatus.IN_PROGRESS)

# Movements kept in a job's metadata; later ones are counted but not listed
MAX_RECORDED_MOVEMENTS = 500


class ResortPhase(str, Enum):
    """Where a re-sort job currently is."""

    QUEUED = "queued"
    COUNTING = "counting"
    SORTING = "sorting"
    DONE = "done"


@dataclass
class ResortProgress:
    """
    Progress of a re-sort job, stored as the job's metadata.

    Attributes:
        total_cards: Inventory rows targeted by the job
        processed_cards: Rows evaluated so far (committed batches only)
        updated_cards: Rows whose storage location changed
        error_count: Rows with missing catalog data or rule evaluation errors
        phase: Current phase
        batch_size: Rows per batch
        inventory_ids: Explicit subset being re-sorted, None for everything
        movements: Committed location changes, oldest first, at most
            MAX_RECORDED_MOVEMENTS of them
        movements_truncated: True once changes stopped being listed
    """

    total_cards: int = 0
    processed_cards: int = 0
    updated_cards: int = 0
    error_count: int = 0
    phase: ResortPhase = ResortPhase.QUEUED
    batch_size: int = 0
    inventory_ids: list[int] | None = None
    movements: list[dict[str, Any]] = field(default_factory=list)
    movements_truncated: bool = False

    def record_movements(self, movements: list[dict[str, Any]]) -> None:
        """Append committed movements up to the cap."""
        room = MAX_RECORDED_MOVEMENTS - len(self.movements)
        if len(movements) > room:
            self.movements_truncated = True
        self.movements.extend(movements[: max(room, 0)])

    def to_metadata(self) -> dict[str, Any]:
        data = asdict(self)
        data["phase"] = self.phase.value
        return data

    @classmethod
    def from_metadata(cls, data: dict[str, Any] | None) -> "ResortProgress":
        if not data:
            return cls()
        return cls(
            total_cards=int(data.get("total_cards", 0)),
            processed_cards=int(data.get("processed_cards", 0)),
            updated_cards=int(data.get("updated_cards", 0)),
            error_count=int(data.get("error_count", 0)),
            phase=ResortPhase(data.get("phase", ResortPhase.QUEUED.value)),
            batch_size=int(data.get("batch_size", 0)),
            inventory_ids=data.get("inventory_ids"),
            movements=list(data.get("movements") or []),
            movements_truncated=bool(data.get("movements_truncated", False)),
        )
