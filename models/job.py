import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, Optional, Tuple

from models.track import ItemKind, TrackMetadata
from utils.exceptions import ValidationError


class JobStatus(Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED)


@dataclass
class DownloadJob:
    """One download request spanning one or more tracks.

    Status moves Pending -> Processing -> Completed | Failed and never leaves a
    terminal state. The batch processor is the only writer of a job while it is
    processing, so each job sees exactly one terminal call.
    """

    item_kind: ItemKind
    items: Tuple[TrackMetadata, ...]
    owner_ref: Optional[str] = None
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    status: JobStatus = JobStatus.PENDING
    progress: float = 0.0
    current_item_label: Optional[str] = None
    completed_count: int = 0
    created_at: float = field(default_factory=time.time)
    completed_at: Optional[float] = None
    error_message: Optional[str] = None

    def __post_init__(self):
        self.items = tuple(self.items)
        if not self.items:
            raise ValidationError("At least one track is required")

    @classmethod
    def create(
        cls,
        item_kind: ItemKind,
        items: Iterable[TrackMetadata],
        owner_ref: Optional[str] = None,
    ) -> "DownloadJob":
        return cls(item_kind=item_kind, items=tuple(items), owner_ref=owner_ref or None)

    @property
    def total_count(self) -> int:
        return len(self.items)

    @property
    def is_multi_item(self) -> bool:
        return len(self.items) > 1

    @property
    def has_owner(self) -> bool:
        return bool(self.owner_ref) and self.owner_ref != "0"

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def start_processing(self) -> bool:
        """Move a pending job to processing. Re-delivered jobs are left untouched."""
        if self.status != JobStatus.PENDING:
            return False
        self.status = JobStatus.PROCESSING
        return True

    def update_progress(self, progress: float, current_item_label: Optional[str] = None) -> None:
        if self.is_terminal:
            return
        clamped = min(max(float(progress), 0.0), 100.0)
        # concurrent item tasks report out of order; keep the visible value from sliding back
        self.progress = max(self.progress, clamped)
        self.current_item_label = current_item_label

    def complete_item(self) -> None:
        if self.completed_count >= self.total_count:
            return
        self.completed_count += 1
        self.progress = max(self.progress, self.completed_count / self.total_count * 100)

    def complete(self) -> bool:
        if self.is_terminal:
            return False
        self.status = JobStatus.COMPLETED
        self.progress = 100.0
        self.current_item_label = None
        self.completed_at = time.time()
        return True

    def fail(self, error_message: str) -> bool:
        if self.is_terminal:
            return False
        self.status = JobStatus.FAILED
        self.error_message = error_message or "Unknown error"
        self.current_item_label = None
        self.completed_at = time.time()
        return True
