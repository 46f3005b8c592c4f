"""Per-operation progress snapshot model."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict

from pyopmon.models._base import OpmonEnum
from pyopmon.models.envelope import EventFamily


class ProgressStatus(OpmonEnum):
    QUEUED = "queued"
    DOWNLOADING = "downloading"
    UPLOADING = "uploading"
    PAUSED = "paused"
    COMPLETE = "complete"
    ERROR = "error"
    UNKNOWN = "unknown"


#: Status vocabulary per lifecycle family.
FAMILY_STATUSES: dict[EventFamily, frozenset[ProgressStatus]] = {
    EventFamily.DOWNLOAD: frozenset(
        {ProgressStatus.DOWNLOADING, ProgressStatus.COMPLETE, ProgressStatus.ERROR}
    ),
    EventFamily.UPLOAD: frozenset(
        {
            ProgressStatus.QUEUED,
            ProgressStatus.UPLOADING,
            ProgressStatus.PAUSED,
            ProgressStatus.COMPLETE,
            ProgressStatus.ERROR,
        }
    ),
}


class ProgressEntry(BaseModel):
    """Merged view of one long-running operation.

    Domain fields from the originating events (``videoUrl``, ``position``,
    ``totalBytes``, ...) are kept as extras and reachable through
    attribute access or :meth:`to_dict`.
    """

    model_config = ConfigDict(frozen=True, extra="allow")

    family: EventFamily
    status: ProgressStatus
    percent: float = 0.0
    speed: float | None = None
    eta: int | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in (ProgressStatus.COMPLETE, ProgressStatus.ERROR)

    def to_dict(self) -> dict[str, Any]:
        """Plain dict with ``None`` fields omitted."""
        return self.model_dump(mode="json", exclude_none=True)
