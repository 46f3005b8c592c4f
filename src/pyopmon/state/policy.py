"""Deterministic lifecycle fold policy.

This module contains *no* payload parsing.  The envelope/Pydantic boundary
produces typed payloads; this module decides how each lifecycle subtype
changes an entry.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass

from pyopmon.models.envelope import EventFamily, EventType
from pyopmon.models.progress import ProgressStatus


class FoldAction(enum.Enum):
    REPLACE = "replace"
    """Start a fresh entry (``percent`` reset to 0)."""

    MERGE = "merge"
    """Shallow-merge the payload into the existing entry."""

    COMPLETE = "complete"
    """Merge, then force ``percent=100``."""

    DELETE = "delete"
    """Remove the entry outright."""


@dataclass(frozen=True)
class FoldRule:
    family: EventFamily
    action: FoldAction
    status: ProgressStatus | None


LIFECYCLE_RULES: dict[EventType, FoldRule] = {
    EventType.DOWNLOAD_START: FoldRule(EventFamily.DOWNLOAD, FoldAction.REPLACE, ProgressStatus.DOWNLOADING),
    EventType.DOWNLOAD_PROGRESS: FoldRule(EventFamily.DOWNLOAD, FoldAction.MERGE, ProgressStatus.DOWNLOADING),
    EventType.DOWNLOAD_COMPLETE: FoldRule(EventFamily.DOWNLOAD, FoldAction.COMPLETE, ProgressStatus.COMPLETE),
    EventType.DOWNLOAD_ERROR: FoldRule(EventFamily.DOWNLOAD, FoldAction.MERGE, ProgressStatus.ERROR),
    EventType.UPLOAD_QUEUED: FoldRule(EventFamily.UPLOAD, FoldAction.REPLACE, ProgressStatus.QUEUED),
    EventType.UPLOAD_START: FoldRule(EventFamily.UPLOAD, FoldAction.REPLACE, ProgressStatus.UPLOADING),
    EventType.UPLOAD_PROGRESS: FoldRule(EventFamily.UPLOAD, FoldAction.MERGE, ProgressStatus.UPLOADING),
    EventType.UPLOAD_COMPLETE: FoldRule(EventFamily.UPLOAD, FoldAction.COMPLETE, ProgressStatus.COMPLETE),
    EventType.UPLOAD_ERROR: FoldRule(EventFamily.UPLOAD, FoldAction.MERGE, ProgressStatus.ERROR),
    EventType.UPLOAD_PAUSED: FoldRule(EventFamily.UPLOAD, FoldAction.MERGE, ProgressStatus.PAUSED),
    EventType.UPLOAD_RESUMED: FoldRule(EventFamily.UPLOAD, FoldAction.MERGE, ProgressStatus.UPLOADING),
    EventType.UPLOAD_CANCELLED: FoldRule(EventFamily.UPLOAD, FoldAction.DELETE, None),
}


def should_accept_update(*, cached_seq: int | None, incoming_seq: int | None) -> bool:
    """Decide whether a lifecycle event should be applied.

    Policy:
    - If both stamps exist: accept only a strictly newer stamp.
    - Otherwise apply in dispatch order.
    """
    if cached_seq is None or incoming_seq is None:
        return True
    return incoming_seq > cached_seq
