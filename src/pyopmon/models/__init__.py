"""Data models for pushed events and runtime state."""

from pyopmon.models._base import OpmonBaseModel, OpmonEnum
from pyopmon.models.envelope import (
    DOWNLOAD_EVENTS,
    LIFECYCLE_EVENTS,
    QUEUE_EVENTS,
    UPLOAD_EVENTS,
    Envelope,
    EventData,
    EventFamily,
    EventType,
    QueueEventData,
    TransferEventData,
    UnknownEventData,
    decode_envelope,
)
from pyopmon.models.progress import FAMILY_STATUSES, ProgressEntry, ProgressStatus
from pyopmon.models.status import ConnectionState, ConnectionStatus, PollState

__all__ = [
    "DOWNLOAD_EVENTS",
    "FAMILY_STATUSES",
    "LIFECYCLE_EVENTS",
    "QUEUE_EVENTS",
    "UPLOAD_EVENTS",
    "ConnectionState",
    "ConnectionStatus",
    "Envelope",
    "EventData",
    "EventFamily",
    "EventType",
    "OpmonBaseModel",
    "OpmonEnum",
    "PollState",
    "ProgressEntry",
    "ProgressStatus",
    "QueueEventData",
    "TransferEventData",
    "UnknownEventData",
    "decode_envelope",
]
