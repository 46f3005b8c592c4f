"""Event envelopes received over the push channel.

Each inbound message decodes to ``{"type": <event name>, "data": {...}}``.
The ``type`` string selects one of a fixed set of payload shapes; anything
else lands in :class:`UnknownEventData` so newer servers keep working.
"""

from __future__ import annotations

import json
from datetime import datetime
from typing import Any

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    PrivateAttr,
    ValidationError,
    ValidatorFunctionWrapHandler,
    field_validator,
    model_validator,
)

from pyopmon._constants import EVENT_SEPARATOR
from pyopmon._normalize import clamp_percent, safe_float, safe_int
from pyopmon.exceptions import OpmonDecodeError
from pyopmon.models._base import OpmonBaseModel, OpmonEnum


class EventType(OpmonEnum):
    """Recognized event-type strings (exact, case-sensitive)."""

    DOWNLOAD_START = "download:start"
    DOWNLOAD_PROGRESS = "download:progress"
    DOWNLOAD_COMPLETE = "download:complete"
    DOWNLOAD_ERROR = "download:error"

    UPLOAD_QUEUED = "upload:queued"
    UPLOAD_START = "upload:start"
    UPLOAD_PROGRESS = "upload:progress"
    UPLOAD_COMPLETE = "upload:complete"
    UPLOAD_ERROR = "upload:error"
    UPLOAD_PAUSED = "upload:paused"
    UPLOAD_RESUMED = "upload:resumed"
    UPLOAD_CANCELLED = "upload:cancelled"

    QUEUE_UPDATED = "queue:updated"
    QUEUE_PAUSED = "queue:paused"
    QUEUE_RESUMED = "queue:resumed"

    UNKNOWN = "unknown"


class EventFamily(OpmonEnum):
    DOWNLOAD = "download"
    UPLOAD = "upload"
    QUEUE = "queue"
    UNKNOWN = "unknown"


DOWNLOAD_EVENTS: frozenset[EventType] = frozenset(
    {
        EventType.DOWNLOAD_START,
        EventType.DOWNLOAD_PROGRESS,
        EventType.DOWNLOAD_COMPLETE,
        EventType.DOWNLOAD_ERROR,
    }
)

UPLOAD_EVENTS: frozenset[EventType] = frozenset(
    {
        EventType.UPLOAD_QUEUED,
        EventType.UPLOAD_START,
        EventType.UPLOAD_PROGRESS,
        EventType.UPLOAD_COMPLETE,
        EventType.UPLOAD_ERROR,
        EventType.UPLOAD_PAUSED,
        EventType.UPLOAD_RESUMED,
        EventType.UPLOAD_CANCELLED,
    }
)

QUEUE_EVENTS: frozenset[EventType] = frozenset(
    {
        EventType.QUEUE_UPDATED,
        EventType.QUEUE_PAUSED,
        EventType.QUEUE_RESUMED,
    }
)

#: Lifecycle events the progress aggregator folds into snapshots.
LIFECYCLE_EVENTS: frozenset[EventType] = DOWNLOAD_EVENTS | UPLOAD_EVENTS


class TransferEventData(OpmonBaseModel):
    """Payload of a download/upload lifecycle event."""

    percent: float | None = None
    """Completion percentage in ``[0, 100]``; ``None`` when the total is unknown."""

    speed: float | None = None
    """Transfer speed in bytes per second."""

    eta: int | None = None
    """Estimated seconds remaining."""

    error: str | None = None

    @field_validator("percent", mode="before")
    @classmethod
    def _coerce_percent(cls, value: Any) -> float | None:
        return clamp_percent(value)

    @field_validator("speed", mode="before")
    @classmethod
    def _coerce_speed(cls, value: Any) -> float | None:
        return safe_float(value)

    @field_validator("eta", mode="before")
    @classmethod
    def _coerce_eta(cls, value: Any) -> int | None:
        return safe_int(value)

    @field_validator("error", mode="before")
    @classmethod
    def _coerce_error(cls, value: Any) -> str | None:
        if value is None:
            return None
        if isinstance(value, dict):
            message = value.get("message")
            return str(message) if message is not None else json.dumps(value)
        return str(value)


class QueueEventData(OpmonBaseModel):
    """Payload of a ``queue:*`` event (forwarded, never aggregated)."""


class UnknownEventData(OpmonBaseModel):
    """Payload of any event type outside the recognized set."""


EventData = TransferEventData | QueueEventData | UnknownEventData


class Envelope(BaseModel):
    """One decoded inbound message."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    type: str = Field(..., min_length=1)
    data: dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime | None = None
    _raw: dict[str, Any] = PrivateAttr(default_factory=dict)

    @model_validator(mode="wrap")
    @classmethod
    def _keep_raw(cls, values: Any, handler: ValidatorFunctionWrapHandler) -> Any:
        if not isinstance(values, dict):
            return handler(values)
        cleaned = dict(values)
        if cleaned.get("data") is None:
            cleaned.pop("data", None)
        envelope = handler(cleaned)
        envelope._raw = dict(values)
        return envelope

    @property
    def raw(self) -> dict[str, Any]:
        """The decoded message as received."""
        return self._raw

    @field_validator("type", mode="before")
    @classmethod
    def _require_str(cls, value: Any) -> Any:
        if not isinstance(value, str):
            raise ValueError("type must be a string")
        return value

    @field_validator("timestamp", mode="before")
    @classmethod
    def _lenient_timestamp(cls, value: Any) -> Any:
        # Informational only; an unparseable server clock must not drop the event.
        if isinstance(value, (str, datetime)):
            return value
        return None

    @property
    def event(self) -> EventType:
        return EventType(self.type)

    @property
    def family(self) -> EventFamily:
        prefix, sep, _ = self.type.partition(EVENT_SEPARATOR)
        if not sep:
            return EventFamily.UNKNOWN
        return EventFamily(prefix)

    @property
    def subtype(self) -> str:
        return self.type.partition(EVENT_SEPARATOR)[2]

    @property
    def payload(self) -> EventData:
        """Typed view of ``data`` selected by the event type."""
        event = self.event
        if event in LIFECYCLE_EVENTS:
            return TransferEventData.model_validate(self.data)
        if event in QUEUE_EVENTS:
            return QueueEventData.model_validate(self.data)
        return UnknownEventData.model_validate(self.data)


def decode_envelope(text: str | bytes) -> Envelope:
    """Decode one inbound message into an :class:`Envelope`.

    Raises
    ------
    OpmonDecodeError
        If *text* is not JSON, not an object, lacks a string ``type``, or
        carries a non-object ``data``.
    """
    if isinstance(text, bytes):
        text = text.decode("utf-8", errors="replace")
    try:
        parsed = json.loads(text)
    except json.JSONDecodeError as exc:
        raise OpmonDecodeError(f"Message is not JSON: {exc}", raw=text) from exc
    if not isinstance(parsed, dict):
        raise OpmonDecodeError("Message is not a JSON object", raw=text)
    try:
        return Envelope.model_validate(parsed)
    except ValidationError as exc:
        raise OpmonDecodeError(f"Message is not an envelope: {exc}", raw=text) from exc
