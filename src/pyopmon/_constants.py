"""Constants shared across pyopmon components."""

from __future__ import annotations

#: Wildcard event type; its subscribers receive every dispatched envelope.
WILDCARD = "*"

#: Separator between the event family and the lifecycle subtype.
EVENT_SEPARATOR = ":"

DEFAULT_MAX_RETRIES: int = 5
DEFAULT_RECONNECT_DELAY: float = 3.0

DEFAULT_BASE_INTERVAL: float = 5.0
DEFAULT_MAX_INTERVAL: float = 60.0
DEFAULT_BACKOFF_FACTOR: float = 1.5

#: Seconds without activity after which poll backoff starts to apply.
IDLE_THRESHOLD: float = 30.0

#: Payload key carrying the operation id (as emitted by the upload server).
DEFAULT_ID_FIELD = "videoId"

#: Payload key carrying an optional per-operation monotonic stamp.
DEFAULT_SEQUENCE_FIELD = "seq"

DEFAULT_MQTT_KEEPALIVE: int = 60

USER_AGENT = "pyopmon"

SSE_SCHEMES = frozenset({"http", "https"})
MQTT_SCHEMES = frozenset({"mqtt", "mqtts"})
