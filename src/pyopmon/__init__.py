"""pyopmon - Async Python runtime for monitoring long-running remote operations."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("pyopmon")
except PackageNotFoundError:
    __version__ = "0+local"
from pyopmon.config import MonitorConfig, PollingConfig
from pyopmon.connector import EventStreamConnector
from pyopmon.dispatcher import EventDispatcher
from pyopmon.exceptions import (
    OpmonConfigError,
    OpmonDecodeError,
    OpmonError,
    OpmonTransportError,
)
from pyopmon.models import (
    ConnectionState,
    ConnectionStatus,
    Envelope,
    EventFamily,
    EventType,
    PollState,
    ProgressEntry,
    ProgressStatus,
    decode_envelope,
)
from pyopmon.monitor import LiveMonitor
from pyopmon.optimistic import (
    OptimisticValue,
    optimistic_bulk_delete,
    optimistic_delete,
    optimistic_item_update,
    optimistic_status_update,
)
from pyopmon.polling import PollingScheduler
from pyopmon.state.progress import ProgressAggregator

__all__ = [
    "__version__",
    "ConnectionState",
    "ConnectionStatus",
    "Envelope",
    "EventDispatcher",
    "EventFamily",
    "EventStreamConnector",
    "EventType",
    "LiveMonitor",
    "MonitorConfig",
    "OpmonConfigError",
    "OpmonDecodeError",
    "OpmonError",
    "OpmonTransportError",
    "OptimisticValue",
    "PollState",
    "PollingConfig",
    "PollingScheduler",
    "ProgressAggregator",
    "ProgressEntry",
    "ProgressStatus",
    "decode_envelope",
    "optimistic_bulk_delete",
    "optimistic_delete",
    "optimistic_item_update",
    "optimistic_status_update",
]
