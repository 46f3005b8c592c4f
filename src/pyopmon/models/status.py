"""Connection and polling state snapshots."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field

from pyopmon.models._base import OpmonEnum


class ConnectionState(OpmonEnum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RETRYING = "retrying"
    FAILED = "failed"
    UNKNOWN = "unknown"


class ConnectionStatus(BaseModel):
    """Point-in-time view of the push connection."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    state: ConnectionState = ConnectionState.DISCONNECTED
    retry_count: int = Field(default=0, ge=0)
    last_error: str | None = None

    @property
    def is_connected(self) -> bool:
        return self.state == ConnectionState.CONNECTED


class PollState(BaseModel):
    """Point-in-time view of a polling scheduler."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    base_interval: float
    current_interval: float
    max_interval: float
    backoff_factor: float
    last_activity_time: float
    is_paused: bool = False
    is_visible: bool = True
    is_enabled: bool = False
    pending: bool = False
