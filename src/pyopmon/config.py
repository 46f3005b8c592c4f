"""Monitor configuration for pyopmon."""

from __future__ import annotations

import dataclasses
import os
from collections.abc import Callable
from typing import Any
from urllib.parse import urlsplit

from pyopmon._constants import (
    DEFAULT_BACKOFF_FACTOR,
    DEFAULT_BASE_INTERVAL,
    DEFAULT_ID_FIELD,
    DEFAULT_MAX_INTERVAL,
    DEFAULT_MAX_RETRIES,
    DEFAULT_MQTT_KEEPALIVE,
    DEFAULT_RECONNECT_DELAY,
    DEFAULT_SEQUENCE_FIELD,
    IDLE_THRESHOLD,
    MQTT_SCHEMES,
    SSE_SCHEMES,
)
from pyopmon.exceptions import OpmonConfigError


def _env_number(name: str, value: str, cast: Callable[[str], Any]) -> Any:
    try:
        return cast(value)
    except ValueError as exc:
        raise OpmonConfigError(f"{name} must be a number, got {value!r}") from exc


def _env_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "y", "on"}:
        return True
    if normalized in {"0", "false", "no", "n", "off"}:
        return False
    return default


@dataclasses.dataclass(frozen=True)
class PollingConfig:
    """Adaptive polling cadence.

    Parameters
    ----------
    base_interval : float
        Seconds between polls while the host is active.
    max_interval : float
        Upper bound for the backed-off interval.
    backoff_factor : float
        Multiplier applied to the interval on each tick armed while idle.
    idle_threshold : float
        Seconds without activity after which backoff applies.
    pause_on_hidden : bool
        Stop scheduling ticks while the host reports itself hidden.
    use_backoff : bool
        Enable interval backoff during inactivity.
    enabled : bool
        Whether polling starts when the monitor starts.
    pending_timeout : float or None
        If set, ``set_pending(True)`` is automatically cleared after this
        many seconds.  ``None`` leaves the flag entirely caller-managed.
    """

    base_interval: float = DEFAULT_BASE_INTERVAL
    max_interval: float = DEFAULT_MAX_INTERVAL
    backoff_factor: float = DEFAULT_BACKOFF_FACTOR
    idle_threshold: float = IDLE_THRESHOLD
    pause_on_hidden: bool = True
    use_backoff: bool = True
    enabled: bool = True
    pending_timeout: float | None = None

    def __post_init__(self) -> None:
        if self.base_interval <= 0:
            raise OpmonConfigError("base_interval must be positive")
        if self.max_interval < self.base_interval:
            raise OpmonConfigError("max_interval must be >= base_interval")
        if self.backoff_factor < 1:
            raise OpmonConfigError("backoff_factor must be >= 1")
        if self.idle_threshold < 0:
            raise OpmonConfigError("idle_threshold must be >= 0")
        if self.pending_timeout is not None and self.pending_timeout <= 0:
            raise OpmonConfigError("pending_timeout must be positive when set")


@dataclasses.dataclass(frozen=True)
class MonitorConfig:
    """Monitor configuration.

    Parameters
    ----------
    endpoint : str
        Push channel address.  ``http(s)://`` selects Server-Sent Events,
        ``mqtt(s)://host:port/topic`` selects MQTT.
    max_retries : int
        Consecutive transport failures tolerated before the connection
        becomes ``failed``.
    reconnect_delay : float
        Seconds to wait before each automatic reconnect attempt.
    headers : dict
        Extra HTTP headers sent when opening an SSE stream.
    id_field : str
        Payload key that carries the operation id.
    sequence_field : str or None
        Payload key that carries a per-operation monotonic stamp.  ``None``
        disables stale-event rejection.
    mqtt_keepalive : int
        MQTT keepalive in seconds.
    polling : PollingConfig
        Poll fallback cadence.
    """

    endpoint: str
    max_retries: int = DEFAULT_MAX_RETRIES
    reconnect_delay: float = DEFAULT_RECONNECT_DELAY
    headers: dict[str, str] = dataclasses.field(default_factory=dict)
    id_field: str = DEFAULT_ID_FIELD
    sequence_field: str | None = DEFAULT_SEQUENCE_FIELD
    mqtt_keepalive: int = DEFAULT_MQTT_KEEPALIVE
    polling: PollingConfig = dataclasses.field(default_factory=PollingConfig)

    def __post_init__(self) -> None:
        scheme = urlsplit(self.endpoint).scheme.lower()
        if scheme not in SSE_SCHEMES | MQTT_SCHEMES:
            raise OpmonConfigError(f"Unsupported endpoint scheme: {self.endpoint!r}")
        if self.max_retries < 0:
            raise OpmonConfigError("max_retries must be >= 0")
        if self.reconnect_delay < 0:
            raise OpmonConfigError("reconnect_delay must be >= 0")
        if not self.id_field:
            raise OpmonConfigError("id_field must be non-empty")

    @property
    def scheme(self) -> str:
        return urlsplit(self.endpoint).scheme.lower()

    @classmethod
    def from_env(cls, **overrides: Any) -> MonitorConfig:
        """Create configuration from environment variables.

        Reads ``OPMON_ENDPOINT`` and optional ``OPMON_*`` variables.
        Explicit keyword arguments override environment values.

        Parameters
        ----------
        **overrides
            Explicit field values that take precedence over env vars.

        Returns
        -------
        MonitorConfig
            Populated configuration.
        """
        env = os.environ

        polling_kwargs: dict[str, Any] = {}
        _ENV_POLLING_MAP = {
            "OPMON_POLL_INTERVAL": "base_interval",
            "OPMON_POLL_MAX_INTERVAL": "max_interval",
            "OPMON_POLL_BACKOFF": "backoff_factor",
        }
        for env_key, field_name in _ENV_POLLING_MAP.items():
            val = env.get(env_key)
            if val is not None:
                polling_kwargs[field_name] = _env_number(env_key, val, float)
        polling_kwargs["pause_on_hidden"] = _env_bool(env.get("OPMON_PAUSE_ON_HIDDEN"), True)
        polling_kwargs["use_backoff"] = _env_bool(env.get("OPMON_USE_BACKOFF"), True)

        polling_overrides = overrides.pop("polling", None)
        if isinstance(polling_overrides, dict):
            polling_kwargs.update(polling_overrides)
        elif isinstance(polling_overrides, PollingConfig):
            polling_kwargs = dataclasses.asdict(polling_overrides)

        config_kwargs: dict[str, Any] = {"polling": PollingConfig(**polling_kwargs)}

        endpoint = env.get("OPMON_ENDPOINT")
        if endpoint is not None:
            config_kwargs["endpoint"] = endpoint
        id_field = env.get("OPMON_ID_FIELD")
        if id_field is not None:
            config_kwargs["id_field"] = id_field

        retries_env = env.get("OPMON_MAX_RETRIES")
        if retries_env is not None and "max_retries" not in overrides:
            config_kwargs["max_retries"] = _env_number("OPMON_MAX_RETRIES", retries_env, int)

        delay_env = env.get("OPMON_RECONNECT_DELAY")
        if delay_env is not None and "reconnect_delay" not in overrides:
            config_kwargs["reconnect_delay"] = _env_number("OPMON_RECONNECT_DELAY", delay_env, float)

        config_kwargs.update(overrides)
        if "endpoint" not in config_kwargs:
            raise OpmonConfigError("OPMON_ENDPOINT is not set and no endpoint was given")

        return cls(**config_kwargs)
