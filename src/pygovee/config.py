"""Gateway configuration for pygovee."""

from __future__ import annotations

import dataclasses
import os
from typing import Any

from pygovee.exceptions import GoveeConfigError


def _env_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "y", "on"}:
        return True
    if normalized in {"0", "false", "no", "n", "off"}:
        return False
    return default


def _env_float(env_key: str, value: str) -> float:
    try:
        return float(value)
    except ValueError as exc:
        raise GoveeConfigError(f"{env_key} must be a number, got {value!r}") from exc


def _env_int(env_key: str, value: str) -> int:
    try:
        return int(value)
    except ValueError as exc:
        raise GoveeConfigError(f"{env_key} must be an integer, got {value!r}") from exc


@dataclasses.dataclass(frozen=True)
class DebounceWindows:
    """Change-notification debounce windows (seconds) per latency class.

    Radio advertisements flap the most, so they get the widest window.
    Local and polled updates are published as soon as they are accepted.
    """

    instant: float = 0.0
    bursty: float = 1.5
    streamed: float = 0.5
    periodic: float = 0.0


@dataclasses.dataclass(frozen=True)
class GoveeConfig:
    """Gateway configuration.

    Parameters
    ----------
    api_key : str or None
        Platform API key. Required only for the built-in cloud transport.
    platform_base_url : str
        Base URL of the vendor platform API (cloud control + polling).
    scene_library_url : str
        URL template (``{sku}`` placeholder) for the light-effect library.
    model_parameters_url : str
        URL of the model-specific scene encoding parameter table.
    bus_capacity : int
        Maximum number of queued transport updates before eviction starts.
    reassembly_timeout : float
        Seconds a multi-packet radio sequence may stay incomplete.
    max_reassembly_sequences : int
        Upper bound on concurrently buffered radio sequences.
    command_timeout : float
        Seconds a dispatched command stays pending. Also the length of the
        optimistic window during which its value beats lower-trust updates.
    local_retry_attempts : int
        Attempts on the local transport before falling back to the cloud.
    local_retry_backoff : float
        Initial backoff between local attempts; doubled on every retry.
    local_send_timeout : float
        Per-attempt timeout handed to the local sender.
    cloud_send_timeout : float
        Timeout handed to the cloud sender.
    lan_reachability_ttl : float
        Seconds since the last LAN message after which a device is no
        longer considered reachable over the local transport.
    sweep_interval : float
        Period of the expiry sweep (reassembly buffers, pending commands)
        and of the engine's debounce flush tick.
    debounce : DebounceWindows
        Debounce windows per latency class.
    push_enabled : bool
        Start the MQTT push listener on gateway entry (needs a push bootstrap).
    push_keepalive : int
        MQTT keepalive in seconds.
    """

    api_key: str | None = None
    platform_base_url: str = "https://openapi.api.govee.com"
    scene_library_url: str = "https://app2.govee.com/appsku/v1/light-effect-libraries?sku={sku}"
    model_parameters_url: str = (
        "https://raw.githubusercontent.com/AlgoClaw/Govee/refs/heads/main/decoded/v1.2/model_specific_parameters.json"
    )
    bus_capacity: int = 1024
    reassembly_timeout: float = 2.0
    max_reassembly_sequences: int = 256
    command_timeout: float = 10.0
    local_retry_attempts: int = 3
    local_retry_backoff: float = 0.2
    local_send_timeout: float = 1.0
    cloud_send_timeout: float = 10.0
    lan_reachability_ttl: float = 120.0
    sweep_interval: float = 0.5
    debounce: DebounceWindows = dataclasses.field(default_factory=DebounceWindows)
    push_enabled: bool = False
    push_keepalive: int = 120

    def __post_init__(self) -> None:
        if self.bus_capacity < 1:
            raise GoveeConfigError("bus_capacity must be at least 1")
        if self.local_retry_attempts < 1:
            raise GoveeConfigError("local_retry_attempts must be at least 1")
        if self.command_timeout <= 0:
            raise GoveeConfigError("command_timeout must be positive")

    @classmethod
    def from_env(cls, **overrides: Any) -> GoveeConfig:
        """Create configuration from ``GOVEE_*`` environment variables.

        Explicit keyword arguments override environment values.
        """
        env = os.environ

        debounce_kwargs: dict[str, float] = {}
        _ENV_DEBOUNCE_MAP = {
            "GOVEE_DEBOUNCE_INSTANT": "instant",
            "GOVEE_DEBOUNCE_BURSTY": "bursty",
            "GOVEE_DEBOUNCE_STREAMED": "streamed",
            "GOVEE_DEBOUNCE_PERIODIC": "periodic",
        }
        for env_key, field_name in _ENV_DEBOUNCE_MAP.items():
            val = env.get(env_key)
            if val is not None:
                debounce_kwargs[field_name] = _env_float(env_key, val)

        debounce_overrides = overrides.pop("debounce", None)
        if isinstance(debounce_overrides, dict):
            debounce_kwargs.update(debounce_overrides)
        elif isinstance(debounce_overrides, DebounceWindows):
            debounce_kwargs = dataclasses.asdict(debounce_overrides)

        config_kwargs: dict[str, Any] = {"debounce": DebounceWindows(**debounce_kwargs)}

        _ENV_STR_MAP = {
            "GOVEE_API_KEY": "api_key",
            "GOVEE_PLATFORM_BASE_URL": "platform_base_url",
            "GOVEE_SCENE_LIBRARY_URL": "scene_library_url",
            "GOVEE_MODEL_PARAMETERS_URL": "model_parameters_url",
        }
        for env_key, field_name in _ENV_STR_MAP.items():
            val = env.get(env_key)
            if val is not None:
                config_kwargs[field_name] = val

        _ENV_INT_MAP = {
            "GOVEE_BUS_CAPACITY": "bus_capacity",
            "GOVEE_MAX_REASSEMBLY_SEQUENCES": "max_reassembly_sequences",
            "GOVEE_LOCAL_RETRY_ATTEMPTS": "local_retry_attempts",
            "GOVEE_PUSH_KEEPALIVE": "push_keepalive",
        }
        for env_key, field_name in _ENV_INT_MAP.items():
            val = env.get(env_key)
            if val is not None and field_name not in overrides:
                config_kwargs[field_name] = _env_int(env_key, val)

        _ENV_FLOAT_MAP = {
            "GOVEE_REASSEMBLY_TIMEOUT": "reassembly_timeout",
            "GOVEE_COMMAND_TIMEOUT": "command_timeout",
            "GOVEE_LOCAL_RETRY_BACKOFF": "local_retry_backoff",
            "GOVEE_LOCAL_SEND_TIMEOUT": "local_send_timeout",
            "GOVEE_CLOUD_SEND_TIMEOUT": "cloud_send_timeout",
            "GOVEE_LAN_REACHABILITY_TTL": "lan_reachability_ttl",
            "GOVEE_SWEEP_INTERVAL": "sweep_interval",
        }
        for env_key, field_name in _ENV_FLOAT_MAP.items():
            val = env.get(env_key)
            if val is not None and field_name not in overrides:
                config_kwargs[field_name] = _env_float(env_key, val)

        if "push_enabled" not in overrides:
            config_kwargs["push_enabled"] = _env_bool(env.get("GOVEE_PUSH_ENABLED"), False)

        config_kwargs.update(overrides)

        return cls(**config_kwargs)
