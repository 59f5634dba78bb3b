"""Normalized transport updates and change notifications.

All ingestion paths (radio, LAN, cloud poll, cloud push) and the command
dispatcher's optimistic writes convert their inputs into
:class:`TransportUpdate`. Only the reconciliation engine is allowed to merge
them.
"""

from __future__ import annotations

import time
from collections.abc import Mapping
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from pygovee.models.scenes import EffectSummary


class TransportSource(StrEnum):
    LOCAL_COMMAND = "local_command"
    RADIO_ADVERTISEMENT = "radio_advertisement"
    CLOUD_PUSH = "cloud_push"
    CLOUD_POLL = "cloud_poll"


class FieldKind(StrEnum):
    POWER = "power"
    BRIGHTNESS = "brightness"
    COLOR_RGB = "color_rgb"
    COLOR_TEMPERATURE_K = "color_temperature_k"
    ACTIVE_EFFECT = "active_effect"
    ONLINE = "online"


class DeviceId(BaseModel):
    """Vendor device id plus model code (SKU)."""

    model_config = ConfigDict(frozen=True)

    device: str
    model: str

    @field_validator("device", "model")
    @classmethod
    def _normalize(cls, value: str) -> str:
        text = value.strip()
        if not text:
            raise ValueError("device id parts must be non-empty")
        return text

    def __str__(self) -> str:
        return f"{self.model}:{self.device}"


class RgbColor(BaseModel):
    model_config = ConfigDict(frozen=True)

    r: int = Field(..., ge=0, le=255)
    g: int = Field(..., ge=0, le=255)
    b: int = Field(..., ge=0, le=255)

    @classmethod
    def from_int(cls, value: int) -> RgbColor:
        """Build from a packed ``0xRRGGBB`` integer."""
        return cls(r=(value >> 16) & 0xFF, g=(value >> 8) & 0xFF, b=value & 0xFF)

    def to_int(self) -> int:
        return (self.r << 16) | (self.g << 8) | self.b


def _coerce_value(kind: FieldKind, value: Any) -> Any:
    """Validate and normalize a field value for its kind."""
    if kind in (FieldKind.POWER, FieldKind.ONLINE):
        if isinstance(value, bool):
            return value
        if isinstance(value, int) and value in (0, 1):
            return bool(value)
        raise ValueError(f"{kind} expects a bool, got {value!r}")
    if kind == FieldKind.BRIGHTNESS:
        if isinstance(value, bool) or not isinstance(value, int) or not 0 <= value <= 100:
            raise ValueError(f"brightness expects an int 0-100, got {value!r}")
        return value
    if kind == FieldKind.COLOR_TEMPERATURE_K:
        if isinstance(value, bool) or not isinstance(value, int) or not 0 <= value <= 0xFFFF:
            raise ValueError(f"color temperature expects an int 0-65535, got {value!r}")
        return value
    if kind == FieldKind.COLOR_RGB:
        if isinstance(value, RgbColor):
            return value
        if isinstance(value, Mapping):
            return RgbColor.model_validate(dict(value))
        if isinstance(value, (tuple, list)) and len(value) == 3:
            r, g, b = value
            return RgbColor(r=r, g=g, b=b)
        raise ValueError(f"color expects r/g/b, got {value!r}")
    if kind == FieldKind.ACTIVE_EFFECT:
        if value is None or isinstance(value, str):
            return value
        raise ValueError(f"active effect expects an effect id or None, got {value!r}")
    raise ValueError(f"unknown field kind {kind!r}")


class FieldObservation(BaseModel):
    """One observed field value with its own timestamp (epoch seconds)."""

    model_config = ConfigDict(frozen=True)

    kind: FieldKind
    value: Any = None
    observed_at: float

    @model_validator(mode="after")
    def _check_value(self) -> FieldObservation:
        object.__setattr__(self, "value", _coerce_value(self.kind, self.value))
        return self


class TransportUpdate(BaseModel):
    """A decoded update to apply to the reconciliation engine."""

    model_config = ConfigDict(frozen=True)

    device_id: DeviceId
    source: TransportSource
    observed_at: float = Field(default_factory=time.time, description="Wall-clock receipt time")
    observed_monotonic: float = Field(default_factory=time.monotonic)
    observations: tuple[FieldObservation, ...] = ()
    unsupported_fields: tuple[FieldKind, ...] = Field(
        default=(),
        description="Fields the decoder could not extract from this payload",
    )
    acknowledgement: bool = Field(default=False, description="Local command echo/ack")
    optimistic: bool = Field(default=False, description="Written by the dispatcher before confirmation")
    command_id: str | None = None
    optimistic_until: float | None = Field(
        default=None,
        description="Monotonic end of the optimistic window (optimistic updates only)",
    )
    withdrawn: bool = Field(
        default=False,
        description="The command was never delivered; its optimistic windows end now",
    )

    @classmethod
    def build(
        cls,
        device_id: DeviceId,
        source: TransportSource,
        values: Mapping[FieldKind, Any],
        *,
        observed_at: float | None = None,
        **kwargs: Any,
    ) -> TransportUpdate:
        """Create an update where every field shares the receipt timestamp."""
        ts = time.time() if observed_at is None else observed_at
        observations = tuple(FieldObservation(kind=kind, value=value, observed_at=ts) for kind, value in values.items())
        return cls(device_id=device_id, source=source, observed_at=ts, observations=observations, **kwargs)

    def observation(self, kind: FieldKind) -> FieldObservation | None:
        for obs in self.observations:
            if obs.kind == kind:
                return obs
        return None

    def values(self) -> dict[FieldKind, Any]:
        return {obs.kind: obs.value for obs in self.observations}


class ChangeNotification(BaseModel):
    """One accepted, debounced, observable field change for the bus publisher."""

    model_config = ConfigDict(frozen=True)

    device_id: DeviceId
    kind: FieldKind
    value: Any = None
    previous: Any = None
    source: TransportSource
    observed_at: float
    catalog: tuple[EffectSummary, ...] | None = Field(
        default=None,
        description="Effect list snapshot, present when the device's catalog changed",
    )
