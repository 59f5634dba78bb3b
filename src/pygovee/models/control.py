"""Control intents and dispatch results."""

from __future__ import annotations

import enum

from pydantic import BaseModel, ConfigDict, Field, model_validator

from pygovee.state.events import DeviceId, FieldKind, RgbColor


class CommandTransport(enum.StrEnum):
    LOCAL = "local"
    CLOUD = "cloud"


class ControlIntent(BaseModel):
    """A requested state change for one device.

    Any combination of fields may be set, except that an effect cannot be
    combined with a color or a color temperature.
    """

    model_config = ConfigDict(frozen=True)

    device_id: DeviceId
    power: bool | None = None
    brightness: int | None = Field(default=None, ge=0, le=100)
    color: RgbColor | None = None
    color_temperature_k: int | None = Field(default=None, ge=1, le=0xFFFF)
    effect_id: str | None = None
    effect_name: str | None = None

    @model_validator(mode="after")
    def _check_combination(self) -> ControlIntent:
        wants_effect = self.effect_id is not None or self.effect_name is not None
        if self.effect_id is not None and self.effect_name is not None:
            raise ValueError("set either effect_id or effect_name, not both")
        if wants_effect and (self.color is not None or self.color_temperature_k is not None):
            raise ValueError("an effect cannot be combined with a color or color temperature")
        if not wants_effect and all(
            value is None for value in (self.power, self.brightness, self.color, self.color_temperature_k)
        ):
            raise ValueError("intent does not request any change")
        return self


class DispatchReceipt(BaseModel):
    """Outcome of one dispatched command."""

    model_config = ConfigDict(frozen=True)

    command_id: str
    device_id: DeviceId
    transport: CommandTransport
    fields: tuple[FieldKind, ...]
    fell_back: bool = False
    confirmed: bool = False
