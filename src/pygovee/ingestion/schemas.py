"""Radio status payload layouts, keyed by model code.

Each layout is a small pure function from the verified payload bytes to the
fields it could extract plus the fields it had to give up on. Adding a model
is one table entry.

Offsets are relative to the payload (the frame without header and checksum
byte, or the reassembled multi-packet body).
"""

from __future__ import annotations

import dataclasses
from collections.abc import Callable
from typing import Any, Literal

from pygovee.models.scenes import make_effect_id
from pygovee.state.events import FieldKind, RgbColor

_MODE_COLOR = 0x02
_MODE_SCENE = 0x04

_ALL_LIGHT_FIELDS: tuple[FieldKind, ...] = (
    FieldKind.BRIGHTNESS,
    FieldKind.COLOR_RGB,
    FieldKind.COLOR_TEMPERATURE_K,
    FieldKind.ACTIVE_EFFECT,
)


@dataclasses.dataclass(frozen=True)
class Extraction:
    values: dict[FieldKind, Any]
    unsupported: tuple[FieldKind, ...] = ()


Extractor = Callable[[bytes], Extraction]


@dataclasses.dataclass(frozen=True)
class RadioSchema:
    name: str
    extract: Extractor


class _Reader:
    """Collects values and unsupported fields while walking a payload."""

    def __init__(self, payload: bytes) -> None:
        self.payload = payload
        self.values: dict[FieldKind, Any] = {FieldKind.ONLINE: True}
        self.unsupported: list[FieldKind] = []

    def byte(self, offset: int) -> int | None:
        if offset >= len(self.payload):
            return None
        return self.payload[offset]

    def u16(self, offset: int, *, byteorder: Literal["big", "little"] = "big") -> int | None:
        if offset + 2 > len(self.payload):
            return None
        return int.from_bytes(self.payload[offset : offset + 2], byteorder)

    def rgb(self, offset: int) -> RgbColor | None:
        if offset + 3 > len(self.payload):
            return None
        r, g, b = self.payload[offset : offset + 3]
        return RgbColor(r=r, g=g, b=b)

    def skip(self, *kinds: FieldKind) -> None:
        for kind in kinds:
            if kind not in self.unsupported and kind not in self.values:
                self.unsupported.append(kind)

    def power(self, offset: int) -> None:
        raw = self.byte(offset)
        if raw in (0, 1):
            self.values[FieldKind.POWER] = bool(raw)
        else:
            self.skip(FieldKind.POWER)

    def brightness(self, offset: int) -> None:
        raw = self.byte(offset)
        if raw is not None and 0 <= raw <= 100:
            self.values[FieldKind.BRIGHTNESS] = raw
        else:
            self.skip(FieldKind.BRIGHTNESS)

    def result(self) -> Extraction:
        return Extraction(values=dict(self.values), unsupported=tuple(self.unsupported))


def _apply_mode(
    reader: _Reader,
    mode: int | None,
    *,
    color_at: int,
    kelvin_at: int,
    scene_at: int,
) -> None:
    if mode == _MODE_COLOR:
        color = reader.rgb(color_at)
        kelvin = reader.u16(kelvin_at)
        if color is None:
            reader.skip(FieldKind.COLOR_RGB)
        else:
            reader.values[FieldKind.COLOR_RGB] = color
        if kelvin is None:
            reader.skip(FieldKind.COLOR_TEMPERATURE_K)
        elif kelvin:
            reader.values[FieldKind.COLOR_TEMPERATURE_K] = kelvin
        reader.values[FieldKind.ACTIVE_EFFECT] = None
    elif mode == _MODE_SCENE:
        code = reader.u16(scene_at, byteorder="little")
        if code is None:
            reader.skip(FieldKind.ACTIVE_EFFECT)
        else:
            reader.values[FieldKind.ACTIVE_EFFECT] = make_effect_id(code)
        reader.skip(FieldKind.COLOR_RGB, FieldKind.COLOR_TEMPERATURE_K)
    else:
        reader.skip(FieldKind.COLOR_RGB, FieldKind.COLOR_TEMPERATURE_K, FieldKind.ACTIVE_EFFECT)


def extract_common(payload: bytes) -> Extraction:
    """Fields every model reports: power (byte 0) and liveness."""
    reader = _Reader(payload)
    reader.power(0)
    reader.skip(*_ALL_LIGHT_FIELDS)
    return reader.result()


def extract_rgb(payload: bytes) -> Extraction:
    """Single-packet color bulbs and strips.

    ``[0] power  [1] brightness  [2] mode  [3:6] rgb  [6:8] kelvin (BE)
    [8:10] scene code (LE)``
    """
    reader = _Reader(payload)
    reader.power(0)
    reader.brightness(1)
    _apply_mode(reader, reader.byte(2), color_at=3, kelvin_at=6, scene_at=8)
    return reader.result()


def extract_white(payload: bytes) -> Extraction:
    """Tunable-white lights: ``[0] power  [1] brightness  [2:4] kelvin (BE)``."""
    reader = _Reader(payload)
    reader.power(0)
    reader.brightness(1)
    kelvin = reader.u16(2)
    if kelvin is None:
        reader.skip(FieldKind.COLOR_TEMPERATURE_K)
    elif kelvin:
        reader.values[FieldKind.COLOR_TEMPERATURE_K] = kelvin
    reader.skip(FieldKind.COLOR_RGB, FieldKind.ACTIVE_EFFECT)
    return reader.result()


def extract_rgbic(payload: bytes) -> Extraction:
    """Segmented (RGBIC) lights, reported as a multi-packet sequence.

    ``[0] power  [1] brightness  [2:4] scene code (LE)  [4] mode  [5:8] rgb
    [8:10] kelvin (BE)``
    """
    reader = _Reader(payload)
    reader.power(0)
    reader.brightness(1)
    _apply_mode(reader, reader.byte(4), color_at=5, kelvin_at=8, scene_at=2)
    return reader.result()


COMMON_SCHEMA = RadioSchema(name="common", extract=extract_common)
_RGB = RadioSchema(name="rgb", extract=extract_rgb)
_WHITE = RadioSchema(name="white", extract=extract_white)
_RGBIC = RadioSchema(name="rgbic", extract=extract_rgbic)

SCHEMAS: dict[str, RadioSchema] = {
    "H6001": _RGB,
    "H6003": _RGB,
    "H6008": _RGB,
    "H6159": _RGB,
    "H6163": _RGB,
    "H6010": _WHITE,
    "H6091": _WHITE,
    "H6065": _RGBIC,
    "H6072": _RGBIC,
    "H6076": _RGBIC,
    "H6199": _RGBIC,
    "H619A": _RGBIC,
}


def schema_for(model: str, table: dict[str, RadioSchema] | None = None) -> RadioSchema:
    """Schema for *model*, or :data:`COMMON_SCHEMA` when the model is unknown."""
    lookup = SCHEMAS if table is None else table
    return lookup.get(model.strip().upper(), COMMON_SCHEMA)
