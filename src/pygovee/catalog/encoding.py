"""Scene command encoding.

A scene is activated by streaming its parameter blob to the device as a
series of 20-byte "multi" lines, followed by the scene mode command::

    <prefix> 00 01 <n lines> <data...>   <checksum>
    <prefix> 01 <data...>                <checksum>
    ...
    <prefix> FF <data...>                <checksum>
    33 05 04 <code LE> <suffix...>       <checksum>

How the raw parameter has to be massaged before framing differs per model;
those tweaks come from a public model-specific parameter table.
"""

from __future__ import annotations

import base64
import binascii
import logging
from collections.abc import Iterable, Mapping, Sequence
from typing import Any

from pydantic import Field, ValidationError, field_validator

from pygovee._codec.frames import finish
from pygovee._constants import (
    CMD_MODE,
    CMD_POWER,
    FINAL_FRAGMENT_INDEX,
    HEADER_COMMAND,
    MODE_SCENE,
    SCENE_LINE_DATA_SIZE,
    SCENE_LINE_MARKER,
)
from pygovee.models._base import GoveeBaseModel

_logger = logging.getLogger(__name__)

FALLBACK_MODEL = "null"


def _hex_bytes(value: str) -> bytes:
    try:
        return bytes.fromhex(value)
    except ValueError as exc:
        raise ValueError(f"invalid hex string {value!r}") from exc


class SceneTypeEntry(GoveeBaseModel):
    """How to adjust a raw scene parameter before framing it."""

    type_entry: int = 0
    hex_prefix_remove: str = ""
    hex_prefix_add: str = ""
    normal_command_suffix: str = ""

    @field_validator("hex_prefix_remove", "hex_prefix_add", "normal_command_suffix")
    @classmethod
    def _check_hex(cls, value: str) -> str:
        text = value.strip().lower()
        _hex_bytes(text)
        return text


class ModelParameters(GoveeBaseModel):
    """One entry of the model-specific parameter table."""

    models: list[str] = Field(default_factory=list)
    hex_multi_prefix: str = "a3"
    on_command: bool = False
    types: list[SceneTypeEntry] = Field(default_factory=list, alias="type")

    @field_validator("hex_multi_prefix")
    @classmethod
    def _check_prefix(cls, value: str) -> str:
        text = value.strip().lower()
        if len(_hex_bytes(text)) != 1:
            raise ValueError(f"hex_multi_prefix must be one byte, got {value!r}")
        return text

    @property
    def multi_prefix(self) -> int:
        return int(self.hex_multi_prefix, 16)

    def type_for(self, param: bytes) -> SceneTypeEntry:
        """Entry whose remove-prefix matches *param*, else the catch-all entry."""
        raw_hex = param.hex()
        for entry in self.types:
            if entry.hex_prefix_remove and raw_hex.startswith(entry.hex_prefix_remove):
                return entry
        for entry in self.types:
            if not entry.hex_prefix_remove:
                return entry
        return SceneTypeEntry()


DEFAULT_PARAMETERS = ModelParameters(models=[])


class ModelParameterTable:
    """Lookup of :class:`ModelParameters` by model code.

    Unknown models use the ``"null"`` entry when the table has one, and
    :data:`DEFAULT_PARAMETERS` otherwise.
    """

    def __init__(self, entries: Iterable[ModelParameters] = ()) -> None:
        self._entries = list(entries)
        self._by_model: dict[str, ModelParameters] = {}
        for entry in self._entries:
            for model in entry.models:
                self._by_model.setdefault(model.strip().upper(), entry)

    @classmethod
    def from_payload(cls, payload: Sequence[Mapping[str, Any]]) -> ModelParameterTable:
        """Build from the published JSON list; malformed entries are skipped."""
        entries: list[ModelParameters] = []
        for index, item in enumerate(payload):
            try:
                entries.append(ModelParameters.model_validate(dict(item)))
            except (ValidationError, TypeError, ValueError) as exc:
                _logger.warning("Skipping model parameter entry %d: %s", index, exc)
        return cls(entries)

    def __len__(self) -> int:
        return len(self._entries)

    def for_model(self, model: str) -> ModelParameters:
        key = model.strip().upper()
        found = self._by_model.get(key)
        if found is not None:
            return found
        fallback = self._by_model.get(FALLBACK_MODEL.upper())
        if fallback is not None:
            return fallback
        return DEFAULT_PARAMETERS


def decode_scene_param(scence_param: str) -> bytes:
    """Decode the base64 scene parameter; ``ValueError`` when it is not base64."""
    try:
        return base64.b64decode(scence_param.strip(), validate=True)
    except (binascii.Error, ValueError) as exc:
        raise ValueError(f"scene parameter is not valid base64: {exc}") from exc


def mode_command(scene_code: int, suffix: bytes = b"") -> bytes:
    """``33 05 04 <code LE> <suffix>``, finished."""
    if not 0 <= scene_code <= 0xFFFF:
        raise ValueError(f"scene code {scene_code} out of range")
    return finish(bytes([HEADER_COMMAND, CMD_MODE, MODE_SCENE]) + scene_code.to_bytes(2, "little") + suffix)


def encode_scene_command(scene_code: int, scence_param: str, params: ModelParameters) -> bytes:
    """Compile a scene into its full frame stream.

    Raises :class:`ValueError` for an undecodable parameter or an invalid
    scene code. A scene without a parameter compiles to the mode command
    alone.
    """
    param = decode_scene_param(scence_param) if scence_param else b""
    entry = params.type_for(param)
    suffix = _hex_bytes(entry.normal_command_suffix)

    lines: list[bytes] = []
    if param:
        remove = _hex_bytes(entry.hex_prefix_remove)
        if remove and param.startswith(remove):
            param = param[len(remove) :]
        data = _hex_bytes(entry.hex_prefix_add) + param

        # Two header bytes (marker + line count) precede the data.
        line_count = max(1, (len(data) + 2 + SCENE_LINE_DATA_SIZE - 1) // SCENE_LINE_DATA_SIZE)
        if line_count > FINAL_FRAGMENT_INDEX:
            raise ValueError(f"scene parameter too large ({len(data)} bytes)")
        payload = bytes([SCENE_LINE_MARKER, line_count]) + data
        prefix = params.multi_prefix
        for index in range(line_count):
            chunk = payload[index * SCENE_LINE_DATA_SIZE : (index + 1) * SCENE_LINE_DATA_SIZE]
            marker = FINAL_FRAGMENT_INDEX if index == line_count - 1 else index
            lines.append(finish(bytes([prefix, marker]) + chunk))

    lines.append(mode_command(scene_code, suffix))
    if params.on_command:
        lines.insert(0, finish(bytes([HEADER_COMMAND, CMD_POWER, 0x01])))
    return b"".join(lines)
