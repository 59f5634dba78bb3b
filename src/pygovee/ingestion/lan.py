"""LAN message decoding and command encoding.

Decoders are pure: one message in, one :class:`TransportUpdate` out, or a
:class:`~pygovee.exceptions.GoveeDecodeError`.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from typing import Any

from pydantic import ValidationError

from pygovee._codec.frames import base64_to_frames, verify_frame
from pygovee._constants import (
    CMD_MODE,
    HEADER_COMMAND,
    LAN_CMD_BRIGHTNESS,
    LAN_CMD_COLOR,
    LAN_CMD_PT_REAL,
    LAN_CMD_SCAN,
    LAN_CMD_STATUS,
    LAN_CMD_TURN,
    MODE_SCENE,
)
from pygovee._redact import redact_for_log
from pygovee.exceptions import GoveeDecodeError
from pygovee.models.lan import LanColorAck, LanPtRealAck, LanScanResponse, LanStatus, LanValueAck
from pygovee.models.scenes import make_effect_id
from pygovee.state.events import DeviceId, FieldKind, RgbColor, TransportSource, TransportUpdate

_logger = logging.getLogger(__name__)

_SOURCE = TransportSource.LOCAL_COMMAND


def parse_envelope(message: bytes | str | Mapping[str, Any]) -> tuple[str, dict[str, Any]]:
    """Return ``(cmd, data)`` from a LAN envelope."""
    payload: Any = message
    if isinstance(message, (bytes, str)):
        try:
            payload = json.loads(message)
        except ValueError as exc:
            raise GoveeDecodeError(f"LAN message is not JSON: {exc}", source=_SOURCE) from exc
    if not isinstance(payload, Mapping):
        raise GoveeDecodeError("LAN message is not an object", source=_SOURCE)
    msg = payload.get("msg")
    if not isinstance(msg, Mapping):
        raise GoveeDecodeError("LAN message has no 'msg' envelope", source=_SOURCE)
    cmd = msg.get("cmd")
    data = msg.get("data", {})
    if not isinstance(cmd, str) or not cmd:
        raise GoveeDecodeError("LAN message has no 'cmd'", source=_SOURCE)
    if not isinstance(data, Mapping):
        raise GoveeDecodeError(f"LAN '{cmd}' message has non-object data", source=_SOURCE)
    return cmd, dict(data)


def parse_scan(data: Mapping[str, Any]) -> LanScanResponse:
    try:
        return LanScanResponse.model_validate(dict(data))
    except ValidationError as exc:
        raise GoveeDecodeError(f"malformed scan response: {exc}", source=_SOURCE) from exc


def _color_values(color: Any, kelvin: int | None) -> dict[FieldKind, Any]:
    values: dict[FieldKind, Any] = {}
    if color is not None:
        values[FieldKind.COLOR_RGB] = RgbColor(r=color.r, g=color.g, b=color.b)
    if kelvin:
        values[FieldKind.COLOR_TEMPERATURE_K] = kelvin
    return values


def scene_code_from_frames(frames: list[bytes]) -> int | None:
    """Find the scene-mode frame (``33 05 04 <code LE>``) in a ``ptReal`` stream."""
    for frame in frames:
        if len(frame) < 5 or not verify_frame(frame)[0]:
            continue
        if frame[0] == HEADER_COMMAND and frame[1] == CMD_MODE and frame[2] == MODE_SCENE:
            return frame[3] | (frame[4] << 8)
    return None


def decode_lan_message(
    message: bytes | str | Mapping[str, Any],
    *,
    device_id: DeviceId | None = None,
    observed_at: float | None = None,
) -> TransportUpdate:
    """Decode one LAN message.

    ``scan`` responses carry their own identity; every other message needs
    the *device_id* of the sender (resolved by the caller from the source
    address).
    """
    cmd, data = parse_envelope(message)
    _logger.debug("LAN %s from %s: %s", cmd, device_id, redact_for_log(data))

    if cmd == LAN_CMD_SCAN:
        scan = parse_scan(data)
        return TransportUpdate.build(
            DeviceId(device=scan.device, model=scan.sku),
            _SOURCE,
            {FieldKind.ONLINE: True},
            observed_at=observed_at,
        )

    if device_id is None:
        raise GoveeDecodeError(f"LAN '{cmd}' message without a device id", source=_SOURCE)

    try:
        values, ack, unsupported = _decode_by_cmd(cmd, data)
    except ValidationError as exc:
        raise GoveeDecodeError(
            f"LAN '{cmd}' data does not match its type: {exc}",
            source=_SOURCE,
            device_id=device_id,
        ) from exc
    except ValueError as exc:
        raise GoveeDecodeError(str(exc), source=_SOURCE, device_id=device_id) from exc

    return TransportUpdate.build(
        device_id,
        _SOURCE,
        values,
        observed_at=observed_at,
        acknowledgement=ack,
        unsupported_fields=unsupported,
    )


def _decode_by_cmd(cmd: str, data: dict[str, Any]) -> tuple[dict[FieldKind, Any], bool, tuple[FieldKind, ...]]:
    if cmd == LAN_CMD_STATUS:
        status = LanStatus.model_validate(data)
        values: dict[FieldKind, Any] = {FieldKind.ONLINE: True}
        if status.on_off is not None:
            values[FieldKind.POWER] = bool(status.on_off)
        if status.brightness is not None:
            values[FieldKind.BRIGHTNESS] = status.brightness
        values.update(_color_values(status.color, status.color_tem_in_kelvin))
        if len(values) == 1:
            raise ValueError("devStatus carries no status fields")
        return values, False, (FieldKind.ACTIVE_EFFECT,)

    if cmd == LAN_CMD_TURN:
        turn = LanValueAck.model_validate(data)
        if turn.value not in (0, 1):
            raise ValueError(f"turn value must be 0 or 1, got {turn.value}")
        return {FieldKind.POWER: bool(turn.value)}, True, ()

    if cmd == LAN_CMD_BRIGHTNESS:
        level = LanValueAck.model_validate(data)
        if not 0 <= level.value <= 100:
            raise ValueError(f"brightness must be 0-100, got {level.value}")
        return {FieldKind.BRIGHTNESS: level.value}, True, ()

    if cmd == LAN_CMD_COLOR:
        colorwc = LanColorAck.model_validate(data)
        values = _color_values(colorwc.color, colorwc.color_tem_in_kelvin)
        if not values:
            raise ValueError("colorwc carries neither color nor temperature")
        values[FieldKind.ACTIVE_EFFECT] = None
        return values, True, ()

    if cmd == LAN_CMD_PT_REAL:
        pt_real = LanPtRealAck.model_validate(data)
        code = scene_code_from_frames(base64_to_frames(pt_real.command))
        if code is None:
            return {}, True, (FieldKind.ACTIVE_EFFECT,)
        return {FieldKind.ACTIVE_EFFECT: make_effect_id(code)}, True, ()

    raise ValueError(f"unsupported LAN command '{cmd}'")


# ------------------------------------------------------------------
# Outbound messages
# ------------------------------------------------------------------


def _envelope(cmd: str, data: dict[str, Any]) -> dict[str, Any]:
    return {"msg": {"cmd": cmd, "data": data}}


def turn_message(on: bool) -> dict[str, Any]:
    return _envelope(LAN_CMD_TURN, {"value": 1 if on else 0})


def brightness_message(level: int) -> dict[str, Any]:
    return _envelope(LAN_CMD_BRIGHTNESS, {"value": level})


def color_message(*, color: RgbColor | None = None, kelvin: int | None = None) -> dict[str, Any]:
    """``colorwc``: a temperature of ``0`` selects RGB mode."""
    data: dict[str, Any] = {
        "color": {"r": 0, "g": 0, "b": 0} if color is None else {"r": color.r, "g": color.g, "b": color.b},
        "colorTemInKelvin": kelvin or 0,
    }
    return _envelope(LAN_CMD_COLOR, data)


def encode_message(message: Mapping[str, Any]) -> bytes:
    return json.dumps(message, separators=(",", ":")).encode("utf-8")
