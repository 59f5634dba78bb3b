"""Cloud decoding (platform API polling, IoT push) and cloud command payloads."""

from __future__ import annotations

import json
import logging
import secrets
from collections.abc import Mapping
from typing import Any

from pydantic import ValidationError

from pygovee._codec.frames import base64_to_frames
from pygovee._constants import (
    CAP_COLOR_SETTING,
    CAP_DYNAMIC_SCENE,
    CAP_ON_OFF,
    CAP_RANGE,
    INSTANCE_BRIGHTNESS,
    INSTANCE_COLOR_RGB,
    INSTANCE_COLOR_TEMPERATURE,
    INSTANCE_LIGHT_SCENE,
    INSTANCE_ONLINE,
    INSTANCE_POWER,
)
from pygovee._redact import redact_for_log
from pygovee.exceptions import GoveeDecodeError
from pygovee.ingestion.lan import scene_code_from_frames
from pygovee.models.cloud import Capability, DeviceStateResponse, PushRecord
from pygovee.models.scenes import make_effect_id
from pygovee.state.events import DeviceId, FieldKind, RgbColor, TransportSource, TransportUpdate

_logger = logging.getLogger(__name__)


def _unwrap(payload: Mapping[str, Any] | bytes | str, source: TransportSource) -> dict[str, Any]:
    data: Any = payload
    if isinstance(payload, (bytes, str)):
        try:
            data = json.loads(payload)
        except ValueError as exc:
            raise GoveeDecodeError(f"cloud payload is not JSON: {exc}", source=source) from exc
    if not isinstance(data, Mapping):
        raise GoveeDecodeError("cloud payload is not an object", source=source)
    inner = data.get("payload")
    if isinstance(inner, Mapping):
        return dict(inner)
    return dict(data)


def _capability_value(cap: Capability) -> tuple[FieldKind, Any] | None:
    value = cap.state.value if cap.state is not None else None
    if value is None:
        return None
    if cap.instance == INSTANCE_POWER:
        return FieldKind.POWER, bool(int(value))
    if cap.instance == INSTANCE_BRIGHTNESS:
        return FieldKind.BRIGHTNESS, int(value)
    if cap.instance == INSTANCE_COLOR_RGB:
        return FieldKind.COLOR_RGB, RgbColor.from_int(int(value))
    if cap.instance == INSTANCE_COLOR_TEMPERATURE:
        kelvin = int(value)
        return (FieldKind.COLOR_TEMPERATURE_K, kelvin) if kelvin else None
    if cap.instance == INSTANCE_ONLINE:
        if isinstance(value, str):
            return FieldKind.ONLINE, value.strip().lower() == "true"
        return FieldKind.ONLINE, bool(value)
    return None


def decode_cloud_poll(
    payload: Mapping[str, Any] | bytes | str,
    *,
    observed_at: float | None = None,
) -> TransportUpdate:
    """Decode a platform API device state response.

    Accepts the full response (``{"payload": {...}}``) or its payload.
    Capabilities with empty state are skipped; scene state is not reported
    by this endpoint and is always flagged unsupported.
    """
    source = TransportSource.CLOUD_POLL
    data = _unwrap(payload, source)
    try:
        response = DeviceStateResponse.model_validate(data)
        device_id = DeviceId(device=response.device, model=response.sku)
    except ValidationError as exc:
        raise GoveeDecodeError(f"malformed device state response: {exc}", source=source) from exc

    values: dict[FieldKind, Any] = {}
    for cap in response.capabilities:
        try:
            decoded = _capability_value(cap)
        except (TypeError, ValueError) as exc:
            _logger.debug("Skipping capability %s for %s: %s", cap.instance, device_id, exc)
            continue
        if decoded is not None:
            kind, value = decoded
            values[kind] = value

    _logger.debug("Cloud poll for %s: %s", device_id, redact_for_log(data))
    try:
        return TransportUpdate.build(
            device_id,
            source,
            values,
            observed_at=observed_at,
            unsupported_fields=(FieldKind.ACTIVE_EFFECT,),
        )
    except ValidationError as exc:
        raise GoveeDecodeError(f"device state out of range: {exc}", source=source, device_id=device_id) from exc


def decode_cloud_push(
    payload: Mapping[str, Any] | bytes | str,
    *,
    observed_at: float | None = None,
) -> TransportUpdate:
    """Decode one IoT push status record."""
    source = TransportSource.CLOUD_PUSH
    data = _unwrap(payload, source)
    try:
        record = PushRecord.model_validate(data)
        device_id = DeviceId(device=record.device, model=record.sku)
    except ValidationError as exc:
        raise GoveeDecodeError(f"malformed push record: {exc}", source=source) from exc

    values: dict[FieldKind, Any] = {}
    state = record.state
    if state is not None:
        if state.on_off is not None:
            values[FieldKind.POWER] = bool(state.on_off)
        if state.brightness is not None:
            values[FieldKind.BRIGHTNESS] = state.brightness
        if state.color is not None:
            values[FieldKind.COLOR_RGB] = RgbColor(r=state.color.r, g=state.color.g, b=state.color.b)
        if state.color_tem_in_kelvin:
            values[FieldKind.COLOR_TEMPERATURE_K] = state.color_tem_in_kelvin

    unsupported: tuple[FieldKind, ...] = (FieldKind.ACTIVE_EFFECT,)
    if record.op is not None and record.op.command:
        try:
            code = scene_code_from_frames(base64_to_frames(record.op.command))
        except ValueError as exc:
            raise GoveeDecodeError(str(exc), source=source, device_id=device_id) from exc
        if code is not None:
            values[FieldKind.ACTIVE_EFFECT] = make_effect_id(code)
            unsupported = ()

    if not values:
        raise GoveeDecodeError("push record carries no state", source=source, device_id=device_id)

    values[FieldKind.ONLINE] = True
    return TransportUpdate.build(
        device_id,
        source,
        values,
        observed_at=observed_at,
        unsupported_fields=unsupported,
    )


# ------------------------------------------------------------------
# Outbound commands (platform API control)
# ------------------------------------------------------------------


def control_request(device_id: DeviceId, cap_type: str, instance: str, value: Any) -> dict[str, Any]:
    """Body for ``POST /router/api/v1/device/control``."""
    return {
        "requestId": secrets.token_hex(8),
        "payload": {
            "sku": device_id.model,
            "device": device_id.device,
            "capability": {"type": cap_type, "instance": instance, "value": value},
        },
    }


def power_request(device_id: DeviceId, on: bool) -> dict[str, Any]:
    return control_request(device_id, CAP_ON_OFF, INSTANCE_POWER, 1 if on else 0)


def brightness_request(device_id: DeviceId, level: int) -> dict[str, Any]:
    return control_request(device_id, CAP_RANGE, INSTANCE_BRIGHTNESS, level)


def color_request(device_id: DeviceId, color: RgbColor) -> dict[str, Any]:
    return control_request(device_id, CAP_COLOR_SETTING, INSTANCE_COLOR_RGB, color.to_int())


def color_temperature_request(device_id: DeviceId, kelvin: int) -> dict[str, Any]:
    return control_request(device_id, CAP_COLOR_SETTING, INSTANCE_COLOR_TEMPERATURE, kelvin)


def scene_request(device_id: DeviceId, value: Mapping[str, Any]) -> dict[str, Any]:
    return control_request(device_id, CAP_DYNAMIC_SCENE, INSTANCE_LIGHT_SCENE, dict(value))
