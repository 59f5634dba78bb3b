from __future__ import annotations

import json

import pytest

from pygovee._codec.frames import finish, frames_to_base64
from pygovee.exceptions import GoveeDecodeError
from pygovee.ingestion.lan import (
    brightness_message,
    color_message,
    decode_lan_message,
    encode_message,
    scene_code_from_frames,
    turn_message,
)
from pygovee.state.events import DeviceId, FieldKind, RgbColor, TransportSource

DEVICE = DeviceId(device="14:15:60:74:F4:07:99:39", model="H6076")


def _msg(cmd: str, data: dict) -> bytes:
    return json.dumps({"msg": {"cmd": cmd, "data": data}}).encode()


def test_scan_response_carries_its_own_identity() -> None:
    update = decode_lan_message(
        _msg("scan", {"ip": "192.168.1.23", "device": "14:15:60:74:F4:07:99:39", "sku": "H6076"}),
        observed_at=3.0,
    )

    assert update.device_id == DEVICE
    assert update.source == TransportSource.LOCAL_COMMAND
    assert update.values() == {FieldKind.ONLINE: True}
    assert update.acknowledgement is False


def test_dev_status_maps_every_reported_field() -> None:
    update = decode_lan_message(
        _msg(
            "devStatus",
            {"onOff": 1, "brightness": 75, "color": {"r": 10, "g": 20, "b": 30}, "colorTemInKelvin": 0},
        ),
        device_id=DEVICE,
    )

    assert update.values() == {
        FieldKind.ONLINE: True,
        FieldKind.POWER: True,
        FieldKind.BRIGHTNESS: 75,
        FieldKind.COLOR_RGB: RgbColor(r=10, g=20, b=30),
    }
    assert update.unsupported_fields == (FieldKind.ACTIVE_EFFECT,)
    assert update.acknowledgement is False


def test_turn_and_brightness_echoes_are_acknowledgements() -> None:
    turn = decode_lan_message(_msg("turn", {"value": 0}), device_id=DEVICE)
    level = decode_lan_message(_msg("brightness", {"value": 42}), device_id=DEVICE)

    assert turn.acknowledgement and turn.values() == {FieldKind.POWER: False}
    assert level.acknowledgement and level.values() == {FieldKind.BRIGHTNESS: 42}


def test_colorwc_echo_clears_active_effect() -> None:
    update = decode_lan_message(
        _msg("colorwc", {"color": {"r": 255, "g": 128, "b": 0}, "colorTemInKelvin": 0}),
        device_id=DEVICE,
    )

    assert update.values() == {FieldKind.COLOR_RGB: RgbColor(r=255, g=128, b=0), FieldKind.ACTIVE_EFFECT: None}


def test_pt_real_echo_reports_scene_code() -> None:
    stream = finish(bytes([0xA3, 0x00, 0x01, 0x01])) + finish(bytes([0x33, 0x05, 0x04, 0x53, 0x0B]))

    update = decode_lan_message(_msg("ptReal", {"command": frames_to_base64(stream)}), device_id=DEVICE)

    assert update.acknowledgement
    assert update.values() == {FieldKind.ACTIVE_EFFECT: "2899"}


def test_scene_code_ignores_frames_with_bad_checksum() -> None:
    frame = bytearray(finish(bytes([0x33, 0x05, 0x04, 0x01, 0x00])))
    frame[19] ^= 0x01
    assert scene_code_from_frames([bytes(frame)]) is None


@pytest.mark.parametrize(
    ("message", "device_id"),
    [
        (b"not json", DEVICE),
        (b"[]", DEVICE),
        (_msg("devStatus", {"onOff": 1}), None),
        (_msg("devStatus", {}), DEVICE),
        (_msg("devStatus", {"brightness": 250}), DEVICE),
        (_msg("turn", {"value": 3}), DEVICE),
        (_msg("ptReal", {"command": ["%%%"]}), DEVICE),
        (_msg("unknownCmd", {}), DEVICE),
    ],
)
def test_malformed_messages_raise_decode_error(message: bytes, device_id: DeviceId | None) -> None:
    with pytest.raises(GoveeDecodeError):
        decode_lan_message(message, device_id=device_id)


def test_outbound_messages_use_compact_json() -> None:
    assert encode_message(turn_message(True)) == b'{"msg":{"cmd":"turn","data":{"value":1}}}'
    assert brightness_message(30) == {"msg": {"cmd": "brightness", "data": {"value": 30}}}
    assert color_message(kelvin=2700)["msg"]["data"] == {"color": {"r": 0, "g": 0, "b": 0}, "colorTemInKelvin": 2700}
