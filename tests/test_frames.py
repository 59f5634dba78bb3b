from __future__ import annotations

import pytest

from pygovee._codec.frames import (
    base64_to_frames,
    finish,
    frames_to_base64,
    split_frames,
    verify_frame,
    xor_checksum,
)


def test_finish_pads_and_appends_xor_checksum() -> None:
    frame = finish(bytes([0x33, 0x01, 0x01]))

    assert len(frame) == 20
    assert frame[:3] == bytes([0x33, 0x01, 0x01])
    assert frame[3:19] == bytes(16)
    assert frame[19] == 0x33 ^ 0x01 ^ 0x01


def test_finish_rejects_oversized_body() -> None:
    with pytest.raises(ValueError):
        finish(bytes(20))


def test_xor_checksum_ignores_trailing_checksum_byte() -> None:
    frame = finish(bytes([0xAA, 0x01, 0x64]))
    assert xor_checksum(frame) == frame[19]


def test_verify_frame_reports_expected_and_actual() -> None:
    frame = bytearray(finish(bytes([0xAA, 0x01])))
    frame[19] ^= 0xFF

    ok, expected, actual = verify_frame(bytes(frame))

    assert ok is False
    assert expected == 0xAA ^ 0x01
    assert actual == expected ^ 0xFF


def test_verify_frame_wrong_length() -> None:
    assert verify_frame(b"\xaa\x01") == (False, -1, -1)


def test_split_frames_requires_whole_frames() -> None:
    stream = finish(b"\x01") + finish(b"\x02")
    assert split_frames(stream) == [finish(b"\x01"), finish(b"\x02")]

    with pytest.raises(ValueError):
        split_frames(stream[:-1])


def test_ptreal_lines_match_known_encoding() -> None:
    lines = frames_to_base64(finish(bytes([0x33, 0x01, 0x01])))

    assert lines == ["MwEBAAAAAAAAAAAAAAAAAAAAADM="]
    assert base64_to_frames(lines) == [finish(bytes([0x33, 0x01, 0x01]))]


def test_base64_to_frames_rejects_garbage() -> None:
    with pytest.raises(ValueError):
        base64_to_frames(["not base64!"])
