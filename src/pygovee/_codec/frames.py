"""20-byte frame helpers (protocol v1.2).

Every radio and ``ptReal`` frame is exactly 20 bytes: 19 bytes of body
(zero padded) followed by an XOR checksum over those 19 bytes.
"""

from __future__ import annotations

import base64
import binascii
from collections.abc import Iterable, Sequence
from functools import reduce

from pygovee._constants import FRAME_BODY_SIZE, FRAME_SIZE


def xor_checksum(data: bytes | bytearray | Sequence[int]) -> int:
    """XOR of the first 19 bytes of *data*."""
    return reduce(lambda acc, byte: acc ^ byte, bytes(data[:FRAME_BODY_SIZE]), 0)


def finish(data: bytes | bytearray | Sequence[int]) -> bytes:
    """Pad *data* to the frame body size and append its checksum.

    Raises :class:`ValueError` when *data* does not fit into one frame.
    """
    body = bytes(data)
    if len(body) > FRAME_BODY_SIZE:
        raise ValueError(f"frame body must be at most {FRAME_BODY_SIZE} bytes, got {len(body)}")
    body = body.ljust(FRAME_BODY_SIZE, b"\x00")
    return body + bytes([xor_checksum(body)])


def verify_frame(frame: bytes) -> tuple[bool, int, int]:
    """Check a complete frame.

    Returns ``(ok, expected, actual)`` where *expected* is the computed
    checksum and *actual* the trailing byte.
    """
    if len(frame) != FRAME_SIZE:
        return False, -1, -1
    expected = xor_checksum(frame)
    actual = frame[FRAME_BODY_SIZE]
    return expected == actual, expected, actual


def split_frames(stream: bytes) -> list[bytes]:
    """Split a concatenated byte stream into 20-byte frames."""
    if len(stream) % FRAME_SIZE:
        raise ValueError(f"stream length {len(stream)} is not a multiple of {FRAME_SIZE}")
    return [stream[i : i + FRAME_SIZE] for i in range(0, len(stream), FRAME_SIZE)]


def frames_to_base64(stream: bytes) -> list[str]:
    """Encode a frame stream as the base64 line list used by ``ptReal``."""
    return [base64.b64encode(frame).decode("ascii") for frame in split_frames(stream)]


def base64_to_frames(lines: Iterable[str]) -> list[bytes]:
    """Decode a ``ptReal`` base64 line list back into raw frames."""
    frames: list[bytes] = []
    for line in lines:
        try:
            frames.append(base64.b64decode(line, validate=True))
        except (binascii.Error, ValueError) as exc:
            raise ValueError(f"invalid base64 frame {line!r}") from exc
    return frames
