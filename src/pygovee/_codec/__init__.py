"""Wire-level framing primitives shared by decoders and command encoders."""

from pygovee._codec.frames import (
    base64_to_frames,
    finish,
    frames_to_base64,
    split_frames,
    verify_frame,
    xor_checksum,
)

__all__ = [
    "base64_to_frames",
    "finish",
    "frames_to_base64",
    "split_frames",
    "verify_frame",
    "xor_checksum",
]
