"""Radio advertisement decoding and multi-packet reassembly.

Frames are 20 bytes (protocol v1.2): a header byte, payload, and an XOR
checksum over the first 19 bytes.

* ``AA <18 payload bytes> <checksum>`` is a complete status report.
* ``A3 <seq> <index> <16 payload bytes> <checksum>`` is one fragment of a
  multi-packet report. Index ``0`` carries the total fragment count as its
  first payload byte and index ``FF`` marks the final fragment.

Fragments are buffered per ``(device, seq)``. Sequences that stay incomplete
longer than the reassembly timeout are dropped on the next sweep.
"""

from __future__ import annotations

import logging
import time
from collections import OrderedDict
from collections.abc import Callable
from dataclasses import dataclass, field

from pygovee._codec.frames import verify_frame
from pygovee._constants import (
    FINAL_FRAGMENT_INDEX,
    FRAGMENT_PAYLOAD_SIZE,
    FRAME_BODY_SIZE,
    FRAME_SIZE,
    HEADER_MULTI,
    HEADER_STATUS,
)
from pygovee.exceptions import GoveeChecksumError, GoveeDecodeError
from pygovee.ingestion.schemas import RadioSchema, schema_for
from pygovee.models.diagnostics import Diagnostic, DiagnosticCallback, DiagnosticKind
from pygovee.state.events import DeviceId, TransportSource, TransportUpdate

_logger = logging.getLogger(__name__)

_SOURCE = TransportSource.RADIO_ADVERTISEMENT


def decode_payload(
    device_id: DeviceId,
    payload: bytes,
    *,
    observed_at: float | None = None,
    schemas: dict[str, RadioSchema] | None = None,
) -> TransportUpdate:
    """Map a verified status payload to a :class:`TransportUpdate`."""
    schema = schema_for(device_id.model, schemas)
    extraction = schema.extract(payload)
    if extraction.unsupported:
        _logger.debug(
            "Radio payload for %s (%s schema) left fields unsupported: %s",
            device_id,
            schema.name,
            [kind.value for kind in extraction.unsupported],
        )
    return TransportUpdate.build(
        device_id,
        _SOURCE,
        extraction.values,
        observed_at=observed_at,
        unsupported_fields=extraction.unsupported,
    )


def decode_single_frame(
    device_id: DeviceId,
    frame: bytes,
    *,
    observed_at: float | None = None,
    schemas: dict[str, RadioSchema] | None = None,
) -> TransportUpdate:
    """Decode one complete ``AA`` status frame.

    Raises
    ------
    GoveeChecksumError
        The trailing checksum byte does not match.
    GoveeDecodeError
        The frame has the wrong size or is not a status frame.
    """
    _check_frame(device_id, frame)
    if frame[0] != HEADER_STATUS:
        raise GoveeDecodeError(
            f"expected a status frame, got header 0x{frame[0]:02x}",
            source=_SOURCE,
            device_id=device_id,
        )
    return decode_payload(device_id, frame[1:FRAME_BODY_SIZE], observed_at=observed_at, schemas=schemas)


def _check_frame(device_id: DeviceId, frame: bytes) -> None:
    if len(frame) != FRAME_SIZE:
        raise GoveeDecodeError(
            f"radio frame must be {FRAME_SIZE} bytes, got {len(frame)}",
            source=_SOURCE,
            device_id=device_id,
        )
    ok, expected, actual = verify_frame(frame)
    if not ok:
        raise GoveeChecksumError(
            f"checksum mismatch: expected 0x{expected:02x}, got 0x{actual:02x}",
            expected=expected,
            actual=actual,
            source=_SOURCE,
            device_id=device_id,
        )


@dataclass(slots=True)
class _Sequence:
    started_at: float
    observed_at: float
    total: int | None = None
    fragments: dict[int, bytes] = field(default_factory=dict)

    def complete(self) -> bool:
        if self.total is None or FINAL_FRAGMENT_INDEX not in self.fragments:
            return False
        return all(index in self.fragments for index in range(self.total - 1))

    def body(self) -> bytes:
        assert self.total is not None
        parts = [self.fragments[0][1:]]
        parts.extend(self.fragments[index] for index in range(1, self.total - 1))
        parts.append(self.fragments[FINAL_FRAGMENT_INDEX])
        return b"".join(parts)


class RadioFrameDecoder:
    """Stateful front end for radio frames.

    :meth:`feed` never raises for bad input: failures are logged, reported
    through *on_diagnostic* and the frame (plus any sequence it belongs to)
    is discarded.
    """

    def __init__(
        self,
        *,
        reassembly_timeout: float = 2.0,
        max_sequences: int = 256,
        on_diagnostic: DiagnosticCallback | None = None,
        schemas: dict[str, RadioSchema] | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._timeout = reassembly_timeout
        self._max_sequences = max(1, max_sequences)
        self._on_diagnostic = on_diagnostic
        self._schemas = schemas
        self._clock = clock
        self._sequences: OrderedDict[tuple[DeviceId, int], _Sequence] = OrderedDict()

    @property
    def pending_sequences(self) -> int:
        return len(self._sequences)

    def feed(
        self,
        device_id: DeviceId,
        frame: bytes,
        *,
        observed_at: float | None = None,
    ) -> TransportUpdate | None:
        """Consume one frame; returns an update once a report is complete."""
        received = time.time() if observed_at is None else observed_at
        self.sweep()

        try:
            _check_frame(device_id, frame)
        except GoveeChecksumError as exc:
            if len(frame) == FRAME_SIZE and frame[0] == HEADER_MULTI:
                self._sequences.pop((device_id, frame[1]), None)
            self._report(DiagnosticKind.CHECKSUM_FAILED, exc, device_id)
            return None
        except GoveeDecodeError as exc:
            self._report(DiagnosticKind.DECODE_FAILED, exc, device_id)
            return None

        header = frame[0]
        if header == HEADER_STATUS:
            return decode_payload(device_id, frame[1:FRAME_BODY_SIZE], observed_at=received, schemas=self._schemas)
        if header == HEADER_MULTI:
            try:
                return self._feed_fragment(device_id, frame, received)
            except GoveeDecodeError as exc:
                self._sequences.pop((device_id, frame[1]), None)
                self._report(DiagnosticKind.DECODE_FAILED, exc, device_id)
                return None

        self._report(
            DiagnosticKind.DECODE_FAILED,
            GoveeDecodeError(f"unknown frame header 0x{header:02x}", source=_SOURCE, device_id=device_id),
            device_id,
        )
        return None

    def _feed_fragment(self, device_id: DeviceId, frame: bytes, received: float) -> TransportUpdate | None:
        seq, index = frame[1], frame[2]
        payload = frame[3 : 3 + FRAGMENT_PAYLOAD_SIZE]
        key = (device_id, seq)

        sequence = self._sequences.get(key)
        if sequence is None:
            self._make_room(device_id)
            sequence = _Sequence(started_at=self._clock(), observed_at=received)
            self._sequences[key] = sequence

        if index == 0:
            total = payload[0]
            if total < 2:
                raise GoveeDecodeError(
                    f"sequence {seq} announces {total} fragments",
                    source=_SOURCE,
                    device_id=device_id,
                )
            sequence.total = total
        if sequence.total is not None and index != FINAL_FRAGMENT_INDEX and index >= sequence.total - 1:
            raise GoveeDecodeError(
                f"fragment index {index} out of range for a {sequence.total}-fragment sequence",
                source=_SOURCE,
                device_id=device_id,
            )

        # The report is as old as its newest fragment.
        sequence.fragments[index] = payload
        sequence.observed_at = max(sequence.observed_at, received)
        if not sequence.complete():
            return None

        del self._sequences[key]
        _logger.debug("Reassembled %d-fragment sequence %d for %s", sequence.total, seq, device_id)
        return decode_payload(device_id, sequence.body(), observed_at=sequence.observed_at, schemas=self._schemas)

    def _make_room(self, device_id: DeviceId) -> None:
        while len(self._sequences) >= self._max_sequences:
            (evicted_device, evicted_seq), _ = self._sequences.popitem(last=False)
            self._emit(
                Diagnostic(
                    kind=DiagnosticKind.REASSEMBLY_EVICTED,
                    message=f"reassembly buffer full; evicted sequence {evicted_seq}",
                    device_id=evicted_device,
                    source=_SOURCE,
                    detail={"sequence": evicted_seq, "reason": "overflow", "incoming_device": str(device_id)},
                )
            )

    def sweep(self, now: float | None = None) -> int:
        """Drop sequences that stayed incomplete past the timeout."""
        current = self._clock() if now is None else now
        expired = [key for key, seq in self._sequences.items() if current - seq.started_at >= self._timeout]
        for key in expired:
            sequence = self._sequences.pop(key)
            device_id, seq = key
            self._emit(
                Diagnostic(
                    kind=DiagnosticKind.REASSEMBLY_EVICTED,
                    message=f"sequence {seq} timed out with {len(sequence.fragments)} fragment(s)",
                    device_id=device_id,
                    source=_SOURCE,
                    detail={"sequence": seq, "reason": "timeout"},
                )
            )
        return len(expired)

    def _report(self, kind: DiagnosticKind, exc: GoveeDecodeError, device_id: DeviceId) -> None:
        self._emit(Diagnostic(kind=kind, message=str(exc), device_id=device_id, source=_SOURCE, error=exc))

    def _emit(self, diagnostic: Diagnostic) -> None:
        _logger.warning("Radio %s for %s: %s", diagnostic.kind, diagnostic.device_id, diagnostic.message)
        if self._on_diagnostic is not None:
            self._on_diagnostic(diagnostic)
