"""Diagnostic events for dropped or failed inputs."""

from __future__ import annotations

import dataclasses
import time
from collections.abc import Callable
from enum import StrEnum
from typing import Any


class DiagnosticKind(StrEnum):
    DECODE_FAILED = "decode_failed"
    CHECKSUM_FAILED = "checksum_failed"
    REASSEMBLY_EVICTED = "reassembly_evicted"
    CATALOG_LEAF_SKIPPED = "catalog_leaf_skipped"
    BUS_OVERFLOW = "bus_overflow"
    DISPATCH_TIMEOUT = "dispatch_timeout"


@dataclasses.dataclass(frozen=True)
class Diagnostic:
    """Something was dropped. Never fatal, always attributable."""

    kind: DiagnosticKind
    message: str
    device_id: Any = None
    source: str = ""
    detail: dict[str, Any] = dataclasses.field(default_factory=dict)
    error: BaseException | None = None
    at: float = dataclasses.field(default_factory=time.time)


DiagnosticCallback = Callable[[Diagnostic], None]
