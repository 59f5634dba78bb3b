"""Deterministic per-field merge policy.

This module contains *no* payload parsing. Decoders are responsible for
producing validated field observations and timestamps.
"""

from __future__ import annotations

from enum import StrEnum
from typing import Any

from pygovee.config import DebounceWindows
from pygovee.state.events import TransportSource


class LatencyClass(StrEnum):
    INSTANT = "instant"
    BURSTY = "bursty"
    STREAMED = "streamed"
    PERIODIC = "periodic"


class MergeOutcome(StrEnum):
    ACCEPTED = "accepted"
    OVERRIDE = "override"
    UNCHANGED = "unchanged"
    STALE = "stale"


def source_priority(source: TransportSource | None) -> int:
    """Higher wins for deterministic tie-breaking."""
    priorities: dict[TransportSource, int] = {
        TransportSource.LOCAL_COMMAND: 40,
        TransportSource.RADIO_ADVERTISEMENT: 30,
        TransportSource.CLOUD_PUSH: 20,
        TransportSource.CLOUD_POLL: 10,
    }
    if source is None:
        return 0
    return priorities.get(source, 0)


def latency_class(source: TransportSource) -> LatencyClass:
    classes: dict[TransportSource, LatencyClass] = {
        TransportSource.LOCAL_COMMAND: LatencyClass.INSTANT,
        TransportSource.RADIO_ADVERTISEMENT: LatencyClass.BURSTY,
        TransportSource.CLOUD_PUSH: LatencyClass.STREAMED,
        TransportSource.CLOUD_POLL: LatencyClass.PERIODIC,
    }
    return classes[source]


def debounce_window(windows: DebounceWindows, source: TransportSource) -> float:
    return float(getattr(windows, latency_class(source).value))


def is_newer(
    *,
    cached_ts: float | None,
    cached_source: TransportSource | None,
    incoming_ts: float,
    incoming_source: TransportSource,
) -> bool:
    """Timestamp ordering with source priority as the tie-break.

    Policy:
    - Nothing cached: accept.
    - Strictly newer timestamp: accept.
    - Equal timestamp: accept only from a strictly higher-priority source.
    """
    if cached_ts is None:
        return True
    if incoming_ts > cached_ts:
        return True
    if incoming_ts == cached_ts:
        return source_priority(incoming_source) > source_priority(cached_source)
    return False


def window_matches(
    *,
    window_command_id: str | None,
    window_value: Any,
    incoming_command_id: str | None,
    incoming_value: Any,
) -> bool:
    """Whether a local acknowledgement belongs to an optimistic window.

    A command id match is authoritative; without one the acknowledged value
    must equal the commanded value.
    """
    if incoming_command_id is not None and window_command_id is not None:
        return incoming_command_id == window_command_id
    return bool(incoming_value == window_value)


def is_expired(now: float, expires_at: float) -> bool:
    return now >= expires_at
