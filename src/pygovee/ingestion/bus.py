"""Bounded multi-producer / single-consumer channel for transport updates."""

from __future__ import annotations

import asyncio
import logging
from collections import deque

from pygovee.models.diagnostics import Diagnostic, DiagnosticCallback, DiagnosticKind
from pygovee.state.events import TransportUpdate
from pygovee.state.policy import source_priority

_logger = logging.getLogger(__name__)


class TransportUpdateBus:
    """FIFO of :class:`TransportUpdate` with priority-aware eviction.

    Producers call :meth:`put_nowait` from the event loop; exactly one
    consumer awaits :meth:`get`. Receipt order is preserved for every
    producer. When full, the oldest queued update of the lowest-priority
    source is evicted, unless the incoming update ranks strictly below
    everything queued, in which case the incoming update is dropped.
    """

    def __init__(self, capacity: int = 1024, *, on_diagnostic: DiagnosticCallback | None = None) -> None:
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self._capacity = capacity
        self._items: deque[TransportUpdate] = deque()
        self._ready = asyncio.Event()
        self._on_diagnostic = on_diagnostic
        self.dropped = 0

    @property
    def capacity(self) -> int:
        return self._capacity

    def __len__(self) -> int:
        return len(self._items)

    def put_nowait(self, update: TransportUpdate) -> TransportUpdate | None:
        """Enqueue *update*; returns the update dropped to make room, if any."""
        dropped: TransportUpdate | None = None
        if len(self._items) >= self._capacity:
            dropped = self._evict_for(update)
            if dropped is update:
                self._record_drop(dropped)
                return dropped
        self._items.append(update)
        self._ready.set()
        if dropped is not None:
            self._record_drop(dropped)
        return dropped

    def _evict_for(self, incoming: TransportUpdate) -> TransportUpdate:
        lowest = min(source_priority(item.source) for item in self._items)
        if source_priority(incoming.source) < lowest:
            return incoming
        for index, item in enumerate(self._items):
            if source_priority(item.source) == lowest:
                del self._items[index]
                return item
        raise AssertionError("unreachable: lowest priority not found")

    def _record_drop(self, update: TransportUpdate) -> None:
        self.dropped += 1
        _logger.warning(
            "Update bus full (capacity %d); dropped %s update for %s",
            self._capacity,
            update.source,
            update.device_id,
        )
        if self._on_diagnostic is not None:
            self._on_diagnostic(
                Diagnostic(
                    kind=DiagnosticKind.BUS_OVERFLOW,
                    message=f"dropped {update.source} update under backpressure",
                    device_id=update.device_id,
                    source=update.source,
                    detail={"capacity": self._capacity, "dropped_total": self.dropped},
                )
            )

    def get_nowait(self) -> TransportUpdate | None:
        if not self._items:
            return None
        update = self._items.popleft()
        if not self._items:
            self._ready.clear()
        return update

    async def get(self, *, timeout: float | None = None) -> TransportUpdate | None:
        """Next update in receipt order; ``None`` when *timeout* elapses first."""
        while not self._items:
            if timeout is None:
                await self._ready.wait()
                continue
            try:
                await asyncio.wait_for(self._ready.wait(), timeout)
            except TimeoutError:
                return None
        return self.get_nowait()
