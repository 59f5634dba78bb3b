"""Per-device reconciliation engine.

This is the only component allowed to mutate device state. It consumes
:class:`~pygovee.state.events.TransportUpdate` objects from the update bus,
merges them field by field, and publishes debounced change notifications.
Readers get immutable :class:`DeviceSnapshot` objects that are swapped in
whole after every update.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import StrEnum
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, ConfigDict, Field

from pygovee.config import DebounceWindows
from pygovee.models.scenes import EFFECT_ID_SEPARATOR, EffectSummary, scene_code_of
from pygovee.state.events import ChangeNotification, DeviceId, FieldKind, TransportSource, TransportUpdate
from pygovee.state.policy import (
    MergeOutcome,
    debounce_window,
    is_expired,
    is_newer,
    source_priority,
    window_matches,
)

if TYPE_CHECKING:
    from pygovee.ingestion.bus import TransportUpdateBus

_logger = logging.getLogger(__name__)

# Optimistic updates without an explicit end get this window.
_DEFAULT_OPTIMISTIC_WINDOW_S = 10.0


def _keep_effect_variant(current: Any, reported: Any) -> Any:
    """A bare wire code re-confirms the current effect sharing that code."""
    if not isinstance(current, str) or not isinstance(reported, str) or current == reported:
        return reported
    if EFFECT_ID_SEPARATOR in reported:
        return reported
    code = scene_code_of(reported)
    return current if code is not None and scene_code_of(current) == code else reported


class DeviceStatus(StrEnum):
    UNKNOWN = "unknown"
    ONLINE = "online"
    OFFLINE = "offline"


class FieldState(BaseModel):
    model_config = ConfigDict(frozen=True)

    value: Any = None
    source: TransportSource
    observed_at: float


class DeviceSnapshot(BaseModel):
    """Immutable view of one device's reconciled state."""

    model_config = ConfigDict(frozen=True)

    device_id: DeviceId
    status: DeviceStatus = DeviceStatus.UNKNOWN
    fields: dict[FieldKind, FieldState] = Field(default_factory=dict)

    def value(self, kind: FieldKind, default: Any = None) -> Any:
        state = self.fields.get(kind)
        return default if state is None else state.value


@dataclass(slots=True)
class _OptimisticWindow:
    command_id: str | None
    value: Any
    expires_at: float


@dataclass(slots=True)
class _HeldChange:
    value: Any
    source: TransportSource
    observed_at: float
    due: float


@dataclass(slots=True)
class _DeviceRecord:
    device_id: DeviceId
    status: DeviceStatus = DeviceStatus.UNKNOWN
    fields: dict[FieldKind, FieldState] = field(default_factory=dict)
    windows: dict[FieldKind, _OptimisticWindow] = field(default_factory=dict)
    published: dict[FieldKind, Any] = field(default_factory=dict)
    held: dict[FieldKind, _HeldChange] = field(default_factory=dict)
    catalog_dirty: bool = False


class ReconciliationEngine:
    """Single-writer state machine merging updates from every transport.

    Given the same sequence of updates (in any order consistent with each
    source's own ordering) it produces the same final field values.
    """

    def __init__(
        self,
        *,
        debounce: DebounceWindows | None = None,
        clock: Callable[[], float] = time.monotonic,
        on_change: Callable[[ChangeNotification], None] | None = None,
    ) -> None:
        self._debounce = debounce or DebounceWindows()
        self._clock = clock
        self._on_change = on_change
        self._records: dict[DeviceId, _DeviceRecord] = {}
        self._snapshots: dict[DeviceId, DeviceSnapshot] = {}
        self._catalogs: dict[str, tuple[EffectSummary, ...]] = {}

    # ------------------------------------------------------------------
    # Readers
    # ------------------------------------------------------------------

    def snapshot(self, device_id: DeviceId) -> DeviceSnapshot | None:
        return self._snapshots.get(device_id)

    def snapshots(self) -> dict[DeviceId, DeviceSnapshot]:
        return dict(self._snapshots)

    # ------------------------------------------------------------------
    # Mutations (engine task only)
    # ------------------------------------------------------------------

    def _record(self, device_id: DeviceId) -> _DeviceRecord:
        record = self._records.get(device_id)
        if record is None:
            record = _DeviceRecord(device_id=device_id, catalog_dirty=device_id.model in self._catalogs)
            self._records[device_id] = record
        return record

    def apply(self, update: TransportUpdate) -> dict[FieldKind, MergeOutcome]:
        """Merge one update; returns the outcome per observed field."""
        now = self._clock()
        if update.withdrawn:
            existing = self._records.get(update.device_id)
            if existing is not None:
                self._withdraw(existing, update.command_id)
            return {}

        record = self._record(update.device_id)
        self._expire_windows(record, now)

        if update.optimistic:
            expires_at = update.optimistic_until
            if expires_at is None:
                expires_at = now + _DEFAULT_OPTIMISTIC_WINDOW_S
            for obs in update.observations:
                record.windows[obs.kind] = _OptimisticWindow(
                    command_id=update.command_id,
                    value=obs.value,
                    expires_at=expires_at,
                )

        outcomes: dict[FieldKind, MergeOutcome] = {}
        for obs in update.observations:
            outcome = self._merge_field(record, update, obs.kind, obs.value, obs.observed_at, now)
            outcomes[obs.kind] = outcome

        accepted = {kind for kind, outcome in outcomes.items() if outcome != MergeOutcome.STALE}
        if not update.optimistic and accepted:
            self._update_status(record, accepted)

        self._swap_snapshot(record)
        return outcomes

    def _merge_field(
        self,
        record: _DeviceRecord,
        update: TransportUpdate,
        kind: FieldKind,
        value: Any,
        observed_at: float,
        now: float,
    ) -> MergeOutcome:
        current = record.fields.get(kind)
        window = record.windows.get(kind)
        if kind == FieldKind.ACTIVE_EFFECT and not update.optimistic and update.command_id is None:
            value = _keep_effect_variant(current.value if current is not None else None, value)
        newer = is_newer(
            cached_ts=current.observed_at if current is not None else None,
            cached_source=current.source if current is not None else None,
            incoming_ts=observed_at,
            incoming_source=update.source,
        )

        override = False
        if (
            not newer
            and window is not None
            and update.source == TransportSource.LOCAL_COMMAND
            and (update.acknowledgement or update.optimistic)
            and window_matches(
                window_command_id=window.command_id,
                window_value=window.value,
                incoming_command_id=update.command_id,
                incoming_value=value,
            )
        ):
            override = True

        if not newer and not override:
            _logger.debug(
                "Stale %s for %s from %s discarded (ts=%s, current ts=%s from %s)",
                kind,
                record.device_id,
                update.source,
                observed_at,
                current.observed_at if current is not None else None,
                current.source if current is not None else None,
            )
            return MergeOutcome.STALE

        if (
            newer
            and window is not None
            and source_priority(update.source) < source_priority(TransportSource.LOCAL_COMMAND)
            and value != window.value
        ):
            _logger.info(
                "Accepting newer %s observation for %s from %s during optimistic window (commanded=%r, observed=%r)",
                kind,
                record.device_id,
                update.source,
                window.value,
                value,
            )

        if update.acknowledgement and window is not None and value == window.value:
            record.windows.pop(kind, None)

        # Never move the last-writer timestamp backwards, even on override.
        stamp = observed_at if current is None else max(observed_at, current.observed_at)
        record.fields[kind] = FieldState(value=value, source=update.source, observed_at=stamp)

        if current is not None and current.value == value:
            return MergeOutcome.UNCHANGED

        self._stage_change(record, kind, value, update.source, stamp, now)
        return MergeOutcome.OVERRIDE if override else MergeOutcome.ACCEPTED

    def _update_status(self, record: _DeviceRecord, accepted: set[FieldKind]) -> None:
        previous = record.status
        if FieldKind.ONLINE in accepted:
            online = record.fields[FieldKind.ONLINE].value
            record.status = DeviceStatus.ONLINE if online else DeviceStatus.OFFLINE
        elif record.status == DeviceStatus.UNKNOWN:
            record.status = DeviceStatus.ONLINE
        if record.status != previous:
            _logger.debug("Device %s %s -> %s", record.device_id, previous, record.status)

    def _withdraw(self, record: _DeviceRecord, command_id: str | None) -> None:
        withdrawn = [kind for kind, window in record.windows.items() if window.command_id == command_id]
        for kind in withdrawn:
            record.windows.pop(kind, None)
        if withdrawn:
            _logger.debug(
                "Withdrew optimistic window of %s on %s (fields: %s)",
                command_id,
                record.device_id,
                ", ".join(kind.value for kind in withdrawn),
            )

    def _expire_windows(self, record: _DeviceRecord, now: float) -> None:
        expired = [kind for kind, window in record.windows.items() if is_expired(now, window.expires_at)]
        for kind in expired:
            record.windows.pop(kind, None)

    def _swap_snapshot(self, record: _DeviceRecord) -> None:
        self._snapshots[record.device_id] = DeviceSnapshot(
            device_id=record.device_id,
            status=record.status,
            fields=dict(record.fields),
        )

    # ------------------------------------------------------------------
    # Debounce + publishing
    # ------------------------------------------------------------------

    def _stage_change(
        self,
        record: _DeviceRecord,
        kind: FieldKind,
        value: Any,
        source: TransportSource,
        observed_at: float,
        now: float,
    ) -> None:
        known = kind in record.published
        published = record.published.get(kind)

        held = record.held.pop(kind, None)
        if held is not None:
            if known and value == published:
                _logger.debug("Suppressed %s flap on %s back to %r", kind, record.device_id, value)
                return
            self._emit(record, kind, held.value, held.source, held.observed_at)
            known = True

        window = debounce_window(self._debounce, source)
        if not known or window <= 0:
            self._emit(record, kind, value, source, observed_at)
            return
        record.held[kind] = _HeldChange(value=value, source=source, observed_at=observed_at, due=now + window)

    def _emit(
        self,
        record: _DeviceRecord,
        kind: FieldKind,
        value: Any,
        source: TransportSource,
        observed_at: float,
    ) -> ChangeNotification:
        catalog: tuple[EffectSummary, ...] | None = None
        if record.catalog_dirty:
            catalog = self._catalogs.get(record.device_id.model)
            record.catalog_dirty = False

        notification = ChangeNotification(
            device_id=record.device_id,
            kind=kind,
            value=value,
            previous=record.published.get(kind),
            source=source,
            observed_at=observed_at,
            catalog=catalog,
        )
        record.published[kind] = value
        if self._on_change is not None:
            try:
                self._on_change(notification)
            except Exception:
                _logger.warning("on_change callback failed for %s %s", record.device_id, kind, exc_info=True)
        return notification

    def flush(self, now: float | None = None) -> list[ChangeNotification]:
        """Publish held changes whose debounce window has elapsed."""
        current = self._clock() if now is None else now
        emitted: list[ChangeNotification] = []
        for record in self._records.values():
            self._expire_windows(record, current)
            due = [kind for kind, held in record.held.items() if held.due <= current]
            for kind in due:
                held = record.held.pop(kind)
                emitted.append(self._emit(record, kind, held.value, held.source, held.observed_at))
        return emitted

    def catalog_changed(self, model: str, summary: tuple[EffectSummary, ...]) -> None:
        """Attach *summary* to the next notification of every device of *model*."""
        if self._catalogs.get(model) == summary:
            return
        self._catalogs[model] = summary
        for record in self._records.values():
            if record.device_id.model == model:
                record.catalog_dirty = True

    def remove_device(self, device_id: DeviceId) -> bool:
        """Drop a device for good (terminal state)."""
        removed = self._records.pop(device_id, None) is not None
        self._snapshots.pop(device_id, None)
        if removed:
            _logger.info("Device %s removed", device_id)
        return removed

    # ------------------------------------------------------------------
    # Consumer loop
    # ------------------------------------------------------------------

    async def run(self, bus: TransportUpdateBus, *, tick: float = 0.5) -> None:
        """Consume the bus forever, flushing due notifications every *tick*."""
        while True:
            update = await bus.get(timeout=tick)
            if update is not None:
                try:
                    self.apply(update)
                except Exception:
                    _logger.exception("Failed to apply update for %s from %s", update.device_id, update.source)
            self.flush()
