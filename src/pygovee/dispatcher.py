"""Command dispatch: transport choice, retries, fallback and confirmation.

Every dispatched command becomes a :class:`PendingCommand` and an optimistic
:class:`~pygovee.state.events.TransportUpdate` on the bus, so the commanded
value shows up immediately and beats lower-trust observations until the
command is confirmed or expires.
"""

from __future__ import annotations

import asyncio
import logging
import secrets
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

from pygovee._transport import CommandSender
from pygovee.config import GoveeConfig
from pygovee.exceptions import (
    GoveeDispatchTimeout,
    GoveeEffectNotFoundError,
    GoveeTransportError,
    GoveeTransportUnavailable,
)
from pygovee.ingestion import cloud as cloud_codec
from pygovee.ingestion import lan as lan_codec
from pygovee.ingestion.bus import TransportUpdateBus
from pygovee.models.control import CommandTransport, ControlIntent, DispatchReceipt
from pygovee.models.diagnostics import Diagnostic, DiagnosticCallback, DiagnosticKind
from pygovee.models.scenes import Effect, EffectCatalog, scene_code_of
from pygovee.state.events import DeviceId, FieldKind, TransportSource, TransportUpdate

_logger = logging.getLogger(__name__)

_MISSING: Any = object()


@dataclass
class PendingCommand:
    """An issued, not yet confirmed command."""

    command_id: str
    device_id: DeviceId
    values: dict[FieldKind, Any]
    issued_at: float
    expires_at: float
    transport: CommandTransport | None = None
    confirmed: set[FieldKind] = field(default_factory=set)
    waiter: asyncio.Future[bool] | None = None

    @property
    def outstanding(self) -> set[FieldKind]:
        return set(self.values) - self.confirmed

    def resolve(self, confirmed: bool) -> None:
        if self.waiter is not None and not self.waiter.done():
            self.waiter.set_result(confirmed)

    def fail(self, exc: BaseException) -> None:
        if self.waiter is not None and not self.waiter.done():
            self.waiter.set_exception(exc)


def _values_match(kind: FieldKind, desired: Any, observed: Any) -> bool:
    if desired == observed:
        return True
    if kind == FieldKind.ACTIVE_EFFECT and isinstance(desired, str) and isinstance(observed, str):
        code = scene_code_of(desired)
        return code is not None and code == scene_code_of(observed)
    return False


def intent_values(intent: ControlIntent, effect: Effect | None = None) -> dict[FieldKind, Any]:
    """Field values the device should report once *intent* has been applied.

    Color and temperature intents also clear the active effect; that derived
    value is shown optimistically but never awaited, see :func:`confirmable_values`.
    """
    values: dict[FieldKind, Any] = {}
    if intent.power is not None:
        values[FieldKind.POWER] = intent.power
    if intent.brightness is not None:
        values[FieldKind.BRIGHTNESS] = intent.brightness
    if intent.color is not None:
        values[FieldKind.COLOR_RGB] = intent.color
        values[FieldKind.ACTIVE_EFFECT] = None
    if intent.color_temperature_k is not None:
        values[FieldKind.COLOR_TEMPERATURE_K] = intent.color_temperature_k
        values[FieldKind.ACTIVE_EFFECT] = None
    if effect is not None:
        values[FieldKind.ACTIVE_EFFECT] = effect.effect_id
    return values


def confirmable_values(intent: ControlIntent, effect: Effect | None = None) -> dict[FieldKind, Any]:
    """The subset of :func:`intent_values` a device report must match to confirm *intent*."""
    values = intent_values(intent, effect)
    if effect is None:
        values.pop(FieldKind.ACTIVE_EFFECT, None)
    return values


def lan_payloads(intent: ControlIntent, effect: Effect | None = None) -> list[bytes]:
    messages: list[dict[str, Any]] = []
    if intent.power is not None:
        messages.append(lan_codec.turn_message(intent.power))
    if intent.brightness is not None:
        messages.append(lan_codec.brightness_message(intent.brightness))
    if intent.color is not None or intent.color_temperature_k is not None:
        messages.append(lan_codec.color_message(color=intent.color, kelvin=intent.color_temperature_k))
    if effect is not None:
        messages.append(effect.lan_message())
    return [lan_codec.encode_message(message) for message in messages]


def cloud_payloads(intent: ControlIntent, effect: Effect | None = None) -> list[bytes]:
    device_id = intent.device_id
    requests: list[dict[str, Any]] = []
    if intent.power is not None:
        requests.append(cloud_codec.power_request(device_id, intent.power))
    if intent.brightness is not None:
        requests.append(cloud_codec.brightness_request(device_id, intent.brightness))
    if intent.color is not None:
        requests.append(cloud_codec.color_request(device_id, intent.color))
    if intent.color_temperature_k is not None:
        requests.append(cloud_codec.color_temperature_request(device_id, intent.color_temperature_k))
    if effect is not None:
        requests.append(cloud_codec.scene_request(device_id, effect.cloud_value()))
    return [lan_codec.encode_message(request) for request in requests]


class CommandDispatcher:
    """Turns :class:`ControlIntent` objects into sent commands.

    The pending table is only touched from synchronous sections on the event
    loop, so dispatch, confirmation and expiry never interleave mid-update.
    ``clock`` must be the same monotonic clock the reconciliation engine uses,
    since optimistic window ends are expressed in it.
    """

    def __init__(
        self,
        bus: TransportUpdateBus,
        *,
        config: GoveeConfig | None = None,
        local_sender: CommandSender | None = None,
        cloud_sender: CommandSender | None = None,
        catalog_for: Callable[[str], EffectCatalog | None] | None = None,
        on_diagnostic: DiagnosticCallback | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._bus = bus
        self._config = config or GoveeConfig()
        self._local = local_sender
        self._cloud = cloud_sender
        self._catalog_for = catalog_for
        self._on_diagnostic = on_diagnostic
        self._clock = clock
        self._sleep = sleep
        self._pending: dict[str, PendingCommand] = {}
        self._lan_seen: dict[DeviceId, float] = {}

    @property
    def pending(self) -> tuple[PendingCommand, ...]:
        return tuple(self._pending.values())

    def set_cloud_sender(self, sender: CommandSender | None) -> None:
        self._cloud = sender

    # ------------------------------------------------------------------
    # Reachability
    # ------------------------------------------------------------------

    def mark_lan_seen(self, device_id: DeviceId, at: float | None = None) -> None:
        self._lan_seen[device_id] = self._clock() if at is None else at

    def forget(self, device_id: DeviceId) -> None:
        """Drop reachability and pending commands for a removed device."""
        self._lan_seen.pop(device_id, None)
        for command_id in [cid for cid, cmd in self._pending.items() if cmd.device_id == device_id]:
            self._pending.pop(command_id).resolve(False)

    def is_lan_reachable(self, device_id: DeviceId) -> bool:
        seen = self._lan_seen.get(device_id)
        return seen is not None and self._clock() - seen <= self._config.lan_reachability_ttl

    def choose_transport(self, device_id: DeviceId) -> CommandTransport:
        if self._local is not None and self.is_lan_reachable(device_id):
            return CommandTransport.LOCAL
        if self._cloud is not None:
            return CommandTransport.CLOUD
        if self._local is not None:
            return CommandTransport.LOCAL
        raise GoveeTransportUnavailable(f"no transport configured for {device_id}", endpoint=str(device_id))

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    def _resolve_effect(self, intent: ControlIntent) -> Effect | None:
        label = intent.effect_id if intent.effect_id is not None else intent.effect_name
        if label is None:
            return None
        catalog = self._catalog_for(intent.device_id.model) if self._catalog_for is not None else None
        if catalog is None:
            raise GoveeEffectNotFoundError(f"no effect catalog loaded for model {intent.device_id.model}")
        effect = catalog.resolve(label)
        if effect is None:
            raise GoveeEffectNotFoundError(f"effect {label!r} not in the {intent.device_id.model} catalog")
        return effect

    def _supersede(self, device_id: DeviceId, kinds: set[FieldKind]) -> None:
        for command_id, older in list(self._pending.items()):
            if older.device_id != device_id or not kinds & set(older.values):
                continue
            for kind in kinds:
                older.values.pop(kind, None)
                older.confirmed.discard(kind)
            if not older.values:
                del self._pending[command_id]
                older.resolve(False)
                _logger.debug("Command %s for %s superseded", command_id, device_id)

    async def dispatch(self, intent: ControlIntent, *, wait_for_confirmation: bool = False) -> DispatchReceipt:
        """Send *intent* and return once a transport accepted it.

        With ``wait_for_confirmation=True`` this also waits until every
        commanded field was observed, raising :class:`GoveeDispatchTimeout`
        when the command expires first.
        """
        device_id = intent.device_id
        effect = self._resolve_effect(intent)
        values = intent_values(intent, effect)
        transport = self.choose_transport(device_id)

        now = self._clock()
        pending = PendingCommand(
            command_id=secrets.token_hex(8),
            device_id=device_id,
            values=confirmable_values(intent, effect),
            issued_at=now,
            expires_at=now + self._config.command_timeout,
        )
        if wait_for_confirmation:
            pending.waiter = asyncio.get_running_loop().create_future()
        self._supersede(device_id, set(values))
        self._pending[pending.command_id] = pending

        self._bus.put_nowait(
            TransportUpdate.build(
                device_id,
                TransportSource.LOCAL_COMMAND,
                values,
                optimistic=True,
                command_id=pending.command_id,
                optimistic_until=pending.expires_at,
            )
        )

        fell_back = False
        try:
            if transport == CommandTransport.LOCAL:
                try:
                    await self._send_local(device_id, lan_payloads(intent, effect))
                except (GoveeTransportError, TimeoutError, OSError) as exc:
                    if self._cloud is None:
                        raise
                    _logger.info("Local send to %s failed (%s); falling back to cloud", device_id, exc)
                    transport = CommandTransport.CLOUD
                    fell_back = True
            if transport == CommandTransport.CLOUD:
                await self._send_cloud(device_id, cloud_payloads(intent, effect))
        except BaseException:
            if self._pending.pop(pending.command_id, None) is not None:
                pending.resolve(False)
            self._withdraw(device_id, pending.command_id)
            raise

        pending.transport = transport
        _logger.info("Dispatched %s to %s via %s", pending.command_id, device_id, transport)

        confirmed = False
        if pending.waiter is not None:
            confirmed = await self._wait(pending)
        return DispatchReceipt(
            command_id=pending.command_id,
            device_id=device_id,
            transport=transport,
            fields=tuple(values),
            fell_back=fell_back,
            confirmed=confirmed,
        )

    def _withdraw(self, device_id: DeviceId, command_id: str) -> None:
        self._bus.put_nowait(
            TransportUpdate(
                device_id=device_id,
                source=TransportSource.LOCAL_COMMAND,
                optimistic=True,
                command_id=command_id,
                withdrawn=True,
            )
        )

    async def _wait(self, pending: PendingCommand) -> bool:
        assert pending.waiter is not None
        remaining = max(0.0, pending.expires_at - self._clock())
        try:
            return await asyncio.wait_for(asyncio.shield(pending.waiter), timeout=remaining)
        except TimeoutError:
            self._expire(pending)
            raise GoveeDispatchTimeout(
                f"command {pending.command_id} for {pending.device_id} was not confirmed",
                command_id=pending.command_id,
                device_id=pending.device_id,
            ) from None

    async def _send_local(self, device_id: DeviceId, payloads: list[bytes]) -> None:
        assert self._local is not None
        attempts = self._config.local_retry_attempts
        for payload in payloads:
            for attempt in range(attempts):
                try:
                    await self._local.send(device_id, payload, timeout=self._config.local_send_timeout)
                    break
                except GoveeTransportUnavailable:
                    raise
                except (GoveeTransportError, TimeoutError, OSError) as exc:
                    if attempt + 1 >= attempts:
                        raise
                    delay = self._config.local_retry_backoff * (2**attempt)
                    _logger.debug(
                        "Local send to %s failed (attempt %d/%d): %s; retrying in %.2fs",
                        device_id,
                        attempt + 1,
                        attempts,
                        exc,
                        delay,
                    )
                    await self._sleep(delay)

    async def _send_cloud(self, device_id: DeviceId, payloads: list[bytes]) -> None:
        if self._cloud is None:
            raise GoveeTransportUnavailable(f"no cloud transport for {device_id}", transport="cloud")
        for payload in payloads:
            await self._cloud.send(device_id, payload, timeout=self._config.cloud_send_timeout)

    # ------------------------------------------------------------------
    # Confirmation + expiry
    # ------------------------------------------------------------------

    def observe(self, update: TransportUpdate) -> TransportUpdate:
        """Match an inbound update against pending commands.

        Returns the update to enqueue. Local acknowledgements that match a
        pending command are tagged with its command id, and an acknowledged
        scene is reported under the exact effect id that was commanded.
        """
        if update.optimistic:
            return update
        if update.source == TransportSource.LOCAL_COMMAND:
            self.mark_lan_seen(update.device_id)

        tagged_id: str | None = None
        rewritten: dict[FieldKind, Any] = {}
        for pending in [cmd for cmd in self._pending.values() if cmd.device_id == update.device_id]:
            matched = False
            for obs in update.observations:
                desired = pending.values.get(obs.kind, _MISSING)
                if desired is _MISSING or not _values_match(obs.kind, desired, obs.value):
                    continue
                pending.confirmed.add(obs.kind)
                matched = True
                if obs.value != desired:
                    rewritten[obs.kind] = desired
            if matched and tagged_id is None:
                tagged_id = pending.command_id
            if not pending.outstanding or (matched and pending.outstanding <= set(update.unsupported_fields)):
                del self._pending[pending.command_id]
                pending.resolve(True)
                _logger.debug("Command %s for %s confirmed by %s", pending.command_id, pending.device_id, update.source)

        if not update.acknowledgement or tagged_id is None:
            return update
        observations = tuple(
            obs.model_copy(update={"value": rewritten[obs.kind]}) if obs.kind in rewritten else obs
            for obs in update.observations
        )
        return update.model_copy(
            update={"command_id": update.command_id or tagged_id, "observations": observations}
        )

    def _expire(self, pending: PendingCommand) -> None:
        if self._pending.pop(pending.command_id, None) is None:
            return
        outstanding = sorted(kind.value for kind in pending.outstanding)
        _logger.warning(
            "Command %s for %s expired unconfirmed (fields: %s)",
            pending.command_id,
            pending.device_id,
            ", ".join(outstanding),
        )
        if self._on_diagnostic is not None:
            self._on_diagnostic(
                Diagnostic(
                    kind=DiagnosticKind.DISPATCH_TIMEOUT,
                    message=f"command {pending.command_id} expired unconfirmed",
                    device_id=pending.device_id,
                    source=str(pending.transport or ""),
                    detail={"command_id": pending.command_id, "fields": outstanding},
                )
            )

    def sweep(self, now: float | None = None) -> list[PendingCommand]:
        """Expire overdue commands; the optimistic state is left as is."""
        current = self._clock() if now is None else now
        expired = [cmd for cmd in self._pending.values() if cmd.expires_at <= current]
        for pending in expired:
            self._expire(pending)
            pending.fail(
                GoveeDispatchTimeout(
                    f"command {pending.command_id} for {pending.device_id} was not confirmed",
                    command_id=pending.command_id,
                    device_id=pending.device_id,
                )
            )
        return expired

