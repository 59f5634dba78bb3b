from __future__ import annotations

import asyncio
import json
from typing import Any

import pytest

from pygovee._codec.frames import finish, frames_to_base64
from pygovee.catalog.builder import build_catalog
from pygovee.config import GoveeConfig
from pygovee.dispatcher import CommandDispatcher, lan_payloads
from pygovee.exceptions import (
    GoveeDispatchTimeout,
    GoveeEffectNotFoundError,
    GoveeTransportError,
    GoveeTransportUnavailable,
)
from pygovee.ingestion.bus import TransportUpdateBus
from pygovee.ingestion.cloud import decode_cloud_poll
from pygovee.ingestion.lan import decode_lan_message
from pygovee.models.control import CommandTransport, ControlIntent
from pygovee.models.diagnostics import Diagnostic, DiagnosticKind
from pygovee.models.scenes import EffectCatalog
from pygovee.state.events import DeviceId, FieldKind, RgbColor, TransportSource, TransportUpdate

DEVICE = DeviceId(device="14:15:60:74:F4:07:99:39", model="H6076")


class _FakeClock:
    def __init__(self) -> None:
        self.now = 500.0

    def __call__(self) -> float:
        return self.now


class _FakeSender:
    def __init__(self, failures: list[BaseException] | None = None) -> None:
        self.failures = list(failures or [])
        self.sent: list[tuple[DeviceId, bytes, float]] = []

    async def send(self, device_id: DeviceId, payload: bytes, *, timeout: float) -> None:
        self.sent.append((device_id, payload, timeout))
        if self.failures:
            raise self.failures.pop(0)


class _FakeSleep:
    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


def _catalog() -> EffectCatalog:
    library = {
        "categories": [
            {
                "categoryName": "Nature",
                "scenes": [
                    {"sceneId": 1, "sceneName": "Aurora", "lightEffects": [{"sceneCode": 7, "scenceParamId": 11}]},
                    {"sceneId": 2, "sceneName": "Aurora", "lightEffects": [{"sceneCode": 7, "scenceParamId": 12}]},
                ],
            }
        ]
    }
    return build_catalog("H6076", library).catalog


def _dispatcher(
    *,
    local: _FakeSender | None = None,
    cloud: _FakeSender | None = None,
    config: GoveeConfig | None = None,
    lan_seen: bool = True,
) -> tuple[CommandDispatcher, TransportUpdateBus, _FakeClock, _FakeSleep, list[Diagnostic]]:
    bus = TransportUpdateBus(64)
    clock = _FakeClock()
    sleep = _FakeSleep()
    seen: list[Diagnostic] = []
    catalog = _catalog()
    dispatcher = CommandDispatcher(
        bus,
        config=config,
        local_sender=local,
        cloud_sender=cloud,
        catalog_for=lambda model: catalog if model == "H6076" else None,
        on_diagnostic=seen.append,
        clock=clock,
        sleep=sleep,
    )
    if lan_seen:
        dispatcher.mark_lan_seen(DEVICE)
    return dispatcher, bus, clock, sleep, seen


def _cmd(payload: bytes) -> str:
    return json.loads(payload)["msg"]["cmd"]


def _ack(cmd: str, data: dict[str, Any]) -> TransportUpdate:
    return decode_lan_message({"msg": {"cmd": cmd, "data": data}}, device_id=DEVICE)


def test_transport_choice_prefers_reachable_lan() -> None:
    local, cloud = _FakeSender(), _FakeSender()
    dispatcher, _bus, clock, _sleep, _seen = _dispatcher(local=local, cloud=cloud)

    assert dispatcher.choose_transport(DEVICE) == CommandTransport.LOCAL
    clock.now += 500.0
    assert dispatcher.choose_transport(DEVICE) == CommandTransport.CLOUD


def test_without_any_sender_nothing_can_be_dispatched() -> None:
    dispatcher, _bus, _clock, _sleep, _seen = _dispatcher()
    with pytest.raises(GoveeTransportUnavailable):
        dispatcher.choose_transport(DEVICE)


@pytest.mark.asyncio
async def test_dispatch_writes_optimistic_update_first() -> None:
    local = _FakeSender()
    dispatcher, bus, clock, _sleep, _seen = _dispatcher(local=local)

    receipt = await dispatcher.dispatch(ControlIntent(device_id=DEVICE, power=True, brightness=40))

    optimistic = bus.get_nowait()
    assert optimistic is not None
    assert optimistic.optimistic is True
    assert optimistic.command_id == receipt.command_id
    assert optimistic.optimistic_until == clock.now + 10.0
    assert optimistic.values() == {FieldKind.POWER: True, FieldKind.BRIGHTNESS: 40}
    assert [_cmd(payload) for _, payload, _ in local.sent] == ["turn", "brightness"]
    assert receipt.transport == CommandTransport.LOCAL
    assert receipt.fields == (FieldKind.POWER, FieldKind.BRIGHTNESS)
    assert [cmd.command_id for cmd in dispatcher.pending] == [receipt.command_id]


@pytest.mark.asyncio
async def test_local_send_retries_with_exponential_backoff() -> None:
    local = _FakeSender([GoveeTransportError("lost"), TimeoutError()])
    dispatcher, _bus, _clock, sleep, _seen = _dispatcher(local=local)

    receipt = await dispatcher.dispatch(ControlIntent(device_id=DEVICE, brightness=10))

    assert len(local.sent) == 3
    assert sleep.delays == [0.2, 0.4]
    assert receipt.fell_back is False


@pytest.mark.asyncio
async def test_exhausted_local_retries_fall_back_to_cloud() -> None:
    local = _FakeSender([OSError("unreachable")] * 3)
    cloud = _FakeSender()
    dispatcher, _bus, _clock, _sleep, _seen = _dispatcher(local=local, cloud=cloud)

    receipt = await dispatcher.dispatch(ControlIntent(device_id=DEVICE, power=False))

    assert receipt.transport == CommandTransport.CLOUD
    assert receipt.fell_back is True
    body = json.loads(cloud.sent[0][1])
    assert body["payload"]["capability"]["instance"] == "powerSwitch"
    assert body["payload"]["capability"]["value"] == 0


@pytest.mark.asyncio
async def test_unavailable_local_transport_skips_remaining_retries() -> None:
    local = _FakeSender([GoveeTransportUnavailable("socket closed")])
    cloud = _FakeSender()
    dispatcher, _bus, _clock, sleep, _seen = _dispatcher(local=local, cloud=cloud)

    receipt = await dispatcher.dispatch(ControlIntent(device_id=DEVICE, power=True))

    assert len(local.sent) == 1
    assert sleep.delays == []
    assert receipt.fell_back is True


@pytest.mark.asyncio
async def test_failed_send_without_fallback_raises_and_clears_pending() -> None:
    local = _FakeSender([OSError("down")] * 3)
    dispatcher, _bus, _clock, _sleep, _seen = _dispatcher(local=local)

    with pytest.raises(OSError):
        await dispatcher.dispatch(ControlIntent(device_id=DEVICE, power=True))

    assert dispatcher.pending == ()


@pytest.mark.asyncio
async def test_acknowledgement_confirms_waiting_dispatch() -> None:
    local = _FakeSender()
    dispatcher, _bus, _clock, _sleep, _seen = _dispatcher(local=local)

    task = asyncio.create_task(
        dispatcher.dispatch(ControlIntent(device_id=DEVICE, brightness=55), wait_for_confirmation=True)
    )
    await asyncio.sleep(0)
    await asyncio.sleep(0)

    tagged = dispatcher.observe(_ack("brightness", {"value": 55}))
    receipt = await asyncio.wait_for(task, timeout=1.0)

    assert receipt.confirmed is True
    assert tagged.command_id == receipt.command_id
    assert dispatcher.pending == ()


@pytest.mark.asyncio
async def test_unconfirmed_wait_raises_timeout() -> None:
    local = _FakeSender()
    config = GoveeConfig(command_timeout=0.05)
    dispatcher, _bus, _clock, _sleep, seen = _dispatcher(local=local, config=config)

    with pytest.raises(GoveeDispatchTimeout) as excinfo:
        await dispatcher.dispatch(ControlIntent(device_id=DEVICE, power=True), wait_for_confirmation=True)

    assert excinfo.value.device_id == DEVICE
    assert dispatcher.pending == ()
    assert [d.kind for d in seen] == [DiagnosticKind.DISPATCH_TIMEOUT]


@pytest.mark.asyncio
async def test_sweep_expires_pending_commands() -> None:
    local = _FakeSender()
    dispatcher, _bus, clock, _sleep, seen = _dispatcher(local=local)
    await dispatcher.dispatch(ControlIntent(device_id=DEVICE, power=True))

    assert dispatcher.sweep() == []
    clock.now += 11.0
    expired = dispatcher.sweep()

    assert len(expired) == 1
    assert dispatcher.pending == ()
    assert seen[0].detail["fields"] == ["power"]


@pytest.mark.asyncio
async def test_newer_command_supersedes_older_one() -> None:
    local = _FakeSender()
    dispatcher, _bus, _clock, _sleep, _seen = _dispatcher(local=local)

    first = asyncio.create_task(
        dispatcher.dispatch(ControlIntent(device_id=DEVICE, brightness=10), wait_for_confirmation=True)
    )
    await asyncio.sleep(0)
    await asyncio.sleep(0)
    second = await dispatcher.dispatch(ControlIntent(device_id=DEVICE, brightness=90))

    receipt = await asyncio.wait_for(first, timeout=1.0)
    assert receipt.confirmed is False
    assert [cmd.command_id for cmd in dispatcher.pending] == [second.command_id]


@pytest.mark.asyncio
async def test_scene_ack_is_reported_as_commanded_effect() -> None:
    local = _FakeSender()
    dispatcher, _bus, _clock, _sleep, _seen = _dispatcher(local=local)

    receipt = await dispatcher.dispatch(ControlIntent(device_id=DEVICE, effect_id="7~2"))

    assert [_cmd(payload) for _, payload, _ in local.sent] == ["ptReal"]
    frames = frames_to_base64(finish(bytes([0x33, 0x05, 0x04, 0x07, 0x00])))
    ack = _ack("ptReal", {"command": frames})
    assert ack.values() == {FieldKind.ACTIVE_EFFECT: "7"}

    tagged = dispatcher.observe(ack)

    assert tagged.values() == {FieldKind.ACTIVE_EFFECT: "7~2"}
    assert tagged.command_id == receipt.command_id
    assert dispatcher.pending == ()


@pytest.mark.asyncio
async def test_effect_by_display_name() -> None:
    cloud = _FakeSender()
    dispatcher, bus, _clock, _sleep, _seen = _dispatcher(cloud=cloud, lan_seen=False)

    await dispatcher.dispatch(ControlIntent(device_id=DEVICE, effect_name="aurora (2)"))

    body = json.loads(cloud.sent[0][1])
    assert body["payload"]["capability"]["value"] == {"id": 2, "paramId": 12}
    assert bus.get_nowait().values() == {FieldKind.ACTIVE_EFFECT: "7~2"}  # type: ignore[union-attr]


@pytest.mark.asyncio
async def test_unknown_effect_is_rejected_before_sending() -> None:
    local = _FakeSender()
    dispatcher, bus, _clock, _sleep, _seen = _dispatcher(local=local)

    with pytest.raises(GoveeEffectNotFoundError):
        await dispatcher.dispatch(ControlIntent(device_id=DEVICE, effect_name="Disco"))

    assert local.sent == []
    assert len(bus) == 0


def test_observe_marks_lan_reachable() -> None:
    dispatcher, _bus, _clock, _sleep, _seen = _dispatcher(local=_FakeSender(), cloud=_FakeSender(), lan_seen=False)
    assert dispatcher.choose_transport(DEVICE) == CommandTransport.CLOUD

    dispatcher.observe(_ack("devStatus", {"onOff": 1}))

    assert dispatcher.choose_transport(DEVICE) == CommandTransport.LOCAL


def test_radio_update_does_not_mark_lan_reachable() -> None:
    dispatcher, _bus, _clock, _sleep, _seen = _dispatcher(local=_FakeSender(), cloud=_FakeSender(), lan_seen=False)

    dispatcher.observe(
        TransportUpdate.build(DEVICE, TransportSource.RADIO_ADVERTISEMENT, {FieldKind.POWER: True}, observed_at=1.0)
    )

    assert dispatcher.choose_transport(DEVICE) == CommandTransport.CLOUD


def test_color_intent_clears_effect_and_sends_colorwc() -> None:
    intent = ControlIntent(device_id=DEVICE, color=RgbColor(r=1, g=2, b=3))

    payloads = lan_payloads(intent)

    assert [_cmd(payload) for payload in payloads] == ["colorwc"]
    assert json.loads(payloads[0])["msg"]["data"]["color"] == {"r": 1, "g": 2, "b": 3}


def _poll(*capabilities: tuple[str, object]) -> TransportUpdate:
    return decode_cloud_poll(
        {
            "payload": {
                "sku": DEVICE.model,
                "device": DEVICE.device,
                "capabilities": [{"instance": instance, "state": {"value": value}} for instance, value in capabilities],
            }
        }
    )


@pytest.mark.asyncio
async def test_cloud_poll_confirms_color_command() -> None:
    cloud = _FakeSender()
    dispatcher, bus, _clock, _sleep, seen = _dispatcher(cloud=cloud, lan_seen=False)

    task = asyncio.create_task(
        dispatcher.dispatch(
            ControlIntent(device_id=DEVICE, color=RgbColor(r=255, g=0, b=0)),
            wait_for_confirmation=True,
        )
    )
    await asyncio.sleep(0)
    await asyncio.sleep(0)

    optimistic = bus.get_nowait()
    assert optimistic.values() == {  # type: ignore[union-attr]
        FieldKind.COLOR_RGB: RgbColor(r=255, g=0, b=0),
        FieldKind.ACTIVE_EFFECT: None,
    }

    dispatcher.observe(_poll(("colorRgb", 0xFF0000)))
    receipt = await asyncio.wait_for(task, timeout=1.0)

    assert receipt.confirmed is True
    assert receipt.transport == CommandTransport.CLOUD
    assert dispatcher.pending == ()
    assert seen == []


@pytest.mark.asyncio
async def test_lan_status_confirms_temperature_command() -> None:
    local = _FakeSender()
    dispatcher, _bus, clock, _sleep, seen = _dispatcher(local=local)
    await dispatcher.dispatch(ControlIntent(device_id=DEVICE, color_temperature_k=2700))

    dispatcher.observe(_ack("devStatus", {"onOff": 1, "colorTemInKelvin": 2700}))

    assert dispatcher.pending == ()
    clock.now += 11.0
    assert dispatcher.sweep() == []
    assert seen == []


@pytest.mark.asyncio
async def test_poll_confirms_fields_it_can_report() -> None:
    cloud = _FakeSender()
    dispatcher, _bus, _clock, _sleep, _seen = _dispatcher(cloud=cloud, lan_seen=False)
    await dispatcher.dispatch(ControlIntent(device_id=DEVICE, power=True, effect_id="7~2"))

    dispatcher.observe(_poll(("brightness", 30)))
    assert len(dispatcher.pending) == 1

    dispatcher.observe(_poll(("powerSwitch", 1)))
    assert dispatcher.pending == ()


@pytest.mark.asyncio
async def test_effect_command_waits_for_a_report_of_the_effect() -> None:
    cloud = _FakeSender()
    dispatcher, _bus, _clock, _sleep, _seen = _dispatcher(cloud=cloud, lan_seen=False)
    await dispatcher.dispatch(ControlIntent(device_id=DEVICE, effect_id="7~2"))

    dispatcher.observe(_poll(("powerSwitch", 1)))

    assert len(dispatcher.pending) == 1


@pytest.mark.asyncio
async def test_undelivered_command_withdraws_its_optimistic_update() -> None:
    local = _FakeSender([OSError("down")] * 3)
    dispatcher, bus, _clock, _sleep, _seen = _dispatcher(local=local)

    with pytest.raises(OSError):
        await dispatcher.dispatch(ControlIntent(device_id=DEVICE, brightness=70))

    optimistic = bus.get_nowait()
    withdrawal = bus.get_nowait()
    assert optimistic is not None and withdrawal is not None
    assert withdrawal.withdrawn is True
    assert withdrawal.command_id == optimistic.command_id
    assert withdrawal.observations == ()
    assert len(bus) == 0
