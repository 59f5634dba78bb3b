from __future__ import annotations

import asyncio
import json
from typing import Any

import pytest

from pygovee._codec.frames import finish, frames_to_base64
from pygovee._mqtt import GoveePushRuntime, PushBootstrap
from pygovee.catalog.encoding import ModelParameterTable
from pygovee.client import GoveeGateway
from pygovee.config import GoveeConfig
from pygovee.exceptions import GoveeError
from pygovee.models.control import ControlIntent
from pygovee.models.diagnostics import Diagnostic, DiagnosticKind
from pygovee.state.events import ChangeNotification, DeviceId, FieldKind
from pygovee.state.store import DeviceStatus

STRIP = DeviceId(device="14:15:60:74:F4:07:99:39", model="H6076")
BOOTSTRAP = PushBootstrap(broker_host="broker", topic="GA/x", client_id="c", certfile="c.pem", keyfile="k.pem")

LIBRARY = {
    "data": {
        "categories": [
            {
                "categoryName": "Festival",
                "scenes": [
                    {"sceneId": 1, "sceneName": "Halloween", "lightEffects": [{"sceneCode": 101}]},
                    {"sceneId": 2, "sceneName": "Halloween", "lightEffects": [{"sceneCode": 202}]},
                ],
            }
        ]
    }
}


class _FakeSender:
    def __init__(self) -> None:
        self.sent: list[tuple[DeviceId, bytes]] = []

    async def send(self, device_id: DeviceId, payload: bytes, *, timeout: float) -> None:
        self.sent.append((device_id, payload))


class _CountingCache:
    def __init__(self) -> None:
        self.blobs: dict[tuple[str, str], bytes] = {}
        self.gets = 0

    def get(self, model: str, metadata_version: str) -> bytes | None:
        self.gets += 1
        return self.blobs.get((model, metadata_version))

    def put(self, model: str, metadata_version: str, blob: bytes) -> None:
        self.blobs[(model, metadata_version)] = blob


def _lan(cmd: str, data: dict[str, Any]) -> bytes:
    return json.dumps({"msg": {"cmd": cmd, "data": data}}).encode()


async def _settle(gateway: GoveeGateway) -> None:
    for _ in range(50):
        await asyncio.sleep(0.01)
        if len(gateway.bus) == 0:
            break
    await asyncio.sleep(0.02)


def _gateway(**kwargs: Any) -> tuple[GoveeGateway, list[ChangeNotification], list[Diagnostic]]:
    notes: list[ChangeNotification] = []
    diagnostics: list[Diagnostic] = []
    kwargs.setdefault("config", GoveeConfig(sweep_interval=0.01))
    gateway = GoveeGateway(on_change=notes.append, on_diagnostic=diagnostics.append, **kwargs)
    return gateway, notes, diagnostics


@pytest.mark.asyncio
async def test_lan_status_reaches_snapshot_and_subscribers() -> None:
    gateway, notes, _diagnostics = _gateway()
    async with gateway:
        update = gateway.ingest_lan(_lan("devStatus", {"onOff": 1, "brightness": 35}), STRIP)
        assert update is not None
        await _settle(gateway)

        snapshot = gateway.snapshot(STRIP)

    assert snapshot is not None
    assert snapshot.status == DeviceStatus.ONLINE
    assert snapshot.value(FieldKind.BRIGHTNESS) == 35
    assert {n.kind for n in notes} == {FieldKind.ONLINE, FieldKind.POWER, FieldKind.BRIGHTNESS}
    assert STRIP in gateway.snapshots()


@pytest.mark.asyncio
async def test_bad_input_becomes_diagnostic() -> None:
    gateway, _notes, diagnostics = _gateway()
    async with gateway:
        assert gateway.ingest_lan(b"{broken", STRIP) is None
        assert gateway.ingest_cloud_poll({"payload": {}}) is None
        assert gateway.ingest_cloud_push(b"[]") is None
        assert gateway.ingest_radio(STRIP, b"\x00" * 3) is None

    assert [d.kind for d in diagnostics] == [DiagnosticKind.DECODE_FAILED] * 4


@pytest.mark.asyncio
async def test_radio_and_cloud_ingest() -> None:
    gateway, _notes, _diagnostics = _gateway()
    async with gateway:
        gateway.ingest_radio(STRIP, finish(bytes([0xA3, 0x02, 0x00, 0x02, 0x00, 0x10])), observed_at=1.0)
        gateway.ingest_radio(STRIP, finish(bytes([0xA3, 0x02, 0xFF])), observed_at=1.0)
        gateway.ingest_cloud_poll(
            {
                "payload": {
                    "sku": STRIP.model,
                    "device": STRIP.device,
                    "capabilities": [{"instance": "brightness", "state": {"value": 80}}],
                }
            },
            observed_at=2.0,
        )
        await _settle(gateway)
        snapshot = gateway.snapshot(STRIP)

    assert snapshot is not None
    assert snapshot.value(FieldKind.POWER) is False
    assert snapshot.value(FieldKind.BRIGHTNESS) == 80


@pytest.mark.asyncio
async def test_load_catalog_uses_cache_and_notifies_devices() -> None:
    cache = _CountingCache()
    gateway, notes, _diagnostics = _gateway(catalog_cache=cache)
    async with gateway:
        gateway.ingest_lan(_lan("devStatus", {"onOff": 1}), STRIP)
        await _settle(gateway)

        catalog = await gateway.load_catalog("H6076", LIBRARY)
        again = await gateway.load_catalog("H6076", LIBRARY)

        gateway.ingest_lan(_lan("brightness", {"value": 20}), STRIP)
        await _settle(gateway)

    assert catalog.display_names() == ["Halloween (1)", "Halloween (2)"]
    assert again == catalog
    assert len(cache.blobs) == 1
    assert gateway.catalog("H6076") is again
    assert notes[-1].catalog == catalog.summary()


@pytest.mark.asyncio
async def test_corrupt_cache_entry_is_rebuilt() -> None:
    cache = _CountingCache()
    gateway, _notes, _diagnostics = _gateway(catalog_cache=cache)
    catalog = await gateway.load_catalog("H6076", LIBRARY)
    key = next(iter(cache.blobs))
    cache.blobs[key] = b"not json"

    rebuilt = await gateway.load_catalog("H6076", LIBRARY)

    assert rebuilt == catalog
    assert cache.blobs[key] == catalog.to_blob()


@pytest.mark.asyncio
async def test_load_catalog_fetches_library_and_parameters(monkeypatch: pytest.MonkeyPatch) -> None:
    requested: list[str] = []

    async def fake_library(_config: GoveeConfig, _http: Any, sku: str) -> dict[str, Any]:
        requested.append(sku)
        return LIBRARY

    async def fake_parameters(_config: GoveeConfig, _http: Any) -> ModelParameterTable:
        requested.append("parameters")
        return ModelParameterTable()

    monkeypatch.setattr("pygovee._api.metadata.fetch_scene_library", fake_library)
    monkeypatch.setattr("pygovee._api.metadata.fetch_model_parameters", fake_parameters)

    gateway, _notes, _diagnostics = _gateway(session=object())
    async with gateway:
        catalog = await gateway.load_catalog("H6076")
        await gateway.load_catalog("H6076")

    assert len(catalog) == 2
    assert requested == ["H6076", "parameters", "H6076"]


@pytest.mark.asyncio
async def test_load_catalog_without_session_needs_context() -> None:
    gateway, _notes, _diagnostics = _gateway()
    with pytest.raises(GoveeError):
        await gateway.load_catalog("H6076")


@pytest.mark.asyncio
async def test_control_round_trip_with_lan_acknowledgement() -> None:
    sender = _FakeSender()
    gateway, notes, _diagnostics = _gateway(local_sender=sender)
    async with gateway:
        await gateway.load_catalog("H6076", LIBRARY)
        gateway.ingest_lan(_lan("devStatus", {"onOff": 1}), STRIP)
        await _settle(gateway)

        control = asyncio.create_task(
            gateway.control(ControlIntent(device_id=STRIP, effect_name="Halloween (2)"), wait_for_confirmation=True)
        )
        await _settle(gateway)
        assert gateway.snapshot(STRIP).value(FieldKind.ACTIVE_EFFECT) == "202"  # type: ignore[union-attr]

        frames = frames_to_base64(finish(bytes([0x33, 0x05, 0x04, 202, 0x00])))
        gateway.ingest_lan(_lan("ptReal", {"command": frames}), STRIP)
        receipt = await asyncio.wait_for(control, timeout=1.0)
        await _settle(gateway)

    assert receipt.confirmed is True
    assert json.loads(sender.sent[0][1])["msg"]["cmd"] == "ptReal"
    assert [n.value for n in notes if n.kind == FieldKind.ACTIVE_EFFECT] == ["202"]


@pytest.mark.asyncio
async def test_remove_device_forgets_state() -> None:
    gateway, _notes, _diagnostics = _gateway()
    async with gateway:
        gateway.ingest_lan(_lan("devStatus", {"onOff": 0}), STRIP)
        await _settle(gateway)

        assert gateway.remove_device(STRIP) is True
        assert gateway.snapshot(STRIP) is None
        assert gateway.dispatcher.is_lan_reachable(STRIP) is False


def test_push_listener_requires_running_gateway() -> None:
    gateway = GoveeGateway()
    with pytest.raises(GoveeError):
        gateway.start_push_listener(BOOTSTRAP)


@pytest.mark.asyncio
async def test_api_key_enables_cloud_transport() -> None:
    config = GoveeConfig(api_key="key-123", sweep_interval=0.01)
    gateway = GoveeGateway(config, session=object())  # type: ignore[arg-type]
    async with gateway:
        assert gateway.dispatcher.choose_transport(STRIP).value == "cloud"
    with pytest.raises(GoveeError):
        gateway.dispatcher.choose_transport(STRIP)


def _record_push_starts(monkeypatch: pytest.MonkeyPatch) -> list[PushBootstrap]:
    started: list[PushBootstrap] = []

    def fake_start(_runtime: GoveePushRuntime, bootstrap: PushBootstrap) -> None:
        started.append(bootstrap)

    monkeypatch.setattr(GoveePushRuntime, "start", fake_start)
    return started


@pytest.mark.asyncio
async def test_push_listener_starts_on_entry_when_enabled(monkeypatch: pytest.MonkeyPatch) -> None:
    started = _record_push_starts(monkeypatch)
    config = GoveeConfig(push_enabled=True, sweep_interval=0.01)

    async with GoveeGateway(config, push_bootstrap=BOOTSTRAP):
        assert started == [BOOTSTRAP]


@pytest.mark.asyncio
async def test_push_listener_stays_off_unless_enabled(monkeypatch: pytest.MonkeyPatch) -> None:
    started = _record_push_starts(monkeypatch)

    async with GoveeGateway(GoveeConfig(sweep_interval=0.01), push_bootstrap=BOOTSTRAP):
        pass
    async with GoveeGateway(GoveeConfig(push_enabled=True, sweep_interval=0.01)):
        pass

    assert started == []


@pytest.mark.asyncio
async def test_push_startup_failure_does_not_break_entry(monkeypatch: pytest.MonkeyPatch) -> None:
    def failing_start(_runtime: GoveePushRuntime, _bootstrap: PushBootstrap) -> None:
        raise OSError("broker unreachable")

    monkeypatch.setattr(GoveePushRuntime, "start", failing_start)
    config = GoveeConfig(push_enabled=True, sweep_interval=0.01)

    async with GoveeGateway(config, push_bootstrap=BOOTSTRAP) as gateway:
        update = gateway.ingest_lan(_lan("devStatus", {"onOff": 1}), STRIP)

    assert update is not None
