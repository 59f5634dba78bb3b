"""High-level async gateway tying decoders, engine and dispatcher together."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from collections.abc import Callable, Mapping
from typing import Any

import aiohttp

from pygovee._api import metadata as _metadata_api
from pygovee._cache import CatalogCache, MemoryCatalogCache
from pygovee._mqtt import GoveePushRuntime, PushBootstrap
from pygovee._transport import CommandSender, PlatformApiTransport
from pygovee.catalog.builder import build_catalog, metadata_version
from pygovee.catalog.encoding import ModelParameterTable
from pygovee.config import GoveeConfig
from pygovee.dispatcher import CommandDispatcher
from pygovee.exceptions import GoveeDecodeError, GoveeError
from pygovee.ingestion.bus import TransportUpdateBus
from pygovee.ingestion.cloud import decode_cloud_poll, decode_cloud_push
from pygovee.ingestion.lan import decode_lan_message
from pygovee.ingestion.radio import RadioFrameDecoder
from pygovee.models.control import ControlIntent, DispatchReceipt
from pygovee.models.diagnostics import Diagnostic, DiagnosticKind
from pygovee.models.scenes import EffectCatalog
from pygovee.state.events import ChangeNotification, DeviceId, TransportSource, TransportUpdate
from pygovee.state.store import DeviceSnapshot, ReconciliationEngine

_logger = logging.getLogger(__name__)


class GoveeGateway:
    """Unified state and control for lights reachable over LAN, radio and cloud.

    Usage::

        async with GoveeGateway(config, local_sender=lan, on_change=publish) as gw:
            await gw.load_catalog("H6065")
            gw.ingest_lan(datagram, device_id)
            await gw.control(ControlIntent(device_id=dev, effect_name="Aurora"))

    The ``ingest_*`` methods are called by transport collaborators on the
    event loop. They decode, let the dispatcher match pending commands, and
    enqueue the update; the engine task applies it.
    """

    def __init__(
        self,
        config: GoveeConfig | None = None,
        *,
        local_sender: CommandSender | None = None,
        cloud_sender: CommandSender | None = None,
        catalog_cache: CatalogCache | None = None,
        model_parameters: ModelParameterTable | None = None,
        session: aiohttp.ClientSession | None = None,
        on_change: Callable[[ChangeNotification], None] | None = None,
        on_diagnostic: Callable[[Diagnostic], None] | None = None,
        push_bootstrap: PushBootstrap | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._config = config or GoveeConfig()
        self._external_session = session is not None
        self._http_session = session
        self._cloud_sender = cloud_sender
        self._owns_cloud_sender = False
        self._cache: CatalogCache = catalog_cache if catalog_cache is not None else MemoryCatalogCache()
        self._parameters = model_parameters
        self._on_diagnostic_cb = on_diagnostic
        self._catalogs: dict[str, EffectCatalog] = {}
        self._tasks: list[asyncio.Task[None]] = []
        self._loop: asyncio.AbstractEventLoop | None = None
        self._push_runtime: GoveePushRuntime | None = None
        self._push_bootstrap = push_bootstrap

        self.bus = TransportUpdateBus(self._config.bus_capacity, on_diagnostic=self._emit_diagnostic)
        self.engine = ReconciliationEngine(debounce=self._config.debounce, clock=clock, on_change=on_change)
        self.radio = RadioFrameDecoder(
            reassembly_timeout=self._config.reassembly_timeout,
            max_sequences=self._config.max_reassembly_sequences,
            on_diagnostic=self._emit_diagnostic,
            clock=clock,
        )
        self.dispatcher = CommandDispatcher(
            self.bus,
            config=self._config,
            local_sender=local_sender,
            cloud_sender=cloud_sender,
            catalog_for=self.catalog,
            on_diagnostic=self._emit_diagnostic,
            clock=clock,
        )

    # ------------------------------------------------------------------
    # Context manager lifecycle
    # ------------------------------------------------------------------

    async def __aenter__(self) -> GoveeGateway:
        self._loop = asyncio.get_running_loop()
        if self._http_session is None:
            self._http_session = aiohttp.ClientSession()
        if self._cloud_sender is None and self._config.api_key:
            self._cloud_sender = PlatformApiTransport(self._config, self._http_session)
            self._owns_cloud_sender = True
            self.dispatcher.set_cloud_sender(self._cloud_sender)
        self._tasks = [
            asyncio.create_task(self.engine.run(self.bus, tick=self._config.sweep_interval), name="govee-engine"),
            asyncio.create_task(self._sweep_loop(), name="govee-sweep"),
        ]
        self._ensure_push_started()
        return self

    async def __aexit__(self, *exc: Any) -> None:
        self.stop_push_listener()
        for task in self._tasks:
            task.cancel()
        for task in self._tasks:
            with contextlib.suppress(asyncio.CancelledError):
                await task
        self._tasks = []
        if self._owns_cloud_sender:
            self.dispatcher.set_cloud_sender(None)
            self._cloud_sender = None
            self._owns_cloud_sender = False
        if not self._external_session and self._http_session is not None:
            await self._http_session.close()
            self._http_session = None
        self._loop = None

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self._config.sweep_interval)
            self.sweep()

    def sweep(self) -> None:
        """Expire stale reassembly sequences and unconfirmed commands."""
        self.radio.sweep()
        self.dispatcher.sweep()

    # ------------------------------------------------------------------
    # Diagnostics
    # ------------------------------------------------------------------

    def _emit_diagnostic(self, diagnostic: Diagnostic) -> None:
        if self._on_diagnostic_cb is None:
            return
        try:
            self._on_diagnostic_cb(diagnostic)
        except Exception:
            _logger.warning("on_diagnostic callback failed for %s", diagnostic.kind, exc_info=True)

    def _decode_failed(self, exc: GoveeDecodeError, source: TransportSource) -> None:
        _logger.warning("Dropping %s input: %s", source, exc)
        self._emit_diagnostic(
            Diagnostic(
                kind=DiagnosticKind.DECODE_FAILED,
                message=str(exc),
                device_id=exc.device_id,
                source=source,
                error=exc,
            )
        )

    # ------------------------------------------------------------------
    # Inbound
    # ------------------------------------------------------------------

    def _enqueue(self, update: TransportUpdate) -> TransportUpdate:
        update = self.dispatcher.observe(update)
        self.bus.put_nowait(update)
        return update

    def ingest_radio(
        self,
        device_id: DeviceId,
        frame: bytes,
        *,
        observed_at: float | None = None,
    ) -> TransportUpdate | None:
        """Feed one radio advertisement frame; returns the update once complete."""
        update = self.radio.feed(device_id, frame, observed_at=observed_at)
        if update is None:
            return None
        return self._enqueue(update)

    def ingest_lan(
        self,
        message: bytes | str | Mapping[str, Any],
        device_id: DeviceId | None = None,
        *,
        observed_at: float | None = None,
    ) -> TransportUpdate | None:
        try:
            update = decode_lan_message(message, device_id=device_id, observed_at=observed_at)
        except GoveeDecodeError as exc:
            self._decode_failed(exc, TransportSource.LOCAL_COMMAND)
            return None
        return self._enqueue(update)

    def ingest_cloud_poll(
        self,
        payload: Mapping[str, Any] | bytes | str,
        *,
        observed_at: float | None = None,
    ) -> TransportUpdate | None:
        try:
            update = decode_cloud_poll(payload, observed_at=observed_at)
        except GoveeDecodeError as exc:
            self._decode_failed(exc, TransportSource.CLOUD_POLL)
            return None
        return self._enqueue(update)

    def ingest_cloud_push(
        self,
        payload: Mapping[str, Any] | bytes | str,
        *,
        observed_at: float | None = None,
    ) -> TransportUpdate | None:
        try:
            update = decode_cloud_push(payload, observed_at=observed_at)
        except GoveeDecodeError as exc:
            self._decode_failed(exc, TransportSource.CLOUD_PUSH)
            return None
        return self._enqueue(update)

    # ------------------------------------------------------------------
    # Catalogs
    # ------------------------------------------------------------------

    def catalog(self, model: str) -> EffectCatalog | None:
        return self._catalogs.get(model)

    def _require_http(self) -> aiohttp.ClientSession:
        if self._http_session is None:
            raise GoveeError("Gateway not initialized. Use 'async with GoveeGateway(...) as gateway:'")
        return self._http_session

    async def load_catalog(self, model: str, library_payload: Any = None) -> EffectCatalog:
        """Build (or restore from cache) the effect catalog for *model*.

        Without *library_payload* the vendor library and, if not supplied
        at construction, the model parameter table are fetched.
        """
        if library_payload is None:
            http = self._require_http()
            library_payload = await _metadata_api.fetch_scene_library(self._config, http, model)
            if self._parameters is None:
                self._parameters = await _metadata_api.fetch_model_parameters(self._config, http)

        params = self._parameters.for_model(model) if self._parameters is not None else None
        version = metadata_version(model, library_payload, params)

        catalog: EffectCatalog | None = None
        blob = self._cache.get(model, version)
        if blob is not None:
            try:
                catalog = EffectCatalog.from_blob(blob)
            except ValueError:
                _logger.warning("Discarding unreadable cached catalog for %s (%s)", model, version)
        if catalog is None:
            result = build_catalog(
                model,
                library_payload,
                parameters=params,
                version=version,
                on_diagnostic=self._emit_diagnostic,
            )
            catalog = result.catalog
            self._cache.put(model, version, catalog.to_blob())

        self._catalogs[model] = catalog
        self.engine.catalog_changed(model, catalog.summary())
        _logger.info("Catalog for %s ready: %d effect(s) (version %s)", model, len(catalog), version)
        return catalog

    # ------------------------------------------------------------------
    # Control + state
    # ------------------------------------------------------------------

    async def control(self, intent: ControlIntent, *, wait_for_confirmation: bool = False) -> DispatchReceipt:
        return await self.dispatcher.dispatch(intent, wait_for_confirmation=wait_for_confirmation)

    def snapshot(self, device_id: DeviceId) -> DeviceSnapshot | None:
        return self.engine.snapshot(device_id)

    def snapshots(self) -> dict[DeviceId, DeviceSnapshot]:
        return self.engine.snapshots()

    def remove_device(self, device_id: DeviceId) -> bool:
        self.dispatcher.forget(device_id)
        return self.engine.remove_device(device_id)

    # ------------------------------------------------------------------
    # Push
    # ------------------------------------------------------------------

    def _on_push_record(self, record: dict[str, Any]) -> None:
        self.ingest_cloud_push(record)

    def start_push_listener(self, bootstrap: PushBootstrap) -> None:
        """Start the IoT push listener; records are ingested on the event loop."""
        if self._loop is None:
            raise GoveeError("Gateway not initialized. Use 'async with GoveeGateway(...) as gateway:'")
        if self._push_runtime is None:
            self._push_runtime = GoveePushRuntime(
                loop=self._loop,
                on_record=self._on_push_record,
                keepalive=self._config.push_keepalive,
            )
        self._push_runtime.start(bootstrap)

    def _ensure_push_started(self) -> None:
        """Best-effort push startup (failures must not break LAN or radio ingest)."""
        if not self._config.push_enabled:
            return
        if self._push_bootstrap is None:
            _logger.warning("Push listener enabled but no push bootstrap was supplied")
            return
        try:
            self.start_push_listener(self._push_bootstrap)
        except Exception:
            _logger.warning("Push listener startup failed", exc_info=True)

    def stop_push_listener(self) -> None:
        if self._push_runtime is not None:
            self._push_runtime.stop()
