"""Outbound command transports.

The dispatcher only knows the :class:`CommandSender` protocol. The LAN
sender lives with the socket owner outside this package; the platform API
sender below is the built-in cloud transport.
"""

from __future__ import annotations

import json
import logging
import secrets
from collections.abc import Mapping
from typing import Any, Protocol

import aiohttp

from pygovee._constants import PLATFORM_CONTROL_ENDPOINT, PLATFORM_STATE_ENDPOINT, USER_AGENT
from pygovee._redact import redact_for_log
from pygovee.config import GoveeConfig
from pygovee.exceptions import GoveeConfigError, GoveeTransportError, GoveeTransportUnavailable
from pygovee.state.events import DeviceId

_logger = logging.getLogger(__name__)


class CommandSender(Protocol):
    """Send one encoded command to one device.

    Implementations raise :class:`GoveeTransportUnavailable` when the device
    cannot be reached over this transport at all, and
    :class:`GoveeTransportError` for any other failure.
    """

    async def send(self, device_id: DeviceId, payload: bytes, *, timeout: float) -> None: ...


class PlatformApiTransport:
    """Cloud control and state polling over the vendor platform API."""

    def __init__(self, config: GoveeConfig, http_session: aiohttp.ClientSession) -> None:
        if not config.api_key:
            raise GoveeConfigError("api_key is required for the platform API transport")
        self._config = config
        self._http = http_session

    def _headers(self) -> dict[str, str]:
        assert self._config.api_key is not None
        return {
            "content-type": "application/json",
            "user-agent": USER_AGENT,
            "Govee-API-Key": self._config.api_key,
        }

    async def _post(self, endpoint: str, body: bytes, *, timeout: float) -> dict[str, Any]:
        url = f"{self._config.platform_base_url}{endpoint}"
        _logger.debug("POST %s %s", url, redact_for_log(body))
        try:
            async with self._http.post(
                url,
                data=body,
                headers=self._headers(),
                timeout=aiohttp.ClientTimeout(total=timeout),
            ) as resp:
                text = await resp.text()
                if resp.status == 429 or resp.status >= 500:
                    raise GoveeTransportUnavailable(
                        f"HTTP {resp.status} from {endpoint}: {text[:200]}",
                        transport="cloud",
                        status_code=resp.status,
                        endpoint=endpoint,
                    )
                if resp.status != 200:
                    raise GoveeTransportError(
                        f"HTTP {resp.status} from {endpoint}: {text[:200]}",
                        transport="cloud",
                        status_code=resp.status,
                        endpoint=endpoint,
                    )
        except GoveeTransportError:
            raise
        except TimeoutError as exc:
            raise GoveeTransportError(
                f"Request to {endpoint} timed out after {timeout}s",
                transport="cloud",
                endpoint=endpoint,
            ) from exc
        except aiohttp.ClientError as exc:
            raise GoveeTransportError(
                f"Request to {endpoint} failed: {exc}",
                transport="cloud",
                endpoint=endpoint,
            ) from exc

        try:
            result = json.loads(text)
        except json.JSONDecodeError as exc:
            raise GoveeTransportError(
                f"Invalid JSON from {endpoint}: {text[:200]}",
                transport="cloud",
                endpoint=endpoint,
            ) from exc
        if not isinstance(result, dict):
            raise GoveeTransportError(f"Unexpected response from {endpoint}", transport="cloud", endpoint=endpoint)

        code = result.get("code")
        if code is not None and str(code) != "200":
            raise GoveeTransportError(
                f"{endpoint} rejected request: code={code} msg={result.get('msg') or result.get('message')}",
                transport="cloud",
                endpoint=endpoint,
            )
        return result

    async def send(self, device_id: DeviceId, payload: bytes, *, timeout: float) -> None:
        await self._post(PLATFORM_CONTROL_ENDPOINT, payload, timeout=timeout)

    async def fetch_state(self, device_id: DeviceId, *, timeout: float | None = None) -> dict[str, Any]:
        """Current capability states; feed the result to ``ingest_cloud_poll``."""
        body: Mapping[str, Any] = {
            "requestId": secrets.token_hex(8),
            "payload": {"sku": device_id.model, "device": device_id.device},
        }
        return await self._post(
            PLATFORM_STATE_ENDPOINT,
            json.dumps(body, separators=(",", ":")).encode("utf-8"),
            timeout=timeout or self._config.cloud_send_timeout,
        )
