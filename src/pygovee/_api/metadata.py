"""Vendor metadata endpoints.

  - light-effect library per SKU (scene catalog source)
  - model-specific scene encoding parameter table (public JSON)
"""

from __future__ import annotations

import json
import logging
from typing import Any

import aiohttp

from pygovee._constants import APP_VERSION, USER_AGENT
from pygovee.catalog.encoding import ModelParameterTable
from pygovee.config import GoveeConfig
from pygovee.exceptions import GoveeTransportError

_logger = logging.getLogger(__name__)


async def _get_json(http_session: aiohttp.ClientSession, url: str, *, timeout: float) -> Any:
    headers = {"user-agent": USER_AGENT, "appVersion": APP_VERSION}
    _logger.debug("GET %s", url)
    try:
        async with http_session.get(url, headers=headers, timeout=aiohttp.ClientTimeout(total=timeout)) as resp:
            text = await resp.text()
            if resp.status != 200:
                raise GoveeTransportError(
                    f"HTTP {resp.status} from {url}: {text[:200]}",
                    transport="metadata",
                    status_code=resp.status,
                    endpoint=url,
                )
    except GoveeTransportError:
        raise
    except TimeoutError as exc:
        raise GoveeTransportError(f"Request to {url} timed out", transport="metadata", endpoint=url) from exc
    except aiohttp.ClientError as exc:
        raise GoveeTransportError(f"Request to {url} failed: {exc}", transport="metadata", endpoint=url) from exc

    try:
        return json.loads(text)
    except json.JSONDecodeError as exc:
        raise GoveeTransportError(f"Invalid JSON from {url}: {text[:200]}", transport="metadata", endpoint=url) from exc


async def fetch_scene_library(
    config: GoveeConfig,
    http_session: aiohttp.ClientSession,
    sku: str,
) -> dict[str, Any]:
    """Raw light-effect library for *sku*; pass it to ``build_catalog``."""
    url = config.scene_library_url.format(sku=sku)
    body = await _get_json(http_session, url, timeout=config.cloud_send_timeout)
    if not isinstance(body, dict):
        raise GoveeTransportError(f"Unexpected scene library response for {sku}", transport="metadata", endpoint=url)
    return body


async def fetch_model_parameters(config: GoveeConfig, http_session: aiohttp.ClientSession) -> ModelParameterTable:
    body = await _get_json(http_session, config.model_parameters_url, timeout=config.cloud_send_timeout)
    if not isinstance(body, list):
        raise GoveeTransportError(
            "Model parameter table is not a list",
            transport="metadata",
            endpoint=config.model_parameters_url,
        )
    table = ModelParameterTable.from_payload(body)
    _logger.debug("Loaded %d model parameter entries", len(table))
    return table
