"""Vendor cloud payloads: platform API device state and IoT push records."""

from __future__ import annotations

from typing import Any

from pydantic import Field

from pygovee.models._base import GoveeBaseModel
from pygovee.models.lan import LanColor


class CapabilityState(GoveeBaseModel):
    value: Any = None


class Capability(GoveeBaseModel):
    """One ``capabilities[]`` entry of a platform API state response."""

    type: str = ""
    instance: str = ""
    state: CapabilityState | None = None


class DeviceStateResponse(GoveeBaseModel):
    """``payload`` of ``POST /router/api/v1/device/state``."""

    sku: str
    device: str
    capabilities: list[Capability] = Field(default_factory=list)


class PushState(GoveeBaseModel):
    on_off: int | None = Field(default=None, ge=0, le=1)
    brightness: int | None = Field(default=None, ge=0, le=100)
    color: LanColor | None = None
    color_tem_in_kelvin: int | None = Field(default=None, ge=0, le=0xFFFF)


class PushOperation(GoveeBaseModel):
    """Raw frames the device reported executing (base64)."""

    command: list[str] = Field(default_factory=list)


class PushRecord(GoveeBaseModel):
    """A status record delivered over the IoT push channel."""

    sku: str
    device: str
    cmd: str = ""
    state: PushState | None = None
    op: PushOperation | None = None
