"""LAN (local-network JSON) message payloads.

Every LAN datagram is an envelope ``{"msg": {"cmd": ..., "data": {...}}}``.
The models below describe the ``data`` part per ``cmd``.
"""

from __future__ import annotations

from pydantic import Field

from pygovee.models._base import GoveeBaseModel


class LanColor(GoveeBaseModel):
    r: int = Field(..., ge=0, le=255)
    g: int = Field(..., ge=0, le=255)
    b: int = Field(..., ge=0, le=255)


class LanScanResponse(GoveeBaseModel):
    """``scan`` response: device identity."""

    ip: str = ""
    device: str
    sku: str
    ble_version_hard: str = ""
    ble_version_soft: str = ""
    wifi_version_hard: str = ""
    wifi_version_soft: str = ""


class LanStatus(GoveeBaseModel):
    """``devStatus`` response."""

    on_off: int | None = Field(default=None, ge=0, le=1)
    brightness: int | None = Field(default=None, ge=0, le=100)
    color: LanColor | None = None
    color_tem_in_kelvin: int | None = Field(default=None, ge=0, le=0xFFFF)
    """``0`` means the light is in RGB mode."""


class LanValueAck(GoveeBaseModel):
    """``turn`` / ``brightness`` echo."""

    value: int


class LanColorAck(GoveeBaseModel):
    """``colorwc`` echo."""

    color: LanColor | None = None
    color_tem_in_kelvin: int | None = Field(default=None, ge=0, le=0xFFFF)


class LanPtRealAck(GoveeBaseModel):
    """``ptReal`` echo: base64 encoded raw frames."""

    command: list[str] = Field(default_factory=list)
