"""Pydantic models for vendor payloads, effect catalogs and diagnostics.

Control models live in :mod:`pygovee.models.control`; they depend on the
state event types and are not re-exported here.
"""

from pygovee.models.cloud import Capability, CapabilityState, DeviceStateResponse, PushOperation, PushRecord, PushState
from pygovee.models.diagnostics import Diagnostic, DiagnosticKind
from pygovee.models.lan import LanColor, LanColorAck, LanPtRealAck, LanScanResponse, LanStatus, LanValueAck
from pygovee.models.scenes import (
    Effect,
    EffectCatalog,
    EffectSummary,
    LightEffect,
    Scene,
    SceneCategory,
    make_effect_id,
    scene_code_of,
)

__all__ = [
    "Capability",
    "CapabilityState",
    "DeviceStateResponse",
    "Diagnostic",
    "DiagnosticKind",
    "Effect",
    "EffectCatalog",
    "EffectSummary",
    "LanColor",
    "LanColorAck",
    "LanPtRealAck",
    "LanScanResponse",
    "LanStatus",
    "LanValueAck",
    "LightEffect",
    "PushOperation",
    "PushRecord",
    "PushState",
    "Scene",
    "SceneCategory",
    "make_effect_id",
    "scene_code_of",
]
