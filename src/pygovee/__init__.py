"""pygovee - Async state and control gateway for Govee smart lights."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("pygovee")
except PackageNotFoundError:
    __version__ = "0+local"
from pygovee._mqtt import PushBootstrap
from pygovee.client import GoveeGateway
from pygovee.config import DebounceWindows, GoveeConfig
from pygovee.exceptions import (
    GoveeCatalogParseError,
    GoveeChecksumError,
    GoveeConfigError,
    GoveeDecodeError,
    GoveeDispatchTimeout,
    GoveeEffectNotFoundError,
    GoveeError,
    GoveeTransportError,
    GoveeTransportUnavailable,
)
from pygovee.models import Diagnostic, DiagnosticKind, Effect, EffectCatalog, EffectSummary
from pygovee.models.control import CommandTransport, ControlIntent, DispatchReceipt
from pygovee.state.events import (
    ChangeNotification,
    DeviceId,
    FieldKind,
    FieldObservation,
    RgbColor,
    TransportSource,
    TransportUpdate,
)
from pygovee.state.store import DeviceSnapshot, DeviceStatus, FieldState

__all__ = [
    "__version__",
    "ChangeNotification",
    "CommandTransport",
    "ControlIntent",
    "DebounceWindows",
    "DeviceId",
    "DeviceSnapshot",
    "DeviceStatus",
    "Diagnostic",
    "DiagnosticKind",
    "DispatchReceipt",
    "Effect",
    "EffectCatalog",
    "EffectSummary",
    "FieldKind",
    "FieldObservation",
    "FieldState",
    "GoveeCatalogParseError",
    "GoveeChecksumError",
    "GoveeConfig",
    "GoveeConfigError",
    "GoveeDecodeError",
    "GoveeDispatchTimeout",
    "GoveeEffectNotFoundError",
    "GoveeError",
    "GoveeGateway",
    "GoveeTransportError",
    "GoveeTransportUnavailable",
    "PushBootstrap",
    "RgbColor",
    "TransportSource",
    "TransportUpdate",
]
