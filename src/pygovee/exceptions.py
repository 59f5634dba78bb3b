"""Custom exception hierarchy for pygovee."""

from __future__ import annotations

from typing import Any


class GoveeError(Exception):
    """Base exception for all pygovee errors."""


class GoveeConfigError(GoveeError):
    """Invalid or missing configuration."""


class GoveeDecodeError(GoveeError):
    """A frame or message could not be decoded.

    Never fatal: the ingestion layer logs it, reports a diagnostic and drops
    the offending input.
    """

    def __init__(
        self,
        message: str,
        *,
        source: str = "",
        device_id: Any = None,
    ) -> None:
        self.source = source
        self.device_id = device_id
        super().__init__(message)


class GoveeChecksumError(GoveeDecodeError):
    """Radio payload failed its XOR checksum."""

    def __init__(
        self,
        message: str,
        *,
        expected: int,
        actual: int,
        source: str = "",
        device_id: Any = None,
    ) -> None:
        self.expected = expected
        self.actual = actual
        super().__init__(message, source=source, device_id=device_id)


class GoveeCatalogParseError(GoveeError):
    """A single scene leaf in the vendor metadata is malformed.

    Raised per leaf; the catalog builder skips the leaf and keeps going.
    """

    def __init__(self, message: str, *, model: str = "", path: str = "") -> None:
        self.model = model
        self.path = path
        super().__init__(message)


class GoveeEffectNotFoundError(GoveeError):
    """A requested effect is not present in the device's catalog."""


class GoveeDispatchTimeout(GoveeError):
    """No confirmation arrived for an issued command within its expiry."""

    def __init__(self, message: str, *, command_id: str, device_id: Any = None) -> None:
        self.command_id = command_id
        self.device_id = device_id
        super().__init__(message)


class GoveeTransportError(GoveeError):
    """Sending a command over a transport failed (network, non-200, bad JSON)."""

    def __init__(
        self,
        message: str,
        *,
        transport: str = "",
        status_code: int | None = None,
        endpoint: str = "",
    ) -> None:
        self.transport = transport
        self.status_code = status_code
        self.endpoint = endpoint
        super().__init__(message)


class GoveeTransportUnavailable(GoveeTransportError):
    """The selected transport cannot currently reach the device.

    The dispatcher reacts by falling back to the next transport instead of
    spending its retry budget.
    """
