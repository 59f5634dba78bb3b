"""Compiled effect catalog cache boundary."""

from __future__ import annotations

from collections import OrderedDict
from typing import Protocol


class CatalogCache(Protocol):
    """Opaque blob store keyed on ``(model, metadata_version)``.

    Implementations may drop entries at any time; a miss only costs a
    re-parse of the vendor metadata.
    """

    def get(self, model: str, metadata_version: str) -> bytes | None: ...

    def put(self, model: str, metadata_version: str, blob: bytes) -> None: ...


class MemoryCatalogCache:
    """In-process :class:`CatalogCache` holding the *max_entries* most recently used blobs."""

    def __init__(self, max_entries: int = 64) -> None:
        if max_entries < 1:
            raise ValueError("max_entries must be at least 1")
        self._max_entries = max_entries
        self._blobs: OrderedDict[tuple[str, str], bytes] = OrderedDict()

    def get(self, model: str, metadata_version: str) -> bytes | None:
        key = (model, metadata_version)
        blob = self._blobs.get(key)
        if blob is not None:
            self._blobs.move_to_end(key)
        return blob

    def put(self, model: str, metadata_version: str, blob: bytes) -> None:
        key = (model, metadata_version)
        self._blobs[key] = blob
        self._blobs.move_to_end(key)
        while len(self._blobs) > self._max_entries:
            self._blobs.popitem(last=False)

    def __len__(self) -> int:
        return len(self._blobs)
