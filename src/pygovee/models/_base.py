"""Base model for vendor payloads.

Every LAN, cloud and scene-library model inherits from
:class:`GoveeBaseModel` which provides:

* ``alias_generator=to_camel`` so camelCase vendor keys map
  automatically to snake_case fields.
* A ``model_validator(mode="before")`` that strips vendor sentinel
  values (``""``, ``None``, NaN) so the field default is used.
* A ``raw`` dict that captures the original payload.
"""

from __future__ import annotations

import math
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

# Sentinel strings the vendor APIs use for "not available".
_SENTINELS = frozenset({"", "null", "NaN", "nan"})


class GoveeBaseModel(BaseModel):
    """Base for vendor payload models."""

    model_config = ConfigDict(
        frozen=True,
        extra="ignore",
        populate_by_name=True,
        alias_generator=to_camel,
    )

    raw: dict[str, Any] = Field(default_factory=dict)
    """Original vendor payload."""

    @staticmethod
    def _clean_dict(values: dict[str, Any]) -> dict[str, Any]:
        cleaned: dict[str, Any] = {}
        for key, value in values.items():
            if value is None:
                continue
            if isinstance(value, str) and value.strip() in _SENTINELS:
                continue
            if isinstance(value, float) and math.isnan(value):
                continue
            cleaned[key] = value
        return cleaned

    @model_validator(mode="before")
    @classmethod
    def _clean_vendor_values(cls, values: Any) -> Any:
        """Strip sentinel values and stash the raw payload."""
        if not isinstance(values, dict):
            return values
        original = dict(values)
        cleaned = GoveeBaseModel._clean_dict(original)
        # Keep an explicitly supplied raw= (kwargs construction).
        if "raw" not in values:
            cleaned["raw"] = original
        return cleaned
