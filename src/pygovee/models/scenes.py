"""Scene library payloads and the compiled effect catalog.

The vendor light-effect library is a nested tree::

    categories[] -> scenes[] -> lightEffects[]

Only the leaf models below are validated strictly; the tree walk in
:mod:`pygovee.catalog.builder` validates one leaf at a time so that a single
malformed entry cannot take the whole catalog down with it.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from pygovee._codec.frames import frames_to_base64
from pygovee._constants import LAN_CMD_PT_REAL
from pygovee.models._base import GoveeBaseModel

EFFECT_ID_SEPARATOR = "~"


def make_effect_id(scene_code: int, occurrence: int = 1) -> str:
    """Stable effect id for the *occurrence*-th leaf using *scene_code*.

    The first leaf with a given code owns the bare code, so decoders that
    only see the wire code can still name the effect without a catalog.
    """
    if occurrence <= 1:
        return str(scene_code)
    return f"{scene_code}{EFFECT_ID_SEPARATOR}{occurrence}"


def scene_code_of(effect_id: str) -> int | None:
    """Wire scene code behind *effect_id*, or ``None`` if it is not one of ours."""
    head = effect_id.split(EFFECT_ID_SEPARATOR, 1)[0]
    return int(head) if head.isdigit() else None


class LightEffect(GoveeBaseModel):
    """A sub-scene entry (``lightEffects[]``)."""

    scence_param_id: int = 0
    scence_name: str = ""
    scence_param: str = ""
    scene_code: int | None = None
    cmd_version: int | None = None


class Scene(GoveeBaseModel):
    """A scene entry (``scenes[]``); its own code is used when it has no sub-scenes."""

    scene_id: int = 0
    scene_name: str = ""
    scene_code: int | None = None


class SceneCategory(GoveeBaseModel):
    """A scene group (``categories[]``)."""

    category_id: int = 0
    category_name: str = ""


class EffectSummary(BaseModel):
    """Externally visible (effect id, display name) pair."""

    model_config = ConfigDict(frozen=True)

    effect_id: str
    display_name: str


class Effect(BaseModel):
    """A controllable, compiled catalog entry."""

    model_config = ConfigDict(frozen=True)

    effect_id: str
    display_name: str
    raw_name: str
    scene_code: int = Field(..., ge=0, le=0xFFFF)
    scene_id: int = 0
    param_id: int = 0
    category_name: str = ""
    command_hex: str = Field(..., description="Compiled radio/ptReal frame stream, hex encoded")

    @property
    def command(self) -> bytes:
        return bytes.fromhex(self.command_hex)

    def summary(self) -> EffectSummary:
        return EffectSummary(effect_id=self.effect_id, display_name=self.display_name)

    def lan_message(self) -> dict[str, Any]:
        """``ptReal`` LAN message carrying the compiled frames."""
        return {"msg": {"cmd": LAN_CMD_PT_REAL, "data": {"command": frames_to_base64(self.command)}}}

    def cloud_value(self) -> dict[str, int]:
        """``lightScene`` capability value for the platform API."""
        return {"id": self.scene_id, "paramId": self.param_id}


class EffectCatalog(BaseModel):
    """Ordered, display-name-unique effect list for one device model."""

    model_config = ConfigDict(frozen=True)

    model: str
    metadata_version: str
    effects: tuple[Effect, ...] = ()

    def __len__(self) -> int:
        return len(self.effects)

    def get(self, effect_id: str) -> Effect | None:
        for effect in self.effects:
            if effect.effect_id == effect_id:
                return effect
        return None

    def by_display_name(self, name: str) -> Effect | None:
        """Case-insensitive lookup by display name."""
        wanted = name.strip().casefold()
        for effect in self.effects:
            if effect.display_name.casefold() == wanted:
                return effect
        return None

    def resolve(self, label: str) -> Effect | None:
        """Resolve an effect id first, then a display name."""
        return self.get(label) or self.by_display_name(label)

    def summary(self) -> tuple[EffectSummary, ...]:
        return tuple(effect.summary() for effect in self.effects)

    def display_names(self) -> list[str]:
        return [effect.display_name for effect in self.effects]

    def to_blob(self) -> bytes:
        """Serialize for an opaque cache store."""
        return self.model_dump_json().encode("utf-8")

    @classmethod
    def from_blob(cls, blob: bytes) -> EffectCatalog:
        return cls.model_validate_json(blob)
