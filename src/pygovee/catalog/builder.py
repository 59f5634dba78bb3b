"""Compile the vendor light-effect library into an :class:`EffectCatalog`.

The library is a duplicate-laden tree (categories -> scenes -> light
effects). It is flattened into an ordered list of leaves, each leaf is
compiled on its own, and display names are disambiguated in a final pass.
Nothing is deduplicated: two leaves called "Halloween" become
"Halloween (1)" and "Halloween (2)".
"""

from __future__ import annotations

import dataclasses
import hashlib
import json
import logging
from collections import Counter
from collections.abc import Mapping, Sequence
from typing import Any

from pydantic import ValidationError

from pygovee.catalog.encoding import DEFAULT_PARAMETERS, ModelParameters, ModelParameterTable, encode_scene_command
from pygovee.exceptions import GoveeCatalogParseError
from pygovee.models.diagnostics import Diagnostic, DiagnosticCallback, DiagnosticKind
from pygovee.models.scenes import Effect, EffectCatalog, LightEffect, Scene, SceneCategory, make_effect_id

_logger = logging.getLogger(__name__)


@dataclasses.dataclass(frozen=True)
class CatalogLeaf:
    """One flattened, not yet compiled, library entry."""

    path: str
    raw_name: str
    scene_code: int | None
    scence_param: str = ""
    scene_id: int = 0
    param_id: int = 0
    category_name: str = ""


@dataclasses.dataclass(frozen=True)
class CatalogBuildResult:
    catalog: EffectCatalog
    diagnostics: tuple[Diagnostic, ...] = ()


def extract_categories(payload: Any) -> list[Any]:
    """Accept the full response, its ``data`` object, or the bare category list."""
    if isinstance(payload, Mapping):
        data = payload.get("data", payload)
        if isinstance(data, Mapping):
            categories = data.get("categories")
            if isinstance(categories, list):
                return categories
        raise GoveeCatalogParseError("light-effect library has no categories list")
    if isinstance(payload, list):
        return payload
    raise GoveeCatalogParseError("light-effect library must be an object or a list")


def metadata_version(model: str, payload: Any, parameters: ModelParameters | None = None) -> str:
    """Content hash of everything a compiled catalog depends on."""
    material = {
        "model": model,
        "library": payload,
        "parameters": None if parameters is None else parameters.model_dump(exclude={"raw"}, by_alias=True),
    }
    blob = json.dumps(material, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(blob.encode("utf-8")).hexdigest()[:16]


def _scene_leaves(
    scene: Scene,
    effects: list[tuple[int, LightEffect]],
    path: str,
    category_name: str,
) -> list[CatalogLeaf]:
    named = [(index, effect) for index, effect in effects if effect.scence_name]
    if len(named) >= 2:
        return [
            CatalogLeaf(
                path=f"{path}.lightEffects[{index}]",
                raw_name=f"{scene.scene_name}-{effect.scence_name}",
                scene_code=effect.scene_code,
                scence_param=effect.scence_param,
                scene_id=scene.scene_id,
                param_id=effect.scence_param_id,
                category_name=category_name,
            )
            for index, effect in named
        ]
    if effects:
        index, first = next(((i, e) for i, e in effects if e.scene_code is not None), effects[0])
        return [
            CatalogLeaf(
                path=f"{path}.lightEffects[{index}]",
                raw_name=scene.scene_name,
                scene_code=first.scene_code,
                scence_param=first.scence_param,
                scene_id=scene.scene_id,
                param_id=first.scence_param_id,
                category_name=category_name,
            )
        ]
    return [
        CatalogLeaf(
            path=path,
            raw_name=scene.scene_name,
            scene_code=scene.scene_code,
            scene_id=scene.scene_id,
            category_name=category_name,
        )
    ]


def flatten_library(model: str, categories: Sequence[Any]) -> tuple[list[CatalogLeaf], list[GoveeCatalogParseError]]:
    """Walk the tree in order. Malformed nodes are reported, never fatal."""
    leaves: list[CatalogLeaf] = []
    errors: list[GoveeCatalogParseError] = []

    for c_index, raw_category in enumerate(categories):
        c_path = f"categories[{c_index}]"
        if not isinstance(raw_category, Mapping):
            errors.append(GoveeCatalogParseError("category is not an object", model=model, path=c_path))
            continue
        try:
            category = SceneCategory.model_validate(dict(raw_category))
        except ValidationError as exc:
            errors.append(GoveeCatalogParseError(f"malformed category: {exc}", model=model, path=c_path))
            continue
        raw_scenes = raw_category.get("scenes") or []
        if not isinstance(raw_scenes, list):
            errors.append(GoveeCatalogParseError("scenes is not a list", model=model, path=c_path))
            continue
        for s_index, raw_scene in enumerate(raw_scenes):
            s_path = f"{c_path}.scenes[{s_index}]"
            try:
                scene = Scene.model_validate(raw_scene)
            except ValidationError as exc:
                errors.append(GoveeCatalogParseError(f"malformed scene: {exc}", model=model, path=s_path))
                continue

            raw_effects = raw_scene.get("lightEffects") or []
            if not isinstance(raw_effects, list):
                errors.append(GoveeCatalogParseError("lightEffects is not a list", model=model, path=s_path))
                continue
            effects: list[tuple[int, LightEffect]] = []
            for e_index, raw_effect in enumerate(raw_effects):
                try:
                    effects.append((e_index, LightEffect.model_validate(raw_effect)))
                except ValidationError as exc:
                    errors.append(
                        GoveeCatalogParseError(
                            f"malformed light effect: {exc}",
                            model=model,
                            path=f"{s_path}.lightEffects[{e_index}]",
                        )
                    )
            leaves.extend(_scene_leaves(scene, effects, s_path, category.category_name))

    return leaves, errors


def disambiguate(names: Sequence[str]) -> list[str]:
    """Suffix every repeated name with `` (n)`` in first-seen order.

    ``n`` is advanced past any suffixed form that already exists as a
    literal name, so the result is always unique.
    """
    counts = Counter(names)
    taken = set(names)
    next_index: dict[str, int] = {}
    result: list[str] = []
    for name in names:
        if counts[name] == 1:
            result.append(name)
            continue
        n = next_index.get(name, 1)
        candidate = f"{name} ({n})"
        while candidate in taken:
            n += 1
            candidate = f"{name} ({n})"
        next_index[name] = n + 1
        taken.add(candidate)
        result.append(candidate)
    return result


def _compile(model: str, leaf: CatalogLeaf, params: ModelParameters) -> tuple[int, str]:
    if not leaf.raw_name:
        raise GoveeCatalogParseError("leaf has no name", model=model, path=leaf.path)
    if leaf.scene_code is None:
        raise GoveeCatalogParseError(f"'{leaf.raw_name}' has no scene code", model=model, path=leaf.path)
    if not 0 <= leaf.scene_code <= 0xFFFF:
        raise GoveeCatalogParseError(
            f"'{leaf.raw_name}' scene code {leaf.scene_code} out of range",
            model=model,
            path=leaf.path,
        )
    try:
        command = encode_scene_command(leaf.scene_code, leaf.scence_param, params)
    except ValueError as exc:
        raise GoveeCatalogParseError(f"'{leaf.raw_name}': {exc}", model=model, path=leaf.path) from exc
    return leaf.scene_code, command.hex()


def build_catalog(
    model: str,
    payload: Any,
    *,
    parameters: ModelParameterTable | ModelParameters | None = None,
    version: str | None = None,
    on_diagnostic: DiagnosticCallback | None = None,
) -> CatalogBuildResult:
    """Build the effect catalog for *model* from its light-effect library.

    Raises :class:`GoveeCatalogParseError` only when the library as a whole
    is unusable; individual bad leaves are skipped and reported.
    """
    if isinstance(parameters, ModelParameterTable):
        params = parameters.for_model(model)
    else:
        params = parameters or DEFAULT_PARAMETERS

    categories = extract_categories(payload)
    leaves, errors = flatten_library(model, categories)

    compiled: list[tuple[CatalogLeaf, int, str]] = []
    for leaf in leaves:
        try:
            code, command_hex = _compile(model, leaf, params)
        except GoveeCatalogParseError as exc:
            errors.append(exc)
            continue
        compiled.append((leaf, code, command_hex))

    display_names = disambiguate([leaf.raw_name for leaf, _, _ in compiled])
    occurrences: Counter[int] = Counter()
    effects: list[Effect] = []
    for (leaf, code, command_hex), display_name in zip(compiled, display_names, strict=True):
        occurrences[code] += 1
        effects.append(
            Effect(
                effect_id=make_effect_id(code, occurrences[code]),
                display_name=display_name,
                raw_name=leaf.raw_name,
                scene_code=code,
                scene_id=leaf.scene_id,
                param_id=leaf.param_id,
                category_name=leaf.category_name,
                command_hex=command_hex,
            )
        )

    diagnostics = tuple(
        Diagnostic(
            kind=DiagnosticKind.CATALOG_LEAF_SKIPPED,
            message=str(exc),
            device_id=model,
            source="catalog",
            detail={"path": exc.path},
            error=exc,
        )
        for exc in errors
    )
    for diagnostic in diagnostics:
        _logger.warning("Skipped scene leaf for %s at %s: %s", model, diagnostic.detail["path"], diagnostic.message)
        if on_diagnostic is not None:
            on_diagnostic(diagnostic)

    catalog = EffectCatalog(
        model=model,
        metadata_version=version or metadata_version(model, payload, params),
        effects=tuple(effects),
    )
    _logger.debug("Built catalog for %s: %d effect(s), %d skipped", model, len(effects), len(diagnostics))
    return CatalogBuildResult(catalog=catalog, diagnostics=diagnostics)
