"""Scene catalog: vendor light-effect library to controllable effects."""

from pygovee.catalog.builder import CatalogBuildResult, build_catalog, disambiguate, metadata_version
from pygovee.catalog.encoding import ModelParameters, ModelParameterTable, SceneTypeEntry, encode_scene_command

__all__ = [
    "CatalogBuildResult",
    "ModelParameterTable",
    "ModelParameters",
    "SceneTypeEntry",
    "build_catalog",
    "disambiguate",
    "encode_scene_command",
    "metadata_version",
]
